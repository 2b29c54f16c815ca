"""
PostgreSQL Query Executor

asyncpg-backed executor with one lazily created pool per connection id.

Usage:
    executor = PostgresQueryExecutor({"shop": "postgresql://user:pw@localhost/shop"})
    result = await executor.execute_query("shop", "SELECT count(*) FROM orders")
    if result.error:
        ...
    await executor.close()
"""

import asyncio
import logging
import time

import asyncpg

from sqlcopilot.connectors.base import BaseQueryExecutor, ExecutionResult, ExecutorError

logger = logging.getLogger(__name__)


class PostgresQueryExecutor(BaseQueryExecutor):
    """Executes SQL on PostgreSQL databases keyed by connection id."""

    def __init__(
        self,
        connections: dict[str, str],
        pool_size: int = 5,
        statement_timeout: int = 30,
    ):
        self.connections = dict(connections)
        self.pool_size = pool_size
        self.statement_timeout = statement_timeout
        self._pools: dict[str, asyncpg.Pool] = {}
        self._pool_lock = asyncio.Lock()

    async def connect(self, connection_id: str) -> asyncpg.Pool:
        """
        Return the pool for ``connection_id``, creating it on first use.

        Raises:
            ExecutorError: If the connection id is unknown or the pool cannot be created
        """
        async with self._pool_lock:
            if pool := self._pools.get(connection_id):
                return pool

            dsn = self.connections.get(connection_id)
            if dsn is None:
                raise ExecutorError(f"Unknown connection id: {connection_id}")

            try:
                logger.info(f"Creating PostgreSQL pool for {connection_id}")
                pool = await asyncpg.create_pool(
                    dsn=dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    command_timeout=self.statement_timeout,
                )
            except (asyncpg.PostgresError, OSError) as e:
                logger.error(f"PostgreSQL connection failed for {connection_id}: {e}")
                raise ExecutorError(f"Failed to connect to {connection_id}: {e}") from e

            self._pools[connection_id] = pool
            return pool

    async def execute_query(self, connection_id: str, sql: str) -> ExecutionResult:
        try:
            pool = await self.connect(connection_id)
        except ExecutorError as e:
            return ExecutionResult(error=str(e))

        start_time = time.perf_counter()
        try:
            async with pool.acquire() as conn:
                await conn.execute(f"SET statement_timeout = {self.statement_timeout * 1000}")
                records = await conn.fetch(sql)
        except asyncpg.QueryCanceledError:
            logger.warning(f"Query timed out after {self.statement_timeout}s: {sql[:100]}")
            return ExecutionResult(error=f"Query timeout ({self.statement_timeout}s)")
        except asyncpg.PostgresError as e:
            logger.info(f"Query failed on {connection_id}: {e}")
            return ExecutionResult(error=str(e))

        execution_time_ms = (time.perf_counter() - start_time) * 1000
        rows = [dict(record) for record in records]
        logger.debug(
            f"Query executed in {execution_time_ms:.2f}ms, returned {len(rows)} rows",
            extra={"connection_id": connection_id},
        )
        return ExecutionResult(rows=rows, execution_time_ms=execution_time_ms)

    async def close(self) -> None:
        pools, self._pools = self._pools, {}
        for connection_id, pool in pools.items():
            logger.info(f"Closing PostgreSQL pool for {connection_id}")
            await pool.close()
