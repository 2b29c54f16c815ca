"""
Feedback Optimizer

Bounded execute -> validate -> repair loop. Each iteration runs the
current SQL and either accepts it (valid result), asks the completer for a
refinement (implausible result) or asks for a repair (execution error).
Iterations are sequential and individually time-boxed; an unexpected
fault aborts the loop with a ``system_error`` step.
"""

import asyncio
import logging
import re
import time
from typing import Any

import sqlparse

from sqlcopilot.config import OptimizerSettings
from sqlcopilot.connectors.base import BaseQueryExecutor
from sqlcopilot.llm.completion import CompletionError, TextCompleter
from sqlcopilot.models.optimization import (
    ErrorAnalysis,
    ErrorType,
    ExecutionOutcome,
    OptimizationResult,
    OptimizationStep,
    StepType,
)
from sqlcopilot.refinement.errors import analyze_error, suggested_fix
from sqlcopilot.refinement.validation import ResultValidator

logger = logging.getLogger(__name__)

OPTIMIZE_TEMPLATE = "sql/optimize_sql.md"

_FENCE_PATTERN = re.compile(r"```(?:sql)?", re.IGNORECASE)


def clean_sql(text: str | None) -> str:
    """Strip markdown fences and blank lines and keep the first statement."""
    if not text:
        return ""
    text = _FENCE_PATTERN.sub("", text)
    text = "\n".join(line for line in text.splitlines() if line.strip())
    statements = [statement.strip() for statement in sqlparse.split(text) if statement.strip()]
    return statements[0] if statements else ""


class FeedbackOptimizer:
    """
    Turns a first-draft SQL statement into one that executes and passes
    result validation.

    Usage:
        optimizer = FeedbackOptimizer(executor, completer)
        result = await optimizer.optimize_with_feedback(
            "shop", question, linking.schema_text, draft_sql
        )
        if result.success:
            rows = result.rows
    """

    def __init__(
        self,
        executor: BaseQueryExecutor,
        completer: TextCompleter,
        config: OptimizerSettings | None = None,
        validator: ResultValidator | None = None,
    ):
        self.executor = executor
        self.completer = completer
        self.config = config or OptimizerSettings()
        self.validator = validator or ResultValidator(self.config)

    async def optimize_with_feedback(
        self,
        connection_id: str,
        question: str,
        schema_info: str,
        initial_sql: str,
        max_iterations: int | None = None,
    ) -> OptimizationResult:
        """
        Run the feedback loop.

        Args:
            connection_id: Connection to execute against
            question: The (resolved) user question
            schema_info: Linked schema JSON passed to repair prompts
            initial_sql: First-draft SQL
            max_iterations: Iteration budget (defaults to settings, must be at least 1)

        Returns:
            OptimizationResult; ``success=False`` when the budget ran out or
            an iteration aborted
        """
        budget = self.config.max_iterations if max_iterations is None else max_iterations
        if budget < 1:
            raise ValueError(f"max_iterations must be at least 1, got {budget}")
        result = OptimizationResult(original_sql=initial_sql)
        current_sql = initial_sql

        for iteration in range(1, budget + 1):
            step = OptimizationStep(iteration=iteration, input_sql=current_sql)
            logger.info(
                f"Optimization iteration {iteration}/{budget}",
                extra={"connection_id": connection_id, "iteration": iteration},
            )

            try:
                rows = await asyncio.wait_for(
                    self._run_iteration(step, connection_id, question, schema_info),
                    timeout=self.config.iteration_timeout_seconds,
                )
            except TimeoutError:
                message = (
                    f"Iteration {iteration} exceeded {self.config.iteration_timeout_seconds}s"
                )
                logger.error(message, extra={"connection_id": connection_id})
                self._abort(step, result, message)
                break
            except Exception as e:
                logger.error(
                    f"Optimization iteration {iteration} failed: {e}",
                    extra={"connection_id": connection_id},
                    exc_info=True,
                )
                self._abort(step, result, str(e))
                break

            result.steps.append(step)

            if step.step_type == StepType.VALIDATED:
                result.success = True
                result.final_sql = step.input_sql
                result.rows = rows or []
                logger.info(
                    f"SQL validated after {iteration} iteration(s)",
                    extra={"connection_id": connection_id, "rows": len(result.rows)},
                )
                break

            current_sql = step.optimized_sql or current_sql

        if not result.success:
            result.final_sql = self._last_produced_sql(result)
            if result.error_message is None:
                result.error_message = f"No valid result after {len(result.steps)} iteration(s)"
                logger.warning(result.error_message, extra={"connection_id": connection_id})

        return result

    async def _run_iteration(
        self,
        step: OptimizationStep,
        connection_id: str,
        question: str,
        schema_info: str,
    ) -> list[dict[str, Any]] | None:
        start_time = time.perf_counter()
        execution = await self.executor.execute_query(connection_id, step.input_sql)
        step.execution = ExecutionOutcome(
            success=execution.success,
            error_message=execution.error,
            row_count=len(execution.rows),
            duration_ms=(time.perf_counter() - start_time) * 1000,
        )

        if execution.error:
            analysis = analyze_error(execution.error)
            step.error_analysis = analysis
            logger.info(
                f"Execution failed ({analysis.error_type}), requesting repair",
                extra={"connection_id": connection_id, "iteration": step.iteration},
            )
            step.optimized_sql = await self._request_sql(
                question, schema_info, step.input_sql, analysis.as_repair_hint()
            )
            step.step_type = StepType.ERROR_REPAIR
            return None

        validation = self.validator.validate(execution.rows, question)
        step.validation = validation
        if validation.is_valid:
            step.optimized_sql = step.input_sql
            step.step_type = StepType.VALIDATED
            return execution.rows

        step.feedback = self.validator.build_feedback(validation, question)
        logger.info(
            f"Result failed validation: {'; '.join(validation.issues)}",
            extra={"connection_id": connection_id, "iteration": step.iteration},
        )
        step.optimized_sql = await self._request_sql(
            question, schema_info, step.input_sql, step.feedback
        )
        step.step_type = StepType.RESULT_REFINEMENT
        return None

    async def _request_sql(
        self, question: str, schema_info: str, current_sql: str, feedback: str
    ) -> str:
        try:
            text = await self.completer.complete(
                OPTIMIZE_TEMPLATE,
                temperature=self.config.repair_temperature,
                schema_info=schema_info,
                user_message=question,
                original_sql=current_sql,
                error_message=feedback,
            )
        except CompletionError as e:
            logger.warning(f"SQL refinement request failed, keeping current SQL: {e}")
            return current_sql

        return clean_sql(text) or current_sql

    @staticmethod
    def _abort(step: OptimizationStep, result: OptimizationResult, message: str) -> None:
        step.step_type = StepType.ABORTED
        step.error_analysis = ErrorAnalysis(
            error_type=ErrorType.SYSTEM_ERROR,
            error_message=message,
            suggested_fix=suggested_fix(ErrorType.SYSTEM_ERROR),
        )
        result.steps.append(step)
        result.error_message = f"System error: {message}"

    @staticmethod
    def _last_produced_sql(result: OptimizationResult) -> str:
        for step in reversed(result.steps):
            if step.optimized_sql:
                return step.optimized_sql
        if result.steps:
            return result.steps[-1].input_sql
        return result.original_sql
