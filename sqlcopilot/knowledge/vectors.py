"""
Vector Store

Async interface over the schema-embedding vector store, plus the Chroma
implementation. Each connection gets its own collection; relevance is
``1 - cosine distance`` so scores are comparable with the linker's
thresholds.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path

import chromadb
from chromadb.config import Settings
from chromadb.utils.embedding_functions import OpenAIEmbeddingFunction

from sqlcopilot.utils.naming import storage_name

logger = logging.getLogger(__name__)


class VectorStoreError(Exception):
    """Raised when vector store operations fail."""

    pass


@dataclass(frozen=True)
class VectorHit:
    """A search match: the stored text and its relevance in [0, 1]."""

    item_id: str
    text: str
    score: float


class BaseVectorStore(ABC):
    """Collection-scoped text store with similarity search."""

    @abstractmethod
    async def save(self, collection: str, item_id: str, text: str) -> None:
        """Insert or replace ``item_id`` in ``collection``."""
        pass  # pragma: no cover - abstract method

    @abstractmethod
    def search(
        self,
        collection: str,
        query: str,
        limit: int,
        min_relevance_score: float,
    ) -> AsyncIterator[VectorHit]:
        """
        Stream matches at or above ``min_relevance_score``, best first.

        Raises:
            VectorStoreError: If the store cannot be queried
        """
        pass  # pragma: no cover - abstract method

    @abstractmethod
    async def delete(self, collection: str, item_ids: list[str]) -> int:
        """Delete items by id. Returns the number of ids submitted."""
        pass  # pragma: no cover - abstract method

    @abstractmethod
    async def delete_collection(self, collection: str) -> None:
        """Drop a whole collection. Missing collections are ignored."""
        pass  # pragma: no cover - abstract method


class ChromaVectorStore(BaseVectorStore):
    """
    Chroma-backed vector store with OpenAI embeddings.

    Usage:
        store = ChromaVectorStore(persist_directory="./chroma_data", openai_api_key=key)
        await store.save("shop", "shop_orders", embedding_json)
        async for hit in store.search("shop", "monthly revenue", limit=5, min_relevance_score=0.7):
            print(hit.score, hit.text)
    """

    def __init__(
        self,
        persist_directory: str | Path,
        openai_api_key: str | None = None,
        embedding_model: str = "text-embedding-3-small",
        collection_prefix: str = "schema",
        client: chromadb.ClientAPI | None = None,
        embedding_function=None,
    ):
        self.persist_directory = Path(persist_directory)
        self.openai_api_key = openai_api_key
        self.embedding_model = embedding_model
        self.collection_prefix = collection_prefix
        self.client = client
        self.embedding_function = embedding_function
        self._collections: dict[str, chromadb.Collection] = {}

        logger.info(
            f"ChromaVectorStore configured: persist_dir={self.persist_directory}, "
            f"embedding_model={self.embedding_model}"
        )

    def collection_name(self, collection: str) -> str:
        """Map a logical collection to a valid, collision-free Chroma collection name."""
        prefix = re.sub(r"[^A-Za-z0-9_-]", "_", self.collection_prefix).strip("_-")[:16]
        if not prefix:
            return storage_name(collection)
        return f"{prefix}_{storage_name(collection, max_length=63 - len(prefix) - 10)}"

    def _init_client(self) -> None:
        if self.client is None:
            self.persist_directory.mkdir(parents=True, exist_ok=True)
            self.client = chromadb.PersistentClient(
                path=str(self.persist_directory),
                settings=Settings(anonymized_telemetry=False, allow_reset=True),
            )
        if self.embedding_function is None:
            self.embedding_function = OpenAIEmbeddingFunction(
                api_key=self.openai_api_key,
                model_name=self.embedding_model,
            )

    def _get_collection_sync(self, collection: str) -> chromadb.Collection:
        name = self.collection_name(collection)
        if name not in self._collections:
            self._init_client()
            self._collections[name] = self.client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=self.embedding_function,
            )
        return self._collections[name]

    async def _get_collection(self, collection: str) -> chromadb.Collection:
        try:
            return await asyncio.to_thread(self._get_collection_sync, collection)
        except Exception as e:
            logger.error(f"Failed to open collection {collection}: {e}")
            raise VectorStoreError(f"Failed to open collection {collection}: {e}") from e

    async def save(self, collection: str, item_id: str, text: str) -> None:
        chroma_collection = await self._get_collection(collection)
        try:
            await asyncio.to_thread(chroma_collection.upsert, ids=[item_id], documents=[text])
        except Exception as e:
            logger.error(f"Failed to save {item_id}: {e}")
            raise VectorStoreError(f"Failed to save {item_id}: {e}") from e
        logger.debug(f"Upserted {item_id} into {collection}")

    async def search(
        self,
        collection: str,
        query: str,
        limit: int,
        min_relevance_score: float,
    ) -> AsyncIterator[VectorHit]:
        chroma_collection = await self._get_collection(collection)
        try:
            results = await asyncio.to_thread(
                chroma_collection.query,
                query_texts=[query],
                n_results=limit,
                include=["documents", "distances"],
            )
        except Exception as e:
            logger.error(f"Search failed in {collection}: {e}")
            raise VectorStoreError(f"Search failed: {e}") from e

        ids = results["ids"][0] if results.get("ids") else []
        documents = results["documents"][0] if results.get("documents") else []
        distances = results["distances"][0] if results.get("distances") else []

        hits = [
            VectorHit(item_id=item_id, text=document or "", score=1.0 - distance)
            for item_id, document, distance in zip(ids, documents, distances, strict=False)
        ]
        hits = sorted(
            (hit for hit in hits if hit.score >= min_relevance_score),
            key=lambda hit: hit.score,
            reverse=True,
        )
        logger.debug(
            f"Search in {collection} returned {len(hits)} hits >= {min_relevance_score}",
            extra={"collection": collection, "limit": limit},
        )
        for hit in hits:
            yield hit

    async def delete(self, collection: str, item_ids: list[str]) -> int:
        if not item_ids:
            return 0
        chroma_collection = await self._get_collection(collection)
        try:
            await asyncio.to_thread(chroma_collection.delete, ids=item_ids)
        except Exception as e:
            logger.error(f"Failed to delete from {collection}: {e}")
            raise VectorStoreError(f"Failed to delete items: {e}") from e
        logger.info(f"Deleted {len(item_ids)} items from {collection}")
        return len(item_ids)

    async def delete_collection(self, collection: str) -> None:
        name = self.collection_name(collection)
        self._collections.pop(name, None)
        try:
            await asyncio.to_thread(self._delete_collection_sync, name)
        except Exception as e:
            logger.error(f"Failed to delete collection {collection}: {e}")
            raise VectorStoreError(f"Failed to delete collection {collection}: {e}") from e
        logger.info(f"Deleted collection {name}")

    def _delete_collection_sync(self, name: str) -> None:
        self._init_client()
        existing = {
            c if isinstance(c, str) else c.name for c in self.client.list_collections()
        }
        if name in existing:
            self.client.delete_collection(name)
