"""
Vector store manager.

One Chroma collection per document identity. Collections are created lazily
(list then create), payload filters are plain equality dicts translated into
Chroma `where` clauses, and cosine distances are reported back as similarity
scores in [0, 1] where higher is better.
"""
from __future__ import annotations

import re
import threading
from typing import Any

import chromadb
from chromadb.config import Settings as ChromaSettings

from .config import Settings
from .errors import DimensionMismatchError, InvalidInputError
from .models import DocumentRecord, SearchHit, VectorPoint
from .observability import get_logger
from .services import VECTOR_STORE_SERVICE, call_with_timeout

logger = get_logger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^\w]", flags=re.ASCII)
_METRIC_TO_SPACE = {
    "cosine": "cosine",
    "dot": "ip",
    "ip": "ip",
    "euclid": "l2",
    "euclidean": "l2",
    "l2": "l2",
}


def collection_name_for(record: DocumentRecord) -> str:
    """
    Pure mapping from document identity to collection name:
    `title_grade_subject`, whitespace -> "_", non-word characters removed, lower-cased.
    """
    raw = f"{record.title}_{record.grade}_{record.subject}"
    name = _WHITESPACE_RE.sub("_", raw.strip())
    name = _NON_WORD_RE.sub("", name).lower().strip("_")
    if len(name) < 3:
        raise InvalidInputError(f"document {record.id!r} does not yield a usable collection name")
    return name


def build_where(filters: dict[str, Any] | None) -> dict[str, Any] | None:
    clauses = [{key: {"$eq": value}} for key, value in sorted((filters or {}).items()) if value is not None]
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def distance_to_score(distance: float, space: str) -> float:
    if space == "l2":
        return 1.0 / (1.0 + float(distance))
    return 1.0 - float(distance)


def create_chroma_client(settings: Settings):
    chroma_settings = ChromaSettings(anonymized_telemetry=False)
    if settings.chroma_host:
        return chromadb.HttpClient(host=settings.chroma_host, port=settings.chroma_port, settings=chroma_settings)
    settings.chroma_path.mkdir(parents=True, exist_ok=True)
    return chromadb.PersistentClient(path=str(settings.chroma_path), settings=chroma_settings)


class VectorStoreManager:
    def __init__(
        self,
        client,
        *,
        dimension: int = 768,
        metric: str = "cosine",
        timeout_s: float = 15.0,
    ):
        self._client = client
        self.dimension = int(dimension)
        self.metric = str(metric or "cosine").lower()
        self.timeout_s = float(timeout_s)
        self._lock = threading.RLock()
        self._collections: dict[str, Any] = {}

    @classmethod
    def from_settings(cls, settings: Settings, client=None) -> "VectorStoreManager":
        return cls(
            client if client is not None else create_chroma_client(settings),
            dimension=settings.embedding_dim,
            metric=settings.distance_metric,
            timeout_s=settings.vector_store_timeout_s,
        )

    def _call(self, fn, *args, **kwargs):
        return call_with_timeout(VECTOR_STORE_SERVICE, self.timeout_s, fn, *args, **kwargs)

    @staticmethod
    def _space_for(metric: str) -> str:
        space = _METRIC_TO_SPACE.get(str(metric or "").lower())
        if space is None:
            raise InvalidInputError(f"unsupported distance metric: {metric}")
        return space

    # --- Collection lifecycle ---

    def list_collection_names(self) -> list[str]:
        listed = self._call(self._client.list_collections)
        # Newer clients return names, older ones return collection objects.
        return [str(getattr(item, "name", item)) for item in listed or []]

    def collection_exists(self, name: str) -> bool:
        return name in self.list_collection_names()

    def ensure_collection(self, name: str, dim: int | None = None, metric: str | None = None) -> bool:
        """Creates the collection when missing. Returns True only when it was created here."""
        with self._lock:
            if self.collection_exists(name):
                return False
            target_dim = int(dim or self.dimension)
            space = self._space_for(metric or self.metric)
            collection = self._call(
                self._client.get_or_create_collection,
                name=name,
                metadata={"hnsw:space": space, "dimension": target_dim},
                embedding_function=None,
            )
            self._collections[name] = collection
        logger.info("collection_created", collection=name, dimension=target_dim, space=space)
        return True

    def _collection(self, name: str):
        with self._lock:
            cached = self._collections.get(name)
            if cached is not None:
                return cached
            collection = self._call(self._client.get_collection, name=name, embedding_function=None)
            self._collections[name] = collection
            return collection

    def _collection_meta(self, collection) -> dict[str, Any]:
        return dict(getattr(collection, "metadata", None) or {})

    def _expected_dimension(self, collection) -> int:
        meta = self._collection_meta(collection)
        try:
            return int(meta.get("dimension", self.dimension))
        except (TypeError, ValueError):
            return self.dimension

    def _space_of(self, collection) -> str:
        return str(self._collection_meta(collection).get("hnsw:space") or self._space_for(self.metric))

    # --- Points ---

    def upsert_batch(self, collection_name: str, points: list[VectorPoint]) -> int:
        if not points:
            return 0
        collection = self._collection(collection_name)
        expected = self._expected_dimension(collection)
        for point in points:
            if len(point.vector) != expected:
                raise DimensionMismatchError(expected, len(point.vector))

        self._call(
            collection.upsert,
            ids=[point.id for point in points],
            embeddings=[list(point.vector) for point in points],
            metadatas=[dict(point.payload) for point in points],
            documents=[str(point.payload.get("text", "")) for point in points],
        )
        logger.info("points_upserted", collection=collection_name, points=len(points))
        return len(points)

    def search(
        self,
        collection_name: str,
        vector: list[float],
        limit: int,
        filters: dict[str, Any] | None = None,
    ) -> list[SearchHit]:
        collection = self._collection(collection_name)
        expected = self._expected_dimension(collection)
        if len(vector) != expected:
            raise DimensionMismatchError(expected, len(vector))

        result = self._call(
            collection.query,
            query_embeddings=[list(vector)],
            n_results=max(1, int(limit)),
            where=build_where(filters),
            include=["metadatas", "documents", "distances"],
        )
        space = self._space_of(collection)
        ids = (result.get("ids") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0] or [{}] * len(ids)
        documents = (result.get("documents") or [[]])[0] or [""] * len(ids)
        distances = (result.get("distances") or [[]])[0] or [1.0] * len(ids)

        hits = []
        for point_id, meta, doc, distance in zip(ids, metadatas, documents, distances):
            payload = dict(meta or {})
            hits.append(
                SearchHit(
                    id=str(point_id),
                    score=distance_to_score(distance, space),
                    text=str(payload.get("text") or doc or ""),
                    payload=payload,
                )
            )
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits

    def scroll(
        self,
        collection_name: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
    ) -> list[SearchHit]:
        """Unranked points matching the filter; scores are 0.0."""
        collection = self._collection(collection_name)
        result = self._call(
            collection.get,
            where=build_where(filters),
            limit=max(1, int(limit)),
            include=["metadatas", "documents"],
        )
        ids = result.get("ids") or []
        metadatas = result.get("metadatas") or [{}] * len(ids)
        documents = result.get("documents") or [""] * len(ids)
        return [
            SearchHit(id=str(point_id), score=0.0, text=str((meta or {}).get("text") or doc or ""), payload=dict(meta or {}))
            for point_id, meta, doc in zip(ids, metadatas, documents)
        ]

    def delete_points(self, collection_name: str, filters: dict[str, Any]):
        where = build_where(filters)
        if where is None:
            raise InvalidInputError("refusing to delete points without a filter")
        collection = self._collection(collection_name)
        self._call(collection.delete, where=where)
        logger.info("points_deleted", collection=collection_name, filters=filters)
