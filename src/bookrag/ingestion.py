"""
Ingestion pipeline: document record -> text -> chunks -> vectors -> collection.

Batches are embedded with internal concurrency and stored in order. A batch
that fails upstream is retried with exponential backoff; the document is only
flagged as indexed once every batch has been stored.
"""
from __future__ import annotations

import time
import uuid
from concurrent.futures import ThreadPoolExecutor

from .chunking import ChunkingEngine
from .config import ReingestMode, Settings
from .document_source import load_document_text
from .errors import InvalidInputError, NotFoundError, UpstreamUnavailableError
from .models import Chunk, IngestionReport, VectorPoint
from .observability import get_logger
from .vector_store import collection_name_for

logger = get_logger(__name__)


class IngestionPipeline:
    def __init__(
        self,
        catalog,
        chunker: ChunkingEngine,
        embedder,
        vector_store,
        *,
        batch_size: int = 16,
        max_workers: int = 4,
        batch_retries: int = 2,
        retry_backoff_s: float = 1.0,
        reingest_mode: ReingestMode = ReingestMode.CLEAR,
        text_loader=load_document_text,
        sleep=time.sleep,
    ):
        self.catalog = catalog
        self.chunker = chunker
        self.embedder = embedder
        self.vector_store = vector_store
        self.batch_size = max(1, int(batch_size))
        self.max_workers = max(1, int(max_workers))
        self.batch_retries = max(0, int(batch_retries))
        self.retry_backoff_s = float(retry_backoff_s)
        self.reingest_mode = reingest_mode
        self._load_text = text_loader
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls, settings: Settings, catalog, chunker, embedder, vector_store, text_loader=load_document_text
    ) -> "IngestionPipeline":
        return cls(
            catalog,
            chunker,
            embedder,
            vector_store,
            batch_size=settings.ingest_batch_size,
            max_workers=settings.ingest_max_workers,
            batch_retries=settings.ingest_batch_retries,
            retry_backoff_s=settings.ingest_retry_backoff_s,
            reingest_mode=settings.reingest_mode,
            text_loader=text_loader,
        )

    def _embed_batch(self, pool: ThreadPoolExecutor, batch: list[Chunk]) -> list[list[float]]:
        """Embeds contiguous slices of the batch in parallel; output order matches the batch."""
        size = -(-len(batch) // self.max_workers)
        slices = [batch[i:i + size] for i in range(0, len(batch), size)]
        futures = [pool.submit(self.embedder.embed_many, [chunk.text for chunk in part]) for part in slices]
        return [vector for future in futures for vector in future.result()]

    def _index_batch(self, pool: ThreadPoolExecutor, collection: str, batch: list[Chunk]) -> int:
        vectors = self._embed_batch(pool, batch)
        points = [
            VectorPoint(id=str(uuid.uuid4()), vector=vector, payload=chunk.payload())
            for chunk, vector in zip(batch, vectors)
        ]
        return self.vector_store.upsert_batch(collection, points)

    def _index_with_retries(self, pool, collection: str, batch: list[Chunk], batch_no: int) -> int:
        attempt = 0
        while True:
            try:
                return self._index_batch(pool, collection, batch)
            except UpstreamUnavailableError as exc:
                if attempt >= self.batch_retries:
                    logger.error("ingest_batch_failed", collection=collection, batch=batch_no, attempts=attempt + 1, error=str(exc))
                    raise
                delay = self.retry_backoff_s * (2 ** attempt)
                attempt += 1
                logger.warning("ingest_batch_retry", collection=collection, batch=batch_no, attempt=attempt, delay_s=delay, error=str(exc))
                self._sleep(delay)

    def ingest(self, document_id: str) -> IngestionReport:
        started = time.perf_counter()
        record = self.catalog.find_document_by_id(document_id)
        if record is None:
            raise NotFoundError(f"document {document_id!r} not found")

        text = self._load_text(record.file_path)
        chunks = self.chunker.chunk(text, outline=record.outline or None, document_id=record.id)
        if not chunks:
            raise InvalidInputError(f"document {document_id!r} produced no chunks")

        # The flag stays unset until every batch of this run is stored.
        if record.is_indexed:
            self.catalog.mark_as_indexed(record.id, False)

        collection = collection_name_for(record)
        created = self.vector_store.ensure_collection(collection)
        cleared = False
        if not created:
            if self.reingest_mode == ReingestMode.CLEAR:
                self.vector_store.delete_points(collection, {"document_id": record.id})
                cleared = True
            else:
                logger.warning("reingest_appending_duplicates", document_id=record.id, collection=collection)

        batches = [chunks[i:i + self.batch_size] for i in range(0, len(chunks), self.batch_size)]
        stored = 0
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="bookrag-embed") as pool:
            for batch_no, batch in enumerate(batches, start=1):
                stored += self._index_with_retries(pool, collection, batch, batch_no)

        self.catalog.mark_as_indexed(record.id)
        logger.info(
            "ingest_complete",
            document_id=record.id,
            collection=collection,
            chunks=len(chunks),
            points=stored,
            batches=len(batches),
            collection_created=created,
            cleared_previous=cleared,
            elapsed_ms=round((time.perf_counter() - started) * 1000.0, 1),
        )
        return IngestionReport(
            document_id=record.id,
            collection=collection,
            chunks=len(chunks),
            points=stored,
            batches=len(batches),
            collection_created=created,
            cleared_previous=cleared,
        )
