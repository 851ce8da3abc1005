import tempfile
import unittest
from pathlib import Path

from fakes import FakeChromaClient, HashingEmbedder

from bookrag.catalog import DocumentCatalog
from bookrag.chunking import ChunkingConfig, ChunkingEngine
from bookrag.config import ChunkingStrategy, ReingestMode
from bookrag.errors import NotFoundError, UpstreamUnavailableError
from bookrag.ingestion import IngestionPipeline
from bookrag.vector_store import VectorStoreManager, collection_name_for

BOOK_TEXT = "\n".join(
    ["Unit 1: Landforms"]
    + [f"Mountains line {i} describes ridges peaks and valleys in detail." for i in range(12)]
    + ["Unit 2: Climate"]
    + [f"Climate line {i} describes rainfall seasons and temperature ranges." for i in range(12)]
)


class TestIngestionPipeline(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.catalog = DocumentCatalog(Path(self.tmp.name) / "catalog.sqlite")
        self.record = self.catalog.register_document(
            title="Geography", grade="7", subject="Social Studies", file_path="/tmp/geo.txt", document_id="doc-1"
        )
        self.client = FakeChromaClient()
        self.store = VectorStoreManager(self.client, dimension=16)
        self.embedder = HashingEmbedder(dimension=16)
        self.chunker = ChunkingEngine(
            ChunkingConfig(strategy=ChunkingStrategy.HEADINGS, window_max_words=20, window_overlap_words=5, min_chunk_chars=10)
        )
        self.sleeps = []

    def tearDown(self):
        self.catalog.close()
        self.tmp.cleanup()

    def _pipeline(self, **kwargs):
        options = dict(batch_size=3, max_workers=2, batch_retries=2, retry_backoff_s=0.5, sleep=self.sleeps.append)
        options.update(kwargs)
        return IngestionPipeline(
            self.catalog,
            self.chunker,
            self.embedder,
            self.store,
            text_loader=lambda path: BOOK_TEXT,
            **options,
        )

    def _collection(self):
        return self.client.collections[collection_name_for(self.record)]

    def test_ingest_stores_all_chunks_in_batches_and_sets_flag(self):
        report = self._pipeline().ingest("doc-1")
        expected_chunks = self.chunker.chunk(BOOK_TEXT, document_id="doc-1")
        self.assertEqual(report.chunks, len(expected_chunks))
        self.assertEqual(report.points, len(expected_chunks))
        self.assertEqual(report.batches, -(-len(expected_chunks) // 3))
        self.assertTrue(report.collection_created)
        self.assertEqual(len(self._collection().rows), len(expected_chunks))
        self.assertEqual(self._collection().upsert_calls, report.batches)
        self.assertTrue(self.catalog.find_document_by_id("doc-1").is_indexed)

    def test_batches_are_embedded_in_ordered_worker_slices(self):
        self._pipeline(batch_size=3, max_workers=2).ingest("doc-1")
        expected = [chunk.text for chunk in self.chunker.chunk(BOOK_TEXT, document_id="doc-1")]
        self.assertTrue(all(len(part) <= 2 for part in self.embedder.batches))
        self.assertEqual(sorted(text for part in self.embedder.batches for text in part), sorted(expected))
        for vector, _, text in self._collection().rows.values():
            self.assertEqual(vector, self.embedder.embed(text))

    def test_payloads_mirror_chunk_attributes(self):
        self._pipeline().ingest("doc-1")
        payloads = [meta for _, meta, _ in self._collection().rows.values()]
        titles = {p["normalized_unit_title"] for p in payloads}
        self.assertEqual(titles, {"unit 1: landforms", "unit 2: climate"})
        self.assertTrue(all(p["document_id"] == "doc-1" for p in payloads))
        self.assertTrue(all("page_start" not in p for p in payloads))

    def test_transient_failure_is_retried_with_backoff(self):
        self.embedder.fail_times = 1
        report = self._pipeline(max_workers=1).ingest("doc-1")
        self.assertEqual(self.sleeps, [0.5])
        self.assertEqual(report.points, len(self._collection().rows))
        self.assertTrue(self.catalog.find_document_by_id("doc-1").is_indexed)

    def test_exhausted_retries_abort_and_leave_flag_unset(self):
        self.embedder.fail_times = 100
        with self.assertRaises(UpstreamUnavailableError):
            self._pipeline(batch_retries=1, max_workers=1).ingest("doc-1")
        self.assertEqual(len(self.sleeps), 1)
        self.assertFalse(self.catalog.find_document_by_id("doc-1").is_indexed)

    def test_failed_reingest_resets_index_flag(self):
        self._pipeline().ingest("doc-1")
        self.assertTrue(self.catalog.find_document_by_id("doc-1").is_indexed)

        self.embedder.fail_times = 100
        with self.assertRaises(UpstreamUnavailableError):
            self._pipeline(batch_retries=0, max_workers=1).ingest("doc-1")
        self.assertEqual(len(self._collection().rows), 0)
        self.assertFalse(self.catalog.find_document_by_id("doc-1").is_indexed)

    def test_reingest_clears_previous_points(self):
        first = self._pipeline().ingest("doc-1")
        second = self._pipeline().ingest("doc-1")
        self.assertFalse(second.collection_created)
        self.assertTrue(second.cleared_previous)
        self.assertEqual(len(self._collection().rows), first.points)

    def test_append_mode_duplicates_points(self):
        first = self._pipeline(reingest_mode=ReingestMode.APPEND).ingest("doc-1")
        second = self._pipeline(reingest_mode=ReingestMode.APPEND).ingest("doc-1")
        self.assertFalse(second.cleared_previous)
        self.assertEqual(len(self._collection().rows), first.points + second.points)

    def test_unknown_document_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            self._pipeline().ingest("missing")


if __name__ == "__main__":
    unittest.main()
