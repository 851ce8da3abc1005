import tempfile
import unittest
from pathlib import Path

from fakes import FakeChromaClient, FakeGenerator, HashingEmbedder
from fastapi.testclient import TestClient

from bookrag.answer_cache import InMemoryCacheStore
from bookrag.api_server import create_app, status_for
from bookrag.catalog import DocumentCatalog
from bookrag.config import Settings
from bookrag.errors import DimensionMismatchError, NotFoundError, ParseFailureError, UpstreamTimeoutError
from bookrag.runtime import BookRagRuntime
from bookrag.vector_store import VectorStoreManager

BOOK_TEXT = "\n".join(
    ["Unit 1: Landforms"]
    + [f"Glaciers and rivers shape landform number {i} across the northern highlands." for i in range(6)]
    + ["Unit 2: Climate"]
    + [f"Monsoon season {i} brings heavy rainfall to the southern coastal plains." for i in range(6)]
)

QUIZ_JSON = '[{"question": "What shapes landforms?", "options": ["A. Ice", "B. Sand", "C. Salt", "D. Glass"], "answer": "A. Ice"}]'


class TestApiServer(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.settings = Settings(embedding_dim=64)
        self.generator = FakeGenerator("Grounded answer.")
        self.runtime = BookRagRuntime(
            self.settings,
            catalog=DocumentCatalog(Path(self.tmp.name) / "catalog.sqlite"),
            vector_store=VectorStoreManager(FakeChromaClient(), dimension=64),
            embedder=HashingEmbedder(dimension=64),
            generator=self.generator,
            cache_store=InMemoryCacheStore(),
            text_loader=lambda path: BOOK_TEXT,
        )
        self.client = TestClient(create_app(self.runtime))
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)
        self.runtime.close()
        self.tmp.cleanup()

    def _register(self, document_id="geo-7"):
        response = self.client.post(
            "/documents",
            json={
                "title": "Geography",
                "grade": "7",
                "subject": "Social Studies",
                "file_path": "/books/geo.txt",
                "document_id": document_id,
            },
        )
        self.assertEqual(response.status_code, 201)
        return response.json()

    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    def test_register_ingest_ask_flow(self):
        created = self._register()
        self.assertFalse(created["is_indexed"])

        ingest = self.client.post("/documents/geo-7/ingest")
        self.assertEqual(ingest.status_code, 200)
        self.assertGreater(ingest.json()["points"], 0)
        self.assertTrue(self.client.get("/documents/geo-7").json()["is_indexed"])

        chunks = self.runtime.chunker.chunk(BOOK_TEXT, document_id="geo-7")
        response = self.client.post("/ask", json={"document_id": "geo-7", "question": chunks[0].text})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["source"], "rag")
        self.assertEqual(body["answer"], "Grounded answer.")
        self.assertIn(chunks[0].text, body["contexts"])

        cached = self.client.post("/ask", json={"document_id": "geo-7", "question": chunks[0].text})
        self.assertEqual(cached.json()["source"], "cache")

    def test_list_documents(self):
        self._register("a")
        self._register("b")
        ids = {doc["id"] for doc in self.client.get("/documents").json()}
        self.assertEqual(ids, {"a", "b"})

    def test_unknown_document_is_404(self):
        response = self.client.get("/documents/missing")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"], "NotFoundError")
        self.assertEqual(self.client.post("/ask", json={"document_id": "missing", "question": "hi"}).status_code, 404)

    def test_blank_question_is_422(self):
        self._register()
        response = self.client.post("/ask", json={"document_id": "geo-7", "question": "   "})
        self.assertEqual(response.status_code, 422)

    def test_summary_for_unknown_chapter_lists_sample(self):
        self._register()
        self.client.post("/documents/geo-7/ingest")
        response = self.client.post("/summary", json={"document_id": "geo-7", "chapter": "Unit 9"})
        self.assertEqual(response.status_code, 404)
        self.assertIn("unit 1: landforms", response.json()["sample"])

    def test_summary_for_known_chapter(self):
        self._register()
        self.client.post("/documents/geo-7/ingest")
        response = self.client.post("/summary", json={"document_id": "geo-7", "chapter": "Unit 2"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["unit_title"], "unit 2: climate")

    def test_quiz_success_and_upstream_failure(self):
        self._register()
        self.client.post("/documents/geo-7/ingest")
        self.generator.reply = QUIZ_JSON
        response = self.client.post("/quiz", json={"document_id": "geo-7", "topic": "glaciers", "num_questions": 1})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["questions"][0]["answer"], "A. Ice")

        self.generator.error = UpstreamTimeoutError("generation", 300)
        failed = self.client.post("/quiz", json={"document_id": "geo-7", "topic": "glaciers"})
        self.assertEqual(failed.status_code, 503)
        self.assertEqual(failed.json()["service"], "generation")


class TestStatusMapping(unittest.TestCase):
    def test_error_statuses(self):
        self.assertEqual(status_for(NotFoundError("x")), 404)
        self.assertEqual(status_for(ParseFailureError("x")), 502)
        self.assertEqual(status_for(UpstreamTimeoutError("embedding", 1)), 503)
        self.assertEqual(status_for(DimensionMismatchError(768, 384)), 500)


if __name__ == "__main__":
    unittest.main()
