import json
import tempfile
import unittest
from pathlib import Path

from fakes import FakeChromaClient, FakeGenerator, HashingEmbedder

from bookrag.answer_cache import InMemoryCacheStore
from bookrag.catalog import DocumentCatalog
from bookrag.cli import build_parser, main
from bookrag.config import Settings
from bookrag.errors import UpstreamUnavailableError
from bookrag.runtime import BookRagRuntime
from bookrag.vector_store import VectorStoreManager

BOOK_TEXT = "\n".join(
    ["Chapter 1: Matter"]
    + [f"Solids liquids and gases are states of matter, example {i} in the laboratory." for i in range(5)]
)


class TestCli(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.book = self.root / "science.txt"
        self.book.write_text(BOOK_TEXT, encoding="utf-8")
        self.generator = FakeGenerator("Matter takes up space.")
        self.runtime = BookRagRuntime(
            Settings(embedding_dim=32),
            catalog=DocumentCatalog(self.root / "catalog.sqlite"),
            vector_store=VectorStoreManager(FakeChromaClient(), dimension=32),
            embedder=HashingEmbedder(dimension=32),
            generator=self.generator,
            cache_store=InMemoryCacheStore(),
        )

    def tearDown(self):
        self.runtime.close()
        self.tmp.cleanup()

    def _run(self, *argv):
        return main(list(argv), runtime=self.runtime)

    def test_register_ingest_and_ask(self):
        outline = self.root / "outline.json"
        outline.write_text(json.dumps([{"title": "Chapter 1: Matter", "pageStart": 1, "pageEnd": 1}]), encoding="utf-8")
        self.assertEqual(
            self._run(
                "register", "--title", "Science", "--grade", "6", "--subject", "Science",
                "--file", str(self.book), "--outline", str(outline), "--id", "sci-6",
            ),
            0,
        )
        record = self.runtime.catalog.find_document_by_id("sci-6")
        self.assertEqual(len(record.outline), 1)

        self.assertEqual(self._run("ingest", "sci-6"), 0)
        self.assertTrue(self.runtime.catalog.find_document_by_id("sci-6").is_indexed)
        self.assertEqual(self._run("list"), 0)
        self.assertEqual(self._run("ask", "sci-6", "What are the states of matter?"), 0)

    def test_degraded_answer_exits_non_zero(self):
        self._run("register", "--title", "Science", "--grade", "6", "--subject", "Science", "--file", str(self.book), "--id", "sci-6")
        self._run("ingest", "sci-6")
        self.generator.error = UpstreamUnavailableError("generation", "connection refused")
        self.assertEqual(self._run("ask", "sci-6", "What is matter?"), 2)

    def test_engine_errors_exit_with_one(self):
        self.assertEqual(self._run("ingest", "unknown"), 1)
        self.assertEqual(self._run("summary", "unknown", "Chapter 1"), 1)

    def test_parser_requires_a_command(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args([])


if __name__ == "__main__":
    unittest.main()
