"""
Runtime wiring.
Builds every client once from Settings, injects them into the engines and
owns their lifecycle. Tests pass fakes for any collaborator.
"""
from __future__ import annotations

from .answer_cache import AnswerCache, create_cache_store
from .catalog import DocumentCatalog
from .chunking import ChunkingConfig, ChunkingEngine
from .config import Settings, load_settings
from .document_source import load_document_text
from .ingestion import IngestionPipeline
from .observability import configure_logging, get_logger
from .orchestrator import AnswerOrchestrator
from .quiz import QuizGenerator
from .retrieval import RetrievalEngine
from .services import EmbeddingService, GenerationService
from .summarizer import ChapterSummarizer
from .vector_store import VectorStoreManager

logger = get_logger(__name__)


class BookRagRuntime:
    def __init__(
        self,
        settings: Settings,
        *,
        catalog: DocumentCatalog,
        vector_store: VectorStoreManager,
        embedder,
        generator,
        cache_store,
        text_loader=None,
    ):
        self.settings = settings
        self.catalog = catalog
        self.vector_store = vector_store
        self.embedder = embedder
        self.generator = generator
        self.cache_store = cache_store

        self.chunker = ChunkingEngine(ChunkingConfig.from_settings(settings))
        self.answer_cache = AnswerCache(cache_store, ttl_s=settings.cache_ttl_s)
        self.retrieval = RetrievalEngine.from_settings(settings, catalog, vector_store, embedder)
        self.orchestrator = AnswerOrchestrator.from_settings(settings, self.retrieval, generator, self.answer_cache)
        self.summarizer = ChapterSummarizer.from_settings(settings, catalog, self.retrieval, generator)
        self.quiz = QuizGenerator.from_settings(settings, self.retrieval, generator)
        self.ingestion = IngestionPipeline.from_settings(
            settings, catalog, self.chunker, embedder, vector_store, text_loader=text_loader or load_document_text
        )
        self._closed = False

    @classmethod
    def open(cls, settings: Settings | None = None, **collaborators) -> "BookRagRuntime":
        """Creates real clients for every collaborator not passed explicitly."""
        settings = settings or load_settings()
        configure_logging(settings.log_path, level=settings.log_level)

        if "catalog" not in collaborators:
            collaborators["catalog"] = DocumentCatalog(settings.catalog_path)
        if "vector_store" not in collaborators:
            collaborators["vector_store"] = VectorStoreManager.from_settings(settings)
        if "embedder" not in collaborators:
            collaborators["embedder"] = EmbeddingService.from_settings(settings)
        if "generator" not in collaborators:
            collaborators["generator"] = GenerationService.from_settings(settings)
        if "cache_store" not in collaborators:
            collaborators["cache_store"] = create_cache_store(settings)

        runtime = cls(settings, **collaborators)
        logger.info(
            "runtime_opened",
            embedding_model=settings.embedding_model,
            generation_model=settings.generation_model,
            cache_backend=settings.cache_backend.value,
            chunking_strategy=settings.chunking_strategy.value,
            retrieval_mode=settings.retrieval_mode.value,
        )
        return runtime

    def close(self):
        if self._closed:
            return
        self._closed = True
        self.catalog.close()
        close_cache = getattr(self.cache_store, "close", None)
        if callable(close_cache):
            try:
                close_cache()
            except Exception as exc:
                logger.warning("cache_close_failed", error=str(exc))
        logger.info("runtime_closed")

    def __enter__(self) -> "BookRagRuntime":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
