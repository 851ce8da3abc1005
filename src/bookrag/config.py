# /bookrag/config.py
"""
Centralized configuration for the textbook RAG engine.
Settings are resolved once from the environment at startup and threaded
through every component; nothing else reads os.environ.
"""
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console

# ==============================================================================
# CONSOLE & ENVIRONMENT
# ==============================================================================
console = Console()


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    return str(raw).strip()


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        value = int(raw)
    except ValueError:
        return int(default)
    return max(minimum, value)


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        value = float(raw)
    except ValueError:
        return float(default)
    return max(float(minimum), value)


def _env_enum(name: str, enum_cls, default):
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return enum_cls(str(raw).strip().lower())
    except ValueError:
        return default


# ==============================================================================
# STRATEGY ENUMS
# ==============================================================================
class ChunkingStrategy(str, Enum):
    AUTO = "auto"            # outline when one is supplied, headings otherwise
    OUTLINE = "outline"
    HEADINGS = "headings"


class RetrievalMode(str, Enum):
    SIMILARITY = "similarity"
    STRUCTURE_AWARE = "structure_aware"  # narrows to "unit N" references when present


class CacheBackend(str, Enum):
    REDIS = "redis"
    MEMORY = "memory"


class ReingestMode(str, Enum):
    CLEAR = "clear"          # delete the document's points before re-indexing
    APPEND = "append"        # additive; repeated ingestion duplicates content


# ==============================================================================
# SETTINGS
# ==============================================================================
_BASE_DIR = Path(__file__).resolve().parent.parent.parent
_DATA_DIR = _BASE_DIR / "data"


@dataclass(frozen=True)
class Settings:
    # --- Upstream services ---
    ollama_base_url: str = "http://localhost:11434"
    embedding_model: str = "nomic-embed-text"
    generation_model: str = "mistral:latest"
    embedding_dim: int = 768
    distance_metric: str = "cosine"
    embedding_timeout_s: float = 30.0
    generation_timeout_s: float = 300.0
    vector_store_timeout_s: float = 15.0
    generation_temperature: float = 0.4

    # --- Vector store (Chroma) ---
    chroma_path: Path = field(default_factory=lambda: _DATA_DIR / "vector_store_db")
    chroma_host: str = ""
    chroma_port: int = 8000

    # --- Answer cache ---
    cache_backend: CacheBackend = CacheBackend.REDIS
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl_s: int = 60 * 60 * 24
    cache_socket_timeout_s: float = 2.0
    cache_max_entries: int = 1024

    # --- Chunking ---
    chunking_strategy: ChunkingStrategy = ChunkingStrategy.AUTO
    max_chunk_chars: int = 500
    window_max_words: int = 200
    window_overlap_words: int = 40
    min_chunk_chars: int = 40
    default_unit_title: str = "Document"

    # --- Ingestion ---
    ingest_batch_size: int = 16
    ingest_max_workers: int = 4
    ingest_batch_retries: int = 2
    ingest_retry_backoff_s: float = 1.0
    reingest_mode: ReingestMode = ReingestMode.CLEAR

    # --- Retrieval & answering ---
    retrieval_mode: RetrievalMode = RetrievalMode.STRUCTURE_AWARE
    retrieval_limit: int = 4
    relevance_threshold: float = 0.7
    context_preview_chars: int = 800
    answer_max_tokens: int = 800
    fallback_scan_limit: int = 500
    unit_fetch_limit: int = 2000

    # --- Summaries & quizzes ---
    summary_max_chars: int = 12000
    summary_max_tokens: int = 800
    quiz_context_limit: int = 20
    quiz_default_questions: int = 5
    quiz_max_tokens: int = 1500

    # --- Paths ---
    catalog_path: Path = field(default_factory=lambda: _DATA_DIR / "runtime_cache" / "catalog.sqlite")
    log_path: Path = field(default_factory=lambda: _DATA_DIR / "runtime_cache" / "app.log")
    log_level: str = "INFO"

    def with_overrides(self, **changes) -> "Settings":
        return _normalize(replace(self, **changes))


def _normalize(settings: Settings) -> Settings:
    """Clamps interdependent values so the window always advances."""
    if settings.window_overlap_words >= settings.window_max_words:
        settings = replace(settings, window_overlap_words=max(0, settings.window_max_words // 4))
    if settings.min_chunk_chars > settings.max_chunk_chars:
        settings = replace(settings, min_chunk_chars=max(1, settings.max_chunk_chars // 10))
    return settings


def load_settings() -> Settings:
    """Reads the process environment (and .env) once and returns frozen settings."""
    load_dotenv()
    defaults = Settings()
    settings = Settings(
        ollama_base_url=_env_str("OLLAMA_URL", defaults.ollama_base_url),
        embedding_model=_env_str("EMBEDDING_MODEL_NAME", defaults.embedding_model),
        generation_model=_env_str("GENERATION_MODEL_NAME", defaults.generation_model),
        embedding_dim=_env_int("EMBEDDING_DIM", defaults.embedding_dim, minimum=1),
        distance_metric=_env_str("DISTANCE_METRIC", defaults.distance_metric).lower(),
        embedding_timeout_s=_env_float("EMBEDDING_TIMEOUT_S", defaults.embedding_timeout_s, minimum=0.1),
        generation_timeout_s=_env_float("GENERATION_TIMEOUT_S", defaults.generation_timeout_s, minimum=1.0),
        vector_store_timeout_s=_env_float("VECTOR_STORE_TIMEOUT_S", defaults.vector_store_timeout_s, minimum=0.1),
        generation_temperature=_env_float("GENERATION_TEMPERATURE", defaults.generation_temperature),
        chroma_path=Path(_env_str("CHROMA_PATH", str(defaults.chroma_path))),
        chroma_host=_env_str("CHROMA_HOST", defaults.chroma_host),
        chroma_port=_env_int("CHROMA_PORT", defaults.chroma_port),
        cache_backend=_env_enum("CACHE_BACKEND", CacheBackend, defaults.cache_backend),
        redis_url=_env_str("REDIS_URL", defaults.redis_url),
        cache_ttl_s=_env_int("CACHE_TTL_S", defaults.cache_ttl_s),
        cache_socket_timeout_s=_env_float("CACHE_SOCKET_TIMEOUT_S", defaults.cache_socket_timeout_s, minimum=0.05),
        cache_max_entries=_env_int("CACHE_MAX_ENTRIES", defaults.cache_max_entries),
        chunking_strategy=_env_enum("CHUNKING_STRATEGY", ChunkingStrategy, defaults.chunking_strategy),
        max_chunk_chars=_env_int("MAX_CHUNK_CHARS", defaults.max_chunk_chars, minimum=20),
        window_max_words=_env_int("WINDOW_MAX_WORDS", defaults.window_max_words, minimum=8),
        window_overlap_words=_env_int("WINDOW_OVERLAP_WORDS", defaults.window_overlap_words, minimum=0),
        min_chunk_chars=_env_int("MIN_CHUNK_CHARS", defaults.min_chunk_chars, minimum=1),
        default_unit_title=_env_str("DEFAULT_UNIT_TITLE", defaults.default_unit_title),
        ingest_batch_size=_env_int("INGEST_BATCH_SIZE", defaults.ingest_batch_size),
        ingest_max_workers=_env_int("INGEST_MAX_WORKERS", defaults.ingest_max_workers),
        ingest_batch_retries=_env_int("INGEST_BATCH_RETRIES", defaults.ingest_batch_retries, minimum=0),
        ingest_retry_backoff_s=_env_float("INGEST_RETRY_BACKOFF_S", defaults.ingest_retry_backoff_s),
        reingest_mode=_env_enum("REINGEST_MODE", ReingestMode, defaults.reingest_mode),
        retrieval_mode=_env_enum("RETRIEVAL_MODE", RetrievalMode, defaults.retrieval_mode),
        retrieval_limit=_env_int("RETRIEVAL_LIMIT", defaults.retrieval_limit),
        relevance_threshold=_env_float("RELEVANCE_THRESHOLD", defaults.relevance_threshold),
        context_preview_chars=_env_int("CONTEXT_PREVIEW_CHARS", defaults.context_preview_chars, minimum=50),
        answer_max_tokens=_env_int("ANSWER_MAX_TOKENS", defaults.answer_max_tokens, minimum=16),
        fallback_scan_limit=_env_int("FALLBACK_SCAN_LIMIT", defaults.fallback_scan_limit, minimum=10),
        unit_fetch_limit=_env_int("UNIT_FETCH_LIMIT", defaults.unit_fetch_limit, minimum=10),
        summary_max_chars=_env_int("SUMMARY_MAX_CHARS", defaults.summary_max_chars, minimum=500),
        summary_max_tokens=_env_int("SUMMARY_MAX_TOKENS", defaults.summary_max_tokens, minimum=16),
        quiz_context_limit=_env_int("QUIZ_CONTEXT_LIMIT", defaults.quiz_context_limit),
        quiz_default_questions=_env_int("QUIZ_DEFAULT_QUESTIONS", defaults.quiz_default_questions),
        quiz_max_tokens=_env_int("QUIZ_MAX_TOKENS", defaults.quiz_max_tokens, minimum=16),
        catalog_path=Path(_env_str("CATALOG_PATH", str(defaults.catalog_path))),
        log_path=Path(_env_str("LOG_PATH", str(defaults.log_path))),
        log_level=_env_str("LOG_LEVEL", defaults.log_level).upper(),
    )
    return _normalize(settings)
