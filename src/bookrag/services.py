"""
Upstream service adapters.

Embeddings and text generation are served by Ollama through the langchain
integrations; every call runs under a wall-clock timeout and failures are
normalized into the engine's upstream error types.
"""
from __future__ import annotations

import re
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

from langchain_ollama import OllamaEmbeddings, OllamaLLM

from .config import Settings
from .errors import BookRagError, UpstreamTimeoutError, UpstreamUnavailableError
from .observability import get_logger

logger = get_logger(__name__)

EMBEDDING_SERVICE = "embedding"
GENERATION_SERVICE = "generation"
VECTOR_STORE_SERVICE = "vector_store"

_THINK_BLOCK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)


def call_with_timeout(service: str, timeout_s: float, fn, *args, **kwargs):
    """
    Runs fn in a worker thread and waits at most timeout_s seconds.
    The worker is abandoned on timeout; there is no cooperative cancellation.
    """
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"bookrag-{service}")
    future = pool.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout_s)
    except FutureTimeoutError as exc:
        future.cancel()
        logger.warning("upstream_timeout", service=service, timeout_s=timeout_s)
        raise UpstreamTimeoutError(service, timeout_s) from exc
    except BookRagError:
        raise
    except Exception as exc:
        logger.warning("upstream_failure", service=service, error=str(exc), error_type=type(exc).__name__)
        raise UpstreamUnavailableError(service, str(exc) or type(exc).__name__) from exc
    finally:
        pool.shutdown(wait=False)


def strip_reasoning(text: str) -> str:
    return _THINK_BLOCK_RE.sub("", str(text or "")).strip()


class EmbeddingService:
    """Text -> fixed-dimension vector."""

    def __init__(self, embeddings, *, timeout_s: float = 30.0, dimension: int | None = None):
        self._embeddings = embeddings
        self.timeout_s = float(timeout_s)
        self.dimension = dimension

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbeddingService":
        embeddings = OllamaEmbeddings(model=settings.embedding_model, base_url=settings.ollama_base_url)
        return cls(embeddings, timeout_s=settings.embedding_timeout_s, dimension=settings.embedding_dim)

    def embed(self, text: str) -> list[float]:
        started = time.perf_counter()
        vector = call_with_timeout(EMBEDDING_SERVICE, self.timeout_s, self._embeddings.embed_query, str(text))
        logger.debug(
            "embedding_complete",
            chars=len(str(text)),
            dimension=len(vector),
            elapsed_ms=round((time.perf_counter() - started) * 1000.0, 1),
        )
        return [float(value) for value in vector]

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors = call_with_timeout(
            EMBEDDING_SERVICE,
            self.timeout_s,
            self._embeddings.embed_documents,
            [str(text) for text in texts],
        )
        return [[float(value) for value in vector] for vector in vectors]


class GenerationService:
    """Prompt -> text, with an optional per-call output token cap."""

    def __init__(self, llm, *, timeout_s: float = 300.0):
        self._llm = llm
        self.timeout_s = float(timeout_s)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GenerationService":
        llm = OllamaLLM(
            model=settings.generation_model,
            base_url=settings.ollama_base_url,
            temperature=settings.generation_temperature,
            top_p=0.95,
            num_predict=settings.answer_max_tokens,
            repeat_penalty=1.15,
        )
        return cls(llm, timeout_s=settings.generation_timeout_s)

    def _llm_for(self, max_tokens: int | None):
        if max_tokens is None or not hasattr(self._llm, "model_copy"):
            return self._llm
        return self._llm.model_copy(update={"num_predict": int(max_tokens)})

    def generate(self, prompt: str, max_tokens: int | None = None) -> str:
        llm = self._llm_for(max_tokens)
        started = time.perf_counter()
        raw = call_with_timeout(GENERATION_SERVICE, self.timeout_s, llm.invoke, prompt)
        text = strip_reasoning(getattr(raw, "content", raw))
        logger.info(
            "generation_complete",
            prompt_chars=len(prompt),
            output_chars=len(text),
            max_tokens=max_tokens,
            elapsed_ms=round((time.perf_counter() - started) * 1000.0, 1),
        )
        return text
