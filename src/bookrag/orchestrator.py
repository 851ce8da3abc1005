"""
Generation orchestrator.

cache check -> retrieve -> relevance gate -> grounded or fallback prompt ->
generate -> cache write. Upstream failures while answering become a visible
error answer that is never cached.
"""
from __future__ import annotations

import time

from .answer_cache import AnswerCache
from .config import Settings
from .errors import InvalidInputError, UpstreamUnavailableError
from .models import Answer
from .observability import get_logger
from .prompts import (
    GENERATION_ERROR_NOTICE,
    NOT_IN_CURRICULUM_NOTICE,
    fallback_answer_prompt,
    grounded_answer_prompt,
)
from .retrieval import RetrievalEngine, apply_relevance_threshold

logger = get_logger(__name__)


class AnswerOrchestrator:
    def __init__(
        self,
        retrieval: RetrievalEngine,
        generator,
        cache: AnswerCache,
        *,
        relevance_threshold: float = 0.7,
        context_preview_chars: int = 800,
        answer_max_tokens: int | None = 800,
    ):
        self.retrieval = retrieval
        self.generator = generator
        self.cache = cache
        self.relevance_threshold = float(relevance_threshold)
        self.context_preview_chars = int(context_preview_chars)
        self.answer_max_tokens = answer_max_tokens

    @classmethod
    def from_settings(cls, settings: Settings, retrieval, generator, cache) -> "AnswerOrchestrator":
        return cls(
            retrieval,
            generator,
            cache,
            relevance_threshold=settings.relevance_threshold,
            context_preview_chars=settings.context_preview_chars,
            answer_max_tokens=settings.answer_max_tokens,
        )

    @staticmethod
    def _error_answer(exc: Exception, stage: str, document_id: str, contexts: list[str] | None = None) -> Answer:
        logger.error("answer_degraded", document_id=document_id, stage=stage, error=str(exc))
        return Answer(answer=f"{GENERATION_ERROR_NOTICE}: {exc}", source="error", contexts=list(contexts or []))

    def ask(self, document_id: str, question: str, limit: int | None = None) -> Answer:
        if not str(document_id or "").strip():
            raise InvalidInputError("document id must not be empty")
        if not str(question or "").strip():
            raise InvalidInputError("question must not be empty")

        started = time.perf_counter()
        cached = self.cache.get(document_id, question)
        if cached is not None:
            return cached

        try:
            hits = self.retrieval.retrieve(question, document_id, limit=limit)
        except UpstreamUnavailableError as exc:
            return self._error_answer(exc, "retrieval", document_id)

        relevant = apply_relevance_threshold(hits, self.relevance_threshold)
        contexts = [hit.text for hit in relevant]
        if contexts:
            source = "rag"
            prompt = grounded_answer_prompt(question, contexts, self.context_preview_chars)
        else:
            source = "general"
            prompt = fallback_answer_prompt(question)

        try:
            text = self.generator.generate(prompt, max_tokens=self.answer_max_tokens)
        except UpstreamUnavailableError as exc:
            return self._error_answer(exc, "generation", document_id, contexts)
        if not text.strip():
            return self._error_answer(ValueError("empty model output"), "generation", document_id, contexts)

        if source == "general":
            text = f"{NOT_IN_CURRICULUM_NOTICE}\n\n{text}"
        answer = Answer(answer=text, source=source, contexts=contexts)
        self.cache.set(document_id, question, answer)

        logger.info(
            "answer_complete",
            document_id=document_id,
            source=source,
            hits=len(hits),
            contexts=len(contexts),
            elapsed_ms=round((time.perf_counter() - started) * 1000.0, 1),
        )
        return answer
