"""
Chapter summarisation over the stored chunks of one unit.
"""
from __future__ import annotations

from .config import Settings
from .errors import InvalidInputError, NotFoundError, UpstreamUnavailableError
from .models import ChapterSummary
from .observability import get_logger
from .prompts import GENERATION_ERROR_NOTICE, summary_prompt

logger = get_logger(__name__)

EMPTY_SUMMARY_TEXT = "No summary was generated by the model."


class ChapterSummarizer:
    def __init__(self, catalog, retrieval, generator, *, max_chars: int = 12000, max_tokens: int | None = 800):
        self.catalog = catalog
        self.retrieval = retrieval
        self.generator = generator
        self.max_chars = int(max_chars)
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Settings, catalog, retrieval, generator) -> "ChapterSummarizer":
        return cls(
            catalog,
            retrieval,
            generator,
            max_chars=settings.summary_max_chars,
            max_tokens=settings.summary_max_tokens,
        )

    def summarize_unit(self, document_id: str, chapter: str) -> ChapterSummary:
        if not str(document_id or "").strip():
            raise InvalidInputError("document id is required")
        if not str(chapter or "").strip():
            raise InvalidInputError("chapter is required")

        record = self.catalog.find_document_by_id(document_id)
        if record is None:
            raise NotFoundError(f"document {document_id!r} not found")

        unit_title, points = self.retrieval.fetch_unit_points(record, chapter)
        joined = "\n\n".join(point.text for point in points if point.text)
        text = joined[: self.max_chars]
        logger.info(
            "summary_started",
            document_id=document_id,
            unit_title=unit_title,
            chunks=len(points),
            chars=len(text),
            truncated=len(joined) > len(text),
        )

        try:
            summary = self.generator.generate(summary_prompt(chapter, text), max_tokens=self.max_tokens)
        except UpstreamUnavailableError as exc:
            logger.error("summary_degraded", document_id=document_id, unit_title=unit_title, error=str(exc))
            return ChapterSummary(
                chapter=chapter,
                unit_title=unit_title,
                summary=f"{GENERATION_ERROR_NOTICE}: {exc}",
                chunks_used=len(points),
                degraded=True,
            )

        return ChapterSummary(
            chapter=chapter,
            unit_title=unit_title,
            summary=summary or EMPTY_SUMMARY_TEXT,
            chunks_used=len(points),
        )
