"""
Domain records passed between the chunking, indexing and answering layers.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .tokenization import normalize_title


@dataclass(frozen=True)
class OutlineSection:
    title: str
    page_start: int
    page_end: int


@dataclass(frozen=True)
class OutlineUnit:
    title: str
    page_start: int
    page_end: int
    sub_chapters: tuple[OutlineSection, ...] = ()

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "OutlineUnit":
        subs = raw.get("sub_chapters") or raw.get("subChapters") or []
        return cls(
            title=str(raw.get("title", "")),
            page_start=int(raw.get("page_start", raw.get("pageStart", 1))),
            page_end=int(raw.get("page_end", raw.get("pageEnd", 1))),
            sub_chapters=tuple(
                OutlineSection(
                    title=str(sub.get("title", "")),
                    page_start=int(sub.get("page_start", sub.get("pageStart", 1))),
                    page_end=int(sub.get("page_end", sub.get("pageEnd", 1))),
                )
                for sub in subs
                if isinstance(sub, dict)
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "page_start": self.page_start,
            "page_end": self.page_end,
            "sub_chapters": [
                {"title": sub.title, "page_start": sub.page_start, "page_end": sub.page_end}
                for sub in self.sub_chapters
            ],
        }


def parse_outline(raw: Any) -> tuple[OutlineUnit, ...]:
    """Accepts a list of unit dicts (snake_case or camelCase keys)."""
    if not raw:
        return ()
    return tuple(OutlineUnit.from_dict(item) for item in raw if isinstance(item, dict))


@dataclass(frozen=True)
class DocumentRecord:
    id: str
    title: str
    grade: str
    subject: str
    file_path: str
    outline: tuple[OutlineUnit, ...] = ()
    is_indexed: bool = False


@dataclass(frozen=True)
class Chunk:
    document_id: str
    unit_title: str
    index: int
    text: str
    sub_chapter_title: str | None = None
    page_start: int | None = None
    page_end: int | None = None
    unit_number: int | None = None

    def payload(self) -> dict[str, Any]:
        """Vector-point payload; optional attributes are omitted when absent."""
        data: dict[str, Any] = {
            "document_id": self.document_id,
            "unit_title": self.unit_title,
            "normalized_unit_title": normalize_title(self.unit_title),
            "chunk_index": self.index,
            "text": self.text,
        }
        optional = {
            "sub_chapter_title": self.sub_chapter_title,
            "page_start": self.page_start,
            "page_end": self.page_end,
            "unit_number": self.unit_number,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data


@dataclass(frozen=True)
class VectorPoint:
    id: str
    vector: list[float]
    payload: dict[str, Any]


@dataclass(frozen=True)
class SearchHit:
    id: str
    score: float
    text: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Answer:
    answer: str
    source: str  # cache | rag | general | error
    contexts: list[str] = field(default_factory=list)

    def to_cache_value(self) -> dict[str, Any]:
        return {"answer": self.answer, "contexts": list(self.contexts), "source": self.source}


@dataclass(frozen=True)
class ChapterSummary:
    chapter: str
    unit_title: str
    summary: str
    chunks_used: int
    degraded: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class QuizQuestion:
    question: str
    options: list[str]
    answer: str
    hint: str = ""
    explanation: str = ""


@dataclass(frozen=True)
class IngestionReport:
    document_id: str
    collection: str
    chunks: int
    points: int
    batches: int
    collection_created: bool
    cleared_previous: bool = False
