"""
Chunking engine.

Two strategies share one entry point:
- outline-aligned: page ranges from a static outline are mapped onto an
  approximate lines-per-page grid and sliced into fixed character segments;
- heading-detected: "Unit N" / "Chapter N" headings delimit units and a
  sliding word window with overlap produces the chunks.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

from .config import ChunkingStrategy, Settings
from .errors import InvalidInputError
from .models import Chunk, OutlineUnit
from .observability import get_logger
from .tokenization import normalize_title, split_words

logger = get_logger(__name__)

MAX_HEADING_CHARS = 120
UNIT_HEADING_RE = re.compile(
    r"^(?:unit|chapter)\s*(\d{1,3}|[ivxlc]{1,6})\b\s*[:.\-]?\s*(\S.*)$",
    re.IGNORECASE,
)
SUB_HEADING_RE = re.compile(r"^\d{1,2}\.\d{1,2}\.?\s+[A-Z].*$")
UNIT_NUMBER_RE = re.compile(r"^\s*(?:unit|chapter)\s*(\d{1,3})\b", re.IGNORECASE)
_ROMAN_VALUES = {"i": 1, "v": 5, "x": 10, "l": 50, "c": 100}


@dataclass(frozen=True)
class ChunkingConfig:
    strategy: ChunkingStrategy = ChunkingStrategy.AUTO
    max_chunk_chars: int = 500
    window_max_words: int = 200
    window_overlap_words: int = 40
    min_chunk_chars: int = 40
    default_unit_title: str = "Document"

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChunkingConfig":
        return cls(
            strategy=settings.chunking_strategy,
            max_chunk_chars=settings.max_chunk_chars,
            window_max_words=settings.window_max_words,
            window_overlap_words=settings.window_overlap_words,
            min_chunk_chars=settings.min_chunk_chars,
            default_unit_title=settings.default_unit_title,
        )


@dataclass
class _UnitBlock:
    title: str
    number: int | None
    lines: list[str] = field(default_factory=list)


def _roman_to_int(label: str) -> int | None:
    total = 0
    previous = 0
    for ch in reversed(label.lower()):
        value = _ROMAN_VALUES.get(ch)
        if value is None:
            return None
        if value < previous:
            total -= value
        else:
            total += value
            previous = value
    return total or None


def parse_label(label: str) -> int | None:
    raw = str(label or "").strip()
    if raw.isdigit():
        return int(raw)
    return _roman_to_int(raw)


def parse_unit_number(title: str) -> int | None:
    match = UNIT_NUMBER_RE.match(str(title or ""))
    return int(match.group(1)) if match else None


def clean_heading(line: str) -> str:
    """Collapses whitespace and strips table-of-contents leaders and page numbers."""
    cleaned = " ".join(str(line or "").split()).strip(" -\t")
    cleaned = re.sub(r"\.{2,}\s*\d+\s*$", "", cleaned).strip()
    cleaned = re.sub(r"\s+\d+\s*$", "", cleaned).strip()
    return cleaned


class ChunkingEngine:
    """Strategy-selectable splitter producing ordered Chunk sequences."""

    def __init__(self, config: ChunkingConfig | None = None):
        self.config = config or ChunkingConfig()

    def chunk(
        self,
        raw_text: str,
        outline: tuple[OutlineUnit, ...] | list[OutlineUnit] | None = None,
        document_id: str = "",
    ) -> list[Chunk]:
        strategy = self.config.strategy
        if strategy == ChunkingStrategy.OUTLINE and not outline:
            raise InvalidInputError("outline chunking requires a structural outline")

        use_outline = bool(outline) and strategy != ChunkingStrategy.HEADINGS
        text = str(raw_text or "")
        if use_outline:
            chunks = self._chunk_by_outline(text, list(outline or ()), document_id)
        else:
            chunks = self._chunk_by_headings(text, document_id)

        logger.info(
            "chunking_complete",
            document_id=document_id,
            strategy="outline" if use_outline else "headings",
            units=len({chunk.unit_title for chunk in chunks}),
            chunks=len(chunks),
        )
        return chunks

    # --- Outline-aligned ---

    @staticmethod
    def _page_slice(lines: list[str], page_start: int, page_end: int, lines_per_page: int) -> str:
        start_idx = (max(1, int(page_start)) - 1) * lines_per_page
        end_idx = min(int(page_end) * lines_per_page, len(lines))
        if end_idx <= start_idx:
            return ""
        return " ".join(line for line in lines[start_idx:end_idx] if line)

    def _fixed_segments(self, body: str, header: str) -> list[str]:
        max_chars = int(self.config.max_chunk_chars)
        prefix = header[: max_chars // 2].rstrip()
        budget = max_chars - len(prefix) - 1 if prefix else max_chars
        rendered = []
        for start in range(0, len(body), budget):
            segment = body[start:start + budget].strip()
            if not segment:
                continue
            rendered.append(f"{prefix}\n{segment}" if prefix else segment)
        return rendered

    def _chunk_by_outline(self, raw_text: str, outline: list[OutlineUnit], document_id: str) -> list[Chunk]:
        lines = [line.strip() for line in raw_text.replace("\r\n", "\n").split("\n")]
        total_pages = max(1, max(int(unit.page_end) for unit in outline))
        lines_per_page = max(1, math.ceil(len(lines) / total_pages))

        chunks: list[Chunk] = []
        for unit in outline:
            unit_title = " ".join(unit.title.split())
            unit_number = parse_unit_number(unit_title)
            ordinal = 0
            sections = unit.sub_chapters or (None,)
            for section in sections:
                if section is None:
                    sub_title = None
                    header = unit_title
                    page_start, page_end = unit.page_start, unit.page_end
                else:
                    sub_title = " ".join(section.title.split())
                    header = f"{unit_title} > {sub_title}"
                    page_start, page_end = section.page_start, section.page_end

                body = self._page_slice(lines, page_start, page_end, lines_per_page)
                for text in self._fixed_segments(body, header):
                    ordinal += 1
                    chunks.append(
                        Chunk(
                            document_id=document_id,
                            unit_title=unit_title,
                            index=ordinal,
                            text=text,
                            sub_chapter_title=sub_title,
                            page_start=int(page_start),
                            page_end=int(page_end),
                            unit_number=unit_number,
                        )
                    )
        return chunks

    # --- Heading-detected ---

    def _split_units(self, raw_text: str) -> list[_UnitBlock]:
        blocks: dict[object, _UnitBlock] = {}
        current: _UnitBlock | None = None
        preamble: list[str] = []

        for raw_line in raw_text.splitlines():
            line = " ".join(raw_line.split())
            match = UNIT_HEADING_RE.match(line) if 0 < len(line) <= MAX_HEADING_CHARS else None
            if match:
                number = parse_label(match.group(1))
                key = number if number is not None else normalize_title(line)
                if key not in blocks:
                    blocks[key] = _UnitBlock(title=clean_heading(line), number=number)
                current = blocks[key]
                continue
            if current is None:
                preamble.append(line)
            else:
                current.lines.append(line)

        if not blocks:
            return [_UnitBlock(title=self.config.default_unit_title, number=None, lines=preamble)]
        return list(blocks.values())

    def _window_unit(self, block: _UnitBlock, document_id: str) -> list[Chunk]:
        max_words = max(1, int(self.config.window_max_words))
        overlap = max(0, min(int(self.config.window_overlap_words), max_words - 1))
        min_chars = int(self.config.min_chunk_chars)

        chunks: list[Chunk] = []
        window: list[str] = []
        fresh = 0
        heading: str | None = None

        def emit():
            body = " ".join(window).strip()
            if len(body) < min_chars:
                return
            prefix = f"{block.title} > {heading}" if heading else block.title
            chunks.append(
                Chunk(
                    document_id=document_id,
                    unit_title=block.title,
                    index=len(chunks) + 1,
                    text=f"{prefix}\n{body}",
                    sub_chapter_title=heading,
                    unit_number=block.number,
                )
            )

        for line in block.lines:
            if not line:
                continue
            if len(line) <= MAX_HEADING_CHARS and SUB_HEADING_RE.match(line):
                if fresh:
                    emit()
                window, fresh = [], 0
                heading = clean_heading(line)
                continue
            for word in split_words(line):
                if len(window) + 1 > max_words:
                    emit()
                    window = window[-overlap:] if overlap else []
                    fresh = 0
                window.append(word)
                fresh += 1

        if fresh:
            emit()
        return chunks

    def _chunk_by_headings(self, raw_text: str, document_id: str) -> list[Chunk]:
        chunks: list[Chunk] = []
        for block in self._split_units(raw_text):
            chunks.extend(self._window_unit(block, document_id))
        return chunks
