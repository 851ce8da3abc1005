"""
Retrieval engine.

Resolves a document to its collection, embeds the question once and runs a
filtered similarity search. Structural references such as "unit 3" are
resolved against the stored unit titles, first by exact normalized title and
then by a fuzzy scan of the titles present in the collection.
"""
from __future__ import annotations

import re
from typing import Any

from .chunking import parse_label
from .config import RetrievalMode, Settings
from .errors import InvalidInputError, NotFoundError
from .models import DocumentRecord, SearchHit
from .observability import get_logger
from .tokenization import normalize_for_match, normalize_title, tokenize_for_matching
from .vector_store import collection_name_for

logger = get_logger(__name__)

UNIT_REFERENCE_RE = re.compile(r"\b(unit|chapter)\s*(\d{1,3}|[ivxlc]{1,6})\b", re.IGNORECASE)
TITLE_SAMPLE_SIZE = 10


def extract_unit_reference(question: str) -> str | None:
    """Returns a canonical "unit N" reference when the question names one."""
    match = UNIT_REFERENCE_RE.search(str(question or ""))
    if not match:
        return None
    number = parse_label(match.group(2))
    if number is None:
        return None
    return f"{match.group(1).lower()} {number}"


def apply_relevance_threshold(hits: list[SearchHit], threshold: float) -> list[SearchHit]:
    return [hit for hit in hits if hit.score >= threshold]


def match_unit_title(reference: str, titles: list[str]) -> str | None:
    """
    Fuzzy title match: substring containment in either direction first, then
    word overlap covering at least half of the reference words. Both rules
    skip candidates whose numbers disagree with the numbers in the reference.
    """
    needle = normalize_for_match(reference)
    if not needle:
        return None
    words = tokenize_for_matching(reference)
    numbers = {word for word in words if word.isdigit()}
    options = []
    for title in titles:
        haystack = normalize_for_match(title)
        haystack_words = set(tokenize_for_matching(title))
        if haystack and numbers.issubset(haystack_words):
            options.append((haystack, haystack_words, title))

    for haystack, _, title in options:
        if needle in haystack or haystack in needle:
            return title

    best_title, best_matches = None, 0
    for _, haystack_words, title in options:
        matches = sum(1 for word in words if word in haystack_words)
        if matches >= 1 and matches * 2 >= len(words) and matches > best_matches:
            best_title, best_matches = title, matches
    return best_title


class RetrievalEngine:
    def __init__(
        self,
        catalog,
        vector_store,
        embedder,
        *,
        mode: RetrievalMode = RetrievalMode.STRUCTURE_AWARE,
        default_limit: int = 4,
        fallback_scan_limit: int = 500,
        unit_fetch_limit: int = 2000,
    ):
        self.catalog = catalog
        self.vector_store = vector_store
        self.embedder = embedder
        self.mode = mode
        self.default_limit = int(default_limit)
        self.fallback_scan_limit = int(fallback_scan_limit)
        self.unit_fetch_limit = int(unit_fetch_limit)

    @classmethod
    def from_settings(cls, settings: Settings, catalog, vector_store, embedder) -> "RetrievalEngine":
        return cls(
            catalog,
            vector_store,
            embedder,
            mode=settings.retrieval_mode,
            default_limit=settings.retrieval_limit,
            fallback_scan_limit=settings.fallback_scan_limit,
            unit_fetch_limit=settings.unit_fetch_limit,
        )

    def resolve_document(self, document_id: str) -> tuple[DocumentRecord, str]:
        record = self.catalog.find_document_by_id(document_id)
        if record is None:
            raise NotFoundError(f"document {document_id!r} not found")
        collection = collection_name_for(record)
        if not self.vector_store.collection_exists(collection):
            raise NotFoundError(f"collection {collection!r} not found; ingest document {document_id!r} first")
        return record, collection

    def retrieve(
        self,
        question: str,
        document_id: str,
        limit: int | None = None,
        filters: dict[str, Any] | None = None,
    ) -> list[SearchHit]:
        if not str(question or "").strip():
            raise InvalidInputError("question must not be empty")
        record, collection = self.resolve_document(document_id)
        top_k = max(1, int(limit or self.default_limit))
        vector = self.embedder.embed(question)
        base_filters = {**(filters or {}), "document_id": record.id}

        if self.mode == RetrievalMode.STRUCTURE_AWARE and "normalized_unit_title" not in base_filters:
            reference = extract_unit_reference(question)
            if reference:
                try:
                    unit_title = self.resolve_unit_title(record, reference, collection=collection)
                except NotFoundError:
                    unit_title = None
                    logger.info("unit_reference_unresolved", document_id=record.id, reference=reference)
                if unit_title:
                    narrowed = self.vector_store.search(
                        collection,
                        vector,
                        top_k,
                        {**base_filters, "normalized_unit_title": unit_title},
                    )
                    if narrowed:
                        logger.info(
                            "retrieval_complete",
                            document_id=record.id,
                            hits=len(narrowed),
                            unit_title=unit_title,
                        )
                        return narrowed

        hits = self.vector_store.search(collection, vector, top_k, base_filters)
        logger.info(
            "retrieval_complete",
            document_id=record.id,
            hits=len(hits),
            top_score=round(hits[0].score, 4) if hits else None,
        )
        return hits

    def resolve_unit_title(self, record: DocumentRecord, reference: str, collection: str | None = None) -> str:
        """Returns the stored normalized unit title the reference points at."""
        target = normalize_title(reference)
        if not target:
            raise InvalidInputError("chapter reference must not be empty")
        collection = collection or self.resolve_document(record.id)[1]

        exact = self.vector_store.scroll(
            collection,
            {"document_id": record.id, "normalized_unit_title": target},
            limit=1,
        )
        if exact:
            return target

        candidates = self.vector_store.scroll(
            collection,
            {"document_id": record.id},
            limit=self.fallback_scan_limit,
        )
        titles: list[str] = []
        by_number: dict[int, str] = {}
        for point in candidates:
            stored = str(point.payload.get("normalized_unit_title") or normalize_title(point.payload.get("unit_title", "")))
            if stored and stored not in titles:
                titles.append(stored)
            number = point.payload.get("unit_number")
            if stored and isinstance(number, int) and number not in by_number:
                by_number[number] = stored

        referenced = extract_unit_reference(reference)
        if referenced:
            number = int(referenced.split()[-1])
            if number in by_number:
                logger.info("unit_title_matched_by_number", document_id=record.id, reference=reference, unit_title=by_number[number])
                return by_number[number]

        matched = match_unit_title(reference, titles)
        if matched:
            logger.info("unit_title_fuzzy_match", document_id=record.id, reference=reference, unit_title=matched)
            return matched

        sample = titles[:TITLE_SAMPLE_SIZE]
        logger.warning("unit_title_not_found", document_id=record.id, reference=reference, sample=sample)
        raise NotFoundError(
            f"no chunks found for chapter {reference!r}; available chapters (sample): {sample}",
            sample=sample,
        )

    def fetch_unit_points(self, record: DocumentRecord, reference: str) -> tuple[str, list[SearchHit]]:
        """All stored chunks of the referenced unit, in chunk order."""
        _, collection = self.resolve_document(record.id)
        unit_title = self.resolve_unit_title(record, reference, collection=collection)
        points = self.vector_store.scroll(
            collection,
            {"document_id": record.id, "normalized_unit_title": unit_title},
            limit=self.unit_fetch_limit,
        )
        if not points:
            raise NotFoundError(f"no chunks found for chapter {reference!r}", sample=[unit_title])
        points.sort(key=lambda point: int(point.payload.get("chunk_index", 0)))
        return unit_title, points
