"""
FastAPI service layer for the textbook RAG engine.

Endpoints:
    POST /documents                 register a textbook (metadata + optional outline)
    GET  /documents                 list registered textbooks
    GET  /documents/{id}            one textbook record
    POST /documents/{id}/ingest     chunk, embed and index a textbook
    POST /ask                       answer a question about one textbook
    POST /summary                   summarise one chapter
    POST /quiz                      generate multiple-choice questions
    GET  /health                    liveness

Run with:
    uvicorn bookrag.api_server:app --host 0.0.0.0 --port 8000
"""
from __future__ import annotations

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .errors import (
    BookRagError,
    DimensionMismatchError,
    InvalidInputError,
    NotFoundError,
    ParseFailureError,
    UpstreamUnavailableError,
)
from .models import DocumentRecord
from .observability import get_logger
from .runtime import BookRagRuntime

logger = get_logger(__name__)

_THREAD_POOL_WORKERS = 8


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class OutlineSectionModel(BaseModel):
    title: str
    page_start: int = Field(..., ge=1)
    page_end: int = Field(..., ge=1)


class OutlineUnitModel(OutlineSectionModel):
    sub_chapters: list[OutlineSectionModel] = Field(default_factory=list)


class RegisterDocumentRequest(BaseModel):
    title: str = Field(..., min_length=1)
    grade: str = Field(..., min_length=1)
    subject: str = Field(..., min_length=1)
    file_path: str = Field(..., min_length=1)
    outline: list[OutlineUnitModel] = Field(default_factory=list)
    document_id: str | None = None


class DocumentResponse(BaseModel):
    id: str
    title: str
    grade: str
    subject: str
    file_path: str
    is_indexed: bool
    outline_units: int


class IngestResponse(BaseModel):
    document_id: str
    collection: str
    chunks: int
    points: int
    batches: int
    collection_created: bool
    cleared_previous: bool


class AskRequest(BaseModel):
    document_id: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1, description="User question")
    limit: int | None = Field(default=None, ge=1, le=50)


class AskResponse(BaseModel):
    answer: str
    source: str
    contexts: list[str]
    latency_ms: float


class SummaryRequest(BaseModel):
    document_id: str = Field(..., min_length=1)
    chapter: str = Field(..., min_length=1)


class SummaryResponse(BaseModel):
    chapter: str
    unit_title: str
    summary: str
    chunks_used: int
    degraded: bool
    created_at: datetime


class QuizRequest(BaseModel):
    document_id: str = Field(..., min_length=1)
    topic: str = Field(..., min_length=1)
    num_questions: int | None = Field(default=None, ge=1, le=50)
    unit: str | None = None


class QuizQuestionModel(BaseModel):
    question: str
    options: list[str]
    answer: str
    hint: str
    explanation: str


class QuizResponse(BaseModel):
    topic: str
    questions: list[QuizQuestionModel]


def _document_response(record: DocumentRecord) -> DocumentResponse:
    return DocumentResponse(
        id=record.id,
        title=record.title,
        grade=record.grade,
        subject=record.subject,
        file_path=record.file_path,
        is_indexed=record.is_indexed,
        outline_units=len(record.outline),
    )


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_STATUS_BY_ERROR: list[tuple[type[BookRagError], int]] = [
    (NotFoundError, 404),
    (InvalidInputError, 422),
    (ParseFailureError, 502),
    (UpstreamUnavailableError, 503),
    (DimensionMismatchError, 500),
]


def status_for(exc: BookRagError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def _error_body(exc: BookRagError) -> dict[str, Any]:
    body: dict[str, Any] = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, NotFoundError) and exc.sample:
        body["sample"] = exc.sample
    if isinstance(exc, UpstreamUnavailableError):
        body["service"] = exc.service
    return body


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(runtime: BookRagRuntime | None = None) -> FastAPI:
    state: dict[str, Any] = {}
    executor = ThreadPoolExecutor(max_workers=_THREAD_POOL_WORKERS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = runtime is None
        state["runtime"] = BookRagRuntime.open() if owned else runtime
        yield
        if owned:
            state["runtime"].close()
        executor.shutdown(wait=False)
        state.clear()

    app = FastAPI(
        title="BookRAG API",
        description="Question answering, summaries and quizzes over indexed textbooks",
        version="1.0.0",
        lifespan=lifespan,
    )

    async def _run(fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, lambda: fn(*args, **kwargs))

    def _runtime() -> BookRagRuntime:
        return state["runtime"]

    @app.exception_handler(BookRagError)
    async def _bookrag_error_handler(request: Request, exc: BookRagError):
        status = status_for(exc)
        logger.warning("request_failed", path=request.url.path, status=status, error=str(exc), error_type=type(exc).__name__)
        return JSONResponse(status_code=status, content=_error_body(exc))

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/documents", response_model=DocumentResponse, status_code=201)
    async def register_document(request: RegisterDocumentRequest):
        record = await _run(
            _runtime().catalog.register_document,
            title=request.title,
            grade=request.grade,
            subject=request.subject,
            file_path=request.file_path,
            outline=[unit.model_dump() for unit in request.outline],
            document_id=request.document_id,
        )
        return _document_response(record)

    @app.get("/documents", response_model=list[DocumentResponse])
    async def list_documents():
        records = await _run(_runtime().catalog.list_documents)
        return [_document_response(record) for record in records]

    @app.get("/documents/{document_id}", response_model=DocumentResponse)
    async def get_document(document_id: str):
        record = await _run(_runtime().catalog.find_document_by_id, document_id)
        if record is None:
            raise NotFoundError(f"document {document_id!r} not found")
        return _document_response(record)

    @app.post("/documents/{document_id}/ingest", response_model=IngestResponse)
    async def ingest_document(document_id: str):
        report = await _run(_runtime().ingestion.ingest, document_id)
        return IngestResponse(**report.__dict__)

    @app.post("/ask", response_model=AskResponse)
    async def ask(request: AskRequest):
        start = time.perf_counter()
        answer = await _run(_runtime().orchestrator.ask, request.document_id, request.question, limit=request.limit)
        return AskResponse(
            answer=answer.answer,
            source=answer.source,
            contexts=answer.contexts,
            latency_ms=round((time.perf_counter() - start) * 1000.0, 2),
        )

    @app.post("/summary", response_model=SummaryResponse)
    async def summary(request: SummaryRequest):
        result = await _run(_runtime().summarizer.summarize_unit, request.document_id, request.chapter)
        return SummaryResponse(**result.__dict__)

    @app.post("/quiz", response_model=QuizResponse)
    async def quiz(request: QuizRequest):
        questions = await _run(
            _runtime().quiz.generate_quiz,
            request.document_id,
            request.topic,
            num_questions=request.num_questions,
            unit=request.unit,
        )
        return QuizResponse(topic=request.topic, questions=[QuizQuestionModel(**q.__dict__) for q in questions])

    return app


app = create_app()
