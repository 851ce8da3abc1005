"""
Quiz generation from the chunks most similar to a topic.
"""
from __future__ import annotations

import json

from .config import Settings
from .errors import InvalidInputError, NotFoundError, ParseFailureError
from .models import QuizQuestion
from .observability import get_logger
from .prompts import quiz_prompt

logger = get_logger(__name__)


def parse_quiz_output(raw_output: str) -> list[QuizQuestion]:
    """Extracts the first "[" ... last "]" span of the model output as a JSON array."""
    output = str(raw_output or "").strip()
    if output.startswith('"') and output.endswith('"'):
        output = output[1:-1].replace('\\"', '"').replace("\\\\", "\\")

    start = output.find("[")
    end = output.rfind("]")
    if start == -1 or end <= start:
        raise ParseFailureError("no JSON array found in quiz output", raw_output=raw_output)

    try:
        parsed = json.loads(output[start:end + 1])
    except json.JSONDecodeError as exc:
        raise ParseFailureError(f"invalid quiz JSON: {exc.msg}", raw_output=raw_output) from exc
    if not isinstance(parsed, list):
        raise ParseFailureError("quiz output is not a JSON array", raw_output=raw_output)

    questions = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        options = item.get("options")
        questions.append(
            QuizQuestion(
                question=str(item.get("question") or "No question text"),
                options=[str(option) for option in options] if isinstance(options, list) else [],
                answer=str(item.get("answer") or ""),
                hint=str(item.get("hint") or ""),
                explanation=str(item.get("explanation") or ""),
            )
        )
    return questions


class QuizGenerator:
    def __init__(
        self,
        retrieval,
        generator,
        *,
        context_limit: int = 20,
        default_questions: int = 5,
        max_tokens: int | None = 1500,
    ):
        self.retrieval = retrieval
        self.generator = generator
        self.context_limit = int(context_limit)
        self.default_questions = int(default_questions)
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Settings, retrieval, generator) -> "QuizGenerator":
        return cls(
            retrieval,
            generator,
            context_limit=settings.quiz_context_limit,
            default_questions=settings.quiz_default_questions,
            max_tokens=settings.quiz_max_tokens,
        )

    def generate_quiz(
        self,
        document_id: str,
        topic: str,
        num_questions: int | None = None,
        unit: str | None = None,
    ) -> list[QuizQuestion]:
        if not str(document_id or "").strip():
            raise InvalidInputError("document id is required")
        if not str(topic or "").strip():
            raise InvalidInputError("topic is required")
        count = int(num_questions or self.default_questions)
        if count < 1:
            raise InvalidInputError("num_questions must be at least 1")

        filters = None
        if unit and str(unit).strip():
            record, collection = self.retrieval.resolve_document(document_id)
            unit_title = self.retrieval.resolve_unit_title(record, unit, collection=collection)
            filters = {"normalized_unit_title": unit_title}

        hits = self.retrieval.retrieve(topic, document_id, limit=self.context_limit, filters=filters)
        chunks = [hit.text for hit in hits if hit.text]
        if not chunks:
            raise NotFoundError(f"no relevant textbook chunks found for topic {topic!r}")

        raw = self.generator.generate(quiz_prompt(topic, chunks, count), max_tokens=self.max_tokens)
        try:
            questions = parse_quiz_output(raw)
        except ParseFailureError as exc:
            logger.error("quiz_parse_failed", document_id=document_id, topic=topic, error=str(exc), raw_output=raw[:2000])
            raise

        logger.info("quiz_generated", document_id=document_id, topic=topic, questions=len(questions), chunks=len(chunks))
        return questions
