"""
Prompt library for grounded answers, out-of-curriculum fallbacks, chapter
summaries and quiz generation.
"""
from __future__ import annotations

from langchain_core.prompts import PromptTemplate

NOT_IN_CURRICULUM_NOTICE = "⚠️ This topic is not found in your curriculum materials."
GENERATION_ERROR_NOTICE = "⚠️ The answer could not be generated right now"

GROUNDED_ANSWER_PROMPT = PromptTemplate.from_template(
    """You are a helpful study assistant answering questions from a textbook.
Use only the provided context. Do not invent facts.
If the context does not cover the question well enough, say so plainly instead of guessing.

{contexts}

Question: {question}

Answer:"""
)

FALLBACK_ANSWER_PROMPT = PromptTemplate.from_template(
    """The user asked: "{question}".
This topic was not found in the uploaded curriculum materials.
Please provide a brief and general educational explanation."""
)

SUMMARY_PROMPT = PromptTemplate.from_template(
    """You are an educational AI assistant.
Summarize the following chapter titled "{chapter}" clearly for students.
Use bullet points and numbered lists where they help.
Focus on the key ideas, main definitions, and examples.
Avoid repetition or unnecessary text.

Text:
{text}

Return the summary in this structured format:
- **Main Topic:**
- **Key Concepts:**
- **Important Ideas:**
- **Examples or Applications:**
- **Conclusion:**
"""
)

QUIZ_PROMPT = PromptTemplate.from_template(
    """You are a student-friendly quiz generator.
RULES:
- Use ONLY the textbook content below. Do not include general knowledge.
- Each question must have exactly 4 options labeled A, B, C, D.
- Give the correct answer as both the letter and the full text (e.g. "B. Desert climate").
- Give a short hint and a 1-2 sentence explanation taken from the textbook.
- If the content does not hold enough information for a question, skip it.

Topic: {topic}
Textbook content:
{content}

Generate {num_questions} multiple-choice questions.
Return strictly a JSON array and nothing else, like:
[
  {{
    "question": "...",
    "options": ["A. ...", "B. ...", "C. ...", "D. ..."],
    "answer": "A. ...",
    "hint": "...",
    "explanation": "..."
  }}
]
"""
)


def format_contexts(contexts: list[str], preview_chars: int) -> str:
    limit = max(1, int(preview_chars))
    return "\n\n".join(f"Context {i}: {ctx[:limit]}" for i, ctx in enumerate(contexts, start=1))


def grounded_answer_prompt(question: str, contexts: list[str], preview_chars: int = 800) -> str:
    return GROUNDED_ANSWER_PROMPT.format(contexts=format_contexts(contexts, preview_chars), question=question)


def fallback_answer_prompt(question: str) -> str:
    return FALLBACK_ANSWER_PROMPT.format(question=question)


def summary_prompt(chapter: str, text: str) -> str:
    return SUMMARY_PROMPT.format(chapter=chapter, text=text)


def quiz_prompt(topic: str, chunks: list[str], num_questions: int) -> str:
    return QUIZ_PROMPT.format(topic=topic, content="\n\n".join(chunks), num_questions=int(num_questions))
