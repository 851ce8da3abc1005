"""
Command-line interface for the textbook RAG engine.

    bookrag register --title ... --grade ... --subject ... --file book.pdf [--outline outline.json]
    bookrag list
    bookrag ingest <document_id>
    bookrag ask <document_id> "question"
    bookrag chat <document_id>
    bookrag summary <document_id> "Unit 2"
    bookrag quiz <document_id> "topic" [--questions 5] [--unit "Unit 2"]
    bookrag serve [--host 0.0.0.0] [--port 8000]
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table, box

from .config import console
from .errors import BookRagError, NotFoundError
from .runtime import BookRagRuntime

_SOURCE_STYLES = {"rag": "blue", "cache": "cyan", "general": "yellow", "error": "red"}


def _print_answer(answer):
    style = _SOURCE_STYLES.get(answer.source, "blue")
    console.print(Panel(Markdown(answer.answer), title=f"Answer ({answer.source})", border_style=style))
    if answer.contexts:
        sources = "\n\n".join(f"[dim]{i}.[/dim] {ctx[:240]}" for i, ctx in enumerate(answer.contexts, start=1))
        console.print(Panel(sources, title="Sources", border_style="yellow"))


def cmd_register(runtime: BookRagRuntime, args) -> int:
    outline = json.loads(Path(args.outline).read_text(encoding="utf-8")) if args.outline else None
    record = runtime.catalog.register_document(
        title=args.title,
        grade=args.grade,
        subject=args.subject,
        file_path=str(Path(args.file).resolve()),
        outline=outline,
        document_id=args.id,
    )
    console.print(f"[green]OK Registered '{record.title}' as {record.id}[/green]")
    return 0


def cmd_list(runtime: BookRagRuntime, args) -> int:
    records = runtime.catalog.list_documents()
    if not records:
        console.print("[yellow]No documents registered yet.[/yellow]")
        return 0
    table = Table(title="Registered Textbooks", border_style="blue", header_style="bold", box=box.SQUARE)
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="magenta")
    table.add_column("Grade", style="white")
    table.add_column("Subject", style="white")
    table.add_column("Outline units", style="yellow")
    table.add_column("Status", style="white")
    for record in records:
        status = "[green]Indexed[/green]" if record.is_indexed else "[red]Not Indexed[/red]"
        table.add_row(record.id, record.title, record.grade, record.subject, str(len(record.outline)), status)
    console.print(table)
    return 0


def cmd_ingest(runtime: BookRagRuntime, args) -> int:
    with console.status("[bold cyan]Chunking and indexing...[/bold cyan]"):
        report = runtime.ingestion.ingest(args.document_id)
    console.print(
        f"[green]OK Indexed {report.points} chunk(s) in {report.batches} batch(es) "
        f"into collection '{report.collection}'.[/green]"
    )
    return 0


def cmd_ask(runtime: BookRagRuntime, args) -> int:
    with console.status("[bold cyan]Thinking...[/bold cyan]"):
        answer = runtime.orchestrator.ask(args.document_id, args.question, limit=args.limit)
    _print_answer(answer)
    return 0 if answer.source != "error" else 2


def cmd_chat(runtime: BookRagRuntime, args) -> int:
    console.print("[bold]Ask questions about the textbook. Type 'exit' to leave.[/bold]")
    while True:
        try:
            question = Prompt.ask("[bold green]You[/bold green]")
        except (KeyboardInterrupt, EOFError):
            break
        if question.strip().lower() in {"exit", "quit"}:
            break
        if not question.strip():
            continue
        with console.status("[bold cyan]Thinking...[/bold cyan]"):
            answer = runtime.orchestrator.ask(args.document_id, question)
        _print_answer(answer)
    return 0


def cmd_summary(runtime: BookRagRuntime, args) -> int:
    try:
        with console.status("[bold cyan]Summarizing...[/bold cyan]"):
            result = runtime.summarizer.summarize_unit(args.document_id, args.chapter)
    except NotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        if exc.sample:
            console.print("[dim]Available chapters:[/dim] " + ", ".join(exc.sample))
        return 1
    border = "red" if result.degraded else "blue"
    console.print(Panel(Markdown(result.summary), title=f"{result.unit_title} ({result.chunks_used} chunks)", border_style=border))
    return 0 if not result.degraded else 2


def cmd_quiz(runtime: BookRagRuntime, args) -> int:
    with console.status("[bold cyan]Generating quiz...[/bold cyan]"):
        questions = runtime.quiz.generate_quiz(args.document_id, args.topic, num_questions=args.questions, unit=args.unit)
    for number, question in enumerate(questions, start=1):
        lines = [f"**{question.question}**", ""]
        lines.extend(f"- {option}" for option in question.options)
        lines.extend(["", f"*Answer:* {question.answer}"])
        if question.hint:
            lines.append(f"*Hint:* {question.hint}")
        if question.explanation:
            lines.append(f"*Explanation:* {question.explanation}")
        console.print(Panel(Markdown("\n".join(lines)), title=f"Question {number}", border_style="magenta"))
    return 0


def cmd_serve(runtime: BookRagRuntime, args) -> int:
    import uvicorn

    from .api_server import create_app

    uvicorn.run(create_app(runtime), host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bookrag", description="Textbook question answering over a vector index.")
    sub = parser.add_subparsers(dest="command", required=True)

    register = sub.add_parser("register", help="register a textbook file")
    register.add_argument("--title", required=True)
    register.add_argument("--grade", required=True)
    register.add_argument("--subject", required=True)
    register.add_argument("--file", required=True)
    register.add_argument("--outline", help="JSON file with the unit outline")
    register.add_argument("--id", help="explicit document id")
    register.set_defaults(handler=cmd_register)

    sub.add_parser("list", help="list registered textbooks").set_defaults(handler=cmd_list)

    ingest = sub.add_parser("ingest", help="chunk, embed and index a textbook")
    ingest.add_argument("document_id")
    ingest.set_defaults(handler=cmd_ingest)

    ask = sub.add_parser("ask", help="ask one question")
    ask.add_argument("document_id")
    ask.add_argument("question")
    ask.add_argument("--limit", type=int, default=None)
    ask.set_defaults(handler=cmd_ask)

    chat = sub.add_parser("chat", help="interactive question loop")
    chat.add_argument("document_id")
    chat.set_defaults(handler=cmd_chat)

    summary = sub.add_parser("summary", help="summarise one chapter")
    summary.add_argument("document_id")
    summary.add_argument("chapter")
    summary.set_defaults(handler=cmd_summary)

    quiz = sub.add_parser("quiz", help="generate a multiple-choice quiz")
    quiz.add_argument("document_id")
    quiz.add_argument("topic")
    quiz.add_argument("--questions", type=int, default=None)
    quiz.add_argument("--unit", default=None)
    quiz.set_defaults(handler=cmd_quiz)

    serve = sub.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(handler=cmd_serve)

    return parser


def main(argv: list[str] | None = None, runtime: BookRagRuntime | None = None) -> int:
    args = build_parser().parse_args(argv)
    owned = runtime is None
    runtime = runtime or BookRagRuntime.open()
    try:
        return args.handler(runtime, args)
    except BookRagError as exc:
        console.print(f"[bold red]{type(exc).__name__}:[/bold red] {exc}")
        return 1
    finally:
        if owned:
            runtime.close()


if __name__ == "__main__":
    sys.exit(main())
