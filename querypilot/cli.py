"""
QueryPilot CLI

Command-line front end for a running QueryPilot API.

Usage:
    querypilot ask "Top customers by revenue"     # Stream an agent run
    querypilot ask "..." --continue 2             # Continue up to twice on step limit
    querypilot chat "Orders per day"              # One chat-mode turn
    querypilot chat                               # Interactive chat mode
    querypilot schema                             # List tables and columns
    querypilot query "SELECT ..."                 # Run read-only SQL
    querypilot steps                              # Show the step budget
    querypilot serve                              # Run the API server
"""

import asyncio
import json
import logging
import os
import sys
from typing import Any

import click
import httpx
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from querypilot.client.models import AgentProgress
from querypilot.client.session import AgentSession, AgentSessionError
from querypilot.models.agent import RepairReport
from querypilot.models.events import (
    AgentStreamEvent,
    CompleteEvent,
    ErrorEvent,
    StepEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
)
from querypilot.models.tools import ToolName

console = Console()
API_BASE_URL = os.getenv("QUERYPILOT_API_URL", "http://localhost:8000")
MAX_DISPLAY_ROWS = 20

TODO_MARKERS = {
    "pending": "[dim]○[/dim]",
    "in_progress": "[cyan]◐[/cyan]",
    "completed": "[green]●[/green]",
    "skipped": "[dim]-[/dim]",
}


def configure_cli_logging() -> None:
    logging.basicConfig(level=logging.WARNING)
    for logger_name in ("querypilot", "httpx", "httpcore"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def connection_option(func):
    return click.option(
        "--connection",
        "connection_string",
        envvar="DATABASE_URL",
        help="PostgreSQL connection string (default: $DATABASE_URL).",
    )(func)


def api_key_option(func):
    return click.option(
        "--api-key",
        envvar="QUERYPILOT_LLM_API_KEY",
        help="Model provider API key (default: the server's configured key).",
    )(func)


def _require_connection(connection_string: str | None) -> str:
    if not connection_string:
        console.print("[red]No database connection. Pass --connection or set DATABASE_URL.[/red]")
        sys.exit(1)
    return connection_string


# ============================================================================
# Rendering
# ============================================================================


def print_sql(sql: str, title: str = "SQL") -> None:
    console.print(Panel(Syntax(sql, "sql", word_wrap=True), title=title, border_style="cyan"))


def print_rows(columns: list[str], rows: list[dict[str, Any]], total: int | None = None) -> None:
    """Render a result preview table."""
    if not columns:
        console.print("[dim]No columns returned.[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    for column in columns:
        table.add_column(column)
    for row in rows[:MAX_DISPLAY_ROWS]:
        table.add_row(*["" if row.get(c) is None else str(row.get(c)) for c in columns])
    console.print(table)

    total = len(rows) if total is None else total
    if total > MAX_DISPLAY_ROWS:
        console.print(f"[dim]Showing {MAX_DISPLAY_ROWS} of {total} rows.[/dim]")


def print_todos(progress: AgentProgress) -> None:
    if not progress.todos:
        return
    done = sum(1 for t in progress.todos if t.status in ("completed", "skipped"))
    console.print(f"[bold]Plan[/bold] ({done}/{len(progress.todos)})")
    for todo in progress.todos:
        suffix = " [dim](added)[/dim]" if todo.added_during_execution else ""
        console.print(f"  {TODO_MARKERS[todo.status]} {todo.text}{suffix}")


def render_event(event: AgentStreamEvent, progress: AgentProgress) -> None:
    """Print one stream event as it arrives."""
    match event:
        case StepEvent(step=step, max_steps=max_steps):
            console.print(f"[dim]Step {step}/{max_steps}[/dim]")

        case ToolCallStartEvent(tool_name=tool_name, args=args):
            summary = args.get("title") or args.get("table") or args.get("action") or ""
            console.print(f"  [cyan]→ {tool_name}[/cyan] {summary}")

        case ToolCallResultEvent(tool_call=record):
            result = record.result if isinstance(record.result, dict) else {}
            if result.get("error"):
                console.print(f"    [red]✗ {result['error']}[/red]")
            elif record.tool_name == ToolName.EXECUTE_QUERY:
                console.print(
                    f"    [green]✓ {result.get('rowCount', 0)} rows "
                    f"in {result.get('executionTime', 0)}ms[/green]"
                )
            elif record.tool_name == ToolName.MANAGE_TODO:
                print_todos(progress)

        case ErrorEvent(message=message):
            console.print(f"[red]Error: {message}[/red]")

        case CompleteEvent():
            pass


def print_report(report: RepairReport) -> None:
    """Render a chat-mode turn."""
    for entry in report.entries:
        style = "dim" if entry.role == "system" else "white"
        console.print(f"[{style}]{entry.content}[/{style}]")

    if report.outcome == "clarification" or (report.outcome == "invalid" and report.clarifying_questions):
        questions = "\n".join(f"- {q}" for q in report.clarifying_questions)
        console.print(Panel(Markdown(questions), title="Clarifying questions", border_style="yellow"))
    if report.sql:
        print_sql(report.sql)
    if report.outcome == "success":
        print_rows(report.columns, report.rows, report.row_count)
    elif report.error:
        console.print(f"[red]{report.error}[/red]")


# ============================================================================
# Commands
# ============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="QueryPilot")
def cli():
    """QueryPilot - natural language to SQL for PostgreSQL."""
    configure_cli_logging()


@cli.command()
@click.argument("goal")
@connection_option
@api_key_option
@click.option(
    "--continue",
    "continue_limit",
    default=0,
    show_default=True,
    type=int,
    help="Automatically continue this many times when the step limit is reached.",
)
@click.option("--run/--no-run", "run_final", default=True, help="Execute the final SQL.")
def ask(
    goal: str,
    connection_string: str | None,
    api_key: str | None,
    continue_limit: int,
    run_final: bool,
):
    """Stream an agent run for GOAL."""
    connection_string = _require_connection(connection_string)

    async def run_ask() -> int:
        async with AgentSession(
            API_BASE_URL, api_key=api_key, connection_string=connection_string
        ) as session:
            await session.fetch_max_steps()
            await session.refresh_schema()
            console.print(f"[dim]Loaded {len(session.schema)} tables[/dim]")

            progress = await session.send(goal, on_event=render_event)
            continues = 0
            while progress.can_continue and continues < continue_limit:
                continues += 1
                console.print(
                    f"[yellow]Step limit reached; continuing ({continues}/{continue_limit})[/yellow]"
                )
                progress = await session.continue_run(on_event=render_event)

            if progress.can_continue:
                console.print(
                    f"[yellow]Agent reached {progress.max_steps} step limit. "
                    "Re-run with --continue to let it keep trying.[/yellow]"
                )

            final_sql = session.reducer.final_sql
            if not final_sql:
                console.print("[yellow]No query was produced.[/yellow]")
                return 1

            if session.reducer.final_explanation:
                console.print(Panel(Markdown(session.reducer.final_explanation), title="Answer"))
            print_sql(final_sql, title="Final SQL")
            if run_final:
                response = await session.execute(final_sql)
                print_rows([f.name for f in response.fields], response.rows, response.row_count)
                if response.warning:
                    console.print(f"[yellow]{response.warning}[/yellow]")
            return 0

    try:
        sys.exit(asyncio.run(run_ask()))
    except AgentSessionError as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(1)
    except httpx.HTTPError as e:
        console.print(f"[red]Cannot reach QueryPilot API at {API_BASE_URL}: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("prompt", required=False)
@connection_option
@api_key_option
def chat(prompt: str | None, connection_string: str | None, api_key: str | None):
    """Chat mode: one turn for PROMPT, or an interactive loop without it."""
    connection_string = _require_connection(connection_string)

    async def run_chat() -> None:
        async with AgentSession(
            API_BASE_URL, api_key=api_key, connection_string=connection_string
        ) as session:
            await session.refresh_schema()

            if prompt:
                with console.status("[cyan]Generating...[/cyan]", spinner="dots"):
                    report = await session.chat(prompt)
                print_report(report)
                return

            console.print(
                Panel.fit(
                    "[bold green]QueryPilot Chat[/bold green]\n"
                    "Describe the data you want. Type 'exit' or 'quit' to leave.",
                    border_style="green",
                )
            )
            while True:
                try:
                    message = console.input("[bold cyan]You:[/bold cyan] ")
                except (EOFError, KeyboardInterrupt):
                    console.print("\n[yellow]Goodbye![/yellow]")
                    break
                if not message.strip():
                    continue
                if message.strip().lower() in ("exit", "quit", ":q"):
                    console.print("[yellow]Goodbye![/yellow]")
                    break
                try:
                    with console.status("[cyan]Generating...[/cyan]", spinner="dots"):
                        report = await session.chat(message)
                    print_report(report)
                except AgentSessionError as e:
                    console.print(f"[red]Error: {e.message}[/red]")

    try:
        asyncio.run(run_chat())
    except AgentSessionError as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(1)
    except httpx.HTTPError as e:
        console.print(f"[red]Cannot reach QueryPilot API at {API_BASE_URL}: {e}[/red]")
        sys.exit(1)


@cli.command()
@connection_option
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON.")
def schema(connection_string: str | None, as_json: bool):
    """List tables, views and columns."""
    connection_string = _require_connection(connection_string)

    async def fetch():
        async with AgentSession(API_BASE_URL, connection_string=connection_string) as session:
            return await session.refresh_schema()

    try:
        tables = asyncio.run(fetch())
    except AgentSessionError as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(1)

    if as_json:
        console.print_json(json.dumps([t.model_dump(mode="json", by_alias=True) for t in tables]))
        return

    table = Table(title=f"{len(tables)} tables", show_header=True, header_style="bold cyan")
    table.add_column("Table")
    table.add_column("Type")
    table.add_column("Columns")
    for info in tables:
        columns = ", ".join(
            f"{c.name}{'*' if c.is_primary_key else ''}" for c in info.columns
        )
        table.add_row(info.qualified_name, info.type, columns)
    console.print(table)


@cli.command()
@click.argument("sql")
@connection_option
def query(sql: str, connection_string: str | None):
    """Run read-only SQL and print the rows."""
    connection_string = _require_connection(connection_string)

    async def run_query():
        async with AgentSession(API_BASE_URL, connection_string=connection_string) as session:
            return await session.execute(sql)

    try:
        response = asyncio.run(run_query())
    except AgentSessionError as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(1)

    print_rows([f.name for f in response.fields], response.rows, response.row_count)
    console.print(f"[dim]{response.row_count} rows in {response.execution_time}ms[/dim]")
    if response.warning:
        console.print(f"[yellow]{response.warning}[/yellow]")


@cli.command()
def steps():
    """Show the server's step budget per run."""
    try:
        response = httpx.get(f"{API_BASE_URL}/api/v1/agent", timeout=15.0)
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPError as e:
        console.print(f"[red]Failed to fetch agent metadata: {e}[/red]")
        sys.exit(1)
    console.print(f"Max steps per run: [bold]{data['maxSteps']}[/bold]")


@cli.command()
@click.option("--host", default=None, help="Bind host (default: API_HOST).")
@click.option("--port", default=None, type=int, help="Bind port (default: API_PORT).")
@click.option("--reload", is_flag=True, help="Reload on code changes.")
def serve(host: str | None, port: int | None, reload: bool):
    """Run the API server with uvicorn."""
    import uvicorn

    from querypilot.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "querypilot.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_level=settings.logging.level.lower(),
    )


if __name__ == "__main__":
    cli()
