"""Rich console rendering and JSON payloads for request results."""

import logging
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from quorum.errors import AllProvidersUnavailable, DeliberationFailed, QuorumError
from quorum.models import (
    Attempt,
    CacheStats,
    Failure,
    ProviderDescriptor,
    RequestResult,
    StreamEvent,
    Success,
    Timeout,
)
from quorum.router import TaskAnalysis

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


class StreamPrinter:
    """Prints stream events as they arrive.

    Chunks are written raw so partial output shows immediately. A failed
    attempt starts a fresh line, since the next provider starts over.
    """

    def __init__(self, target: Console | None = None) -> None:
        self._console = target or console
        self._mid_line = False

    def _break_line(self) -> None:
        if self._mid_line:
            self._console.print()
            self._mid_line = False

    def __call__(self, event: StreamEvent) -> None:
        if event.kind == "chunk":
            self._console.print(event.text, end="", markup=False, highlight=False, soft_wrap=True)
            self._mid_line = not event.text.endswith("\n")
        elif event.kind == "attempt_failed":
            self._break_line()
            self._console.print(f"[yellow]FAIL[/yellow] {event.text}", highlight=False)
        elif event.kind == "round_complete":
            self._break_line()
            self._console.print(Rule(f"[bold cyan]Round {event.round_index} complete[/bold cyan]"))
            if event.text:
                self._console.print(Text(f"Answered: {event.text}", style="dim"))
        elif event.kind == "result":
            self._break_line()


def print_summary(result: RequestResult) -> None:
    parts = [
        f"Provider: {result.provider}",
        f"Category: {result.category.value}",
        f"Duration: {result.elapsed_ms / 1000:.1f}s",
    ]
    if result.cached:
        parts.append("cached")
    if result.rounds:
        parts.append(f"Rounds: {result.rounds}")
    if result.degraded:
        parts.append("degraded")
    console.print(Text(" | ".join(parts), style="dim"))


def attempt_to_dict(attempt: Attempt) -> dict[str, Any]:
    outcome = attempt.outcome
    payload: dict[str, Any] = {"provider": attempt.provider, "elapsed_ms": round(outcome.elapsed_ms, 1)}
    if isinstance(outcome, Success):
        payload["outcome"] = "success"
    elif isinstance(outcome, Timeout):
        payload["outcome"] = "timeout"
    elif isinstance(outcome, Failure):
        payload["outcome"] = "failure"
        payload["kind"] = outcome.kind.value
        payload["message"] = outcome.message
    return payload


def result_to_dict(result: RequestResult) -> dict[str, Any]:
    return {
        "ok": True,
        "text": result.text,
        "provider": result.provider,
        "cached": result.cached,
        "elapsed_ms": round(result.elapsed_ms, 1),
        "category": result.category.value,
        "degraded": result.degraded,
        "rounds": result.rounds,
        "attempts": [attempt_to_dict(a) for a in result.attempts],
    }


def error_to_dict(exc: Exception) -> dict[str, Any]:
    payload: dict[str, Any] = {"ok": False, "error": str(exc), "type": type(exc).__name__}
    if isinstance(exc, (AllProvidersUnavailable, DeliberationFailed)):
        payload["attempts"] = [attempt_to_dict(a) for a in exc.attempts]
    elif isinstance(exc, QuorumError) and exc.details:
        payload["details"] = exc.details
    return payload


def print_error(exc: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {exc}", highlight=False)
    if isinstance(exc, (AllProvidersUnavailable, DeliberationFailed)):
        for attempt in exc.attempts:
            info = attempt_to_dict(attempt)
            detail = info.get("kind", info["outcome"])
            message = info.get("message", "")
            console.print(f"  [red]FAIL[/red] {attempt.provider}: {detail} {message}".rstrip(), highlight=False)


def print_providers(descriptors: list[ProviderDescriptor], health: dict[str, tuple[bool, str]]) -> None:
    table = Table(title="Providers")
    table.add_column("Provider", style="bold")
    table.add_column("Kind")
    table.add_column("Model")
    table.add_column("Status")
    for d in descriptors:
        ok, detail = health.get(d.id, (False, "not probed"))
        if ok:
            status = "[green]OK[/green]"
        elif detail == "disabled":
            status = "[dim]disabled[/dim]"
        else:
            status = f"[red]FAIL[/red] {detail}"
        table.add_row(d.id, d.kind.value, d.model, status)
    console.print(table)


def print_cache_stats(stats: CacheStats, directory: Path) -> None:
    console.print(f"[bold]Cache:[/bold] {directory}")
    console.print(f"  Entries: {stats.total_entries} ({stats.active_entries} live, {stats.expired_entries} expired)")
    console.print(f"  Size:    {stats.total_bytes / 1024:.1f} KiB")


def print_route(analysis: TaskAnalysis, plan: list[str]) -> None:
    console.print(f"[bold]Category:[/bold] {analysis.category.value}")
    if analysis.keywords:
        console.print(f"[bold]Matched:[/bold] {', '.join(analysis.keywords)}")
    console.print(f"[bold]Plan:[/bold] {' -> '.join(plan) if plan else '(no enabled providers)'}")
