"""Click CLI: config loading, request submission, provider and cache diagnostics."""

import asyncio
import contextlib
import json
import logging
import sys
from pathlib import Path

import click
import yaml
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config
from quorum.cache import ResponseCache
from quorum.errors import CacheIOError, QuorumError, RequestCancelled, UnknownProvider
from quorum.healthcheck import run_health_checks
from quorum.models import RequestOptions, RequestResult, TaskCategory
from quorum.orchestrator import EventCallback, Orchestrator
from quorum.output import (
    StreamPrinter,
    console,
    error_to_dict,
    print_cache_stats,
    print_error,
    print_providers,
    print_route,
    print_summary,
    result_to_dict,
)
from quorum.registry import ProviderRegistry
from quorum.requests import merge_options, parse_request_file
from quorum.router import TaskRouter

logger = logging.getLogger(__name__)

EXIT_REQUEST_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_CANCELLED = 130


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
    )


def _load(config_path: Path | None) -> AppConfig:
    """Load settings or exit with the configuration error code."""
    try:
        return load_config(config_path) if config_path else load_config()
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}", highlight=False)
        sys.exit(EXIT_CONFIG_ERROR)


def _build_registry(config: AppConfig) -> ProviderRegistry:
    try:
        return ProviderRegistry.from_config(config)
    except ValueError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}", highlight=False)
        sys.exit(EXIT_CONFIG_ERROR)


def _build_orchestrator(config: AppConfig) -> Orchestrator:
    try:
        return Orchestrator.from_config(config)
    except ValueError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}", highlight=False)
        sys.exit(EXIT_CONFIG_ERROR)


async def _run_request(
    orchestrator: Orchestrator,
    text: str,
    options: RequestOptions,
    on_event: EventCallback | None,
) -> RequestResult:
    """Submit and follow one request. Ctrl+C trips the request's cancel token."""
    handle = orchestrator.submit(text, options)
    try:
        async for event in handle.events():
            if on_event is not None:
                on_event(event)
        return await handle.result()
    except asyncio.CancelledError:
        handle.cancel("Interrupted")
        with contextlib.suppress(QuorumError):
            await handle.result()
        raise


@click.group()
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="Path to settings.yaml (default: bundled config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """Quorum -- route requests to AI providers, with fallback, caching and council deliberation.

    \b
    Examples:
      quorum ask "Research the history of jazz"
      quorum ask "Draft a launch email" --provider claude-cli
      quorum ask "Compare REST and GraphQL" --council --json
      quorum ask --file request.md
      quorum providers
      quorum route "Debug this stack trace"
      quorum cache stats
    """
    # Model output may contain characters the Windows console codepage cannot encode.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)
    ctx.obj = {"config_path": config_path}


@main.command()
@click.argument("request", required=False)
@click.option("--file", "request_file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Read the request from a .md file with optional frontmatter")
@click.option("--provider", default=None, help="Use only this provider (no fallback)")
@click.option("--task", type=click.Choice([c.value for c in TaskCategory]), default=None,
              help="Skip classification and use this task category")
@click.option("--council/--no-council", default=None, help="Force council deliberation on or off")
@click.option("--no-cache", is_flag=True, help="Neither read nor write the response cache")
@click.option("--json", "as_json", is_flag=True, help="Print a single JSON result")
@click.option("--quiet", is_flag=True, help="Print only the answer text")
@click.pass_obj
def ask(
    obj: dict,
    request: str | None,
    request_file: Path | None,
    provider: str | None,
    task: str | None,
    council: bool | None,
    no_cache: bool,
    as_json: bool,
    quiet: bool,
) -> None:
    """Answer REQUEST with the routed provider chain or the council."""
    if request and request_file:
        raise click.UsageError("Pass either a REQUEST argument or --file, not both.")
    if as_json or quiet:
        logging.getLogger().setLevel(logging.WARNING)

    parsed = None
    if request_file:
        try:
            parsed = parse_request_file(request_file)
        except ValueError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}", highlight=False)
            sys.exit(EXIT_REQUEST_FAILED)
        text = parsed.text
    elif request:
        text = request
    else:
        raise click.UsageError("Provide a REQUEST argument or --file.")

    config = _load(obj["config_path"])
    orchestrator = _build_orchestrator(config)
    options = merge_options(
        parsed,
        provider=provider,
        task=TaskCategory(task) if task else None,
        council=council,
        no_cache=no_cache,
    )

    printer = None if (as_json or quiet) else StreamPrinter()
    try:
        result = asyncio.run(_run_request(orchestrator, text, options, printer))
    except (RequestCancelled, KeyboardInterrupt):
        if as_json:
            click.echo(json.dumps(error_to_dict(RequestCancelled()), indent=2))
        else:
            console.print("[yellow]Cancelled.[/yellow]")
        sys.exit(EXIT_CANCELLED)
    except (QuorumError, ValueError) as exc:
        if as_json:
            click.echo(json.dumps(error_to_dict(exc), indent=2))
        else:
            print_error(exc)
        sys.exit(EXIT_REQUEST_FAILED)

    if as_json:
        click.echo(json.dumps(result_to_dict(result), indent=2))
    elif quiet:
        click.echo(result.text)
    else:
        print_summary(result)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print probe results as JSON")
@click.pass_obj
def providers(obj: dict, as_json: bool) -> None:
    """Probe every configured provider and show which are reachable."""
    config = _load(obj["config_path"])
    registry = _build_registry(config)

    health = asyncio.run(run_health_checks(registry))
    if as_json:
        payload = {pid: {"ok": ok, "detail": detail} for pid, (ok, detail) in health.items()}
        click.echo(json.dumps(payload, indent=2))
        return
    print_providers(registry.list(), health)


@main.command()
@click.argument("request")
@click.option("--provider", default=None, help="Preview an explicit provider override")
@click.pass_obj
def route(obj: dict, request: str, provider: str | None) -> None:
    """Show how REQUEST would be classified and which providers would be tried."""
    config = _load(obj["config_path"])
    registry = _build_registry(config)
    router = TaskRouter.from_config(config, registry)
    analysis = router.analyze(request)
    try:
        plan = router.plan(analysis.category, provider)
    except UnknownProvider as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}", highlight=False)
        sys.exit(EXIT_REQUEST_FAILED)
    print_route(analysis, plan)
    if config.council.enabled and not provider:
        console.print(f"[dim]Council enabled: {', '.join(config.council.members)}[/dim]")


@main.group()
def cache() -> None:
    """Inspect or empty the response cache."""


def _cache_action(obj: dict, action: str) -> None:
    config = _load(obj["config_path"])
    response_cache = ResponseCache.from_config(config.cache)
    try:
        if action == "stats":
            print_cache_stats(response_cache.stats(), response_cache.directory)
        elif action == "clear":
            console.print(f"Removed {response_cache.clear()} cache entries.")
        else:
            console.print(f"Removed {response_cache.prune()} expired cache entries.")
    except CacheIOError as exc:
        console.print(f"[bold red]Cache error:[/bold red] {exc}", highlight=False)
        sys.exit(EXIT_REQUEST_FAILED)


@cache.command()
@click.pass_obj
def clear(obj: dict) -> None:
    """Remove every cached response."""
    _cache_action(obj, "clear")


@cache.command()
@click.pass_obj
def prune(obj: dict) -> None:
    """Remove expired cached responses."""
    _cache_action(obj, "prune")


@cache.command()
@click.pass_obj
def stats(obj: dict) -> None:
    """Show cache size and expiry counts."""
    _cache_action(obj, "stats")


if __name__ == "__main__":
    main()
