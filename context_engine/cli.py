"""Command line entry point for indexing a directory and optimising a request."""

from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path
from typing import Optional

import click

from context_engine.config import Settings, load_settings
from context_engine.engine import ContextEngine
from context_engine.logger import configure_logging, get_logger
from context_engine.manager import ContextManager

LOGGER = get_logger(__name__)

SKIPPED_DIRECTORIES = frozenset({".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv", "dist", "build"})
MAX_FILE_BYTES = 512_000


def load_directory(root: Path, *, max_bytes: int = MAX_FILE_BYTES) -> dict[str, dict[str, str]]:
    """Read every text file below ``root`` into a corpus keyed by relative POSIX path."""
    files: dict[str, dict[str, str]] = {}
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if any(part in SKIPPED_DIRECTORIES for part in relative.parts[:-1]):
            continue
        if any(part.startswith(".") for part in relative.parts):
            continue
        if not path.is_file() or path.stat().st_size > max_bytes:
            continue
        try:
            content = path.read_text(encoding="utf-8")
        except (UnicodeDecodeError, OSError) as exc:
            LOGGER.debug("Skipping %s: %s", path, exc)
            continue
        files[relative.as_posix()] = {"type": "file", "content": content}
    return files


def _resolve_log_level(verbose: int, quiet: bool, configured: str) -> str:
    """Resolve log level based on verbosity flags."""
    if quiet:
        return "WARNING"
    if verbose >= 2:
        return "DEBUG"
    if verbose == 1:
        return "INFO"
    return configured


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    help="Path to configuration file.",
)
@click.option("-v", "--verbose", count=True, help="Verbosity: -v (info), -vv (debug)")
@click.option("-q", "--quiet", is_flag=True, help="Only log warnings and errors")
@click.option("--json-logs", is_flag=True, help="Emit structured JSON log lines")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], verbose: int, quiet: bool, json_logs: bool) -> None:
    """Index a codebase and build token-budgeted context for a request.

    Examples:
      context-engine index ./src
      context-engine optimize ./src --query "add a search input to the Header component"
    """
    ctx.ensure_object(dict)
    settings = load_settings(config_path)
    settings.log_level = _resolve_log_level(verbose, quiet, settings.log_level)
    configure_logging(settings.log_level, structured=json_logs or settings.structured_logging)
    ctx.obj["settings"] = settings


@cli.command("index")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--top", default=5, show_default=True, help="Number of central files to list")
@click.pass_context
def index_command(ctx: click.Context, path: Path, top: int) -> None:
    """Build an index of PATH and print its size."""
    settings: Settings = ctx.obj["settings"]
    engine = ContextEngine(settings.engine)
    index = engine.index_codebase(load_directory(path))

    summary = index.summary()
    click.echo(f"Indexed {summary['files']} files: {summary['nodes']} nodes, {summary['edges']} edges")
    ranked = sorted(index.rank_files().items(), key=lambda item: (-item[1], item[0]))[:top]
    for file_path, score in ranked:
        click.echo(f"  {score:.4f}  {file_path}")


@cli.command("optimize")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--query", "query", required=True, help="User request to build context for")
@click.option("--model", "-m", default=None, help="Target model id (defaults to configured model)")
@click.option("--system-prompt", default=None, help="System prompt counted against the budget")
@click.option("--force-retrieval", is_flag=True, help="Retrieve even when under budget for large codebases")
@click.option("--show-context", is_flag=True, help="Print the optimised context instead of JSON")
@click.pass_context
def optimize_command(
    ctx: click.Context,
    path: Path,
    query: str,
    model: Optional[str],
    system_prompt: Optional[str],
    force_retrieval: bool,
    show_context: bool,
) -> None:
    """Optimise context for QUERY against the codebase in PATH."""
    settings: Settings = ctx.obj["settings"]
    options = settings.manager
    if force_retrieval:
        options = replace(options, force_smart_retrieval=True)

    manager = ContextManager(options, engine_options=settings.engine)
    result = manager.optimize_context(
        [{"role": "user", "content": query}],
        load_directory(path),
        model or settings.model,
        system_prompt=system_prompt,
    )

    if show_context:
        click.echo(result.optimized_context)
    else:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))

    if result.error:
        raise click.ClickException(result.error)


def main() -> None:
    """Invoke the CLI entry point."""
    cli(prog_name="context-engine")


__all__ = ["cli", "load_directory", "main"]
