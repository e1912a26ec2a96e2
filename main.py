"""ragdocs - Main CLI Entry Point

Track documentation repositories and query them semantically:

    rag docs add react https://github.com/reactjs/react.dev --subdir src/content
    rag get "how do I memoize a callback" --count 5
"""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import List, Optional

import click
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from doc_brain.retriever import RetrievalEngine
from doc_brain.sync import SyncEngine
from ragdocs.config import DEFAULT_CONFIG_PATH, ConfigLoader, RagDocsConfig
from ragdocs.embedding_client import EmbeddingClient
from ragdocs.exceptions import RagDocsError
from ragdocs.models import AddOptions, FileOutcome, RetrievalResult, SyncReport, UpdateOptions
from ragdocs.store import CorpusStore

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    "added": "green",
    "updated": "cyan",
    "skipped": "dim",
    "deleted": "yellow",
    "failed": "red",
}


def setup_logging(config: RagDocsConfig, console: Console):
    """Setup logging based on configuration."""
    log_config = config.logging
    handlers: List[logging.Handler] = []
    if log_config.file_path:
        handlers.append(logging.FileHandler(log_config.file_path))
    if log_config.console_enabled:
        handlers.append(RichHandler(console=console, show_path=False))
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=getattr(logging, log_config.level, logging.WARNING),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


class RagDocsCLI:
    """Wires configuration, storage and engines for one CLI invocation."""

    def __init__(self, config: RagDocsConfig):
        self.config = config
        self.console = Console(stderr=True)
        self.out = Console()

    @asynccontextmanager
    async def open(self):
        """Open the corpus store and the embedding client."""
        async with CorpusStore(
            str(self.config.database_path), self.config.embedding.dimension
        ) as store:
            async with EmbeddingClient(self.config.embedding) as embedder:
                yield store, embedder

    async def add(self, options: AddOptions) -> SyncReport:
        async with self.open() as (store, embedder):
            with self._progress(f"Indexing {options.name}") as callback:
                engine = SyncEngine(self.config, store, embedder, progress_callback=callback)
                return await engine.add(options)

    async def update(self, name: str, options: UpdateOptions) -> SyncReport:
        async with self.open() as (store, embedder):
            with self._progress(f"Updating {name}") as callback:
                engine = SyncEngine(self.config, store, embedder, progress_callback=callback)
                return await engine.update(name, options)

    async def remove(self, name: str) -> bool:
        async with self.open() as (store, embedder):
            return await SyncEngine(self.config, store, embedder).remove(name)

    async def list_documentations(self) -> List[dict]:
        async with CorpusStore(str(self.config.database_path)) as store:
            rows = []
            for doc in await store.list_documentations():
                rows.append({
                    **doc.to_dict(),
                    "files": await store.count_files(doc.id),
                    "chunks": await store.count_chunks(doc.id),
                })
            return rows

    async def get(
        self, prompt: str, count: int, documentation: Optional[str]
    ) -> List[RetrievalResult]:
        async with self.open() as (store, embedder):
            return await RetrievalEngine(store, embedder).retrieve(prompt, count, documentation)

    def _progress(self, description: str):
        return _ProgressReporter(self.console, description)

    def print_report(self, report: SyncReport):
        """Render a sync report as a table of changed and failed files."""
        table = Table(box=box.SIMPLE)
        table.add_column("File", style="white")
        table.add_column("Status", justify="center")
        table.add_column("Chunks", justify="right")
        table.add_column("Details", style="dim")

        for outcome in report.outcomes:
            if outcome.status == "skipped":
                continue
            style = STATUS_STYLES[outcome.status]
            table.add_row(
                escape(outcome.path),
                f"[{style}]{outcome.status}[/{style}]",
                str(outcome.chunks) if outcome.chunks else "",
                escape(outcome.error or ""),
            )

        if table.row_count:
            self.out.print(table)

        summary = (
            f"{len(report.added)} added, {len(report.updated)} updated, "
            f"{len(report.skipped)} unchanged, {len(report.deleted)} deleted, "
            f"{len(report.failed)} failed"
        )
        color = "green" if report.ok else "red"
        mark = "✓" if report.ok else "✗"
        self.out.print(f"[bold {color}]{mark}[/bold {color}] {report.documentation}: {summary}")

    def print_results(self, results: List[RetrievalResult]):
        if not results:
            self.out.print("[yellow]No matching documentation found[/yellow]")
            return
        for result in results:
            location = " › ".join([result.documentation, result.path] + result.metadata.breadcrumb)
            self.out.print(Panel(
                Markdown(result.content),
                title=f"[cyan]{escape(location)}[/cyan]",
                subtitle=f"distance {result.distance:.4f}",
                border_style="cyan",
            ))

    def fail(self, error: Exception) -> None:
        """Print an error and exit with status 1."""
        self.console.print(f"[red]Error: {escape(str(error))}[/red]")
        sys.exit(1)


class _ProgressReporter:
    """Spinner showing files as the sync engine finishes them."""

    def __init__(self, console: Console, description: str):
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TextColumn("[dim]{task.completed} files[/dim]"),
            console=console,
            transient=True,
        )
        self.description = description
        self.task = None

    def __enter__(self):
        self.progress.start()
        self.task = self.progress.add_task(self.description, total=None)
        return self.advance

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.progress.stop()

    def advance(self, outcome: FileOutcome):
        self.progress.update(
            self.task, advance=1, description=f"{self.description} [dim]{outcome.path}[/dim]"
        )


def _run(app: RagDocsCLI, coroutine):
    """Run a command coroutine, turning typed errors into exit status 1."""
    try:
        return asyncio.run(coroutine)
    except RagDocsError as e:
        logger.debug("Command failed", exc_info=True)
        app.fail(e)
    except ValueError as e:
        app.fail(e)
    except KeyboardInterrupt:
        app.console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)


@click.group()
@click.version_option(package_name="ragdocs", prog_name="rag")
@click.option('--config', '-c', 'config_path', default=str(DEFAULT_CONFIG_PATH),
              help='Path to configuration file')
@click.pass_context
def cli(ctx, config_path):
    """Simple RAG system for developers.

    Keeps documentation from git repositories in a local corpus and finds
    the parts relevant to a prompt.
    """
    ctx.ensure_object(dict)
    try:
        config = ConfigLoader.initialize(config_path)
    except RagDocsError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    app = RagDocsCLI(config)
    setup_logging(config, app.console)
    ctx.obj['app'] = app


@cli.group()
def docs():
    """Manage documentations."""


@docs.command('add')
@click.argument('name')
@click.argument('repo_url')
@click.option('--subdir', default=None, help='Subdirectory within the repository')
@click.option('--branch', default='main', show_default=True, help='Branch to use')
@click.pass_context
def docs_add(ctx, name, repo_url, subdir, branch):
    """Add new documentation."""
    app: RagDocsCLI = ctx.obj['app']
    try:
        options = AddOptions(name=name, repo_url=repo_url, subdir=subdir, branch=branch)
    except ValueError as e:
        app.fail(e)
    report = _run(app, app.add(options))
    app.print_report(report)


@docs.command('update')
@click.argument('name')
@click.option('--repo-url', '--repo_url', 'repo_url', default=None, help='New repository URL')
@click.option('--subdir', default=None, help='New subdirectory within the repository')
@click.option('--branch', default=None, help='New branch to use')
@click.pass_context
def docs_update(ctx, name, repo_url, subdir, branch):
    """Update existing documentation."""
    app: RagDocsCLI = ctx.obj['app']
    provided = {
        key: value
        for key, value in (("repo_url", repo_url), ("subdir", subdir), ("branch", branch))
        if value is not None
    }
    try:
        options = UpdateOptions(**provided)
    except ValueError as e:
        app.fail(e)
    report = _run(app, app.update(name, options))
    app.print_report(report)
    if not report.ok:
        sys.exit(1)


@docs.command('remove')
@click.argument('name')
@click.pass_context
def docs_remove(ctx, name):
    """Remove existing documentation."""
    app: RagDocsCLI = ctx.obj['app']
    removed = _run(app, app.remove(name))
    if removed:
        app.out.print(f"[green]✓[/green] Removed {name}")
    else:
        app.out.print(f"[yellow]Documentation {name} not found, nothing removed[/yellow]")


@docs.command('list')
@click.option('--json', 'as_json', is_flag=True, help='Output in JSON format')
@click.pass_context
def docs_list(ctx, as_json):
    """List tracked documentations."""
    app: RagDocsCLI = ctx.obj['app']
    rows = _run(app, app.list_documentations())
    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return

    table = Table(box=box.ROUNDED)
    for column in ("Name", "Repository", "Branch", "Subdir", "Files", "Chunks", "Updated"):
        table.add_column(column)
    for row in rows:
        table.add_row(
            row["name"], row["repo_url"], row["branch"], row["subdir"] or "",
            str(row["files"]), str(row["chunks"]), row["updated_at"][:19],
        )
    app.out.print(table)


@cli.command('get')
@click.argument('prompt', required=False)
@click.option('--count', default=5, show_default=True, type=click.IntRange(min=0),
              help='Number of relevant parts to retrieve')
@click.option('--docs', 'documentation', default=None, help='Only search this documentation')
@click.option('--json', 'as_json', is_flag=True, help='Output results in JSON format')
@click.pass_context
def get(ctx, prompt, count, documentation, as_json):
    """Get relevant parts from documentations.

    The prompt is read from stdin when not given as an argument.
    """
    app: RagDocsCLI = ctx.obj['app']
    if not prompt:
        prompt = click.get_text_stream('stdin').read()
    results = _run(app, app.get(prompt, count, documentation))
    if as_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        app.print_results(results)


if __name__ == "__main__":
    cli()
