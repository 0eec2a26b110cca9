"""Main Typer application for FLCM."""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from flcm.cli.errorhandler import handle_cli_errors
from flcm.core.config import FlcmConfig
from flcm.core.config_loader import ConfigLoader
from flcm.core.exceptions import CorruptDocumentError
from flcm.core.logging import setup_logging
from flcm.core.types import Agent, DocumentReference, DocumentStatus, DocumentType, QueryFilter
from flcm.pipeline.metadata import build_header, parse_document
from flcm.pipeline.storage import DocumentStorage
from flcm.pipeline.validator import DocumentValidator, ValidationResult

app = typer.Typer(name="flcm", help="FLCM - file-backed content document pipeline", no_args_is_help=True)
console = Console()


@dataclass
class CliState:
    root: Path
    debug: bool = False

    def config(self) -> FlcmConfig:
        return ConfigLoader(self.root).load()

    def storage(self) -> DocumentStorage:
        config = self.config()
        return DocumentStorage(config.storage, validator=DocumentValidator(config.validation))


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj


@app.callback()
def main(
    ctx: typer.Context,
    root: Annotated[Path, typer.Option("--root", help="Workspace root directory")] = Path(),
    log_level: Annotated[str, typer.Option("--log-level", help="Logging level")] = "WARNING",
    debug: Annotated[bool, typer.Option("--debug", help="Show full tracebacks")] = False,
) -> None:
    setup_logging(log_level)
    ctx.obj = CliState(root=root.resolve(), debug=debug)


def _references_table(title: str, references: list[DocumentReference]) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("ID", no_wrap=True)
    table.add_column("Type", style="cyan")
    table.add_column("Title")
    table.add_column("Path", style="dim")
    for ref in references:
        table.add_row(ref.id, ref.type.value, ref.title or "", ref.path or "")
    return table


def _print_validation(result: ValidationResult) -> None:
    for error in result.errors:
        console.print(f"[red]✘ {error.code}[/red] ({error.severity}) {escape(error.message)}")
    for warning in result.warnings:
        suggestion = f" - {warning.suggestion}" if warning.suggestion else ""
        console.print(f"[yellow]! {escape(warning.field)}[/yellow] {escape(warning.message)}{escape(suggestion)}")
    status = "[bold green]valid[/bold green]" if result.valid else "[bold red]invalid[/bold red]"
    console.print(f"{status} score={result.score}")


@app.command()
def init(ctx: typer.Context) -> None:
    """Create the directory layout, default config and an empty index."""
    state = _state(ctx)
    with handle_cli_errors(debug=state.debug):
        config_path = ConfigLoader(state.root).write_default()
        storage = state.storage()
        count = storage.rebuild_index()
    console.print(f"Initialized FLCM workspace at {state.root}")
    console.print(f"Config: {config_path}")
    console.print(f"Indexed documents: {count}")


@app.command("list")
def list_documents(
    ctx: typer.Context,
    doc_type: Annotated[DocumentType | None, typer.Option("--type", help="Only this document type")] = None,
) -> None:
    """List stored documents."""
    state = _state(ctx)
    with handle_cli_errors(debug=state.debug):
        references = state.storage().list(doc_type)
    if not references:
        console.print("[yellow]No documents found[/yellow]")
        return
    console.print(_references_table(f"{len(references)} document(s)", references))


@app.command()
def show(
    ctx: typer.Context,
    document_id: Annotated[str, typer.Argument(help="Document id")],
    as_json: Annotated[bool, typer.Option("--json", help="Print the document as JSON")] = False,
) -> None:
    """Show one document's header and body."""
    state = _state(ctx)
    with handle_cli_errors(debug=state.debug):
        stored = state.storage().load(document_id)
    if as_json:
        typer.echo(stored.document.model_dump_json(indent=2))
        return
    header = yaml.safe_dump(build_header(stored.document, stored.content), sort_keys=False, allow_unicode=True)
    console.print(header, markup=False, highlight=False)
    if stored.content:
        console.print(stored.content, markup=False, highlight=False)


@app.command()
def query(
    ctx: typer.Context,
    doc_type: Annotated[DocumentType | None, typer.Option("--type")] = None,
    agent: Annotated[Agent | None, typer.Option("--agent")] = None,
    status: Annotated[DocumentStatus | None, typer.Option("--status")] = None,
    tag: Annotated[list[str] | None, typer.Option("--tag", help="Required tag (repeatable)")] = None,
    limit: Annotated[int | None, typer.Option("--limit")] = None,
    offset: Annotated[int, typer.Option("--offset")] = 0,
    sort_by: Annotated[str | None, typer.Option("--sort-by")] = None,
    desc: Annotated[bool, typer.Option("--desc", help="Sort descending")] = False,
) -> None:
    """Query documents by type, agent, status and tags."""
    state = _state(ctx)
    criteria = QueryFilter(
        type=doc_type,
        agent=agent,
        status=status,
        tags=tag or [],
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_order="desc" if desc else "asc",
    )
    with handle_cli_errors(debug=state.debug):
        documents = state.storage().query(criteria)
    if not documents:
        console.print("[yellow]No matching documents[/yellow]")
        return
    table = Table(title=f"{len(documents)} match(es)", show_header=True, header_style="bold cyan")
    table.add_column("ID", no_wrap=True)
    table.add_column("Type", style="cyan")
    table.add_column("Status")
    table.add_column("Version", justify="right")
    table.add_column("Created", style="blue")
    for doc in documents:
        table.add_row(
            doc.id, doc.type.value, doc.metadata.status.value, str(doc.version), f"{doc.created:%Y-%m-%d %H:%M}"
        )
    console.print(table)


@app.command()
def validate(
    ctx: typer.Context,
    file: Annotated[Path, typer.Argument(exists=True, dir_okay=False, help="Stored document file")],
) -> None:
    """Validate a document file: header first, then the full document."""
    state = _state(ctx)
    with handle_cli_errors(debug=state.debug):
        validator = DocumentValidator(state.config().validation)
    text = file.read_text(encoding="utf-8")

    header = validator.validate_frontmatter(text)
    if not header.valid:
        console.print(f"[bold]{file.name}[/bold]: header")
        _print_validation(header)
        raise typer.Exit(1)

    try:
        fields, _ = parse_document(text)
    except CorruptDocumentError as e:
        console.print(f"[bold red]Corrupt document:[/bold red] {escape(str(e))}")
        raise typer.Exit(1) from e
    result = validator.validate(fields)
    console.print(f"[bold]{file.name}[/bold]")
    _print_validation(result)
    if not result.valid:
        raise typer.Exit(1)


@app.command()
def stats(
    ctx: typer.Context,
    as_json: Annotated[bool, typer.Option("--json", help="Print raw statistics as JSON")] = False,
) -> None:
    """Show storage and index statistics."""
    state = _state(ctx)
    with handle_cli_errors(debug=state.debug):
        statistics = state.storage().statistics()
    if as_json:
        typer.echo(json.dumps(statistics, indent=2, default=str))
        return

    table = Table(title="FLCM Storage", show_header=True, header_style="bold cyan")
    table.add_column("Type", style="cyan")
    table.add_column("Files", justify="right")
    table.add_column("Bytes", justify="right")
    table.add_column("Backups", justify="right")
    for doc_type, info in statistics["directories"].items():
        table.add_row(doc_type, str(info["count"]), str(info["size"]), str(info["backups"]))
    console.print(table)
    console.print(f"Indexed documents: {statistics['total']}")
    for status_name, count in sorted(statistics["by_status"].items()):
        console.print(f"  {status_name}: {count}")


@app.command()
def delete(
    ctx: typer.Context,
    document_id: Annotated[str, typer.Argument(help="Document id")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
) -> None:
    """Delete a document, its backups and its index entry."""
    state = _state(ctx)
    if not yes and not typer.confirm(f"Delete {document_id}?"):
        raise typer.Abort
    with handle_cli_errors(debug=state.debug):
        deleted = state.storage().delete(document_id)
    if not deleted:
        console.print(f"[yellow]Not found:[/yellow] {escape(document_id)}")
        raise typer.Exit(1)
    console.print(f"Deleted {escape(document_id)}")


@app.command()
def reindex(ctx: typer.Context) -> None:
    """Rebuild the index by rescanning the document tree."""
    state = _state(ctx)
    with handle_cli_errors(debug=state.debug):
        count = state.storage().rebuild_index()
    console.print(f"Indexed {count} document(s)")


if __name__ == "__main__":
    app()
