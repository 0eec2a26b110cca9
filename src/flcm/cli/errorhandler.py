"""CLI error handling utilities."""

from collections.abc import Generator
from contextlib import contextmanager

import typer
from rich.console import Console
from rich.markup import escape

from flcm.core.exceptions import (
    ConfigError,
    CorruptDocumentError,
    DocumentNotFoundError,
    FlcmError,
    StorageError,
)

console = Console()


@contextmanager
def handle_cli_errors(*, debug: bool = False) -> Generator[None, None, None]:
    """Turn FLCM errors into a short message and exit code 1.

    Args:
        debug: If True, re-raise so the full traceback is shown.

    """
    try:
        yield
    except (KeyboardInterrupt, SystemExit):
        raise
    except DocumentNotFoundError as e:
        if debug:
            raise
        console.print(f"[bold red]Not found:[/bold red] {escape(e.document_id)}")
        raise typer.Exit(1) from e
    except CorruptDocumentError as e:
        if debug:
            raise
        console.print(f"[bold red]Corrupt document:[/bold red] {escape(str(e))}")
        for err in e.errors:
            console.print(f"  - {escape(str(err))}")
        raise typer.Exit(1) from e
    except ConfigError as e:
        if debug:
            raise
        console.print(f"[bold red]Configuration error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1) from e
    except StorageError as e:
        if debug:
            raise
        console.print(f"[bold red]Storage error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1) from e
    except FlcmError as e:
        if debug:
            raise
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1) from e
