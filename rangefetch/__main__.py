"""
Main entry point for the rangefetch application.
This module handles top-level setup, exception handling, and CLI invocation.
"""

import asyncio
import logging
import sys

import typer
from rich.console import Console

from rangefetch.cli.app import app
from rangefetch.cli.formatters import format_error_with_suggestions
from rangefetch.exceptions import RangeFetchError


def main() -> None:
    """Main entry point function."""
    log = logging.getLogger("rangefetch")
    console = Console(stderr=True)

    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]⚠️  Download cancelled by user.[/yellow]")
        sys.exit(130)
    except RangeFetchError as e:
        console.print()
        console.print(format_error_with_suggestions(e))
        sys.exit(1)
    except Exception as e:
        console.print()
        console.print(format_error_with_suggestions(e, {"type": "Unexpected"}))
        log.debug("Full traceback:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
