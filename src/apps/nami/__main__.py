"""Console entry point for the Nami CLI."""

from __future__ import annotations

import sys
from typing import Sequence

import typer

from apps.nami.app import app
from apps.nami.utils.errors import ExitCode, NamiError


def _handle_cli_error(exc: NamiError) -> ExitCode:
    """Render a user friendly error message and return the exit code."""

    typer.secho(f"{exc.heading}: {exc}", fg=typer.colors.RED, err=True)
    return exc.exit_code


def main(argv: Sequence[str] | None = None) -> int:
    """Invoke the Nami Typer application."""

    try:
        result = app(
            args=list(argv) if argv is not None else None,
            standalone_mode=False,
        )
    except NamiError as exc:
        return int(_handle_cli_error(exc))
    if result is None:
        return int(ExitCode.SUCCESS)
    return int(result)


if __name__ == "__main__":
    sys.exit(main())
