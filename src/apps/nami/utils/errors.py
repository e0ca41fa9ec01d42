"""Exit codes and user facing errors for the Nami CLI."""

from __future__ import annotations

from enum import IntEnum

from libraries.render_log.errors import (
    LogFileNotFoundError,
    LogReadError,
    RenderLogError,
)


class ExitCode(IntEnum):
    """Process exit codes shared by every Nami command."""

    SUCCESS = 0
    VALIDATION = 1
    IO = 2
    CONFIG = 3
    RUNTIME = 5


class NamiError(Exception):
    """Base for predictable CLI errors that surface to users."""

    exit_code: ExitCode = ExitCode.RUNTIME
    label = "Error"

    def __init__(
        self, message: str, *, exit_code: ExitCode | int | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is None:
            exit_code = type(self).exit_code
        self.exit_code = ExitCode(exit_code)

    def __str__(self) -> str:
        return self.message

    @property
    def heading(self) -> str:
        return type(self).label

    @classmethod
    def from_library(cls, exc: RenderLogError) -> "NamiError":
        """Map a library error onto the matching CLI error."""

        if isinstance(exc, (LogFileNotFoundError, LogReadError)):
            return NamiIOError(exc.message)
        return NamiRuntimeError(exc.message)


class NamiValidationError(NamiError):
    """Raised when user input fails validation checks."""

    exit_code = ExitCode.VALIDATION
    label = "Validation error"


class NamiIOError(NamiError):
    """Raised when the render log or an output file cannot be accessed."""

    exit_code = ExitCode.IO
    label = "I/O error"


class NamiConfigError(NamiError):
    """Raised when the settings file or environment is invalid."""

    exit_code = ExitCode.CONFIG
    label = "Configuration error"


class NamiRuntimeError(NamiError):
    """Raised for unexpected runtime failures."""

    exit_code = ExitCode.RUNTIME
    label = "Runtime error"


__all__ = [
    "ExitCode",
    "NamiConfigError",
    "NamiError",
    "NamiIOError",
    "NamiRuntimeError",
    "NamiValidationError",
]
