"""Error types raised by the render log statistics engine."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping


class RenderLogError(RuntimeError):
    """Base class for predictable render log failures."""

    default_code = "render_log.error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.context: dict[str, Any] = dict(context or {})


class LogFileNotFoundError(RenderLogError):
    """Raised when the render client log does not exist."""

    default_code = "render_log.not_found"

    def __init__(self, path: Path | str) -> None:
        super().__init__(
            f"Render log '{path}' was not found.", context={"path": str(path)}
        )
        self.path = Path(path)


class LogReadError(RenderLogError):
    """Raised when the render log exists but cannot be inspected or read."""

    default_code = "render_log.read_error"


class StateStoreError(RenderLogError):
    """Raised when the persisted state blob cannot be written."""

    default_code = "render_log.state_error"


__all__ = ["LogFileNotFoundError", "LogReadError", "RenderLogError", "StateStoreError"]
