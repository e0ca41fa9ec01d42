"""Incremental reader that folds new render log lines into the statistics.

The tailer keeps two offsets. ``offset`` is the end of the last complete line
that has been applied and is what gets persisted; ``read_offset`` also counts
a trailing partial line held in memory until its newline arrives. A restart
therefore re-reads at most one partial line and never applies a byte range
twice.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable, Iterator

import structlog

from .aggregator import DisplayStats
from .correlator import JobOutcome
from .engine import RenderStatsEngine
from .errors import LogFileNotFoundError, LogReadError, StateStoreError
from .state_store import LogIdentity, PersistedState, StateStore

logger = structlog.get_logger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

SnapshotListener = Callable[[DisplayStats], None]


@dataclass
class TailResult:
    """Summary of one processed batch."""

    start_offset: int
    end_offset: int
    lines: int = 0
    outcomes: list[JobOutcome] = field(default_factory=list)

    def merge(self, other: "TailResult") -> "TailResult":
        return TailResult(
            start_offset=self.start_offset,
            end_offset=other.end_offset,
            lines=self.lines + other.lines,
            outcomes=self.outcomes + other.outcomes,
        )


class LogTailer:
    """Follow one append-only log file and keep its statistics persisted."""

    def __init__(
        self,
        path: os.PathLike[str] | str,
        engine: RenderStatsEngine,
        store: StateStore,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.path = Path(path)
        self.engine = engine
        self.store = store
        self.chunk_size = max(int(chunk_size), 1)
        self.offset = 0
        self.read_offset = 0
        self.available = False
        self.last_error: str | None = None
        self._partial = b""
        self._persisted = PersistedState()
        self._listeners: list[SnapshotListener] = []
        self._lock = asyncio.Lock()
        self._rerun = False

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    @property
    def persisted(self) -> PersistedState:
        return self._persisted

    def _identity(self) -> LogIdentity:
        return LogIdentity.of(self.path)

    def prepare(self) -> None:
        """Load persisted state and position the reader for catch-up.

        The persisted offset is resumed only when it is positive, does not
        exceed the file size and the file identity is unchanged. Otherwise the
        statistics are reset and the whole file is replayed by the next drain.
        """

        identity, size = self._inspect()
        self._persisted = self.store.load()
        position = self._persisted.last_position
        if (
            position > 0
            and position <= size
            and self._persisted.log_identity == identity
        ):
            logger.info("render_log.tail.resume", path=str(self.path), offset=position)
            self.engine.adopt_state(self._persisted.stats)
            self._seek(position)
        else:
            logger.info(
                "render_log.tail.cold_start",
                path=str(self.path),
                persisted_offset=position,
                size=size,
            )
            self.engine.reset()
            self._seek(0)
        self._persisted.log_identity = identity
        self.available = True

    def start(self) -> TailResult:
        """Prepare and catch up with the file in one blocking pass."""

        self.prepare()
        return self.poll(force_persist=True)

    def resync(self) -> TailResult:
        """Discard the statistics and replay the file from the beginning."""

        identity, _ = self._inspect()
        logger.info("render_log.tail.resync", path=str(self.path))
        self.engine.reset()
        self._persisted.log_identity = identity
        self._seek(0)
        return self.poll(force_persist=True)

    def _inspect(self) -> tuple[LogIdentity, int]:
        try:
            identity = self._identity()
            size = self.path.stat().st_size
        except FileNotFoundError as exc:
            self.available = False
            self.last_error = "log file not found"
            raise LogFileNotFoundError(self.path) from exc
        except OSError as exc:
            self._record_failure("render_log.tail.stat_failed", exc)
            raise LogReadError(
                f"Unable to inspect render log '{self.path}': {exc}",
                context={"path": str(self.path)},
            ) from exc
        return identity, size

    def _seek(self, offset: int) -> None:
        self.offset = offset
        self.read_offset = offset
        self._partial = b""

    def _iter_chunks(self, handle: BinaryIO, end: int) -> Iterator[bytes]:
        handle.seek(self.read_offset)
        while self.read_offset < end:
            chunk = handle.read(min(self.chunk_size, end - self.read_offset))
            if not chunk:
                break
            self.read_offset += len(chunk)
            yield chunk

    def _apply_chunk(self, chunk: bytes, result: TailResult) -> None:
        data = self._partial + chunk
        *complete, self._partial = data.split(b"\n")
        if not complete:
            return
        lines = [raw.decode("utf-8", errors="replace") for raw in complete]
        result.outcomes.extend(self.engine.feed_lines(lines))
        result.lines += len(lines)
        self.offset = self.read_offset - len(self._partial)
        result.end_offset = self.offset

    def _current_size(self) -> int | None:
        try:
            size = self.path.stat().st_size
        except OSError as exc:
            self._record_failure("render_log.tail.stat_failed", exc)
            return None
        return size

    def _record_failure(self, event: str, exc: Exception) -> None:
        self.available = False
        self.last_error = str(exc)
        logger.warning(event, path=str(self.path), error=str(exc))

    def poll(self, *, force_persist: bool = False) -> TailResult:
        """Read everything appended since the last call and apply it."""

        result = TailResult(start_offset=self.offset, end_offset=self.offset)
        size = self._current_size()
        if size is None:
            return result
        if size > self.read_offset:
            try:
                with self.path.open("rb") as handle:
                    for chunk in self._iter_chunks(handle, size):
                        self._apply_chunk(chunk, result)
            except OSError as exc:
                self._record_failure("render_log.tail.read_failed", exc)
            else:
                self.available = True
                self.last_error = None
        if result.lines or force_persist:
            self.checkpoint()
        return result

    async def notify(self, *, force_persist: bool = False) -> TailResult | None:
        """Handle a file-changed notification.

        Drains are serialised; a notification that arrives while one is
        running is coalesced into a single re-run and returns ``None``.
        """

        if self._lock.locked():
            self._rerun = True
            return None
        async with self._lock:
            result = await self._drain(force_persist=force_persist)
            while self._rerun:
                self._rerun = False
                result = result.merge(await self._drain())
        return result

    async def _drain(self, *, force_persist: bool = False) -> TailResult:
        result = TailResult(start_offset=self.offset, end_offset=self.offset)
        size = self._current_size()
        if size is not None and size > self.read_offset:
            try:
                with self.path.open("rb") as handle:
                    for chunk in self._iter_chunks(handle, size):
                        self._apply_chunk(chunk, result)
                        await asyncio.sleep(0)
            except OSError as exc:
                self._record_failure("render_log.tail.read_failed", exc)
            else:
                self.available = True
                self.last_error = None
        if result.lines or force_persist:
            self.checkpoint()
        return result

    def checkpoint(self) -> None:
        """Persist the current state and notify listeners."""

        self.persist()
        self._emit()

    def persist(self) -> None:
        """Save the committed offset together with the statistics."""

        self._persisted.last_position = self.offset
        self._persisted.stats = self.engine.state
        try:
            self.store.save(self._persisted)
        except StateStoreError as exc:
            logger.error(
                "render_log.tail.persist_failed", path=str(self.path), error=exc.message
            )

    def _emit(self) -> None:
        if not self._listeners:
            return
        current = self.engine.snapshot()
        for listener in list(self._listeners):
            try:
                listener(current)
            except Exception as exc:  # pragma: no cover - defensive guard
                logger.warning("render_log.tail.listener_failed", error=str(exc))


__all__ = ["DEFAULT_CHUNK_SIZE", "LogTailer", "SnapshotListener", "TailResult"]
