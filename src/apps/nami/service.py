"""Long running monitor that keeps render statistics current."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import socket
from typing import Any, Callable

import structlog

from apps.nami.config import NamiSettings
from libraries.render_log.aggregator import DisplayStats, current_time_ms
from libraries.render_log.engine import RenderStatsEngine
from libraries.render_log.errors import LogFileNotFoundError, RenderLogError
from libraries.render_log.state_store import StateStore
from libraries.render_log.tailer import LogTailer, SnapshotListener, TailResult

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MonitorService:
    """Own the tail poll and prune timers for one render log.

    Both timers run as tasks on the current event loop. Tail processing is
    serialised by the tailer itself, so a slow drain never overlaps the next
    poll.
    """

    def __init__(
        self,
        settings: NamiSettings,
        *,
        clock: Callable[[], int] = current_time_ms,
    ) -> None:
        self.settings = settings
        self.engine = RenderStatsEngine(
            tz=settings.tz, clock=clock, recent_lines=settings.recent_lines
        )
        self.store = StateStore(settings.state_path)
        self.tailer = LogTailer(settings.log_path, self.engine, self.store)
        self.tailer.add_listener(self._on_snapshot)
        self.last_update: datetime | None = None
        self._started = False
        self._listeners: list[SnapshotListener] = []
        self._poll_task: asyncio.Task[None] | None = None
        self._prune_task: asyncio.Task[None] | None = None

    @property
    def started(self) -> bool:
        return self._started

    @property
    def log_available(self) -> bool:
        return self._started and self.tailer.available

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def _on_snapshot(self, stats: DisplayStats) -> None:
        self.last_update = _utcnow()
        for listener in list(self._listeners):
            listener(stats)

    def _prepare(self) -> bool:
        try:
            self.tailer.prepare()
        except LogFileNotFoundError as exc:
            logger.warning(
                "nami.monitor.log_missing", path=str(self.settings.log_path), error=exc.message
            )
            return False
        return True

    def _mark_started(self) -> None:
        self._started = True
        self.prune()
        logger.info(
            "nami.monitor.started",
            path=str(self.settings.log_path),
            offset=self.tailer.offset,
        )

    def start(self) -> bool:
        """Catch up with the log; returns ``False`` when it does not exist yet."""

        if not self._prepare():
            return False
        self.tailer.poll(force_persist=True)
        self._mark_started()
        return True

    async def start_async(self) -> bool:
        """Same as :meth:`start`, yielding to the event loop between chunks."""

        if not self._prepare():
            return False
        await self.tailer.notify(force_persist=True)
        self._mark_started()
        return True

    def resync(self) -> TailResult:
        """Rebuild the statistics from the whole log."""

        result = self.tailer.resync()
        self._started = True
        return result

    async def tick(self) -> TailResult | None:
        """Handle one poll; starts the pipeline once the log appears."""

        if not self._started:
            await self.start_async()
            return None
        return await self.tailer.notify()

    def prune(self) -> int:
        removed = self.engine.prune()
        if removed and self._started:
            logger.debug("nami.monitor.pruned", removed=removed)
            self.tailer.checkpoint()
        return removed

    def start_background_tasks(self) -> None:
        """Launch the poll and prune loops on the running event loop."""

        if self._poll_task and not self._poll_task.done():
            return
        loop = asyncio.get_running_loop()
        self._poll_task = loop.create_task(self._run_poller())
        self._prune_task = loop.create_task(self._run_pruner())

    async def stop_background_tasks(self) -> None:
        """Cancel the loops and persist the final state."""

        tasks = [task for task in (self._poll_task, self._prune_task) if task]
        self._poll_task = None
        self._prune_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
            except Exception as exc:
                logger.error("nami.monitor.task_failed", error=str(exc))
        if self._started:
            self.tailer.persist()

    async def _run_poller(self) -> None:
        interval = self.settings.poll_interval_seconds
        while True:
            try:
                await self.tick()
            except RenderLogError as exc:
                logger.warning("nami.monitor.poll_failed", error=exc.message, code=exc.code)
            except OSError as exc:
                logger.warning("nami.monitor.poll_failed", error=str(exc))
            await asyncio.sleep(interval)

    async def _run_pruner(self) -> None:
        interval = self.settings.prune_interval_seconds
        while True:
            await asyncio.sleep(interval)
            self.prune()

    def diagnostics(self) -> dict[str, int]:
        store = self.store.stats
        return {
            **self.engine.diagnostics(),
            "stateLoads": store.loads,
            "stateSaves": store.saves,
            "stateLoadFailures": store.load_failures,
            "stateSaveFailures": store.save_failures,
        }

    def status(self) -> dict[str, Any]:
        """Return the payload served by the status API."""

        return {
            "hostname": socket.gethostname(),
            "logAvailable": self.log_available,
            "logPath": str(self.settings.log_path),
            "lastError": self.tailer.last_error,
            "stats": self.engine.snapshot(),
            "recentLogs": self.engine.recent_lines(),
            "lastUpdate": self.last_update,
            "diagnostics": self.diagnostics(),
        }


__all__ = ["MonitorService"]
