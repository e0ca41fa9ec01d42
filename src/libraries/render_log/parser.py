"""Recognise render client log lines and classify the events they carry.

Lines follow the render client's layout::

    2025-09-01 10:00:00 INFO: [4120] starting a new render job with config hash: abc123

Heartbeat lines (a timestamp, level and thread id with nothing after the
bracket) are dropped before any other rule, as are lines without a leading
timestamp. Everything else becomes an immutable :class:`LogLine`.

The ordered :data:`EVENT_RULES` table is the single event vocabulary shared by
the live statistics pipeline and :mod:`libraries.render_log.batch`; keeping
both on one table stops live counts and offline reports from drifting apart.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, tzinfo
from enum import Enum

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

HEARTBEAT_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} \w+: \[\d+\]\s*$"
)
TIMESTAMP_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})")
HEADER_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\s+(?P<level>\w+):\s*"
    r"(?:\[(?P<thread>[^\]]*)\])?\s*(?P<message>.*)$"
)
RENDER_TIME_PATTERN = re.compile(
    r"render time\s+(\d+(?:\.\d+)?|\.\d+)\s+seconds", re.IGNORECASE
)
CONFIG_HASH_PATTERN = re.compile(r"config hash:\s*([A-Za-z0-9_\-]+)", re.IGNORECASE)
GENERIC_HASH_PATTERN = re.compile(r"\bhash\s+([A-Za-z0-9_\-]+)", re.IGNORECASE)


class LogEvent(str, Enum):
    """Events recognised in the render client log."""

    JOB_STARTED = "job_started"
    JOB_SUCCEEDED = "job_succeeded"
    JOB_FAILED = "job_failed"
    JOB_CANCELED = "job_canceled"
    ASSETS_INIT_STARTED = "assets_init_started"
    ASSETS_INIT_FINISHED = "assets_init_finished"
    CORE_INIT_STARTED = "core_init_started"
    CORE_INIT_FINISHED = "core_init_finished"
    SCENE_LOADED = "scene_loaded"
    RENDERER_LOADED = "renderer_loaded"
    OUTPUT_INFO = "output_info"
    RENDER_STARTED = "render_started"
    RENDER_FINISHED = "render_finished"


# First match wins. Outcome rules come before milestones because the success
# line also reads "sent render finished".
EVENT_RULES: tuple[tuple[LogEvent, re.Pattern[str]], ...] = (
    (LogEvent.JOB_SUCCEEDED, re.compile(r"job completed successfully", re.I)),
    (LogEvent.JOB_FAILED, re.compile(r"job failed", re.I)),
    (LogEvent.JOB_CANCELED, re.compile(r"job (?:was )?cancel+ed", re.I)),
    (LogEvent.JOB_STARTED, re.compile(r"starting a new render job", re.I)),
    (
        LogEvent.ASSETS_INIT_STARTED,
        re.compile(r"initiali[sz]ing system assets", re.I),
    ),
    (
        LogEvent.ASSETS_INIT_FINISHED,
        re.compile(r"system assets (?:initiali[sz]ed|ready)", re.I),
    ),
    (LogEvent.CORE_INIT_STARTED, re.compile(r"initiali[sz]ing (?:octane )?core", re.I)),
    (
        LogEvent.CORE_INIT_FINISHED,
        re.compile(r"(?:octane )?core (?:initiali[sz]ed|ready)", re.I),
    ),
    (LogEvent.SCENE_LOADED, re.compile(r"scene (?:file )?loaded", re.I)),
    (LogEvent.RENDERER_LOADED, re.compile(r"render(?:er)? settings loaded", re.I)),
    (LogEvent.OUTPUT_INFO, re.compile(r"output info (?:determined|received)", re.I)),
    (LogEvent.RENDER_STARTED, re.compile(r"(?:render started|starting render\b)", re.I)),
    (LogEvent.RENDER_FINISHED, re.compile(r"render finished", re.I)),
)


@dataclass(frozen=True)
class LogLine:
    """A recognised log line with the fields derived from it."""

    raw: str
    timestamp: str
    at_ms: int
    level: str | None
    thread_id: str | None
    message: str
    event: LogEvent | None
    render_seconds: float | None
    config_hash: str | None


def is_heartbeat(line: str) -> bool:
    """Return ``True`` for the empty keep-alive lines the client emits."""

    return bool(HEARTBEAT_PATTERN.match(line))


def extract_timestamp(line: str) -> str | None:
    match = TIMESTAMP_PATTERN.match(line)
    return match.group(1) if match else None


def extract_render_seconds(line: str) -> float | None:
    match = RENDER_TIME_PATTERN.search(line)
    return float(match.group(1)) if match else None


def extract_config_hash(line: str) -> str | None:
    """Return the lower-cased correlation key carried by ``line``, if any."""

    match = CONFIG_HASH_PATTERN.search(line) or GENERIC_HASH_PATTERN.search(line)
    return match.group(1).lower() if match else None


def classify(message: str) -> LogEvent | None:
    for event, pattern in EVENT_RULES:
        if pattern.search(message):
            return event
    return None


def timestamp_to_ms(timestamp: str, tz: tzinfo | None = None) -> int:
    """Convert a log timestamp to epoch milliseconds.

    Log timestamps carry no offset; they are interpreted in ``tz`` or, when
    ``tz`` is ``None``, in the local timezone of this machine.
    """

    naive = datetime.strptime(timestamp, TIMESTAMP_FORMAT)
    aware = naive.replace(tzinfo=tz) if tz is not None else naive.astimezone()
    return int(aware.timestamp() * 1000)


def parse_line(raw: str, *, tz: tzinfo | None = None) -> LogLine | None:
    """Parse ``raw`` into a :class:`LogLine` or return ``None`` to reject it."""

    line = raw.rstrip("\r\n")
    if not line.strip() or is_heartbeat(line):
        return None
    timestamp = extract_timestamp(line)
    if timestamp is None:
        return None
    try:
        at_ms = timestamp_to_ms(timestamp, tz)
    except ValueError:
        # Matches the shape but not the calendar, e.g. month 13.
        return None

    header = HEADER_PATTERN.match(line)
    if header is not None:
        level: str | None = header.group("level")
        thread_id = header.group("thread")
        message = header.group("message")
    else:
        level = None
        thread_id = None
        message = line[len(timestamp):].strip()

    return LogLine(
        raw=line,
        timestamp=timestamp,
        at_ms=at_ms,
        level=level,
        thread_id=thread_id,
        message=message,
        event=classify(message),
        render_seconds=extract_render_seconds(message),
        config_hash=extract_config_hash(message),
    )


class LogEventParser:
    """Parser bound to a timezone that tracks how many lines it rejected."""

    def __init__(self, tz: tzinfo | None = None) -> None:
        self.tz = tz
        self.rejected = 0

    def parse(self, raw: str) -> LogLine | None:
        parsed = parse_line(raw, tz=self.tz)
        if parsed is None:
            self.rejected += 1
        return parsed


__all__ = [
    "EVENT_RULES",
    "LogEvent",
    "LogEventParser",
    "LogLine",
    "classify",
    "extract_config_hash",
    "extract_render_seconds",
    "extract_timestamp",
    "is_heartbeat",
    "parse_line",
    "timestamp_to_ms",
]
