"""Simulation log buffer.

Every run keeps an in-memory log of what the engine and the active
policy decided and at which tick: forks, dispatches, preemptions,
priority boosts, wakeups and exits.  It works like a kernel ring buffer
(``dmesg``) rather than a stream of console output, so tests can query
it and the CLI can print it on demand.

- **LogLevel**: severity levels ordered for filtering (DEBUG < ERROR).
- **LogEntry**: a single structured record (level, message, source, tick).
- **Logger**: an append-only log with filtering and clearing.
"""

from dataclasses import dataclass
from enum import IntEnum


class LogLevel(IntEnum):
    """Severity levels for log entries.

    IntEnum so that levels compare with ``<`` / ``>`` and minimum-level
    filtering is a plain comparison.
    """

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3


@dataclass(frozen=True)
class LogEntry:
    """A single structured log record.

    Attributes:
        level: The severity of this event.
        message: A human-readable description of what happened.
        source: The component that generated the event (e.g. "engine").
        tick: The simulation tick the event belongs to.

    """

    level: LogLevel
    message: str
    source: str
    tick: int = 0

    def __str__(self) -> str:
        """Format as ``[tick] LEVEL source: message``."""
        return f"[{self.tick:3d}] {self.level.name:<7} {self.source}: {self.message}"


class Logger:
    """Append-only log buffer with filtering."""

    def __init__(self, *, min_level: LogLevel = LogLevel.DEBUG) -> None:
        """Create an empty logger.

        Args:
            min_level: Entries below this level are dropped on arrival.

        """
        self._entries: list[LogEntry] = []
        self._min_level = min_level

    @property
    def entries(self) -> list[LogEntry]:
        """Return all log entries in chronological order."""
        return list(self._entries)

    @property
    def min_level(self) -> LogLevel:
        """Return the lowest level this logger records."""
        return self._min_level

    def log(
        self,
        level: LogLevel,
        message: str,
        *,
        source: str,
        tick: int = 0,
    ) -> None:
        """Append a new entry to the log.

        Args:
            level: Severity of the event.
            message: Human-readable event description.
            source: Component that generated the event.
            tick: Simulation tick the event happened at.

        """
        if level < self._min_level:
            return
        self._entries.append(LogEntry(level=level, message=message, source=source, tick=tick))

    def filter(
        self,
        *,
        min_level: LogLevel | None = None,
        source: str | None = None,
    ) -> list[LogEntry]:
        """Return entries matching the given criteria.

        Args:
            min_level: If set, only return entries at or above this level.
            source: If set, only return entries from this source.

        Returns:
            A filtered list of log entries.

        """
        result = self._entries
        if min_level is not None:
            result = [e for e in result if e.level >= min_level]
        if source is not None:
            result = [e for e in result if e.source == source]
        return result if result is not self._entries else list(result)

    def lines(self) -> list[str]:
        """Return every entry formatted as a display line."""
        return [str(e) for e in self._entries]

    def clear(self) -> None:
        """Remove all log entries."""
        self._entries.clear()
