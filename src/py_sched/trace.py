"""Per-tick event trace.

The engine emits one ``TraceEvent`` for everything visible that happens
during a tick: forks, exits, blocks, runs, acquisitions, releases and
idle ticks.  The trace is data; ``format_event`` renders it in the
classic column layout where each process gets its own indented column::

      0: N
      0: 1
      1:         N
      1:     1
      2:     +0
"""

from dataclasses import dataclass
from enum import StrEnum

_COLUMN = "    "


class EventKind(StrEnum):
    """What happened to a process (or the CPU) during a tick."""

    FORK = "fork"
    EXIT = "exit"
    BLOCK = "block"
    RUN = "run"
    ACQUIRE = "acquire"
    RELEASE = "release"
    IDLE = "idle"


@dataclass(frozen=True)
class TraceEvent:
    """A single trace record.

    Attributes:
        tick: The tick the event happened in.
        kind: What happened.
        pid: The process concerned (None for idle ticks).
        resource_id: The resource acquired or released, if any.

    """

    tick: int
    kind: EventKind
    pid: int | None = None
    resource_id: int | None = None

    @property
    def label(self) -> str:
        """Return the short symbol for this event (``N``, ``X``, ``+3``...)."""
        match self.kind:
            case EventKind.FORK:
                return "N"
            case EventKind.EXIT:
                return "X"
            case EventKind.BLOCK:
                return "="
            case EventKind.RUN:
                return str(self.pid)
            case EventKind.ACQUIRE:
                return f"+{self.resource_id}"
            case EventKind.RELEASE:
                return f"-{self.resource_id}"
            case _:
                return "idle"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-ready representation."""
        return {
            "tick": self.tick,
            "kind": self.kind.value,
            "pid": self.pid,
            "resource_id": self.resource_id,
            "label": self.label,
        }


def format_event(event: TraceEvent) -> str:
    """Render *event* as one trace line, indented by process id."""
    if event.pid is None:
        return f"{event.tick:3d}: {event.label}"
    return f"{event.tick:3d}: {_COLUMN * event.pid}{event.label}"


def format_trace(events: list[TraceEvent]) -> str:
    """Render a whole trace, one line per event."""
    return "\n".join(format_event(e) for e in events)
