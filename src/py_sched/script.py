"""Process script loader.

A script describes every process the simulation will ever run::

    # a comment runs to the end of the line
    process 1
        lifespan 4
        prio 1
        start 0
        acquire 0 1 2     # resource 0 at age 1 for 2 ticks
    end

Parsing is all-or-nothing.  Any malformed line raises ``ScriptError``
with its line number, so the simulation core never sees a partially
loaded script.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from py_sched.process.pcb import Process, ResourceRequest

if TYPE_CHECKING:
    from pathlib import Path

# directive -> number of arguments
_ARITY = {
    "process": 1,
    "lifespan": 1,
    "prio": 1,
    "start": 1,
    "acquire": 3,
    "end": 0,
}


class ScriptError(ValueError):
    """Raise when a process script cannot be loaded."""

    def __init__(self, message: str, *, line: int | None = None) -> None:
        """Create a script error, optionally tied to a 1-based line number."""
        self.line = line
        super().__init__(f"line {line}: {message}" if line is not None else message)


@dataclass(frozen=True)
class ProcessDescriptor:
    """Everything the script says about one process.

    Attributes:
        pid: Unique process id.
        lifespan: Ticks of CPU time required.
        priority: Initial priority.
        start_tick: Tick at which the process is forked.
        requests: Resource requests, sorted by offset.

    """

    pid: int
    lifespan: int
    priority: int = 0
    start_tick: int = 0
    requests: tuple[ResourceRequest, ...] = field(default_factory=tuple)

    def build(self) -> Process:
        """Create a fresh NEW process from this descriptor."""
        return Process(
            pid=self.pid,
            lifespan=self.lifespan,
            priority=self.priority,
            start_tick=self.start_tick,
            requests=list(self.requests),
        )


@dataclass
class _Draft:
    """A process block being parsed."""

    pid: int
    line: int
    lifespan: int | None = None
    priority: int = 0
    start_tick: int = 0
    # each request with the line it was declared on
    requests: list[tuple[ResourceRequest, int]] = field(default_factory=list)

    def finish(self) -> ProcessDescriptor:
        if self.lifespan is None:
            msg = f"process {self.pid} has no lifespan"
            raise ScriptError(msg, line=self.line)
        ordered = sorted(self.requests, key=lambda entry: entry[0].at)
        self._check_requests(self.lifespan, ordered)
        return ProcessDescriptor(
            pid=self.pid,
            lifespan=self.lifespan,
            priority=self.priority,
            start_tick=self.start_tick,
            requests=tuple(request for request, _ in ordered),
        )

    def _check_requests(self, lifespan: int, ordered: list[tuple[ResourceRequest, int]]) -> None:
        """Reject requests that cannot be issued and released within the lifespan.

        A request fires when the process reaches age ``at`` and its hold
        expires at age ``at + duration``; both must happen before the
        process exits.  A process also cannot ask again for a resource
        it is still holding.
        """
        held_until: dict[int, int] = {}
        for request, lineno in ordered:
            if request.at >= lifespan:
                msg = (
                    f"process {self.pid} requests resource {request.resource_id} "
                    f"at {request.at}, past its lifespan of {lifespan}"
                )
                raise ScriptError(msg, line=lineno)
            if request.at + request.duration > lifespan:
                msg = (
                    f"process {self.pid} would hold resource {request.resource_id} "
                    f"until {request.at + request.duration}, past its lifespan of {lifespan}"
                )
                raise ScriptError(msg, line=lineno)
            if held_until.get(request.resource_id, 0) > request.at:
                msg = (
                    f"process {self.pid} requests resource {request.resource_id} "
                    f"at {request.at} while still holding it"
                )
                raise ScriptError(msg, line=lineno)
            held_until[request.resource_id] = request.at + request.duration


def _tokenize(line: str) -> list[str]:
    """Split *line* on whitespace and drop everything from ``#`` on."""
    tokens: list[str] = []
    for token in line.split():
        if token.startswith("#"):
            break
        tokens.append(token)
    return tokens


def _integers(args: list[str], lineno: int) -> list[int]:
    try:
        return [int(a) for a in args]
    except ValueError:
        msg = f"expected integer arguments, got {' '.join(args)!r}"
        raise ScriptError(msg, line=lineno) from None


def parse_script(text: str) -> list[ProcessDescriptor]:
    """Parse a process script.

    Args:
        text: The full script source.

    Returns:
        One descriptor per ``process ... end`` block, in script order.

    Raises:
        ScriptError: On unknown directives, wrong argument counts,
            non-integer or out-of-range values, directives outside a
            block, nested or unterminated blocks, duplicate pids, or
            requests that do not fit inside the lifespan.

    """
    descriptors: list[ProcessDescriptor] = []
    seen: set[int] = set()
    draft: _Draft | None = None

    for lineno, line in enumerate(text.splitlines(), start=1):
        tokens = _tokenize(line)
        if not tokens:
            continue
        directive, args = tokens[0], tokens[1:]

        if directive not in _ARITY:
            msg = f"unknown property {directive!r}"
            raise ScriptError(msg, line=lineno)
        if len(args) != _ARITY[directive]:
            msg = f"{directive} takes {_ARITY[directive]} argument(s), got {len(args)}"
            raise ScriptError(msg, line=lineno)
        values = _integers(args, lineno)

        if directive == "process":
            if draft is not None:
                msg = f"process {values[0]} starts before process {draft.pid} ends"
                raise ScriptError(msg, line=lineno)
            if values[0] in seen:
                msg = f"duplicate process id {values[0]}"
                raise ScriptError(msg, line=lineno)
            if values[0] < 0:
                msg = f"process id must not be negative, got {values[0]}"
                raise ScriptError(msg, line=lineno)
            seen.add(values[0])
            draft = _Draft(pid=values[0], line=lineno)
            continue

        if draft is None:
            msg = f"{directive} outside of a process block"
            raise ScriptError(msg, line=lineno)

        if directive == "end":
            descriptors.append(draft.finish())
            draft = None
        else:
            _apply(draft, directive, values, lineno)

    if draft is not None:
        msg = f"process {draft.pid} is missing 'end'"
        raise ScriptError(msg, line=draft.line)
    return descriptors


def _apply(draft: _Draft, directive: str, values: list[int], lineno: int) -> None:
    """Apply one property line to the block being parsed."""
    if directive == "lifespan":
        if values[0] < 1:
            msg = f"lifespan must be positive, got {values[0]}"
            raise ScriptError(msg, line=lineno)
        draft.lifespan = values[0]
    elif directive == "prio":
        draft.priority = values[0]
    elif directive == "start":
        if values[0] < 0:
            msg = f"start tick must not be negative, got {values[0]}"
            raise ScriptError(msg, line=lineno)
        draft.start_tick = values[0]
    else:
        resource_id, at, duration = values
        if resource_id < 0 or at < 0:
            msg = "resource id and offset must not be negative"
            raise ScriptError(msg, line=lineno)
        if duration < 1:
            msg = f"duration must be positive, got {duration}"
            raise ScriptError(msg, line=lineno)
        draft.requests.append((ResourceRequest(resource_id, at, duration), lineno))


def load_script(path: Path) -> list[ProcessDescriptor]:
    """Read and parse the script at *path*."""
    return parse_script(path.read_text(encoding="utf-8"))


def describe(descriptor: ProcessDescriptor) -> str:
    """Return the human-readable briefing for one process."""
    plural = "s" if descriptor.lifespan >= 2 else ""  # noqa: PLR2004
    lines = [
        f"- Process {descriptor.pid}: Forked at tick {descriptor.start_tick} "
        f"and run for {descriptor.lifespan} tick{plural} "
        f"with initial priority {descriptor.priority}",
    ]
    lines.extend(
        f"    Acquire resource {r.resource_id} at {r.at} for {r.duration}"
        for r in descriptor.requests
    )
    return "\n".join(lines)
