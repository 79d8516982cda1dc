"""Process Control Block for the simulator.

A simulated process has no program.  It is described entirely by how
much CPU time it needs (its *lifespan*), how much it has consumed (its
*age*), its priority, and a script of resource requests that fire at
fixed points of its own progress.

Processes follow a strict state machine.  Each transition method
enforces the source state, so a policy that tries to run a blocked
process fails loudly instead of corrupting the run::

    NEW -> READY <-> RUNNING -> EXITED
             ^         |
             |         v
             +----- WAITING

NEW covers the time between loading the script and the scripted start
tick.  A finished process leaves through READY: the engine demotes the
last runner before retiring it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from py_sched.errors import InvariantError

if TYPE_CHECKING:
    from py_sched.process.queue import ProcessQueue


class ProcessState(StrEnum):
    """Lifecycle states of a simulated process."""

    NEW = "new"
    READY = "ready"
    RUNNING = "running"
    WAITING = "waiting"
    EXITED = "exited"

    @property
    def short(self) -> str:
        """Return the three-letter tag used in state dumps."""
        return _SHORT_NAMES[self]


_SHORT_NAMES = {
    ProcessState.NEW: "NEW",
    ProcessState.READY: "RDY",
    ProcessState.RUNNING: "RUN",
    ProcessState.WAITING: "WAT",
    ProcessState.EXITED: "EXT",
}


@dataclass(frozen=True)
class ResourceRequest:
    """A scripted acquisition not yet issued.

    Attributes:
        resource_id: Index into the resource table.
        at: Age of the process at which the request fires.
        duration: Ticks of CPU time the resource is held for.

    """

    resource_id: int
    at: int
    duration: int


@dataclass
class ResourceHold:
    """A resource the process currently owns.

    Attributes:
        resource_id: Index into the resource table.
        remaining: Ticks left before the hold expires.

    """

    resource_id: int
    remaining: int


class Process:
    """A simulated process (the Process Control Block).

    The PCB also records which queue, if any, the process is linked
    into.  Only ``ProcessQueue`` touches that link, which is how the
    one-queue-at-a-time rule is enforced.
    """

    def __init__(
        self,
        *,
        pid: int,
        lifespan: int,
        priority: int = 0,
        start_tick: int = 0,
        requests: list[ResourceRequest] | None = None,
    ) -> None:
        """Create a process in the NEW state.

        Args:
            pid: Unique process identifier taken from the script.
            lifespan: Ticks of CPU time required to finish.
            priority: Initial (and original) priority, higher is more urgent.
            start_tick: Tick at which the process is forked.
            requests: Scripted resource requests in ascending offset order.

        """
        self._pid = pid
        self._lifespan = lifespan
        self._age = 0
        self._start_tick = start_tick
        self._state = ProcessState.NEW
        self._priority = priority
        self._original_priority = priority
        self._pending: list[ResourceRequest] = list(requests or [])
        self._holding: list[ResourceHold] = []
        self._queue: ProcessQueue | None = None

    @property
    def pid(self) -> int:
        """Return the process identifier."""
        return self._pid

    @property
    def lifespan(self) -> int:
        """Return the total ticks of CPU time this process needs."""
        return self._lifespan

    @property
    def age(self) -> int:
        """Return the ticks of CPU time consumed so far."""
        return self._age

    @property
    def remaining(self) -> int:
        """Return the ticks of CPU time still needed."""
        return self._lifespan - self._age

    @property
    def finished(self) -> bool:
        """Return True once the process has consumed its whole lifespan."""
        return self._age == self._lifespan

    @property
    def start_tick(self) -> int:
        """Return the tick at which the process is forked."""
        return self._start_tick

    @property
    def state(self) -> ProcessState:
        """Return the current process state."""
        return self._state

    @property
    def priority(self) -> int:
        """Return the current priority (may be boosted or aged)."""
        return self._priority

    @priority.setter
    def priority(self, value: int) -> None:
        """Set the current priority (used by boosts and aging)."""
        self._priority = value

    @property
    def original_priority(self) -> int:
        """Return the scripted baseline priority (immutable)."""
        return self._original_priority

    def restore_priority(self) -> None:
        """Drop any boost or aging and return to the original priority."""
        self._priority = self._original_priority

    @property
    def pending(self) -> list[ResourceRequest]:
        """Return the resource requests not yet issued, in script order."""
        return list(self._pending)

    @property
    def holding(self) -> list[ResourceHold]:
        """Return the resources currently held, in acquisition order."""
        return list(self._holding)

    @property
    def queue(self) -> ProcessQueue | None:
        """Return the queue this process is linked into, or None."""
        return self._queue

    def link(self, queue: ProcessQueue) -> None:
        """Record that this process now sits in *queue*.

        Raises:
            InvariantError: If the process is already linked elsewhere.

        """
        if self._queue is not None:
            msg = f"Process {self._pid} is already in {self._queue.name}, cannot join {queue.name}"
            raise InvariantError(msg)
        self._queue = queue

    def unlink(self, queue: ProcessQueue) -> None:
        """Record that this process left *queue*."""
        if self._queue is not queue:
            msg = f"Process {self._pid} is not in {queue.name}"
            raise InvariantError(msg)
        self._queue = None

    def due_requests(self) -> list[ResourceRequest]:
        """Return the pending requests that fire at the current age."""
        return [r for r in self._pending if r.at == self._age]

    def grant(self, request: ResourceRequest) -> None:
        """Move *request* from the pending list to the held list."""
        self._pending.remove(request)
        self._holding.append(ResourceHold(request.resource_id, request.duration))

    def expire_holds(self) -> list[int]:
        """Count down every hold by one tick and drop the expired ones.

        Returns:
            Resource ids whose hold ran out this tick, in acquisition
            order.  The caller is responsible for releasing them.

        """
        expired: list[int] = []
        for hold in self._holding:
            hold.remaining -= 1
            if hold.remaining == 0:
                expired.append(hold.resource_id)
        self._holding = [h for h in self._holding if h.remaining > 0]
        return expired

    def tick(self) -> None:
        """Consume one tick of CPU time.

        Raises:
            InvariantError: If the process is not running or is already
                at the end of its lifespan.

        """
        if self._state is not ProcessState.RUNNING:
            msg = f"Cannot age process {self._pid}: it is {self._state}, expected running"
            raise InvariantError(msg)
        if self._age >= self._lifespan:
            msg = f"Process {self._pid} would age past its lifespan of {self._lifespan}"
            raise InvariantError(msg)
        self._age += 1

    def _transition(self, action: str, expected: ProcessState, target: ProcessState) -> None:
        """Enforce a state transition.

        Raises:
            InvariantError: If the process is not in the expected state.

        """
        if self._state is not expected:
            msg = f"Cannot {action}: process {self._pid} is {self._state}, expected {expected}"
            raise InvariantError(msg)
        self._state = target

    def admit(self) -> None:
        """Transition NEW -> READY at the scripted fork tick."""
        self._transition("admit", ProcessState.NEW, ProcessState.READY)

    def dispatch(self) -> None:
        """Transition READY -> RUNNING.  Give the process the CPU."""
        self._transition("dispatch", ProcessState.READY, ProcessState.RUNNING)

    def preempt(self) -> None:
        """Transition RUNNING -> READY.  Yield the CPU."""
        self._transition("preempt", ProcessState.RUNNING, ProcessState.READY)

    def block(self) -> None:
        """Transition RUNNING -> WAITING.  A resource was unavailable."""
        self._transition("block", ProcessState.RUNNING, ProcessState.WAITING)

    def wake(self) -> None:
        """Transition WAITING -> READY.  The awaited resource was released."""
        self._transition("wake", ProcessState.WAITING, ProcessState.READY)

    def exit(self) -> None:
        """Transition READY -> EXITED after the final tick.

        Raises:
            InvariantError: If the process has not finished, is still
                linked into a queue, or still has pending or held
                resources.

        """
        if not self.finished:
            msg = f"Process {self._pid} exiting at age {self._age} of {self._lifespan}"
            raise InvariantError(msg)
        if self._queue is not None:
            msg = f"Process {self._pid} exiting while linked into {self._queue.name}"
            raise InvariantError(msg)
        if self._holding:
            held = ", ".join(str(h.resource_id) for h in self._holding)
            msg = f"Process {self._pid} exiting while holding resources {held}"
            raise InvariantError(msg)
        if self._pending:
            msg = f"Process {self._pid} exiting with {len(self._pending)} unissued request(s)"
            raise InvariantError(msg)
        self._transition("exit", ProcessState.READY, ProcessState.EXITED)

    def __repr__(self) -> str:
        """Return a debug-friendly representation."""
        return (
            f"Process(pid={self._pid}, state={self._state}, "
            f"age={self._age}/{self._lifespan}, prio={self._priority})"
        )
