"""Scheduling policies: which process gets the CPU on the next tick.

A policy bundles a ``schedule`` decision with the resource protocol it
must be paired with.  Mixing halves (say, FCFS wakeups under a
priority-with-aging scheduler) breaks the priority guarantees, so each
policy class fixes its protocol and the simulation only ever sees the
whole policy.

Every ``schedule(sim)`` call happens once per tick, after forks and
before resource acquisition.  The decision always starts the same way:

1. No current process, or the current one blocked on a resource
   (WAITING), or the current one has used up its lifespan: pick a fresh
   process from the ready queue.
2. Otherwise the current process keeps the CPU unless the policy's
   preemption rule fires, in which case it goes back to the ready queue
   and a replacement is picked.

Whatever is returned has already been unlinked from the ready queue.

Eight policies ship with the simulator:

- **FIFOPolicy**: arrival order, never preempts.
- **SJFPolicy**: shortest lifespan first, never preempts.
- **SRTFPolicy**: preempts when a ready process has a lifespan strictly
  shorter than the current process's remaining time.
- **RoundRobinPolicy**: preempts after a fixed quantum (one tick by
  default) whenever someone else is ready.
- **PriorityPolicy**: highest priority first, never preempts.
- **AgingPriorityPolicy**: preemptive priority where every process left
  waiting in the ready queue gains one priority point per decision.
- **PriorityCeilingPolicy** / **PriorityInheritancePolicy**: preemptive
  priority without aging, paired with the ceiling and inheritance
  resource protocols respectively.

Design: Strategy pattern
    The Simulation is the *context*; the policy is the *strategy*.
    Adding an algorithm means writing a new policy class and registering
    it in ``POLICIES``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar, Protocol

from py_sched.errors import PolicyError
from py_sched.logging import LogLevel
from py_sched.process.pcb import ProcessState
from py_sched.sync.protocols import (
    CeilingProtocol,
    FCFSProtocol,
    InheritanceProtocol,
    PriorityProtocol,
)

if TYPE_CHECKING:
    from py_sched.engine import Simulation
    from py_sched.process.pcb import Process
    from py_sched.sync.protocols import ResourceProtocol

_SOURCE = "scheduler"


class SchedulingPolicy(Protocol):
    """Interface the simulation engine drives.

    ``schedule`` is mandatory.  ``acquire`` and ``release`` come from
    the paired resource protocol.  The remaining hooks are optional
    lifecycle callbacks.
    """

    name: str

    def initialize(self, sim: Simulation) -> None:
        """Prepare for a run."""
        ...  # pragma: no cover

    def finalize(self, sim: Simulation) -> None:
        """Clean up after a run."""
        ...  # pragma: no cover

    def acquire(self, sim: Simulation, resource_id: int) -> bool:
        """Try to take a resource for the current process."""
        ...  # pragma: no cover

    def release(self, sim: Simulation, resource_id: int) -> None:
        """Release a resource held by the current process."""
        ...  # pragma: no cover

    def schedule(self, sim: Simulation) -> Process | None:
        """Return the process to run this tick, or None."""
        ...  # pragma: no cover

    def on_fork(self, sim: Simulation, process: Process) -> None:
        """Observe a process entering the ready queue for the first time."""
        ...  # pragma: no cover

    def on_exit(self, sim: Simulation, process: Process) -> None:
        """Observe a process being retired."""
        ...  # pragma: no cover


class PolicyKind(StrEnum):
    """Short names used to select a policy from configuration."""

    FIFO = "fifo"
    SJF = "sjf"
    SRTF = "srtf"
    RR = "rr"
    PRIORITY = "prio"
    AGING = "pa"
    PCP = "pcp"
    PIP = "pip"


def _keeps_cpu(process: Process | None) -> bool:
    """Return True if *process* is a candidate to continue running."""
    return (
        process is not None
        and process.state is not ProcessState.WAITING
        and not process.finished
    )


class BasePolicy:
    """Shared plumbing: protocol delegation and no-op lifecycle hooks.

    Subclasses set ``protocol_class`` and implement ``schedule``.
    """

    name: ClassVar[str] = "base"
    kind: ClassVar[PolicyKind | None] = None
    protocol_class: ClassVar[type[ResourceProtocol] | None] = FCFSProtocol

    def __init__(self) -> None:
        """Instantiate the paired resource protocol."""
        self._protocol = self.protocol_class() if self.protocol_class is not None else None

    @property
    def protocol(self) -> ResourceProtocol | None:
        """Return the resource protocol paired with this policy."""
        return self._protocol

    def initialize(self, sim: Simulation) -> None:
        """Prepare for a run (no-op by default)."""

    def finalize(self, sim: Simulation) -> None:
        """Clean up after a run (no-op by default)."""

    def on_fork(self, sim: Simulation, process: Process) -> None:
        """Observe a fork (no-op by default)."""

    def on_exit(self, sim: Simulation, process: Process) -> None:
        """Observe an exit (no-op by default)."""

    def acquire(self, sim: Simulation, resource_id: int) -> bool:
        """Delegate to the paired protocol.

        Raises:
            PolicyError: If the policy has no resource protocol.

        """
        return self._require_protocol("acquire").acquire(sim, resource_id)

    def release(self, sim: Simulation, resource_id: int) -> None:
        """Delegate to the paired protocol.

        Raises:
            PolicyError: If the policy has no resource protocol.

        """
        self._require_protocol("release").release(sim, resource_id)

    def _require_protocol(self, hook: str) -> ResourceProtocol:
        if self._protocol is None:
            msg = f"{self.name} scheduler does not implement {hook}()"
            raise PolicyError(msg)
        return self._protocol

    def __repr__(self) -> str:
        """Return a debug-friendly representation."""
        return f"{type(self).__name__}(name={self.name!r})"


class FIFOPolicy(BasePolicy):
    """First in, first out.  The current process runs to completion."""

    name = "FIFO"
    kind = PolicyKind.FIFO

    def schedule(self, sim: Simulation) -> Process | None:
        """Keep the current process, else take the ready-queue head."""
        if _keeps_cpu(sim.current):
            return sim.current
        return sim.ready_queue.popleft()


class SJFPolicy(BasePolicy):
    """Shortest job first (non-preemptive), ranked by total lifespan."""

    name = "Shortest-Job First"
    kind = PolicyKind.SJF

    def schedule(self, sim: Simulation) -> Process | None:
        """Keep the current process, else take the shortest ready job."""
        if _keeps_cpu(sim.current):
            return sim.current
        shortest = sim.ready_queue.best(key=lambda p: -p.lifespan)
        if shortest is None:
            return None
        return sim.ready_queue.remove(shortest)


class SRTFPolicy(BasePolicy):
    """Shortest remaining time first (preemptive).

    The running process is measured by its remaining time, ready
    candidates by their full lifespan.  A candidate only wins if it is
    strictly shorter; the preempted process goes back to the *head* of
    the ready queue so it is the first one considered on ties later.
    """

    name = "Shortest Remaining Time First"
    kind = PolicyKind.SRTF

    def schedule(self, sim: Simulation) -> Process | None:
        """Preempt for a strictly shorter ready job, else keep going."""
        current = sim.current
        shortest = sim.ready_queue.best(key=lambda p: -p.lifespan)

        if _keeps_cpu(current):
            assert current is not None  # noqa: S101
            if shortest is None or shortest.lifespan >= current.remaining:
                return current
            sim.ready_queue.remove(shortest)
            sim.preempt(current, front=True)
            return shortest

        if shortest is None:
            return None
        return sim.ready_queue.remove(shortest)


class RoundRobinPolicy(BasePolicy):
    """Round robin with a fixed time quantum.

    After the current process has held the CPU for ``quantum``
    consecutive ticks it is moved to the ready-queue tail, but only if
    someone else is waiting.  With an empty ready queue it keeps going.
    """

    name = "Round-Robin"
    kind = PolicyKind.RR

    def __init__(self, *, quantum: int = 1) -> None:
        """Create a round-robin policy.

        Args:
            quantum: Consecutive ticks a process may run before it is
                preempted in favour of a waiting process.

        """
        if quantum < 1:
            msg = f"quantum must be at least 1, got {quantum}"
            raise ValueError(msg)
        super().__init__()
        self._quantum = quantum
        self._running: Process | None = None
        self._slice = 0

    @property
    def quantum(self) -> int:
        """Return the time quantum in ticks."""
        return self._quantum

    def initialize(self, sim: Simulation) -> None:
        """Forget any slice left over from a previous run."""
        self._running = None
        self._slice = 0

    def schedule(self, sim: Simulation) -> Process | None:
        """Rotate once the quantum is spent and someone else is ready."""
        current = sim.current
        if _keeps_cpu(current):
            if current is not self._running:
                self._running, self._slice = current, 0
            if self._slice < self._quantum or not sim.ready_queue:
                self._slice += 1
                return current
            assert current is not None  # noqa: S101
            nxt = sim.ready_queue.popleft()
            sim.preempt(current)
            return self._start_slice(nxt)
        return self._start_slice(sim.ready_queue.popleft())

    def _start_slice(self, process: Process | None) -> Process | None:
        self._running = process
        self._slice = 1 if process is not None else 0
        return process


class PriorityPolicy(BasePolicy):
    """Non-preemptive priority: highest value wins, earliest arrival on ties."""

    name = "Priority"
    kind = PolicyKind.PRIORITY
    protocol_class = PriorityProtocol

    def schedule(self, sim: Simulation) -> Process | None:
        """Keep the current process, else take the highest priority."""
        if _keeps_cpu(sim.current):
            return sim.current
        best = sim.ready_queue.best(key=lambda p: p.priority)
        if best is None:
            return None
        return sim.ready_queue.remove(best)


class _PreemptivePriorityPolicy(BasePolicy):
    """Preemptive priority shared by the aging, PCP and PIP policies.

    The current process is preempted (to the ready-queue tail) as soon
    as any ready process has a priority greater than or equal to its
    own.  The replacement is the highest-priority ready process, first
    in queue order on ties, so a preempted process loses ties against
    everyone who was already waiting.  The chosen process has its
    priority settled before it runs.
    """

    aging: ClassVar[bool] = False

    def schedule(self, sim: Simulation) -> Process | None:
        """Preempt on a tie or better, otherwise keep the current process."""
        ready = sim.ready_queue
        current = sim.current

        if _keeps_cpu(current):
            assert current is not None  # noqa: S101
            top = ready.best(key=lambda p: p.priority)
            if top is None or top.priority < current.priority:
                if self.aging:
                    self._age(sim, list(ready))
                self._settle(sim, current)
                return current
            sim.preempt(current)

        chosen = ready.best(key=lambda p: p.priority)
        if chosen is None:
            return None
        if self.aging:
            self._age(sim, [p for p in ready if p is not chosen])
        ready.remove(chosen)
        self._settle(sim, chosen)
        sim.log(
            LogLevel.DEBUG,
            f"{self.name} picked process {chosen.pid} at priority {chosen.priority}",
            source=_SOURCE,
        )
        return chosen

    def _age(self, sim: Simulation, processes: list[Process]) -> None:
        """Raise every process in *processes* by one, up to the maximum."""
        ceiling = sim.config.max_priority
        for process in processes:
            if process.priority < ceiling:
                process.priority += 1
                sim.log(
                    LogLevel.DEBUG,
                    f"process {process.pid} aged to priority {process.priority}",
                    source=_SOURCE,
                )

    def _settle(self, sim: Simulation, process: Process) -> None:
        """Drop temporary priority unless a held resource justifies it."""
        if not sim.resources.owned_by(process):
            process.restore_priority()


class AgingPriorityPolicy(_PreemptivePriorityPolicy):
    """Preemptive priority with aging to prevent starvation.

    Every decision raises the priority of each process left behind in
    the ready queue by one (clamped at the configured maximum).  Whoever
    gets the CPU is reset to its original priority, so the bonus only
    lasts until a process finally runs.
    """

    name = "Priority + aging"
    kind = PolicyKind.AGING
    protocol_class = PriorityProtocol
    aging = True

    def _settle(self, sim: Simulation, process: Process) -> None:
        """Clear the aging bonus of the process about to run."""
        process.restore_priority()


class PriorityCeilingPolicy(_PreemptivePriorityPolicy):
    """Preemptive priority with the priority ceiling protocol."""

    name = "Priority + PCP Protocol"
    kind = PolicyKind.PCP
    protocol_class = CeilingProtocol


class PriorityInheritancePolicy(_PreemptivePriorityPolicy):
    """Preemptive priority with the priority inheritance protocol."""

    name = "Priority + PIP Protocol"
    kind = PolicyKind.PIP
    protocol_class = InheritanceProtocol


POLICIES: dict[PolicyKind, type[BasePolicy]] = {
    PolicyKind.FIFO: FIFOPolicy,
    PolicyKind.SJF: SJFPolicy,
    PolicyKind.SRTF: SRTFPolicy,
    PolicyKind.RR: RoundRobinPolicy,
    PolicyKind.PRIORITY: PriorityPolicy,
    PolicyKind.AGING: AgingPriorityPolicy,
    PolicyKind.PCP: PriorityCeilingPolicy,
    PolicyKind.PIP: PriorityInheritancePolicy,
}


def create_policy(kind: PolicyKind | str) -> BasePolicy:
    """Build a fresh policy instance from its short name.

    Raises:
        ValueError: If *kind* does not name a known policy.

    """
    try:
        policy_kind = PolicyKind(kind)
    except ValueError:
        known = ", ".join(k.value for k in PolicyKind)
        msg = f"Unknown scheduling policy {kind!r} (expected one of: {known})"
        raise ValueError(msg) from None
    return POLICIES[policy_kind]()
