"""Resource protocols: who gets a contended resource, and at what priority.

A resource protocol implements the ``acquire``/``release`` half of a
scheduling policy.  All four protocols share the same skeleton:

- **acquire**: an unowned resource is granted to the caller on the
  spot.  An owned one blocks the caller (RUNNING -> WAITING) and links
  it into the resource's wait queue.
- **release**: the owner gives the resource up, then exactly one waiter
  (if any) is unlinked from the wait queue, woken (WAITING -> READY) and
  appended to the ready queue.

They differ only in the hooks around that skeleton:

- **FCFSProtocol**: wakes the waiter that arrived first.  No priorities.
- **PriorityProtocol**: wakes the highest-priority waiter (first found
  on ties), and by default makes a successful acquirer give up the CPU
  after its tick so the priority scheduler gets to re-decide.
- **CeilingProtocol**: a new owner is raised to the system priority
  ceiling while it holds anything, and drops back to its original
  priority once it holds nothing.
- **InheritanceProtocol**: a blocked requester with a higher priority
  lends it to the owner (one hop, no chaining).  On release the owner
  keeps only what its remaining waiters justify.

Protocols are stateless; everything they touch lives on the simulation
context passed to each call.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from py_sched.errors import InvariantError
from py_sched.logging import LogLevel

if TYPE_CHECKING:
    from py_sched.engine import Simulation
    from py_sched.process.pcb import Process
    from py_sched.sync.resources import Resource

_SOURCE = "sync"


class ResourceProtocol(Protocol):
    """Interface every resource protocol must satisfy."""

    def acquire(self, sim: Simulation, resource_id: int) -> bool:
        """Try to take *resource_id* for the current process."""
        ...  # pragma: no cover

    def release(self, sim: Simulation, resource_id: int) -> None:
        """Give *resource_id* back on behalf of the current process."""
        ...  # pragma: no cover


class FCFSProtocol:
    """First come, first served: waiters are woken in arrival order."""

    def acquire(self, sim: Simulation, resource_id: int) -> bool:
        """Grant the resource if it is free, otherwise block the caller.

        Returns:
            True if the current process now owns the resource, False if
            it was blocked and queued on it.

        """
        resource = sim.resources[resource_id]
        process = sim.require_current()

        if resource.owner is None:
            resource.owner = process
            self._on_grant(sim, resource, process)
            return True

        if resource.owner is process:
            msg = f"Process {process.pid} requested resource {resource_id} it already owns"
            raise InvariantError(msg)

        self._on_contention(sim, resource, process)
        process.block()
        resource.waiters.append(process)
        sim.log(
            LogLevel.DEBUG,
            f"process {process.pid} blocked on resource {resource_id} "
            f"held by {resource.owner.pid}",
            source=_SOURCE,
        )
        return False

    def release(self, sim: Simulation, resource_id: int) -> None:
        """Free the resource and wake one waiter, if any.

        Raises:
            InvariantError: If the current process does not own it.

        """
        resource = sim.resources[resource_id]
        process = sim.require_current()

        if resource.owner is not process:
            owner = resource.owner.pid if resource.owner is not None else "no one"
            msg = (
                f"Process {process.pid} released resource {resource_id} "
                f"which is owned by {owner}"
            )
            raise InvariantError(msg)

        resource.owner = None
        self._on_release(sim, resource, process)

        waiter = self._select_waiter(resource)
        if waiter is None:
            return
        resource.waiters.remove(waiter)
        waiter.wake()
        sim.ready_queue.append(waiter)
        sim.log(
            LogLevel.DEBUG,
            f"process {waiter.pid} woken by release of resource {resource_id}",
            source=_SOURCE,
        )

    # -- Hooks ----------------------------------------------------------------

    def _on_grant(self, sim: Simulation, resource: Resource, process: Process) -> None:
        """React to *process* becoming the owner of *resource*."""

    def _on_contention(self, sim: Simulation, resource: Resource, process: Process) -> None:
        """React to *process* finding *resource* owned by someone else."""

    def _on_release(self, sim: Simulation, resource: Resource, process: Process) -> None:
        """React to *process* giving *resource* up (owner already cleared)."""

    def _select_waiter(self, resource: Resource) -> Process | None:
        """Return the waiter to wake, without unlinking it."""
        return resource.waiters.first()


class PriorityProtocol(FCFSProtocol):
    """Wake the highest-priority waiter; requeue a successful acquirer.

    The requeue mirrors how the priority schedulers were first written:
    a process that has just obtained a resource goes back to the ready
    queue so the scheduler re-decides on the next tick.  It can be
    switched off with ``SimulationConfig.yield_on_grant``.
    """

    def _on_grant(self, sim: Simulation, resource: Resource, process: Process) -> None:
        """Ask the engine to requeue *process* after this tick."""
        if sim.config.yield_on_grant:
            sim.request_yield()

    def _select_waiter(self, resource: Resource) -> Process | None:
        """Return the highest-priority waiter, earliest arrival on ties."""
        return resource.waiters.best(key=lambda p: p.priority)


class CeilingProtocol(PriorityProtocol):
    """Priority ceiling: owners run at the maximum priority."""

    def _on_grant(self, sim: Simulation, resource: Resource, process: Process) -> None:
        """Raise the new owner to the ceiling."""
        super()._on_grant(sim, resource, process)
        ceiling = sim.config.max_priority
        if process.priority != ceiling:
            sim.log(
                LogLevel.DEBUG,
                f"process {process.pid} raised to ceiling {ceiling} "
                f"on resource {resource.resource_id}",
                source=_SOURCE,
            )
        process.priority = ceiling

    def _on_release(self, sim: Simulation, resource: Resource, process: Process) -> None:
        """Drop the ceiling once the owner holds nothing else."""
        if sim.resources.owned_by(process):
            return
        process.restore_priority()
        sim.log(
            LogLevel.DEBUG,
            f"process {process.pid} restored to priority {process.priority}",
            source=_SOURCE,
        )


class InheritanceProtocol(PriorityProtocol):
    """Priority inheritance: owners borrow the priority of blocked requesters."""

    def _on_contention(self, sim: Simulation, resource: Resource, process: Process) -> None:
        """Lend *process*'s priority to the owner if it is higher."""
        owner = resource.owner
        if owner is None or process.priority <= owner.priority:
            return
        sim.log(
            LogLevel.DEBUG,
            f"process {owner.pid} inherits priority {process.priority} "
            f"from {process.pid} on resource {resource.resource_id}",
            source=_SOURCE,
        )
        owner.priority = process.priority

    def _on_release(self, sim: Simulation, resource: Resource, process: Process) -> None:
        """Recompute the releaser's priority from what it still holds.

        With no other contended resource left this is the original
        priority.  Otherwise the owner keeps the highest priority among
        the processes still blocked on its remaining resources.
        """
        inherited = [
            waiter.priority
            for held in sim.resources.owned_by(process)
            for waiter in held.waiters
        ]
        process.priority = max([process.original_priority, *inherited])
        sim.log(
            LogLevel.DEBUG,
            f"process {process.pid} back to priority {process.priority}",
            source=_SOURCE,
        )
