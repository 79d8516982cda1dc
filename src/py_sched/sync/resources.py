"""The resource table.

Resources are mutually exclusive: each has at most one owner and a
wait queue of processes blocked trying to acquire it.  The table is a
fixed-size array indexed by resource id, sized once from the
configuration.  It does no scheduling of its own; the active resource
protocol decides who gets a resource and who is woken when it frees up.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from py_sched.errors import InvariantError
from py_sched.process.queue import ProcessQueue

if TYPE_CHECKING:
    from collections.abc import Iterator

    from py_sched.process.pcb import Process


class Resource:
    """A single mutually exclusive resource."""

    def __init__(self, resource_id: int) -> None:
        """Create an unowned resource with an empty wait queue."""
        self._resource_id = resource_id
        self.owner: Process | None = None
        self._waiters = ProcessQueue(f"waitqueue[{resource_id}]")

    @property
    def resource_id(self) -> int:
        """Return the index of this resource in the table."""
        return self._resource_id

    @property
    def waiters(self) -> ProcessQueue:
        """Return the queue of processes blocked on this resource."""
        return self._waiters

    @property
    def active(self) -> bool:
        """Return True if the resource is owned or has waiters."""
        return self.owner is not None or bool(self._waiters)

    def __repr__(self) -> str:
        """Return a debug-friendly representation."""
        owner = self.owner.pid if self.owner is not None else None
        return f"Resource({self._resource_id}, owner={owner}, waiting={len(self._waiters)})"


class ResourceTable:
    """Fixed array of resources indexed by id."""

    def __init__(self, size: int) -> None:
        """Create *size* unowned resources numbered from 0."""
        self._resources = [Resource(i) for i in range(size)]

    def __getitem__(self, resource_id: int) -> Resource:
        """Return the resource with id *resource_id*.

        Raises:
            InvariantError: If the id is outside the table.

        """
        if not 0 <= resource_id < len(self._resources):
            msg = f"Resource {resource_id} is out of range (0..{len(self._resources) - 1})"
            raise InvariantError(msg)
        return self._resources[resource_id]

    def __len__(self) -> int:
        """Return the number of resources in the table."""
        return len(self._resources)

    def __iter__(self) -> Iterator[Resource]:
        """Iterate over all resources in id order."""
        return iter(self._resources)

    def active(self) -> list[Resource]:
        """Return the resources that are owned or have waiters."""
        return [r for r in self._resources if r.active]

    def owned_by(self, process: Process) -> list[Resource]:
        """Return every resource currently owned by *process*."""
        return [r for r in self._resources if r.owner is process]

    def blocked_on(self, process: Process) -> Resource | None:
        """Return the resource whose wait queue holds *process*, or None."""
        for resource in self._resources:
            if process in resource.waiters:
                return resource
        return None
