"""Ordered process queues with single membership.

The ready queue, every resource's wait queue and the fork queue are all
``ProcessQueue`` instances.  A process can be linked into at most one of
them at a time: appending a process that already sits in another queue
raises ``InvariantError``, and removing it clears the link.  That makes
"a process returned by schedule() is never still queued" and "a waiter
is in exactly one wait queue" checkable facts instead of conventions.

Ordering is plain insertion order on a ``deque``.  Policies that need a
different pick (shortest job, highest priority) scan the queue and
``remove`` the winner, so ties fall to the earliest arrival.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

from py_sched.errors import InvariantError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from py_sched.process.pcb import Process


class ProcessQueue:
    """A named FIFO of processes that owns their queue linkage."""

    def __init__(self, name: str) -> None:
        """Create an empty queue.

        Args:
            name: Label used in error messages and state dumps.

        """
        self._name = name
        self._items: deque[Process] = deque()

    @property
    def name(self) -> str:
        """Return the queue label."""
        return self._name

    def append(self, process: Process) -> None:
        """Link *process* at the tail of the queue."""
        process.link(self)
        self._items.append(process)

    def appendleft(self, process: Process) -> None:
        """Link *process* at the head of the queue."""
        process.link(self)
        self._items.appendleft(process)

    def remove(self, process: Process) -> Process:
        """Unlink *process* from the queue and return it.

        Raises:
            InvariantError: If *process* is not in this queue.

        """
        if process.queue is not self:
            msg = f"Process {process.pid} is not in {self._name}"
            raise InvariantError(msg)
        self._items.remove(process)
        process.unlink(self)
        return process

    def popleft(self) -> Process | None:
        """Unlink and return the head of the queue, or None if empty."""
        if not self._items:
            return None
        return self.remove(self._items[0])

    def first(self) -> Process | None:
        """Return the head of the queue without removing it."""
        return self._items[0] if self._items else None

    def best(self, key: Callable[[Process], int]) -> Process | None:
        """Return the first process with the highest *key* value.

        The scan runs head to tail and only a strictly greater key
        replaces the current best, so ties go to the earliest entry.
        """
        best: Process | None = None
        for process in self._items:
            if best is None or key(process) > key(best):
                best = process
        return best

    def snapshot(self) -> list[Process]:
        """Return the queue contents as a list, head first."""
        return list(self._items)

    def __iter__(self) -> Iterator[Process]:
        """Iterate head to tail over a snapshot of the queue."""
        return iter(list(self._items))

    def __len__(self) -> int:
        """Return the number of queued processes."""
        return len(self._items)

    def __bool__(self) -> bool:
        """Return True if the queue holds at least one process."""
        return bool(self._items)

    def __contains__(self, process: object) -> bool:
        """Return True if *process* is linked into this queue."""
        return getattr(process, "queue", None) is self

    def __repr__(self) -> str:
        """Return a debug-friendly representation."""
        pids = ", ".join(str(p.pid) for p in self._items)
        return f"ProcessQueue({self._name!r}, [{pids}])"
