"""Tests for the resource table."""

import pytest

from py_sched.errors import InvariantError
from py_sched.process.pcb import Process
from py_sched.sync.resources import ResourceTable

TABLE_SIZE = 4


def _waiting(pid: int) -> Process:
    process = Process(pid=pid, lifespan=2)
    process.admit()
    process.dispatch()
    process.block()
    return process


class TestResourceTable:
    """Verify lookup and queries over the table."""

    def test_size(self) -> None:
        """The table has exactly the configured number of resources."""
        table = ResourceTable(TABLE_SIZE)
        assert len(table) == TABLE_SIZE
        assert [r.resource_id for r in table] == list(range(TABLE_SIZE))

    def test_starts_unowned(self) -> None:
        """Every resource starts free with no waiters."""
        table = ResourceTable(TABLE_SIZE)
        assert all(r.owner is None and not r.waiters for r in table)
        assert table.active() == []

    @pytest.mark.parametrize("resource_id", [-1, TABLE_SIZE])
    def test_out_of_range(self, resource_id: int) -> None:
        """Ids outside the table are an invariant violation."""
        with pytest.raises(InvariantError, match="out of range"):
            ResourceTable(TABLE_SIZE)[resource_id]

    def test_owned_by(self) -> None:
        """owned_by lists every resource a process owns."""
        table = ResourceTable(TABLE_SIZE)
        owner = Process(pid=1, lifespan=2)
        table[1].owner = owner
        table[3].owner = owner
        assert [r.resource_id for r in table.owned_by(owner)] == [1, 3]

    def test_blocked_on(self) -> None:
        """blocked_on finds the wait queue holding a process."""
        table = ResourceTable(TABLE_SIZE)
        waiter = _waiting(2)
        table[2].waiters.append(waiter)
        resource = table.blocked_on(waiter)
        assert resource is not None
        assert resource.resource_id == 2
        assert table.blocked_on(Process(pid=3, lifespan=1)) is None

    def test_active_includes_waiters(self) -> None:
        """A resource with only waiters still counts as active."""
        table = ResourceTable(TABLE_SIZE)
        table[0].waiters.append(_waiting(1))
        assert [r.resource_id for r in table.active()] == [0]

    def test_wait_queue_names(self) -> None:
        """Each wait queue is labelled with its resource id."""
        assert ResourceTable(TABLE_SIZE)[2].waiters.name == "waitqueue[2]"
