"""End-to-end tests for the simulation engine.

Every scenario here is a small script run under one policy; the
assertions read the resulting trace.  The expected traces were worked
out tick by tick following the fork, schedule, retire, run order of
the engine.
"""

import textwrap

import pytest

from py_sched.config import SimulationConfig
from py_sched.engine import Simulation, SimulationResult
from py_sched.errors import InvariantError, PolicyError
from py_sched.logging import Logger, LogLevel
from py_sched.process.pcb import Process, ProcessState, ResourceRequest
from py_sched.process.scheduler import FIFOPolicy, PolicyKind, create_policy
from py_sched.script import ProcessDescriptor, parse_script
from py_sched.trace import EventKind

# -- Scripts -----------------------------------------------------------------

# A low-priority process starts first; a high-priority one arrives at 1.
PRIORITY_PAIR = """
process 1
    lifespan 4
    prio 1
end
process 2
    lifespan 2
    prio 5
    start 1
end
"""

# Three processes queue up on resource 0 one after another.
CONVOY = """
process 1
    lifespan 4
    acquire 0 0 3
end
process 2
    lifespan 2
    acquire 0 0 1
end
process 3
    lifespan 2
    acquire 0 0 1
end
"""

# Each process holds one resource and then asks for the other's.
DEADLOCK = """
process 1
    lifespan 3
    acquire 0 0 3
    acquire 1 1 1
end
process 2
    lifespan 3
    acquire 1 0 3
    acquire 0 1 1
end
"""

# Low holds resource 0 while a medium-priority process arrives.
INVERSION = """
process 1
    lifespan 4
    prio 1
    acquire 0 0 3
end
process 2
    lifespan 2
    prio 5
    start 1
end
"""

# As above, plus a high-priority process that needs the same resource.
INHERITANCE = """
process 1
    lifespan 4
    prio 1
    acquire 0 0 3
end
process 2
    lifespan 2
    prio 10
    start 1
    acquire 0 0 1
end
process 3
    lifespan 3
    prio 5
    start 1
end
"""

# A low-priority process acquires a resource while a higher one waits.
YIELD = """
process 1
    lifespan 3
    prio 1
    acquire 0 1 1
end
process 2
    lifespan 1
    prio 5
    start 1
end
"""

TICKS_PRIORITY_PAIR = 6
TICKS_DEADLOCK = 4
TICKS_IDLE = 3
PRIORITY_CEILING = 100
PRIORITY_HIGH = 10


# -- Helpers -----------------------------------------------------------------


def _sim(
    script: str,
    kind: PolicyKind | str = PolicyKind.FIFO,
    *,
    config: SimulationConfig | None = None,
    logger: Logger | None = None,
) -> Simulation:
    """Build a simulation for *script* under the named policy."""
    descriptors = parse_script(textwrap.dedent(script))
    return Simulation(
        descriptors=descriptors, policy=create_policy(kind), config=config, logger=logger
    )


def _run(script: str, kind: PolicyKind | str = PolicyKind.FIFO, **kwargs: object) -> SimulationResult:
    return _sim(script, kind, **kwargs).run()  # type: ignore[arg-type]


def _runs(result: SimulationResult) -> list[int | None]:
    """Return the pid that ran in each non-blocked, non-idle tick."""
    return [e.pid for e in result.events if e.kind is EventKind.RUN]


def _resource_events(result: SimulationResult) -> list[tuple[int, EventKind, int | None, int | None]]:
    kinds = {EventKind.ACQUIRE, EventKind.RELEASE, EventKind.BLOCK}
    return [(e.tick, e.kind, e.pid, e.resource_id) for e in result.events if e.kind in kinds]


# -- Basic loop ----------------------------------------------------------------


class TestTickLoop:
    """Verify the shape of a run."""

    def test_priority_does_not_preempt(self) -> None:
        """The low-priority starter runs to completion first."""
        result = _run(PRIORITY_PAIR, PolicyKind.PRIORITY)
        assert _runs(result) == [1, 1, 1, 1, 2, 2]
        assert result.exited == (1, 2)
        assert result.ticks == TICKS_PRIORITY_PAIR

    def test_fork_and_exit_events(self) -> None:
        """Forks happen at the start tick, exits the tick after finishing."""
        result = _run(PRIORITY_PAIR, PolicyKind.PRIORITY)
        forks = [(e.tick, e.pid) for e in result.events if e.kind is EventKind.FORK]
        exits = [(e.tick, e.pid) for e in result.events if e.kind is EventKind.EXIT]
        assert forks == [(0, 1), (1, 2)]
        assert exits == [(4, 1), (6, 2)]

    def test_idle_until_first_fork(self) -> None:
        """Ticks before the first start tick are idle."""
        result = _run("process 1\n lifespan 1\n start 2\nend\n")
        idle = [e.tick for e in result.events if e.kind is EventKind.IDLE]
        assert idle == [0, 1]
        assert _runs(result) == [1]
        assert result.ticks == TICKS_IDLE

    def test_empty_script_finishes_immediately(self) -> None:
        """With no processes there is nothing to simulate."""
        result = Simulation(descriptors=[], policy=FIFOPolicy()).run()
        assert result.ticks == 0
        assert result.events == ()

    def test_step_after_finish(self) -> None:
        """step reports False once the run is over."""
        sim = _sim(PRIORITY_PAIR)
        sim.run()
        assert sim.finished
        assert sim.step() is False

    def test_age_grows_only_when_run(self) -> None:
        """A process ages by exactly one in each tick it runs."""
        sim = _sim(CONVOY, PolicyKind.RR)
        while True:
            before = {pid: p.age for pid, p in sim.processes.items()}
            seen = len(sim.events)
            if not sim.step():
                break
            ran = {e.pid for e in sim.events[seen:] if e.kind is EventKind.RUN}
            for pid, process in sim.processes.items():
                assert process.age == before[pid] + (1 if pid in ran else 0)

    def test_runs_are_deterministic(self) -> None:
        """The same script and policy give the same trace."""
        first = _run(INHERITANCE, PolicyKind.PIP)
        second = _run(INHERITANCE, PolicyKind.PIP)
        assert first.events == second.events

    def test_descriptors_are_reusable(self) -> None:
        """Each simulation builds fresh processes from its descriptors."""
        descriptors = parse_script(PRIORITY_PAIR)
        Simulation(descriptors=descriptors, policy=FIFOPolicy()).run()
        sim = Simulation(descriptors=descriptors, policy=FIFOPolicy())
        assert all(p.state is ProcessState.NEW for p in sim.processes.values())


# -- Policies end to end -----------------------------------------------------------


class TestPolicies:
    """Verify complete traces for each policy family."""

    def test_fifo(self) -> None:
        """FIFO runs in arrival order."""
        result = _run("process 1\n lifespan 2\nend\nprocess 2\n lifespan 1\nend\n")
        assert _runs(result) == [1, 1, 2]

    def test_sjf(self) -> None:
        """SJF runs the shortest job first, then the next shortest."""
        script = """
        process 1
            lifespan 3
        end
        process 2
            lifespan 5
        end
        process 3
            lifespan 2
        end
        """
        result = _run(script, PolicyKind.SJF)
        assert _runs(result) == [3, 3, 1, 1, 1, 2, 2, 2, 2, 2]
        assert result.exited == (3, 1, 2)

    def test_srtf_preempts_and_resumes(self) -> None:
        """A short arrival preempts; the preempted process resumes next."""
        script = """
        process 1
            lifespan 5
        end
        process 2
            lifespan 2
            start 1
        end
        """
        result = _run(script, PolicyKind.SRTF)
        assert _runs(result) == [1, 2, 2, 1, 1, 1, 1]

    def test_srtf_preempted_keeps_age(self) -> None:
        """After preemption the process sits at the queue head, age intact."""
        script = """
        process 1
            lifespan 6
        end
        process 3
            lifespan 9
        end
        process 2
            lifespan 2
            start 1
        end
        """
        sim = _sim(script, PolicyKind.SRTF)
        sim.step()
        sim.step()
        first = sim.processes[1]
        assert [p.pid for p in sim.ready_queue] == [1, 3]
        assert first.age == 1
        assert sim.current is sim.processes[2]

    def test_round_robin_alternates(self) -> None:
        """Quantum 1 alternates two processes tick by tick."""
        script = """
        process 1
            lifespan 3
        end
        process 2
            lifespan 2
        end
        """
        result = _run(script, PolicyKind.RR)
        assert _runs(result) == [1, 2, 1, 2, 1]

    def test_aging_preempts_on_arrival(self) -> None:
        """A higher-priority arrival takes over under aging."""
        result = _run(PRIORITY_PAIR, PolicyKind.AGING)
        assert _runs(result) == [1, 2, 2, 1, 1, 1]
        assert result.exited == (2, 1)

    def test_every_policy_completes(self) -> None:
        """Every policy drains the same contended workload."""
        for kind in PolicyKind:
            result = _run(INHERITANCE, kind)
            assert sorted(result.exited) == [1, 2, 3], kind
            assert result.stranded == (), kind


# -- Resources ---------------------------------------------------------------------


class TestResources:
    """Verify acquisition, blocking and release through the tick loop."""

    def test_block_until_release(self) -> None:
        """A process blocks on a held resource and gets it after release."""
        script = """
        process 1
            lifespan 4
            acquire 0 1 2
        end
        process 2
            lifespan 2
            start 2
            acquire 0 0 1
        end
        """
        result = _run(script, PolicyKind.RR)
        assert _resource_events(result) == [
            (1, EventKind.ACQUIRE, 1, 0),
            (2, EventKind.BLOCK, 2, None),
            (3, EventKind.RELEASE, 1, 0),
            (4, EventKind.ACQUIRE, 2, 0),
            (4, EventKind.RELEASE, 2, 0),
        ]

    def test_fcfs_grants_in_arrival_order(self) -> None:
        """Waiters get the resource in the order they blocked."""
        result = _run(CONVOY, PolicyKind.RR)
        acquirers = [e.pid for e in result.events if e.kind is EventKind.ACQUIRE]
        assert acquirers == [1, 2, 3]
        assert result.exited == (1, 2, 3)

    def test_blocked_tick_does_not_age(self) -> None:
        """A tick lost to blocking leaves the process's age unchanged."""
        sim = _sim(CONVOY, PolicyKind.RR)
        sim.step()
        sim.step()
        blocked = sim.processes[2]
        assert blocked.state is ProcessState.WAITING
        assert blocked.age == 0

    def test_deadlock_strands_processes(self) -> None:
        """A circular wait ends the run with both processes stranded."""
        logger = Logger()
        result = _run(DEADLOCK, PolicyKind.RR, logger=logger)
        assert result.ticks == TICKS_DEADLOCK
        assert result.exited == ()
        assert result.stranded == (2, 1)
        warnings = logger.filter(min_level=LogLevel.WARNING)
        assert any("blocked process(es): 2, 1" in e.message for e in warnings)

    def test_invariants_hold_every_tick(self) -> None:
        """Conservation and single ownership hold after each tick."""
        for kind in PolicyKind:
            sim = _sim(INHERITANCE, kind)
            while sim.step():
                sim.check_invariants()
                for resource in sim.resources:
                    if resource.owner is not None:
                        assert resource.owner.state is not ProcessState.EXITED
                        assert resource.owner not in resource.waiters


# -- Priority protocols ------------------------------------------------------------


class TestPriorityProtocols:
    """Verify the ceiling and inheritance protocols through whole runs."""

    def test_ceiling_blocks_medium_process(self) -> None:
        """Under PCP the medium process waits until the owner releases."""
        result = _run(INVERSION, PolicyKind.PCP)
        assert _runs(result) == [1, 1, 1, 2, 2, 1]

    def test_ceiling_raises_and_restores(self) -> None:
        """The owner runs at the ceiling and drops back on release."""
        sim = _sim(INVERSION, PolicyKind.PCP)
        low = sim.processes[1]
        sim.step()
        assert low.priority == PRIORITY_CEILING
        sim.step()
        assert low.priority == PRIORITY_CEILING
        sim.step()
        assert low.priority == 1

    def test_inheritance_without_contention(self) -> None:
        """Without a blocked requester PIP lets the medium process run."""
        result = _run(INVERSION, PolicyKind.PIP)
        assert _runs(result) == [1, 2, 2, 1, 1, 1]

    def test_inheritance_bounds_inversion(self) -> None:
        """The boosted owner runs ahead of the medium process."""
        result = _run(INHERITANCE, PolicyKind.PIP)
        assert _runs(result) == [1, 1, 1, 2, 2, 3, 3, 3, 1]
        assert result.exited == (2, 3, 1)

    def test_inheritance_boost_lifecycle(self) -> None:
        """The owner inherits on contention and drops back on release."""
        sim = _sim(INHERITANCE, PolicyKind.PIP)
        low = sim.processes[1]
        sim.step()
        sim.step()
        assert low.priority == PRIORITY_HIGH
        assert sim.processes[2].state is ProcessState.WAITING
        sim.step()
        sim.step()
        assert low.priority == 1
        assert sim.processes[2].state is ProcessState.READY


class TestYieldOnGrant:
    """Verify the requeue after a priority-protocol acquisition."""

    def test_acquirer_yields(self) -> None:
        """A waiting higher-priority process runs right after the grant."""
        result = _run(YIELD, PolicyKind.PRIORITY)
        assert _runs(result) == [1, 1, 2, 1]
        assert result.exited == (2, 1)

    def test_yield_disabled(self) -> None:
        """Without the yield the non-preemptive scheduler keeps going."""
        result = _run(YIELD, PolicyKind.PRIORITY, config=SimulationConfig(yield_on_grant=False))
        assert _runs(result) == [1, 1, 1, 2]

    def test_fcfs_never_yields(self) -> None:
        """The FCFS protocol leaves the acquirer on the CPU."""
        result = _run(YIELD, PolicyKind.FIFO)
        assert _runs(result) == [1, 1, 1, 2]


# -- Failures ----------------------------------------------------------------------


class TestFailures:
    """Verify that broken scripts and policies abort the run."""

    def test_policy_without_schedule(self) -> None:
        """A policy that cannot schedule is rejected up front."""

        class Broken:
            name = "broken"

        with pytest.raises(PolicyError, match="does not implement schedule"):
            Simulation(descriptors=[], policy=Broken())  # type: ignore[arg-type]

    def test_policy_without_protocol(self) -> None:
        """A policy with no resource protocol fails at the first acquire."""

        class Bare(FIFOPolicy):
            protocol_class = None

        sim = Simulation(descriptors=parse_script(CONVOY), policy=Bare())
        with pytest.raises(PolicyError, match="acquire"):
            sim.run()

    def test_duplicate_pid(self) -> None:
        """Two descriptors with the same pid are rejected."""
        descriptors = [ProcessDescriptor(pid=1, lifespan=1), ProcessDescriptor(pid=1, lifespan=2)]
        with pytest.raises(InvariantError, match="Duplicate process id 1"):
            Simulation(descriptors=descriptors, policy=FIFOPolicy())

    def test_resource_out_of_range(self) -> None:
        """A request beyond the table is rejected up front."""
        descriptors = parse_script("process 1\n lifespan 1\n acquire 5 0 1\nend\n")
        with pytest.raises(InvariantError, match="requests resource 5"):
            Simulation(
                descriptors=descriptors,
                policy=FIFOPolicy(),
                config=SimulationConfig(nr_resources=4),
            )

    def test_unissued_request_at_exit(self) -> None:
        """A request scheduled at or after the lifespan never fires."""
        logger = Logger()
        descriptor = ProcessDescriptor(pid=1, lifespan=1, requests=(ResourceRequest(0, 1, 1),))
        sim = Simulation(descriptors=[descriptor], policy=FIFOPolicy(), logger=logger)
        with pytest.raises(InvariantError, match="unissued"):
            sim.run()
        assert logger.filter(min_level=LogLevel.ERROR)

    def test_hold_outlives_process(self) -> None:
        """A hold longer than the remaining lifespan is a violation."""
        descriptor = ProcessDescriptor(pid=1, lifespan=2, requests=(ResourceRequest(0, 1, 5),))
        sim = Simulation(descriptors=[descriptor], policy=FIFOPolicy())
        with pytest.raises(InvariantError, match="holding resources 0"):
            sim.run()

    def test_violation_is_logged_before_raising(self) -> None:
        """A violation raised deep in a protocol is logged at ERROR."""
        logger = Logger()
        requests = (ResourceRequest(0, 0, 3), ResourceRequest(0, 1, 1))
        descriptor = ProcessDescriptor(pid=1, lifespan=4, requests=requests)
        sim = Simulation(descriptors=[descriptor], policy=FIFOPolicy(), logger=logger)
        with pytest.raises(InvariantError, match="already owns"):
            sim.run()
        errors = logger.filter(min_level=LogLevel.ERROR)
        assert len(errors) == 1
        assert "already owns" in errors[0].message
        assert errors[0].tick == 1

    def test_waiting_outside_wait_queue(self) -> None:
        """A WAITING process must sit in some resource's wait queue."""
        sim = _sim(CONVOY, PolicyKind.RR)
        sim.step()
        sim.step()
        blocked = sim.processes[2]
        sim.resources[0].waiters.remove(blocked)
        with pytest.raises(InvariantError, match="Process 2 is waiting but in no queue"):
            sim.check_invariants()

    def test_scheduling_finished_process(self) -> None:
        """Returning a finished process from schedule aborts the run."""

        class Stubborn(FIFOPolicy):
            def schedule(self, sim: Simulation) -> Process | None:
                return sim.current or sim.ready_queue.popleft()

        sim = Simulation(descriptors=parse_script("process 1\n lifespan 1\nend\n"), policy=Stubborn())
        with pytest.raises(InvariantError, match="scheduled finished process 1"):
            sim.run()

    def test_dropping_a_process(self) -> None:
        """A preempted process that is never re-queued is caught."""

        class Forgetful(FIFOPolicy):
            def schedule(self, sim: Simulation) -> Process | None:
                return sim.ready_queue.popleft()

        script = "process 1\n lifespan 2\nend\nprocess 2\n lifespan 2\nend\n"
        sim = Simulation(descriptors=parse_script(script), policy=Forgetful())
        with pytest.raises(InvariantError, match="dropped process 1"):
            sim.run()


class TestLifecycleHooks:
    """Verify the optional policy callbacks."""

    def test_hooks_called_in_order(self) -> None:
        """initialize, forks, exits and finalize are all observed."""
        calls: list[str] = []

        class Recording(FIFOPolicy):
            def initialize(self, sim: Simulation) -> None:
                calls.append("init")

            def finalize(self, sim: Simulation) -> None:
                calls.append("fini")

            def on_fork(self, sim: Simulation, process: Process) -> None:
                calls.append(f"fork {process.pid}")

            def on_exit(self, sim: Simulation, process: Process) -> None:
                calls.append(f"exit {process.pid}")

        Simulation(descriptors=parse_script(PRIORITY_PAIR), policy=Recording()).run()
        assert calls == ["init", "fork 1", "fork 2", "exit 1", "exit 2", "fini"]

    def test_hooks_are_optional(self) -> None:
        """A policy with only schedule/acquire/release still runs."""

        class Minimal:
            name = "minimal"

            def __init__(self) -> None:
                self._fifo = FIFOPolicy()

            def schedule(self, sim: Simulation) -> Process | None:
                return self._fifo.schedule(sim)

            def acquire(self, sim: Simulation, resource_id: int) -> bool:
                return self._fifo.acquire(sim, resource_id)

            def release(self, sim: Simulation, resource_id: int) -> None:
                self._fifo.release(sim, resource_id)

        result = Simulation(descriptors=parse_script(CONVOY), policy=Minimal()).run()  # type: ignore[arg-type]
        assert result.exited == (1, 2, 3)


# -- Inspection --------------------------------------------------------------------


class TestInspection:
    """Verify the state dump and the snapshot."""

    SCRIPT = """
    process 1
        lifespan 3
        acquire 0 0 3
    end
    process 2
        lifespan 1
        acquire 0 0 1
    end
    """

    def test_dump_status(self) -> None:
        """The dump lists current, ready queue and active resources."""
        sim = _sim(self.SCRIPT, PolicyKind.RR)
        sim.step()
        sim.step()
        assert sim.dump_status() == "\n".join(
            [
                "***** CURRENT *********",
                " 2 (WAT): 0 + 0/1 at 0",
                "***** READY QUEUE *****",
                " 1 (RDY): 0 + 1/3 at 0",
                "***** RESOURCES *******",
                " 0: owned by 1",
                "    2 is waiting",
            ]
        )

    def test_snapshot(self) -> None:
        """The snapshot carries the same information as plain data."""
        sim = _sim(self.SCRIPT, PolicyKind.RR)
        sim.step()
        sim.step()
        snapshot = sim.snapshot()
        assert snapshot["tick"] == 2  # noqa: PLR2004
        assert snapshot["current"] == {
            "pid": 2,
            "state": "waiting",
            "start": 0,
            "age": 0,
            "lifespan": 1,
            "priority": 0,
        }
        assert snapshot["resources"] == [{"id": 0, "owner": 1, "waiting": [2]}]

    def test_log_records_run(self) -> None:
        """The log brackets the run with start and finish entries."""
        logger = Logger(min_level=LogLevel.INFO)
        _run(PRIORITY_PAIR, logger=logger)
        messages = [e.message for e in logger.entries]
        assert messages[0].startswith("simulating FIFO scheduler")
        assert messages[-1] == "simulation finished at tick 6, 2 process(es) exited"

    def test_log_records_dispatches(self) -> None:
        """Each change of running process is logged at DEBUG."""
        logger = Logger()
        _run(PRIORITY_PAIR, PolicyKind.AGING, logger=logger)
        dispatched = [e.message for e in logger.filter(source="engine") if "dispatched" in e.message]
        assert dispatched == ["process 1 dispatched", "process 2 dispatched", "process 1 dispatched"]

    def test_log_records_aging(self) -> None:
        """Aging and picks by the priority scheduler are logged at DEBUG."""
        logger = Logger()
        _run(PRIORITY_PAIR, PolicyKind.AGING, logger=logger)
        messages = [e.message for e in logger.filter(source="scheduler")]
        assert "process 1 aged to priority 2" in messages
        assert "Priority + aging picked process 2 at priority 5" in messages
        assert all(e.level is LogLevel.DEBUG for e in logger.filter(source="scheduler"))
