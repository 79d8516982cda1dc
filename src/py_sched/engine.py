"""The simulation engine: a tick-driven loop over one CPU.

``Simulation`` is the context object every component works through.  It
owns the clock, the current process, the ready queue, the fork queue of
processes whose start tick has not come yet, the resource table, the
event trace and the log.  Policies and resource protocols receive it on
every call instead of reaching for globals, so several simulations can
run side by side.

One tick, in order:

1. **Fork** every process whose start tick has arrived (NEW -> READY,
   appended to the ready queue in script order).
2. **Schedule**: ask the policy for the process to run.
3. **Retire** the previous runner: demote it to READY if it was still
   RUNNING, and exit it if it has consumed its whole lifespan.
4. **Run** the chosen process: issue every scripted acquisition due at
   its current age.  If all succeed it ages by one tick and any holds
   that expire are released; if one fails it is now WAITING and the
   tick is lost for it.
5. **Advance** the clock.

The run ends when nothing is running and both the ready queue and the
fork queue are empty.  Processes still stuck in wait queues at that
point (a circular wait in the script) are reported as stranded.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from py_sched.config import SimulationConfig
from py_sched.errors import InvariantError, PolicyError
from py_sched.logging import Logger, LogLevel
from py_sched.process.pcb import ProcessState
from py_sched.process.queue import ProcessQueue
from py_sched.sync.resources import ResourceTable
from py_sched.trace import EventKind, TraceEvent

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from py_sched.process.pcb import Process
    from py_sched.process.scheduler import SchedulingPolicy
    from py_sched.script import ProcessDescriptor

_SOURCE = "engine"


@dataclass(frozen=True)
class SimulationResult:
    """Summary of a finished run.

    Attributes:
        policy: Display name of the policy that ran.
        ticks: Tick at which the simulation stopped.
        events: The full event trace.
        exited: Pids in the order they exited.
        stranded: Pids still blocked on a resource when the run ended.

    """

    policy: str
    ticks: int
    events: tuple[TraceEvent, ...]
    exited: tuple[int, ...]
    stranded: tuple[int, ...]


class Simulation:
    """Simulation context and tick loop.

    Usage::

        sim = Simulation(descriptors=parse_script(text), policy=create_policy("rr"))
        result = sim.run()

    """

    def __init__(
        self,
        *,
        descriptors: Iterable[ProcessDescriptor],
        policy: SchedulingPolicy,
        config: SimulationConfig | None = None,
        logger: Logger | None = None,
    ) -> None:
        """Load the processes and bind the policy for the whole run.

        Args:
            descriptors: Parsed process descriptions.  Fresh Process
                objects are built from them, so descriptors can be
                reused across runs.
            policy: The scheduling policy, fixed for the run.
            config: Resource table size, priority ceiling and protocol
                switches.  Defaults to ``SimulationConfig()``.
            logger: Log buffer to record into.  A private one is created
                when omitted.

        Raises:
            PolicyError: If the policy has no ``schedule`` hook.
            InvariantError: If two descriptors share a pid or a request
                names a resource outside the table.

        """
        if not callable(getattr(policy, "schedule", None)):
            msg = f"{getattr(policy, 'name', policy)!s} scheduler does not implement schedule()"
            raise PolicyError(msg)

        self._config = config if config is not None else SimulationConfig()
        self._policy = policy
        self._logger = logger if logger is not None else Logger()
        self._ticks = 0
        self._current: Process | None = None
        self._ready_queue = ProcessQueue("readyqueue")
        self._fork_queue = ProcessQueue("forkqueue")
        self._resources = ResourceTable(self._config.nr_resources)
        self._events: list[TraceEvent] = []
        self._processes: dict[int, Process] = {}
        self._exited: list[int] = []
        self._yield_requested = False
        self._started = False
        self._finished = False

        for descriptor in descriptors:
            self._load(descriptor)

    def _load(self, descriptor: ProcessDescriptor) -> None:
        if descriptor.pid in self._processes:
            msg = f"Duplicate process id {descriptor.pid}"
            raise InvariantError(msg)
        for request in descriptor.requests:
            if not 0 <= request.resource_id < len(self._resources):
                msg = (
                    f"Process {descriptor.pid} requests resource {request.resource_id}, "
                    f"table has {len(self._resources)}"
                )
                raise InvariantError(msg)
        process = descriptor.build()
        self._processes[process.pid] = process
        self._fork_queue.append(process)

    # -- Context accessors ----------------------------------------------------

    @property
    def config(self) -> SimulationConfig:
        """Return the run configuration."""
        return self._config

    @property
    def policy(self) -> SchedulingPolicy:
        """Return the active scheduling policy."""
        return self._policy

    @property
    def logger(self) -> Logger:
        """Return the log buffer."""
        return self._logger

    @property
    def ticks(self) -> int:
        """Return the current tick."""
        return self._ticks

    @property
    def current(self) -> Process | None:
        """Return the process that ran in the last tick, or None."""
        return self._current

    @property
    def ready_queue(self) -> ProcessQueue:
        """Return the ready queue."""
        return self._ready_queue

    @property
    def fork_queue(self) -> ProcessQueue:
        """Return the queue of processes not forked yet."""
        return self._fork_queue

    @property
    def resources(self) -> ResourceTable:
        """Return the resource table."""
        return self._resources

    @property
    def events(self) -> list[TraceEvent]:
        """Return the event trace so far."""
        return list(self._events)

    @property
    def processes(self) -> dict[int, Process]:
        """Return every process loaded for this run, keyed by pid."""
        return dict(self._processes)

    @property
    def exited(self) -> list[int]:
        """Return the pids that have exited, in exit order."""
        return list(self._exited)

    @property
    def finished(self) -> bool:
        """Return True once the run has ended."""
        return self._finished

    def require_current(self) -> Process:
        """Return the current process.

        Raises:
            InvariantError: If no process is current.

        """
        if self._current is None:
            msg = "No process is currently running"
            raise InvariantError(msg)
        return self._current

    def log(self, level: LogLevel, message: str, *, source: str = _SOURCE) -> None:
        """Record *message* in the log, stamped with the current tick."""
        self._logger.log(level, message, source=source, tick=self._ticks)

    # -- Services for policies and protocols ----------------------------------

    def preempt(self, process: Process, *, front: bool = False) -> None:
        """Take the CPU away from *process* and put it back in the ready queue.

        Args:
            process: The running process to preempt.
            front: Re-insert at the head instead of the tail.

        """
        process.preempt()
        if front:
            self._ready_queue.appendleft(process)
        else:
            self._ready_queue.append(process)
        self.log(LogLevel.DEBUG, f"process {process.pid} preempted")

    def request_yield(self) -> None:
        """Ask for the current process to be requeued at the end of this tick."""
        self._yield_requested = True

    # -- Tick loop ------------------------------------------------------------

    def run(self) -> SimulationResult:
        """Run ticks until the simulation ends and return the summary."""
        while self.step():
            pass
        return self.result()

    def step(self) -> bool:
        """Simulate one tick.

        Returns:
            True if a tick was simulated, False if the run has ended.

        Raises:
            InvariantError: If the tick broke a model invariant.  The
                violation is logged at ERROR first.

        """
        if self._finished:
            return False
        try:
            ticked = self._tick()
        except InvariantError as e:
            self.log(LogLevel.ERROR, str(e))
            raise
        return ticked

    def _tick(self) -> bool:
        if not self._started:
            self._start()

        self._fork_due()

        prev = self._current
        self._current = self._policy.schedule(self)
        self._retire(prev)

        current = self._current
        if current is None:
            if not self._ready_queue and not self._fork_queue:
                self._finish()
                return False
            self._emit(EventKind.IDLE)
        else:
            if current is not prev:
                self.log(LogLevel.DEBUG, f"process {current.pid} dispatched")
            self._run(current)

        self._ticks += 1
        return True

    def result(self) -> SimulationResult:
        """Return the summary of the run so far."""
        return SimulationResult(
            policy=self._policy.name,
            ticks=self._ticks,
            events=tuple(self._events),
            exited=tuple(self._exited),
            stranded=tuple(self.stranded()),
        )

    def stranded(self) -> list[int]:
        """Return the pids currently blocked in any wait queue."""
        return [p.pid for r in self._resources for p in r.waiters]

    def _start(self) -> None:
        self._started = True
        self._hook("initialize")(self)
        self.log(
            LogLevel.INFO,
            f"simulating {self._policy.name} scheduler with {len(self._processes)} process(es)",
        )

    def _finish(self) -> None:
        self._finished = True
        stranded = self.stranded()
        if stranded:
            pids = ", ".join(str(pid) for pid in stranded)
            self.log(LogLevel.WARNING, f"run ended with blocked process(es): {pids}")
        self._hook("finalize")(self)
        self.log(
            LogLevel.INFO,
            f"simulation finished at tick {self._ticks}, {len(self._exited)} process(es) exited",
        )

    def _hook(self, name: str) -> Callable[..., object]:
        """Return the optional policy hook *name*, or a no-op."""
        hook = getattr(self._policy, name, None)
        if hook is None:
            return lambda *_args: None
        return hook

    def _fork_due(self) -> None:
        """Move every process whose start tick has arrived to the ready queue."""
        for process in self._fork_queue:
            if process.start_tick <= self._ticks:
                self._fork_queue.remove(process)
                process.admit()
                self._ready_queue.append(process)
                self._emit(EventKind.FORK, process.pid)
                self._hook("on_fork")(self, process)
                self.log(LogLevel.DEBUG, f"process {process.pid} forked")

    def _retire(self, prev: Process | None) -> None:
        """Settle the process that ran in the previous tick."""
        if prev is None:
            return
        if prev.state is ProcessState.RUNNING:
            prev.preempt()

        if prev.finished:
            if prev is self._current:
                msg = f"{self._policy.name} scheduled finished process {prev.pid}"
                raise InvariantError(msg)
            prev.exit()
            self._exited.append(prev.pid)
            self._emit(EventKind.EXIT, prev.pid)
            self._hook("on_exit")(self, prev)
            self.log(LogLevel.DEBUG, f"process {prev.pid} exited")
        elif prev is not self._current and prev.queue is None:
            msg = f"{self._policy.name} dropped process {prev.pid} without queueing it"
            raise InvariantError(msg)

    def _run(self, current: Process) -> None:
        """Give *current* this tick."""
        if current.queue is not None:
            msg = f"Process {current.pid} was scheduled while still in {current.queue.name}"
            raise InvariantError(msg)
        current.dispatch()
        self._yield_requested = False

        if not self._acquire_due(current):
            self._emit(EventKind.BLOCK, current.pid)
            return

        self._emit(EventKind.RUN, current.pid)
        current.tick()
        self._release_expired(current)

        if self._yield_requested and current.state is ProcessState.RUNNING and not current.finished:
            self.preempt(current)
            self._current = None

    def _acquire_due(self, current: Process) -> bool:
        """Issue the acquisitions scripted for *current*'s age, in order."""
        for request in current.due_requests():
            if not self._hook_required("acquire")(self, request.resource_id):
                return False
            current.grant(request)
            self._emit(EventKind.ACQUIRE, current.pid, request.resource_id)
        return True

    def _release_expired(self, current: Process) -> None:
        """Release every hold of *current* that ran out this tick."""
        for resource_id in current.expire_holds():
            self._hook_required("release")(self, resource_id)
            self._emit(EventKind.RELEASE, current.pid, resource_id)

    def _hook_required(self, name: str) -> Callable[..., object]:
        hook = getattr(self._policy, name, None)
        if hook is None:
            msg = f"{self._policy.name} scheduler does not implement {name}()"
            raise PolicyError(msg)
        return hook

    def _emit(self, kind: EventKind, pid: int | None = None, resource_id: int | None = None) -> None:
        self._events.append(TraceEvent(self._ticks, kind, pid, resource_id))

    # -- Invariants and inspection --------------------------------------------

    def check_invariants(self) -> None:
        """Verify that every process is in exactly one place.

        NEW processes sit in the fork queue, READY ones in the ready
        queue, WAITING ones in the wait queue of one resource, the
        RUNNING one is current and unlinked, and EXITED ones are
        unlinked.  At most one process is RUNNING.

        Raises:
            InvariantError: On the first violation found.

        """
        running = [p for p in self._processes.values() if p.state is ProcessState.RUNNING]
        if len(running) > 1:
            msg = f"More than one running process: {[p.pid for p in running]}"
            raise InvariantError(msg)

        expected: dict[ProcessState, Callable[[Process], bool]] = {
            ProcessState.NEW: lambda p: p.queue is self._fork_queue,
            ProcessState.READY: lambda p: p.queue is self._ready_queue,
            ProcessState.WAITING: lambda p: self._resources.blocked_on(p) is not None,
            ProcessState.RUNNING: lambda p: p.queue is None and p is self._current,
            ProcessState.EXITED: lambda p: p.queue is None and p.pid in self._exited,
        }
        for process in self._processes.values():
            if not expected[process.state](process):
                where = process.queue.name if process.queue is not None else "no queue"
                msg = f"Process {process.pid} is {process.state} but in {where}"
                raise InvariantError(msg)

    def dump_status(self) -> str:
        """Return a text dump of the current process, ready queue and resources."""
        lines = ["***** CURRENT *********"]
        if self._current is not None:
            lines.append(_describe(self._current))
        lines.append("***** READY QUEUE *****")
        lines.extend(_describe(p) for p in self._ready_queue)
        lines.append("***** RESOURCES *******")
        for resource in self._resources.active():
            owner = str(resource.owner.pid) if resource.owner is not None else "no one"
            lines.append(f"{resource.resource_id:2d}: owned by {owner}")
            lines.extend(f"    {p.pid} is waiting" for p in resource.waiters)
        return "\n".join(lines)

    def snapshot(self) -> dict[str, object]:
        """Return the same information as ``dump_status`` as plain data."""
        return {
            "tick": self._ticks,
            "current": _as_dict(self._current) if self._current is not None else None,
            "ready": [_as_dict(p) for p in self._ready_queue],
            "resources": [
                {
                    "id": r.resource_id,
                    "owner": r.owner.pid if r.owner is not None else None,
                    "waiting": [p.pid for p in r.waiters],
                }
                for r in self._resources.active()
            ],
        }


def _describe(process: Process) -> str:
    return (
        f"{process.pid:2d} ({process.state.short}): {process.start_tick} + "
        f"{process.age}/{process.lifespan} at {process.priority}"
    )


def _as_dict(process: Process) -> dict[str, object]:
    return {
        "pid": process.pid,
        "state": process.state.value,
        "start": process.start_tick,
        "age": process.age,
        "lifespan": process.lifespan,
        "priority": process.priority,
    }
