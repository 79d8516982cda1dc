"""Simulation configuration.

The defaults mirror the constants of the classic teaching framework the
script format comes from: 32 resources and a priority range topping out
at 100.
"""

from dataclasses import dataclass

DEFAULT_NR_RESOURCES = 32
DEFAULT_MAX_PRIORITY = 100


@dataclass(frozen=True)
class SimulationConfig:
    """Tunable knobs for one simulation run.

    Attributes:
        nr_resources: Size of the fixed resource table.
        max_priority: Highest priority a process can reach.  Used as the
            ceiling by the priority ceiling protocol and as the clamp
            for aging.
        yield_on_grant: When True, the priority-based resource
            protocols send a process back to the ready queue after the
            tick in which it acquired a resource, instead of letting it
            keep the CPU.

    """

    nr_resources: int = DEFAULT_NR_RESOURCES
    max_priority: int = DEFAULT_MAX_PRIORITY
    yield_on_grant: bool = True

    def __post_init__(self) -> None:
        """Reject configurations the engine cannot run with."""
        if self.nr_resources < 1:
            msg = f"nr_resources must be at least 1, got {self.nr_resources}"
            raise ValueError(msg)
        if self.max_priority < 0:
            msg = f"max_priority must not be negative, got {self.max_priority}"
            raise ValueError(msg)
