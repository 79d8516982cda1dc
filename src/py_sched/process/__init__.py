"""Process subsystem: PCB, queues and scheduling policies.

Re-exports public symbols so callers can write::

    from py_sched.process import Process, ProcessQueue, create_policy
"""

from py_sched.process.pcb import Process, ProcessState, ResourceHold, ResourceRequest
from py_sched.process.queue import ProcessQueue
from py_sched.process.scheduler import (
    POLICIES,
    AgingPriorityPolicy,
    BasePolicy,
    FIFOPolicy,
    PolicyKind,
    PriorityCeilingPolicy,
    PriorityInheritancePolicy,
    PriorityPolicy,
    RoundRobinPolicy,
    SchedulingPolicy,
    SJFPolicy,
    SRTFPolicy,
    create_policy,
)

__all__ = [
    "POLICIES",
    "AgingPriorityPolicy",
    "BasePolicy",
    "FIFOPolicy",
    "PolicyKind",
    "PriorityCeilingPolicy",
    "PriorityInheritancePolicy",
    "PriorityPolicy",
    "Process",
    "ProcessQueue",
    "ProcessState",
    "ResourceHold",
    "ResourceRequest",
    "RoundRobinPolicy",
    "SJFPolicy",
    "SRTFPolicy",
    "SchedulingPolicy",
    "create_policy",
]
