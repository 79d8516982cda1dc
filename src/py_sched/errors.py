"""Fatal error types shared by the simulation core.

The simulator has no recoverable runtime errors.  Every operation is
deterministic given valid state, so a broken invariant means the model
itself is wrong and the run must stop immediately.
"""


class InvariantError(RuntimeError):
    """Raise when the simulation state breaks a model invariant.

    Examples: a process linked into two queues at once, a resource
    released by a process that does not own it, or a process exiting
    while it still holds resources.
    """


class PolicyError(RuntimeError):
    """Raise when a scheduling policy is missing a required hook.

    A policy without ``schedule`` is rejected when the simulation is
    built; a policy without a resource protocol fails at the first
    ``acquire`` or ``release``.
    """
