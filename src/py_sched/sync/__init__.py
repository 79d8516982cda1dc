"""Synchronization subsystem: the resource table and resource protocols.

Re-exports public symbols so callers can write::

    from py_sched.sync import ResourceTable, InheritanceProtocol
"""

from py_sched.sync.protocols import (
    CeilingProtocol,
    FCFSProtocol,
    InheritanceProtocol,
    PriorityProtocol,
    ResourceProtocol,
)
from py_sched.sync.resources import Resource, ResourceTable

__all__ = [
    "CeilingProtocol",
    "FCFSProtocol",
    "InheritanceProtocol",
    "PriorityProtocol",
    "Resource",
    "ResourceProtocol",
    "ResourceTable",
]
