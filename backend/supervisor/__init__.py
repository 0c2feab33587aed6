"""
WatchX Process Supervision Package.

Spawning, port reclaim and restart of the supervised commands.
Requires Python 3.11+.
"""

from supervisor.port_lookup import (
    PortOwnerLookup,
    LsofPortOwnerLookup,
    NetstatPortOwnerLookup,
    PsutilPortOwnerLookup,
    default_port_owner_lookup,
)
from supervisor.port_reclaimer import PortReclaimer, ReclaimOutcome, is_port_available
from supervisor.spawner import ProcessSpec, parse_command, spawn_all
from supervisor.process_supervisor import ProcessSupervisor

__all__ = [
    # Port discovery
    "PortOwnerLookup",
    "LsofPortOwnerLookup",
    "NetstatPortOwnerLookup",
    "PsutilPortOwnerLookup",
    "default_port_owner_lookup",
    # Reclaim
    "PortReclaimer",
    "ReclaimOutcome",
    "is_port_available",
    # Processes
    "ProcessSpec",
    "parse_command",
    "spawn_all",
    "ProcessSupervisor",
]
