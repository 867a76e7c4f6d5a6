"""Base enums and constants shared across ftadmit."""

from __future__ import annotations

from enum import IntEnum
from typing import Tuple

#: Height of the fat-tree: servers sit at level 0, the core switch at HEIGHT.
HEIGHT = 3

#: Bandwidth below which a reservation is treated as zero.
MIN_BW = 1e-9

#: Arena key of a node: ``(level, index within the level)``.
NodeKey = Tuple[int, int]


class Level(IntEnum):
    """Tree level of a node."""

    SERVER = 0
    TOR = 1
    AGGREGATE = 2
    CORE = 3

    @classmethod
    def from_string(cls, value: str) -> "Level":
        """Parse a case-insensitive level name ("server", "tor", ...).

        Raises:
            ValueError: If the name matches no level.
        """
        try:
            return cls[value.upper()]
        except KeyError:
            valid = ", ".join(e.name.lower() for e in cls)
            raise ValueError(
                f"Invalid level '{value}'. Valid values are: {valid}"
            ) from None


class VMKind(IntEnum):
    """Role of a VM slot reservation."""

    #: Serves tenant traffic from admission on.
    PRIMARY = 1
    #: Idle standby that takes over for a failed primary.
    BACKUP = 2


class BandwidthKind(IntEnum):
    """Component of a per-request link reservation."""

    PRIMARY = 1
    BACKUP = 2
    #: Backup need currently carried by a sharing set.
    SHARED_BACKUP = 3


class RejectionReason(IntEnum):
    """Why a request was not admitted."""

    NONE = 0
    #: No subtree could host the primary VMs with their hose bandwidth.
    PRIMARY_EMBEDDING = 1
    #: No subtree could host the backup VMs.
    BACKUP_EMBEDDING = 2
    #: Backups were placed but failover bandwidth could not be reserved.
    BACKUP_MAPPING_BANDWIDTH = 3


class RetryState(IntEnum):
    """States of the admission controller loop."""

    SEARCHING = 1
    MAPPING = 2
    ADMITTED = 3
    RETRY_WIDER = 4
    RETRY_NO_COLLOCATE = 5
    REJECTED = 6


class MappingStatus(IntEnum):
    """Verdict of a bandwidth mapping solver."""

    FEASIBLE = 1
    INFEASIBLE = 2


class EventType(IntEnum):
    """Request lifecycle events. Arrivals sort before departures at equal times."""

    ARRIVAL = 1
    DEPARTURE = 2
