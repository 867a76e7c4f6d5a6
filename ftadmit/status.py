"""Network-wide status and per-request records for a simulation run."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import pandas as pd

from ftadmit.config import REVENUE_CONFIG, RevenueConfig
from ftadmit.failure import network_fault_tolerance
from ftadmit.types.base import Level, MIN_BW, RejectionReason

if TYPE_CHECKING:
    from ftadmit.model.request import Request
    from ftadmit.model.topology import FatTree

__all__ = ["NetworkStatus"]

_COLUMNS = [
    "request_id",
    "n_vms",
    "bandwidth",
    "arrival_time",
    "departure_time",
    "admitted",
    "rejection_reason",
    "backup_vms",
    "reserved_bandwidth",
    "shared_bandwidth",
    "sharing_sets",
    "worst_case_survivability",
]


class NetworkStatus:
    """Aggregate metrics over the requests a simulation has processed.

    Records are snapshots taken when an arrival finishes processing, so they
    stay meaningful after the request departs and releases its resources.
    Live metrics (reserved bandwidth, sharing, fault tolerance) read the
    current ledger.

    Args:
        tree: Topology being simulated.
        revenue: Prices used by :meth:`revenue`.
    """

    def __init__(
        self, tree: "FatTree", revenue: Optional[RevenueConfig] = None
    ) -> None:
        self.tree = tree
        self.revenue_config = revenue if revenue is not None else REVENUE_CONFIG
        self.records: List[Dict[str, Any]] = []

    def record(self, request: "Request") -> None:
        """Snapshot ``request`` after its arrival was processed."""
        self.records.append(
            {
                "request_id": request.id,
                "n_vms": request.n_vms,
                "bandwidth": request.bandwidth,
                "arrival_time": request.arrival_time,
                "departure_time": request.departure_time,
                "admitted": request.admitted,
                "rejection_reason": request.rejection_reason.name,
                "backup_vms": request.reserved_backup_vms,
                "reserved_bandwidth": request.total_reserved_bandwidth,
                "shared_bandwidth": sum(
                    u.shared for u in request.reserved_bandwidth.values()
                ),
                "sharing_sets": len(request.sharing_sets),
                "worst_case_survivability": (
                    request.worst_case_survivability
                    if request.worst_case_survivability is not None
                    else math.nan
                ),
            }
        )

    @property
    def processed(self) -> int:
        return len(self.records)

    @property
    def admitted(self) -> int:
        return sum(1 for r in self.records if r["admitted"])

    def rejection_rate(self) -> float:
        """Percentage of processed requests that were rejected."""
        if not self.records:
            return 0.0
        return 100.0 * (self.processed - self.admitted) / self.processed

    def rejections_by_reason(self) -> Dict[str, int]:
        counts = {
            reason.name: 0 for reason in RejectionReason if reason != RejectionReason.NONE
        }
        for r in self.records:
            if not r["admitted"]:
                counts[r["rejection_reason"]] += 1
        return counts

    def revenue(self) -> float:
        """Revenue of every admitted request."""
        return sum(
            self.revenue_config.request_revenue(r["n_vms"])
            for r in self.records
            if r["admitted"]
        )

    def current_reserved_bandwidth(self) -> float:
        return self.tree.reserved_bandwidth()

    def total_reserved_backup_vms(self) -> int:
        """Backup VMs held by requests still in the network."""
        return sum(len(r.backups) for r in self.tree.requests.values())

    def bandwidth_to_share(self) -> float:
        return self.tree.bandwidth_to_share()

    def total_shared_bandwidth(self) -> float:
        return self.tree.shared_bandwidth()

    def sharing_gain(self) -> float:
        """Percentage of shareable backup bandwidth saved by sharing sets."""
        to_share = self.bandwidth_to_share()
        if to_share <= MIN_BW:
            return 0.0
        return 100.0 * (to_share - self.total_shared_bandwidth()) / to_share

    def fault_tolerance(self, level: Level = Level.SERVER) -> float:
        """Average fault tolerance of present requests over all single failures."""
        return network_fault_tolerance(self.tree, self.tree.requests.values(), level)

    def summary(self) -> Dict[str, float]:
        """Headline metrics as a flat mapping."""
        return {
            "processed": self.processed,
            "admitted": self.admitted,
            "rejection_rate": self.rejection_rate(),
            "revenue": self.revenue(),
            "reserved_bandwidth": self.current_reserved_bandwidth(),
            "reserved_backup_vms": self.total_reserved_backup_vms(),
            "bandwidth_to_share": self.bandwidth_to_share(),
            "shared_bandwidth": self.total_shared_bandwidth(),
            "sharing_gain": self.sharing_gain(),
            "server_fault_tolerance": self.fault_tolerance(Level.SERVER),
        }

    def to_dataframe(self) -> pd.DataFrame:
        """One row per processed request, indexed by request id."""
        frame = pd.DataFrame.from_records(self.records, columns=_COLUMNS)
        return frame.set_index("request_id")
