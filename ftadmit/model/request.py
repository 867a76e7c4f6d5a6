"""Tenant requests and the VMs reserved for them."""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

from ftadmit.types.base import NodeKey, RejectionReason, VMKind

if TYPE_CHECKING:
    from ftadmit.model.sharing import SharingSet
    from ftadmit.model.topology import PhysicalMachine
    from ftadmit.model.view import SubtreeView

__all__ = ["LinkUsage", "Request", "VirtualMachine"]


@dataclass(eq=False)
class VirtualMachine:
    """One occupied VM slot on a physical machine.

    Attributes:
        id: Topology-wide VM identifier.
        kind: PRIMARY or BACKUP.
        request: Owning request.
        host: Physical machine holding the slot.
        protected_by: For a primary, the backup that replaces it when its
            failure domain goes down. Set only after a feasible mapping.
        protects: For a backup, the primaries it replaces. A backup covers
            at most one primary per failure domain.
    """

    id: int
    kind: VMKind
    request: "Request" = field(repr=False)
    host: "PhysicalMachine" = field(repr=False)
    protected_by: Optional["VirtualMachine"] = field(default=None, repr=False)
    protects: List["VirtualMachine"] = field(default_factory=list, repr=False)

    @property
    def host_key(self) -> NodeKey:
        return self.host.key

    def can_backup(self, primary: "VirtualMachine") -> bool:
        """True if this VM may stand in for ``primary`` after a server failure."""
        return (
            self.kind == VMKind.BACKUP
            and primary.kind == VMKind.PRIMARY
            and self.request is primary.request
            and self.host is not primary.host
        )

    def detach(self) -> None:
        """Drop protection links in both directions."""
        for primary in self.protects:
            if primary.protected_by is self:
                primary.protected_by = None
        self.protects.clear()
        if self.protected_by is not None:
            try:
                self.protected_by.protects.remove(self)
            except ValueError:
                pass
            self.protected_by = None


@dataclass
class LinkUsage:
    """Bandwidth a request holds on one link."""

    primary: float = 0.0
    backup: float = 0.0
    shared: float = 0.0

    @property
    def total(self) -> float:
        """Bandwidth this request itself occupies, excluding sharing sets."""
        return self.primary + self.backup


@dataclass(eq=False)
class Request:
    """A tenant asking for ``n_vms`` VMs with hose bandwidth ``bandwidth`` each.

    The reservation state lives in the topology; the summaries here are
    refreshed from it by :meth:`ftadmit.model.topology.FatTree.refresh_request`.

    Attributes:
        id: Request identifier, unique within a simulation.
        n_vms: Number of primary VMs (N).
        bandwidth: Per-VM hose bandwidth (B).
        arrival_time: Arrival time in simulation units.
        departure_time: Departure time; ``inf`` means the request never leaves.
        admitted: True once primaries, backups and failover bandwidth are
            all reserved.
        rejection_reason: Why the request was refused, NONE otherwise.
        subtree: Smallest subtree holding the primaries.
        vms: Currently reserved VMs, primaries and backups.
        reserved_bandwidth: Per-link usage summary keyed by link id.
        reserved_backup_vms: Number of backup VMs held.
        sharing_sets: Sharing sets the request belongs to.
        worst_case_survivability: Smallest fraction of VMs still running
            after any single failure, computed on admission.
    """

    id: int
    n_vms: int
    bandwidth: float
    arrival_time: float = 0.0
    departure_time: float = math.inf
    admitted: bool = False
    rejection_reason: RejectionReason = RejectionReason.NONE
    subtree: Optional["SubtreeView"] = field(default=None, repr=False)
    vms: List[VirtualMachine] = field(default_factory=list, repr=False)
    reserved_bandwidth: Dict[int, LinkUsage] = field(default_factory=dict, repr=False)
    reserved_backup_vms: int = 0
    sharing_sets: List["SharingSet"] = field(default_factory=list, repr=False)
    worst_case_survivability: Optional[float] = None

    def __post_init__(self) -> None:
        if self.n_vms < 1:
            raise ValueError(f"Request {self.id}: n_vms must be >= 1")
        if self.bandwidth < 0:
            raise ValueError(f"Request {self.id}: bandwidth must be >= 0")
        if self.departure_time < self.arrival_time:
            raise ValueError(f"Request {self.id}: departs before it arrives")

    @property
    def primaries(self) -> List[VirtualMachine]:
        return [vm for vm in self.vms if vm.kind == VMKind.PRIMARY]

    @property
    def backups(self) -> List[VirtualMachine]:
        return [vm for vm in self.vms if vm.kind == VMKind.BACKUP]

    def vms_per_host(self, kind: VMKind = VMKind.PRIMARY) -> Dict[NodeKey, int]:
        """Count VMs of ``kind`` per hosting server key."""
        return dict(Counter(vm.host_key for vm in self.vms if vm.kind == kind))

    @property
    def backup_needed(self) -> int:
        """Largest number of primaries on a single server, 0 if none placed.

        A single server failure loses at most this many primaries, so this
        many backups outside that server restore the full request.
        """
        per_host = self.vms_per_host(VMKind.PRIMARY)
        return max(per_host.values()) if per_host else 0

    @property
    def hosting_server_count(self) -> int:
        return len(self.vms_per_host(VMKind.PRIMARY))

    @property
    def total_reserved_bandwidth(self) -> float:
        """Bandwidth held in the request's own name, sharing excluded."""
        return sum(usage.total for usage in self.reserved_bandwidth.values())

    @property
    def holds_resources(self) -> bool:
        return bool(self.vms) or bool(self.reserved_bandwidth)
