"""ftadmit: fault-tolerant admission control for fat-tree datacenters.

ftadmit admits tenant requests of N VMs with per-VM hose bandwidth B onto a
server/TOR/aggregate/core tree, then adds backup VMs and failover bandwidth
so that any single server (or TOR) failure leaves every admitted request
whole. Backup bandwidth is shared on each link between tenants that no single
failure can activate together.

Primary API:
    FatTree - Topology and resource ledger
    Request - Tenant request
    HosePrimaryPlacer - Default primary placement
    AdmissionController - Backup protection with retry and rollback
    BandwidthSharingEngine - Backup bandwidth sharing sets
    Simulation / Scenario - Event-driven runs from code or YAML

Example:
    from ftadmit import AdmissionController, FatTree, HosePrimaryPlacer, Request

    tree = FatTree(8, 4, 2, 2, 2, 1000, 10000, 10000)
    request = Request(id=0, n_vms=3, bandwidth=100)
    HosePrimaryPlacer(tree).place(request)
    outcome = AdmissionController(tree).protect_request(request)
"""

from __future__ import annotations

from ftadmit import cli, logging
from ftadmit._version import __version__
from ftadmit.admission import AdmissionController, AdmissionOutcome
from ftadmit.config import AdmissionConfig, RevenueConfig
from ftadmit.events import RequestEvent, events_for, generate_requests
from ftadmit.exceptions import AdmissionError, CapacityError, FtAdmitError, SolverError
from ftadmit.failure import (
    active_vms_after_failure,
    fault_tolerance,
    worst_case_survivability,
)
from ftadmit.model import (
    FatTree,
    Link,
    PhysicalMachine,
    Request,
    SharingSet,
    SubtreeView,
    VirtualMachine,
)
from ftadmit.placement import (
    BackupPlacementSearch,
    EnumerationBackupSearch,
    HosePrimaryPlacer,
    ServerFailurePolicy,
    TorFailurePolicy,
)
from ftadmit.scenario import Scenario
from ftadmit.sharing import BandwidthSharingEngine
from ftadmit.simulation import Simulation
from ftadmit.solver import HoseMappingSolver, MappingProblem, MappingResult
from ftadmit.status import NetworkStatus
from ftadmit.types.base import (
    BandwidthKind,
    EventType,
    Level,
    MappingStatus,
    RejectionReason,
    RetryState,
    VMKind,
)

__all__ = [
    # Version
    "__version__",
    # Model
    "FatTree",
    "Link",
    "PhysicalMachine",
    "Request",
    "SharingSet",
    "SubtreeView",
    "VirtualMachine",
    # Admission
    "AdmissionController",
    "AdmissionOutcome",
    "BackupPlacementSearch",
    "BandwidthSharingEngine",
    "EnumerationBackupSearch",
    "HoseMappingSolver",
    "HosePrimaryPlacer",
    "MappingProblem",
    "MappingResult",
    "ServerFailurePolicy",
    "TorFailurePolicy",
    # Failure queries
    "active_vms_after_failure",
    "fault_tolerance",
    "worst_case_survivability",
    # Simulation
    "NetworkStatus",
    "RequestEvent",
    "Scenario",
    "Simulation",
    "events_for",
    "generate_requests",
    # Config
    "AdmissionConfig",
    "RevenueConfig",
    # Types
    "BandwidthKind",
    "EventType",
    "Level",
    "MappingStatus",
    "RejectionReason",
    "RetryState",
    "VMKind",
    # Errors
    "AdmissionError",
    "CapacityError",
    "FtAdmitError",
    "SolverError",
    # Modules
    "cli",
    "logging",
]
