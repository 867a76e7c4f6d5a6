"""Event-driven admission simulation.

Each event runs to completion before the next one starts: an arrival places
primaries, protects the request and recomputes sharing on the links it
touches; a departure releases the request and recomputes sharing on the
links it held.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from ftadmit.admission import AdmissionController, AdmissionOutcome
from ftadmit.config import ADMISSION_CONFIG, AdmissionConfig, RevenueConfig
from ftadmit.events import RequestEvent, events_for
from ftadmit.logging import get_logger
from ftadmit.placement.policy import policy_from_name
from ftadmit.placement.primary import HosePrimaryPlacer, PrimaryPlacer
from ftadmit.seed_manager import SeedManager
from ftadmit.sharing import BandwidthSharingEngine
from ftadmit.status import NetworkStatus
from ftadmit.types.base import EventType, RejectionReason

if TYPE_CHECKING:
    from ftadmit.model.request import Request
    from ftadmit.model.topology import FatTree
    from ftadmit.solver.base import BandwidthMappingSolver

__all__ = ["Simulation"]

logger = get_logger(__name__)


class Simulation:
    """Replay a workload against a tree.

    Args:
        tree: Topology to admit into. It is mutated by the run.
        requests: Workload; ids must be unique.
        config: Admission settings.
        seed: Master seed for backup server selection.
        solver: Mapping solver; the hose heuristic when omitted.
        placer: Primary placer; :class:`HosePrimaryPlacer` when omitted.
        revenue: Prices for the revenue metric.
    """

    def __init__(
        self,
        tree: "FatTree",
        requests: Iterable["Request"],
        config: Optional[AdmissionConfig] = None,
        seed: Optional[int] = None,
        solver: Optional["BandwidthMappingSolver"] = None,
        placer: Optional[PrimaryPlacer] = None,
        revenue: Optional[RevenueConfig] = None,
    ) -> None:
        self.tree = tree
        self.config = config if config is not None else ADMISSION_CONFIG
        self.requests: Dict[int, "Request"] = {}
        for request in requests:
            if request.id in self.requests:
                raise ValueError(f"Duplicate request id {request.id}")
            self.requests[request.id] = request

        seeds = SeedManager(seed)
        policy = policy_from_name(self.config.failure_domain)
        self.placer = placer if placer is not None else HosePrimaryPlacer(tree)
        self.controller = AdmissionController(
            tree,
            solver=solver,
            policy=policy,
            config=self.config,
            rng=seeds.create_random_state("backup_search"),
        )
        self.sharing = (
            BandwidthSharingEngine(tree, policy) if self.config.share_bandwidth else None
        )
        self.status = NetworkStatus(tree, revenue)
        self.outcomes: Dict[int, AdmissionOutcome] = {}
        self.events: List[RequestEvent] = events_for(self.requests.values())

    def run(self) -> NetworkStatus:
        """Process every event in order and return the final status."""
        logger.info(
            "Simulating %d request(s), %d event(s)", len(self.requests), len(self.events)
        )
        for event in self.events:
            self.process(event)
        summary = self.status.summary()
        logger.info(
            "Simulation done: %d/%d admitted, rejection rate %.1f%%",
            summary["admitted"],
            summary["processed"],
            summary["rejection_rate"],
        )
        return self.status

    def process(self, event: RequestEvent) -> None:
        request = self.requests[event.request_id]
        if event.type == EventType.ARRIVAL:
            self.arrive(request)
        else:
            self.depart(request)

    def arrive(self, request: "Request") -> AdmissionOutcome:
        """Place, protect and share one arriving request."""
        if self.placer.place(request) is None:
            request.rejection_reason = RejectionReason.PRIMARY_EMBEDDING
            outcome = AdmissionOutcome(
                request_id=request.id, reason=RejectionReason.PRIMARY_EMBEDDING
            )
            logger.info("Request %d rejected: %s", request.id, outcome.reason.name)
        else:
            outcome = self.controller.protect_request(request)
            if outcome.admitted and self.sharing is not None:
                self._share_after_arrival(request, outcome)
        self.outcomes[request.id] = outcome
        self.status.record(request)
        return outcome

    def depart(self, request: "Request") -> None:
        """Release an admitted request and re-share the links it used."""
        if not request.admitted:
            return
        touched = self.tree.links_used_by(request.id)
        self.tree.release_request(request)
        if self.sharing is not None:
            self.sharing.share(touched)
        logger.debug("Request %d departed, %d link(s) re-shared", request.id, len(touched))

    def _share_after_arrival(self, request: "Request", outcome: AdmissionOutcome) -> None:
        touched = self.tree.links_used_by(request.id)
        if self.sharing.share(touched):  # type: ignore[union-attr]
            return
        self.tree.release_request(request)
        request.admitted = False
        request.rejection_reason = RejectionReason.BACKUP_MAPPING_BANDWIDTH
        request.worst_case_survivability = None
        outcome.admitted = False
        outcome.reason = RejectionReason.BACKUP_MAPPING_BANDWIDTH
        outcome.scope = None
        self.sharing.share(touched)  # type: ignore[union-attr]
        logger.info(
            "Request %d rejected: sharing sets could not be committed", request.id
        )
