"""Admission control for backup protection of placed requests.

The controller drives a small state machine per request. Each round searches
for a backup scope, asks the mapping solver whether failover bandwidth fits,
and on failure widens the scope or drops collocation before giving up. Every
retry releases the request's tentative backups first, so a rejected request
leaves the ledger exactly as it found it.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from ftadmit.config import ADMISSION_CONFIG, AdmissionConfig
from ftadmit.exceptions import AdmissionError, SolverError
from ftadmit.failure import worst_case_survivability
from ftadmit.logging import get_logger
from ftadmit.placement.backup import BackupPlacementSearch
from ftadmit.placement.enumeration import EnumerationBackupSearch
from ftadmit.placement.policy import FailureDomainPolicy, policy_from_name
from ftadmit.solver.base import (
    BandwidthMappingSolver,
    MappingProblem,
    MappingResult,
)
from ftadmit.solver.hose import HoseMappingSolver
from ftadmit.types.base import HEIGHT, BandwidthKind, RejectionReason, RetryState, VMKind

if TYPE_CHECKING:
    from ftadmit.model.request import Request
    from ftadmit.model.topology import FatTree, Link
    from ftadmit.model.view import SubtreeView

__all__ = ["AdmissionController", "AdmissionOutcome"]

logger = get_logger(__name__)

# SEARCHING, MAPPING and one retry state per round, two passes of at most
# HEIGHT + 1 scopes each, plus the final state.
_MAX_STEPS = 6 * (HEIGHT + 1) + 2


@dataclass
class AdmissionOutcome:
    """Result of :meth:`AdmissionController.protect_request`.

    Attributes:
        request_id: Request the outcome belongs to.
        admitted: True when backups and failover bandwidth are reserved.
        reason: Rejection reason, NONE when admitted.
        scope: Subtree the backups ended up in, None when rejected.
        attempts: Number of solver calls made.
        states: Every state the controller visited, in order.
    """

    request_id: int
    admitted: bool = False
    reason: RejectionReason = RejectionReason.NONE
    scope: Optional["SubtreeView"] = None
    attempts: int = 0
    states: List[RetryState] = field(default_factory=list)


class AdmissionController:
    """Protect requests whose primaries are already placed.

    Args:
        tree: Topology and ledger.
        solver: Bandwidth mapping oracle. Defaults to :class:`HoseMappingSolver`.
        search: Backup placement search. Built from ``rng`` and the policy
            when omitted; the enumeration baseline when the config asks for
            enumeration attempts.
        policy: Failure-domain policy. Defaults to the one named in ``config``.
        config: Admission settings. Defaults to the module-level config.
        rng: Random source for the default search.
    """

    def __init__(
        self,
        tree: "FatTree",
        solver: Optional[BandwidthMappingSolver] = None,
        search: Optional[BackupPlacementSearch] = None,
        policy: Optional[FailureDomainPolicy] = None,
        config: Optional[AdmissionConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.tree = tree
        self.config = config if config is not None else ADMISSION_CONFIG
        self.policy = (
            policy if policy is not None else policy_from_name(self.config.failure_domain)
        )
        self.solver = solver if solver is not None else HoseMappingSolver()
        if search is not None:
            self.search = search
        elif self.config.enumeration_attempts > 0:
            self.search = EnumerationBackupSearch(
                tree,
                self.config.enumeration_attempts,
                solver=self.solver,
                rng=rng,
                policy=self.policy,
            )
        else:
            self.search = BackupPlacementSearch(tree, rng=rng, policy=self.policy)
        self.max_steps = self.config.max_steps or _MAX_STEPS

    def protect_request(
        self,
        request: "Request",
        scope: Optional["SubtreeView"] = None,
        collocate: Optional[bool] = None,
    ) -> AdmissionOutcome:
        """Reserve backups and failover bandwidth for ``request``.

        Args:
            request: Request with primaries placed and ``subtree`` set.
            scope: Where the first backup search starts. Defaults to
                ``request.subtree``.
            collocate: Allow backups on hosting servers. Defaults to the
                configured value.

        Returns:
            The outcome. A rejected request holds no VMs and no bandwidth.

        Raises:
            ValueError: If the request has no primary placement.
            AdmissionError: If the loop exceeds its step bound.
        """
        if request.subtree is None:
            raise ValueError(f"Request {request.id} has no primary placement")
        scope = scope if scope is not None else request.subtree
        collocate = self.config.collocate if collocate is None else collocate

        outcome = AdmissionOutcome(request_id=request.id)
        placement: Optional["SubtreeView"] = None
        state = RetryState.SEARCHING

        for _ in range(self.max_steps):
            outcome.states.append(state)

            if state == RetryState.SEARCHING:
                placement = self.search.search(request, scope, scope, collocate)
                if placement is None:
                    return self._reject(request, outcome, RejectionReason.BACKUP_EMBEDDING)
                state = RetryState.MAPPING

            elif state == RetryState.MAPPING:
                outcome.attempts += 1
                result = self._solve(request)
                if result.feasible and self._apply(request, result):
                    state = RetryState.ADMITTED
                elif not placement.is_top:  # type: ignore[union-attr]
                    state = RetryState.RETRY_WIDER
                elif collocate:
                    state = RetryState.RETRY_NO_COLLOCATE
                else:
                    state = RetryState.REJECTED

            elif state == RetryState.RETRY_WIDER:
                self.tree.release_request(request, VMKind.BACKUP)
                scope = placement.parent()  # type: ignore[union-attr]
                logger.debug("Request %d: mapping failed, widening to %r", request.id, scope)
                state = RetryState.SEARCHING

            elif state == RetryState.RETRY_NO_COLLOCATE:
                self.tree.release_request(request, VMKind.BACKUP)
                scope = request.subtree
                collocate = False
                logger.debug("Request %d: mapping failed at the core, dropping collocation", request.id)
                state = RetryState.SEARCHING

            elif state == RetryState.ADMITTED:
                return self._admit(request, outcome, placement)  # type: ignore[arg-type]

            else:
                return self._reject(
                    request, outcome, RejectionReason.BACKUP_MAPPING_BANDWIDTH
                )

        raise AdmissionError(
            f"Request {request.id}: admission did not settle within {self.max_steps} steps"
        )

    def _solve(self, request: "Request") -> MappingResult:
        problem = MappingProblem.from_tree(self.tree, request, self.policy)
        try:
            return self.solver.solve(problem)
        except (SolverError, TimeoutError) as exc:
            logger.warning(
                "Request %d: mapping solver unavailable (%s), treating as infeasible",
                request.id,
                exc,
            )
            return MappingResult.infeasible(f"solver unavailable: {exc}")

    def _apply(self, request: "Request", result: MappingResult) -> bool:
        """Commit a feasible verdict; False (ledger unchanged) if it does not fit."""
        backups = {vm.id: vm for vm in request.backups}
        primaries = {vm.id: vm for vm in request.primaries}
        pairs = []
        for primary_id, backup_id in result.primary_to_backup.items():
            primary = primaries.get(primary_id)
            backup = backups.get(backup_id)
            if primary is None or backup is None or not backup.can_backup(primary):
                logger.warning(
                    "Request %d: solver mapped primary %s to unusable backup %s",
                    request.id,
                    primary_id,
                    backup_id,
                )
                return False
            pairs.append((primary, backup))

        applied: List["Link"] = []
        for link_id, delta in sorted(result.link_deltas.items()):
            link = self.tree.link(link_id)
            if not link.reserve_bandwidth(delta, request.id, BandwidthKind.BACKUP):
                logger.warning(
                    "Request %d: %s cannot take %g backup bandwidth, rolling back",
                    request.id,
                    link.name,
                    delta,
                )
                for done in applied:
                    done.release_bandwidth(request.id, BandwidthKind.BACKUP)
                return False
            applied.append(link)

        for primary, backup in pairs:
            primary.protected_by = backup
            backup.protects.append(primary)
        return True

    def _admit(
        self, request: "Request", outcome: AdmissionOutcome, placement: "SubtreeView"
    ) -> AdmissionOutcome:
        request.admitted = True
        request.rejection_reason = RejectionReason.NONE
        self.tree.register(request)
        self.tree.refresh_request(request)
        request.worst_case_survivability = worst_case_survivability(
            self.tree, request, self.policy.level
        )
        outcome.admitted = True
        outcome.scope = placement
        logger.info(
            "Request %d admitted: %d backup(s) in %r after %d mapping attempt(s)",
            request.id,
            request.reserved_backup_vms,
            placement,
            outcome.attempts,
        )
        return outcome

    def _reject(
        self, request: "Request", outcome: AdmissionOutcome, reason: RejectionReason
    ) -> AdmissionOutcome:
        self.tree.release_request(request)
        request.admitted = False
        request.rejection_reason = reason
        request.worst_case_survivability = None
        outcome.reason = reason
        logger.info("Request %d rejected: %s", request.id, reason.name)
        return outcome
