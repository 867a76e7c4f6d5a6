"""Enumeration baseline for backup placement.

Instead of widening scope by scope, the baseline draws a number of random
backup placements over the whole tree, scores each with the mapping solver
and keeps the cheapest feasible one. It plugs into
:class:`~ftadmit.admission.AdmissionController` in place of the recursive
search, which makes it useful as a point of comparison.
"""

from __future__ import annotations

import random
from collections import Counter
from typing import TYPE_CHECKING, Dict, Optional

from ftadmit.exceptions import SolverError
from ftadmit.logging import get_logger
from ftadmit.placement.backup import BackupPlacementSearch
from ftadmit.placement.policy import FailureDomainPolicy
from ftadmit.solver.base import BandwidthMappingSolver, MappingProblem
from ftadmit.solver.hose import HoseMappingSolver
from ftadmit.types.base import VMKind

if TYPE_CHECKING:
    from ftadmit.model.request import Request
    from ftadmit.model.topology import FatTree
    from ftadmit.model.view import SubtreeView

__all__ = ["EnumerationBackupSearch"]

logger = get_logger(__name__)


class EnumerationBackupSearch(BackupPlacementSearch):
    """Keep the best of ``attempts`` random tree-wide backup placements.

    Args:
        tree: Topology whose ledger receives the reservations.
        attempts: Number of random placements drawn per search.
        solver: Scores each placement. Defaults to :class:`HoseMappingSolver`.
        rng: Random source for server picks.
        policy: Failure-domain policy sizing the backup set.
    """

    def __init__(
        self,
        tree: "FatTree",
        attempts: int,
        solver: Optional[BandwidthMappingSolver] = None,
        rng: Optional[random.Random] = None,
        policy: Optional[FailureDomainPolicy] = None,
    ) -> None:
        if attempts < 1:
            raise ValueError(f"attempts must be at least 1, got {attempts}")
        super().__init__(tree, rng=rng, policy=policy)
        self.attempts = attempts
        self.solver = solver if solver is not None else HoseMappingSolver()

    def search(
        self,
        request: "Request",
        subtree: Optional["SubtreeView"],
        main_subtree: "SubtreeView",
        collocate: bool = True,
    ) -> Optional["SubtreeView"]:
        """Place the cheapest feasible backup set found over the whole tree.

        ``subtree``, ``main_subtree`` and ``collocate`` are accepted for
        compatibility and ignored: every draw spans the tree and avoids the
        primaries' failure domains.

        Returns:
            The root view with backups placed, or None when no draw could
            place the full backup set. When draws fit but none is feasible,
            the first complete draw is placed so the mapping step rejects it.
        """
        root = self.tree.root_view()
        needed = self.policy.backups_needed(self.tree, request)
        if needed == 0:
            return root

        best: Optional[Dict[int, int]] = None
        best_objective = 0.0
        fallback: Optional[Dict[int, int]] = None
        for attempt in range(self.attempts):
            placed = self._place_on_non_hosting(root, request, needed)
            hosts = dict(Counter(vm.host.id for vm in request.backups))
            objective = self._score(request) if placed == needed else None
            self.tree.release_request(request, VMKind.BACKUP)
            if placed < needed:
                continue
            if fallback is None:
                fallback = hosts
            if objective is not None and (best is None or objective < best_objective):
                best, best_objective = hosts, objective
            logger.debug(
                "Request %d: draw %d on servers %s scored %s",
                request.id,
                attempt,
                sorted(hosts),
                objective,
            )

        chosen = best if best is not None else fallback
        if chosen is None:
            return None
        for index, count in sorted(chosen.items()):
            self.tree.servers[index].reserve_vms(count, request, VMKind.BACKUP)
        return root

    def _score(self, request: "Request") -> Optional[float]:
        """Solver objective of the current placement; None when infeasible."""
        problem = MappingProblem.from_tree(self.tree, request, self.policy)
        try:
            result = self.solver.solve(problem)
        except (SolverError, TimeoutError) as exc:
            logger.warning(
                "Request %d: mapping solver unavailable (%s) while scoring a draw",
                request.id,
                exc,
            )
            return None
        return result.objective if result.feasible else None
