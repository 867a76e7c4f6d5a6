"""Deterministic hose-model mapping solver.

For every failure domain the solver assigns each lost primary to a distinct
surviving backup, preferring the backup closest to the primary in the tree.
It then recomputes hose demand on every link for the post-failure set of
active VMs. A link needs extra backup bandwidth equal to its worst demand
over all failures minus what the request already holds there for primaries.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Dict, List, Set, Tuple

from ftadmit.logging import get_logger
from ftadmit.placement.primary import hose_bandwidth
from ftadmit.solver.base import MappingProblem, MappingResult, primaries_in
from ftadmit.types.base import MIN_BW, MappingStatus, NodeKey

if TYPE_CHECKING:
    from ftadmit.model.request import VirtualMachine
    from ftadmit.model.view import SubtreeView

__all__ = ["HoseMappingSolver"]

logger = get_logger(__name__)


class HoseMappingSolver:
    """Greedy closest-backup mapping with hose bandwidth checks."""

    def solve(self, problem: MappingProblem) -> MappingResult:
        tree = problem.tree
        request = problem.request
        mapping: Dict[int, int] = {}
        scenarios: List[Tuple["SubtreeView", Counter]] = []

        for domain in problem.domains:
            failed = primaries_in(problem, domain)
            survivors = [
                vm for vm in problem.backups if not domain.contains(vm.host_key)
            ]
            if len(survivors) < len(failed):
                return MappingResult.infeasible(
                    f"{len(failed)} primaries lost in {domain!r} but only "
                    f"{len(survivors)} backup(s) survive"
                )
            taken: Set[int] = set()
            active: Counter = Counter(
                vm.host_key for vm in problem.primaries if vm not in failed
            )
            for primary in failed:
                backup = min(
                    (vm for vm in survivors if vm.id not in taken),
                    key=lambda vm: self._distance(problem, vm, primary),
                )
                taken.add(backup.id)
                mapping[primary.id] = backup.id
                active[backup.host_key] += 1
            scenarios.append((domain, active))

        deltas: Dict[int, float] = {}
        for link in tree.links:
            worst = 0.0
            for domain, active in scenarios:
                if domain.contains(link.source.key):
                    continue
                inside = self._inside(problem, active, link.source.key)
                worst = max(worst, hose_bandwidth(inside, request.n_vms, request.bandwidth))
            delta = worst - problem.primary_reserved.get(link.id, 0.0)
            if delta <= MIN_BW:
                continue
            if delta > problem.residual[link.id] + MIN_BW:
                return MappingResult.infeasible(
                    f"{link.name} needs {delta:g} backup bandwidth, "
                    f"{problem.residual[link.id]:g} left"
                )
            deltas[link.id] = delta

        return MappingResult(
            status=MappingStatus.FEASIBLE,
            objective=sum(deltas.values()),
            link_deltas=deltas,
            primary_to_backup=mapping,
        )

    @staticmethod
    def _distance(
        problem: MappingProblem, backup: "VirtualMachine", primary: "VirtualMachine"
    ) -> Tuple[int, int]:
        ancestor = problem.tree.lowest_common_ancestor(backup.host_key, primary.host_key)
        return (ancestor[0], backup.id)

    @staticmethod
    def _inside(problem: MappingProblem, active: Counter, root: NodeKey) -> int:
        return sum(
            count for key, count in active.items() if problem.tree.is_under(key, root)
        )
