"""Interface between the admission controller and bandwidth mapping solvers.

A solver receives a snapshot of one request's tentative placement and decides
whether failover bandwidth can be reserved for it. It returns per-link backup
bandwidth deltas plus a primary to backup assignment, and never touches the
ledger itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Protocol, Tuple

from ftadmit.types.base import MappingStatus, VMKind

if TYPE_CHECKING:
    from ftadmit.model.request import Request, VirtualMachine
    from ftadmit.model.topology import FatTree
    from ftadmit.model.view import SubtreeView
    from ftadmit.placement.policy import FailureDomainPolicy

__all__ = ["BandwidthMappingSolver", "MappingProblem", "MappingResult"]


@dataclass(frozen=True)
class MappingProblem:
    """Everything a solver may look at for one decision.

    Attributes:
        tree: Topology, for structure queries only.
        request: Request under admission.
        domains: Failure domains holding primaries of the request.
        primaries: Primary VMs, by id.
        backups: Tentative backup VMs, by id.
        residual: Residual bandwidth per link id at snapshot time.
        primary_reserved: Primary bandwidth of this request per link id.
    """

    tree: "FatTree"
    request: "Request"
    domains: Tuple["SubtreeView", ...]
    primaries: Tuple["VirtualMachine", ...]
    backups: Tuple["VirtualMachine", ...]
    residual: Dict[int, float]
    primary_reserved: Dict[int, float]

    @classmethod
    def from_tree(
        cls,
        tree: "FatTree",
        request: "Request",
        policy: "FailureDomainPolicy",
    ) -> "MappingProblem":
        """Snapshot the ledger state relevant to ``request``."""
        vms = sorted(request.vms, key=lambda vm: vm.id)
        return cls(
            tree=tree,
            request=request,
            domains=tuple(policy.domains(tree, request)),
            primaries=tuple(vm for vm in vms if vm.kind == VMKind.PRIMARY),
            backups=tuple(vm for vm in vms if vm.kind == VMKind.BACKUP),
            residual={link.id: link.residual_bandwidth for link in tree.links},
            primary_reserved={
                link.id: link.usage(request.id).primary for link in tree.links
            },
        )


@dataclass
class MappingResult:
    """Solver verdict.

    Attributes:
        status: FEASIBLE or INFEASIBLE.
        objective: Total backup bandwidth added when feasible, negative
            otherwise.
        link_deltas: Backup bandwidth to reserve per link id.
        primary_to_backup: Backup VM id protecting each primary VM id.
        reason: Short explanation for an infeasible verdict.
    """

    status: MappingStatus
    objective: float
    link_deltas: Dict[int, float] = field(default_factory=dict)
    primary_to_backup: Dict[int, int] = field(default_factory=dict)
    reason: Optional[str] = None

    @property
    def feasible(self) -> bool:
        return self.status == MappingStatus.FEASIBLE and self.objective >= 0

    @classmethod
    def infeasible(cls, reason: str) -> "MappingResult":
        return cls(status=MappingStatus.INFEASIBLE, objective=-1.0, reason=reason)


class BandwidthMappingSolver(Protocol):
    """Decides failover bandwidth for a tentative placement.

    Implementations must be deterministic for a given problem and may raise
    :class:`ftadmit.exceptions.SolverError` (or ``TimeoutError``) when they
    cannot reach a verdict; the controller treats that as infeasible.
    """

    def solve(self, problem: MappingProblem) -> MappingResult:
        ...


def primaries_in(
    problem: MappingProblem, domain: "SubtreeView"
) -> List["VirtualMachine"]:
    """Primaries lost when ``domain`` fails."""
    return [vm for vm in problem.primaries if domain.contains(vm.host_key)]
