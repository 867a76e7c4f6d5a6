"""Single-failure queries over admitted requests.

All functions are read-only. A request's VM survives a failure when its host
lies outside the failed subtree; a lost primary is replaced when its
protecting backup survives.
"""

from __future__ import annotations

from statistics import fmean
from typing import TYPE_CHECKING, Iterable, List

from ftadmit.placement.policy import FailureDomainPolicy
from ftadmit.types.base import Level

if TYPE_CHECKING:
    from ftadmit.model.request import Request
    from ftadmit.model.topology import FatTree
    from ftadmit.model.view import SubtreeView

__all__ = [
    "active_vms_after_failure",
    "average_fault_tolerance",
    "fault_tolerance",
    "network_fault_tolerance",
    "worst_case_survivability",
]


def active_vms_after_failure(request: "Request", failed_domain: "SubtreeView") -> int:
    """Count the VMs of ``request`` serving traffic once ``failed_domain`` is down.

    Args:
        request: Request to evaluate.
        failed_domain: Failed server or switch subtree.

    Returns:
        Surviving primaries plus surviving backups standing in for lost ones.
    """
    active = 0
    for primary in request.primaries:
        if not failed_domain.contains(primary.host_key):
            active += 1
            continue
        backup = primary.protected_by
        if backup is not None and not failed_domain.contains(backup.host_key):
            active += 1
    return active


def fault_tolerance(request: "Request", failed_domain: "SubtreeView") -> float:
    """Fraction of the request's N VMs active after ``failed_domain`` fails."""
    return active_vms_after_failure(request, failed_domain) / request.n_vms


def worst_case_survivability(
    tree: "FatTree", request: "Request", level: Level = Level.SERVER
) -> float:
    """Lowest fault tolerance over single failures of nodes at ``level``.

    Only nodes holding primaries of the request are considered; any other
    failure leaves every primary running. Returns 1.0 for a request with no
    primaries.
    """
    roots = FailureDomainPolicy(level).primaries_per_domain(tree, request)
    if not roots:
        return 1.0
    return min(fault_tolerance(request, tree.subtree(key)) for key in roots)


def average_fault_tolerance(
    requests: Iterable["Request"], failed_domain: "SubtreeView"
) -> float:
    """Mean fault tolerance of ``requests`` under one failure; 1.0 if none."""
    values = [fault_tolerance(r, failed_domain) for r in requests]
    return fmean(values) if values else 1.0


def network_fault_tolerance(
    tree: "FatTree", requests: Iterable["Request"], level: Level = Level.SERVER
) -> float:
    """Mean of :func:`average_fault_tolerance` over every node at ``level``."""
    present: List["Request"] = list(requests)
    return fmean(
        average_fault_tolerance(present, tree.subtree(node.key))
        for node in tree.nodes_at(level)
    )

