"""Primary VM placement under the hose model.

A request of N VMs with per-VM bandwidth B needs ``min(k, N - k) * B`` on
every link that separates k of its VMs from the other N - k. The default
placer looks for the lowest subtree that fits the request, preferring the
subtree whose uplink has the least residual bandwidth so that well-connected
subtrees stay free for larger requests.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Dict, List, Optional, Protocol

from ftadmit.logging import get_logger
from ftadmit.types.base import HEIGHT, MIN_BW, BandwidthKind, Level, RejectionReason, VMKind

if TYPE_CHECKING:
    from ftadmit.model.request import Request
    from ftadmit.model.topology import FatTree, PhysicalMachine
    from ftadmit.model.view import SubtreeView

__all__ = ["HosePrimaryPlacer", "PrimaryPlacer", "hose_bandwidth"]

logger = get_logger(__name__)


def hose_bandwidth(inside: int, total: int, bandwidth: float) -> float:
    """Bandwidth a link needs when ``inside`` of ``total`` VMs sit below it."""
    return min(inside, total - inside) * bandwidth


class PrimaryPlacer(Protocol):
    """Places the primary VMs of a request and reserves their bandwidth."""

    def place(self, request: "Request") -> Optional["SubtreeView"]:
        """Reserve primaries for ``request``.

        Returns:
            The subtree holding the primaries (also stored on
            ``request.subtree``), or None when the request does not fit.
        """
        ...


class HosePrimaryPlacer:
    """Lowest-subtree-first hose placement.

    Args:
        tree: Topology to place into.
        start_level: Lowest subtree level tried.
    """

    def __init__(self, tree: "FatTree", start_level: Level = Level.TOR) -> None:
        self.tree = tree
        self.start_level = start_level

    def place(self, request: "Request") -> Optional["SubtreeView"]:
        for level in range(int(self.start_level), HEIGHT + 1):
            for view in self._candidates(level, request):
                allocation = self._plan(view, request)
                if allocation is None:
                    continue
                self._commit(view, request, allocation)
                logger.debug(
                    "Request %d: %d primaries placed in %r",
                    request.id,
                    request.n_vms,
                    view,
                )
                return view
        request.rejection_reason = RejectionReason.PRIMARY_EMBEDDING
        logger.debug("Request %d: no subtree fits its primaries", request.id)
        return None

    def _candidates(self, level: int, request: "Request") -> List["SubtreeView"]:
        views = [
            self.tree.subtree(node.key)
            for node in self.tree.nodes_at(level)
        ]
        views = [v for v in views if v.available_vms >= request.n_vms]

        def uplink_residual(view: "SubtreeView") -> float:
            uplink = view.uplink
            return math.inf if uplink is None else uplink.residual_bandwidth

        views.sort(key=lambda v: (uplink_residual(v), v.root_key))
        return views

    def _plan(
        self, view: "SubtreeView", request: "Request"
    ) -> Optional[Dict["PhysicalMachine", int]]:
        """Split the request over the servers of ``view`` without reserving."""
        n, b = request.n_vms, request.bandwidth
        remaining = n
        allocation: Dict["PhysicalMachine", int] = {}
        for pm in view.servers:
            if remaining == 0:
                break
            if pm.available_vms == 0:
                continue
            count = min(remaining, pm.available_vms)
            # A server holding the whole request sends nothing over its uplink.
            if view.level > Level.SERVER and b > MIN_BW and count < n:
                residual = pm.uplink.residual_bandwidth  # type: ignore[union-attr]
                if residual < b:
                    continue
                if residual + MIN_BW < hose_bandwidth(count, n, b):
                    count = int(residual // b)
            if count == 0:
                continue
            allocation[pm] = count
            remaining -= count
        if remaining:
            return None

        for node in self.tree.nodes_under(view.root_key):
            if node.level == Level.SERVER or node.uplink is None:
                continue
            inside = sum(
                count
                for pm, count in allocation.items()
                if self.tree.is_under(pm.key, node.key)
            )
            if node.uplink.residual_bandwidth + MIN_BW < hose_bandwidth(inside, n, b):
                return None
        return allocation

    def _commit(
        self,
        view: "SubtreeView",
        request: "Request",
        allocation: Dict["PhysicalMachine", int],
    ) -> None:
        for pm, count in allocation.items():
            pm.reserve_vms(count, request, VMKind.PRIMARY)
        per_host = request.vms_per_host()
        for link in view.links:
            inside = sum(
                count
                for key, count in per_host.items()
                if self.tree.is_under(key, link.source.key)
            )
            need = hose_bandwidth(inside, request.n_vms, request.bandwidth)
            if not link.reserve_bandwidth(need, request.id, BandwidthKind.PRIMARY):
                raise RuntimeError(
                    f"{link.name}: planned primary bandwidth {need} no longer fits"
                )
        request.subtree = view
        self.tree.register(request)
        self.tree.refresh_request(request)
