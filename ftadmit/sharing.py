"""Backup bandwidth sharing between tenants.

Under a single-failure model, two requests whose backups can never be
activated by the same failure do not need separate backup bandwidth on a
link: reserving the larger of the two needs covers whichever one fires. The
engine groups such requests into sharing sets link by link, greedily from
the largest need down.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from ftadmit.logging import get_logger
from ftadmit.model.sharing import SharingSet
from ftadmit.placement.policy import FailureDomainPolicy, ServerFailurePolicy
from ftadmit.placement.primary import hose_bandwidth
from ftadmit.types.base import MIN_BW

if TYPE_CHECKING:
    from ftadmit.model.request import Request
    from ftadmit.model.topology import FatTree, Link
    from ftadmit.model.view import SubtreeView

__all__ = ["BandwidthSharingEngine"]

logger = get_logger(__name__)


class BandwidthSharingEngine:
    """Build and commit sharing sets on the links of a tree.

    Args:
        tree: Topology holding the reservations and request registry.
        policy: Failure-domain policy that defines which failures can
            co-occur. Defaults to single server failures.
    """

    def __init__(
        self, tree: "FatTree", policy: Optional[FailureDomainPolicy] = None
    ) -> None:
        self.tree = tree
        self.policy = policy if policy is not None else ServerFailurePolicy()

    def share(self, links: Iterable["Link"]) -> bool:
        """Recompute sharing sets on ``links``.

        Args:
            links: Links to recompute; duplicates are ignored.

        Returns:
            False if any link could not commit its new sets. Such a link
            keeps the sets it had before the call.
        """
        ok = True
        unique: Dict[int, "Link"] = {link.id: link for link in links}
        touched = set()
        for link_id in sorted(unique):
            link = unique[link_id]
            touched.update(link.reservations)
            previous = [
                SharingSet(link_id=link.id, needs=dict(s.needs))
                for s in link.sharing_sets
            ]
            self.release_tenants_shared_bandwidth(link)
            sets = self.build_sharing_sets(link)
            if not self.reserve_tenants_shared_bandwidth(link, sets):
                logger.warning(
                    "%s: new sharing sets exceed capacity, keeping previous ones",
                    link.name,
                )
                for sharing_set in previous:
                    link.add_sharing_set(sharing_set)
                ok = False
        for request_id in touched:
            request = self.tree.requests.get(request_id)
            if request is not None:
                self.tree.refresh_request(request)
        return ok

    def share_all(self) -> bool:
        return self.share(self.tree.links)

    def sharing_candidates(self, link: "Link") -> List["Request"]:
        """Requests holding only backup bandwidth on ``link``, largest first.

        A request that also has primary bandwidth on the link already reuses
        it for failover and is left out.
        """
        candidates = []
        for request_id, usage in link.reservations.items():
            need = usage.backup + usage.shared
            if usage.primary <= MIN_BW and need > MIN_BW:
                request = self.tree.requests.get(request_id)
                if request is not None:
                    candidates.append((need, request))
        candidates.sort(key=lambda item: (-item[0], item[1].id))
        return [request for _, request in candidates]

    def build_sharing_sets(self, link: "Link") -> List[SharingSet]:
        """Greedy first-fit grouping of the link's candidates.

        Each round seeds a set with the largest remaining need and adds every
        later candidate compatible with all current members. Sets that end up
        with a single member are dropped.
        """
        remaining = self.sharing_candidates(link)
        sets: List[SharingSet] = []
        while remaining:
            members = [remaining[0]]
            leftover = []
            for candidate in remaining[1:]:
                if all(self.can_share(candidate, member, link) for member in members):
                    members.append(candidate)
                else:
                    leftover.append(candidate)
            remaining = leftover
            if len(members) > 1:
                sharing_set = SharingSet(link_id=link.id)
                for member in members:
                    usage = link.usage(member.id)
                    sharing_set.add(member.id, usage.backup + usage.shared)
                sets.append(sharing_set)
        return sets

    def can_share(self, first: "Request", second: "Request", link: "Link") -> bool:
        """True unless one failure can activate both requests over ``link``.

        Both requests must have primaries in the failed domain and both must
        carry hose traffic across the link during that failure.
        """
        for domain in self.policy.domains(self.tree, first):
            if not any(domain.contains(vm.host_key) for vm in second.primaries):
                continue
            if self.uses_link_upon_failure(
                first, link, domain
            ) and self.uses_link_upon_failure(second, link, domain):
                return False
        return True

    def uses_link_upon_failure(
        self, request: "Request", link: "Link", domain: "SubtreeView"
    ) -> bool:
        """True if ``request`` sends traffic over ``link`` while ``domain`` is down."""
        if domain.contains(link.source.key):
            return False
        inside = 0
        for primary in request.primaries:
            if not domain.contains(primary.host_key):
                active_key = primary.host_key
            elif primary.protected_by is not None:
                active_key = primary.protected_by.host_key
            else:
                continue
            if self.tree.is_under(active_key, link.source.key):
                inside += 1
        return hose_bandwidth(inside, request.n_vms, request.bandwidth) > MIN_BW

    def reserve_tenants_shared_bandwidth(
        self, link: "Link", sets: List[SharingSet]
    ) -> bool:
        """Commit ``sets`` on ``link``; undo and return False if they do not fit."""
        for sharing_set in sets:
            link.add_sharing_set(sharing_set)
        if link.reserved_bandwidth > link.capacity + MIN_BW:
            self.release_tenants_shared_bandwidth(link)
            return False
        if sets:
            logger.debug(
                "%s: %d sharing set(s) save %g bandwidth",
                link.name,
                len(sets),
                sum(s.savings for s in sets),
            )
        return True

    def release_tenants_shared_bandwidth(self, link: "Link") -> None:
        """Dissolve the link's sharing sets back into plain backup reservations."""
        link.clear_sharing_sets()

    def bandwidth_to_share(self) -> float:
        """Sum of member needs over every sharing set in the tree."""
        return self.tree.bandwidth_to_share()

    def total_shared_bandwidth(self) -> float:
        """Bandwidth the sharing sets actually reserve."""
        return self.tree.shared_bandwidth()

    def sharing_gain(self) -> float:
        """Percentage of shareable backup bandwidth saved; 0.0 with no sets."""
        to_share = self.bandwidth_to_share()
        if to_share <= MIN_BW:
            return 0.0
        return 100.0 * (to_share - self.total_shared_bandwidth()) / to_share
