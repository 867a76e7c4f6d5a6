"""Recursive search for a subtree that can host a request's backup VMs.

The search starts at a scope (normally the request's own subtree) and widens
towards the core until the backups fit. Within a scope it first tries to
collocate backups with primaries, then spreads the rest over servers that
host no primary of the request. A failed attempt releases the backups it
placed before widening, so the ledger never holds a half-placed set.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING, List, Optional

from ftadmit.logging import get_logger
from ftadmit.placement.policy import FailureDomainPolicy, ServerFailurePolicy
from ftadmit.types.base import Level, VMKind

if TYPE_CHECKING:
    from ftadmit.model.request import Request
    from ftadmit.model.topology import FatTree, PhysicalMachine
    from ftadmit.model.view import SubtreeView

__all__ = ["BackupPlacementSearch"]

logger = get_logger(__name__)


class BackupPlacementSearch:
    """Place ``backups_needed`` backup VMs for a request.

    Args:
        tree: Topology whose ledger receives the reservations.
        rng: Random source for picking non-hosting servers. Seed it for
            reproducible placements.
        policy: Failure-domain policy sizing the backup set.
    """

    def __init__(
        self,
        tree: "FatTree",
        rng: Optional[random.Random] = None,
        policy: Optional[FailureDomainPolicy] = None,
    ) -> None:
        self.tree = tree
        self.rng = rng if rng is not None else random.Random()
        self.policy = policy if policy is not None else ServerFailurePolicy()

    def search(
        self,
        request: "Request",
        subtree: Optional["SubtreeView"],
        main_subtree: "SubtreeView",
        collocate: bool = True,
    ) -> Optional["SubtreeView"]:
        """Find the smallest scope at or above ``subtree`` holding all backups.

        Args:
            request: Request with its primaries already placed.
            subtree: Scope to try now; None once the core has been passed.
            main_subtree: Scope the search started from. A collocating search
                that runs off the top restarts here without collocation.
            collocate: Allow backups on hosting servers.

        Returns:
            The scope the backups were placed in, or None when no scope up to
            the core can hold them. On None the request holds no backups.
        """
        if subtree is None:
            if collocate:
                logger.debug(
                    "Request %d: no scope fits with collocation, retrying from %r without",
                    request.id,
                    main_subtree,
                )
                return self.search(request, main_subtree, main_subtree, False)
            return None

        needed = self.policy.backups_needed(self.tree, request)
        if needed == 0:
            return subtree

        if subtree.available_vms < needed or not self._outside_primary_domains(
            subtree, request
        ):
            logger.debug(
                "Request %d: %r lacks room for %d backup(s), widening",
                request.id,
                subtree,
                needed,
            )
            return self.search(request, subtree.parent(), main_subtree, collocate)

        remaining = needed
        # Collocation is a per-server rule: a hosting server only shares a
        # domain with its own primaries under the server policy.
        if collocate and self.policy.level == Level.SERVER:
            remaining -= self._place_collocated(subtree, request, remaining)
        remaining -= self._place_on_non_hosting(subtree, request, remaining)

        if remaining == 0:
            logger.debug(
                "Request %d: placed %d backup(s) in %r (collocate=%s)",
                request.id,
                needed,
                subtree,
                collocate,
            )
            return subtree

        self.tree.release_request(request, VMKind.BACKUP)
        logger.debug(
            "Request %d: %d backup(s) short in %r, widening",
            request.id,
            remaining,
            subtree,
        )
        return self.search(request, subtree.parent(), main_subtree, collocate)

    def _outside_primary_domains(
        self, subtree: "SubtreeView", request: "Request"
    ) -> List["PhysicalMachine"]:
        """Servers of ``subtree`` in no failure domain that holds a primary."""
        occupied = self.policy.primaries_per_domain(self.tree, request)
        return [
            pm
            for pm in subtree.servers
            if self.policy.domain_key(self.tree, pm.key) not in occupied
        ]

    def _hosted_off_host(self, subtree: "SubtreeView", request: "Request") -> int:
        return sum(
            pm.hosted_vms(request, VMKind.BACKUP)
            for pm in subtree.non_hosting_servers(request)
        )

    def _place_collocated(
        self, subtree: "SubtreeView", request: "Request", remaining: int
    ) -> int:
        """Put backups on hosting servers carrying the minimum primary count.

        ``min_hosted_vms`` backups are held back for non-hosting servers: a
        collocated backup dies with its server, so that server's primaries
        must be covered from elsewhere.
        """
        minimum = subtree.min_hosted_vms(request)
        hosted_off_host = self._hosted_off_host(subtree, request)
        budget = remaining - max(0, minimum - hosted_off_host)
        if budget <= 0:
            return 0

        if subtree.level <= Level.TOR:
            candidates = [subtree]
        else:
            candidates = subtree.children(request)

        placed = 0
        for child in candidates:
            if placed == budget:
                break
            if not subtree.can_collocate_backups(child, request, hosted_off_host):
                continue
            for pm in child.hosting_servers(request):
                if pm.hosted_vms(request) != minimum or pm.available_vms == 0:
                    continue
                count = min(pm.available_vms, budget - placed)
                pm.reserve_vms(count, request, VMKind.BACKUP)
                placed += count
                if placed == budget:
                    break
        return placed

    def _place_on_non_hosting(
        self, subtree: "SubtreeView", request: "Request", remaining: int
    ) -> int:
        """Spread backups over servers outside the primary domains, at random."""
        eligible = [
            pm
            for pm in self._outside_primary_domains(subtree, request)
            if pm.available_vms > 0
        ]
        placed = 0
        while placed < remaining and eligible:
            pm = eligible.pop(self.rng.randrange(len(eligible)))
            count = min(pm.available_vms, remaining - placed)
            pm.reserve_vms(count, request, VMKind.BACKUP)
            placed += count
        return placed
