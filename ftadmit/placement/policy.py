"""Failure-domain policies deciding how many backups a request needs.

Backups protect against the failure of one domain at a time. The default
domain is a single server. :class:`TorFailurePolicy` treats a whole TOR
switch, with every server below it, as one domain.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List

from ftadmit.types.base import Level, NodeKey

if TYPE_CHECKING:
    from ftadmit.model.request import Request
    from ftadmit.model.topology import FatTree
    from ftadmit.model.view import SubtreeView

__all__ = [
    "FailureDomainPolicy",
    "ServerFailurePolicy",
    "TorFailurePolicy",
    "policy_from_name",
]


@dataclass(frozen=True)
class FailureDomainPolicy:
    """Single-failure model rooted at one tree level.

    Attributes:
        level: Level of the node whose failure takes down its subtree.
    """

    level: Level

    def domain_key(self, tree: "FatTree", key: NodeKey) -> NodeKey:
        """Key of the failure domain containing node ``key``."""
        node = tree.node(key)
        while node.level < self.level:
            node = node.parent  # type: ignore[assignment]
        return node.key

    def primaries_per_domain(
        self, tree: "FatTree", request: "Request"
    ) -> Dict[NodeKey, int]:
        counts: Counter = Counter()
        for host, count in request.vms_per_host().items():
            counts[self.domain_key(tree, host)] += count
        return dict(counts)

    def domains(self, tree: "FatTree", request: "Request") -> List["SubtreeView"]:
        """Domains holding primaries of ``request``, in key order."""
        return [
            tree.subtree(key)
            for key in sorted(self.primaries_per_domain(tree, request))
        ]

    def backups_needed(self, tree: "FatTree", request: "Request") -> int:
        """Most primaries any one domain holds; 0 before primaries are placed."""
        counts = self.primaries_per_domain(tree, request)
        return max(counts.values()) if counts else 0


@dataclass(frozen=True)
class ServerFailurePolicy(FailureDomainPolicy):
    """Any single server may fail."""

    level: Level = Level.SERVER


@dataclass(frozen=True)
class TorFailurePolicy(FailureDomainPolicy):
    """Any single TOR switch may fail, taking its servers down with it."""

    level: Level = Level.TOR


_POLICIES = {
    "server": ServerFailurePolicy,
    "tor": TorFailurePolicy,
}


def policy_from_name(name: str) -> FailureDomainPolicy:
    """Build a policy from its configuration name ("server" or "tor").

    Raises:
        ValueError: For unknown names.
    """
    try:
        return _POLICIES[name.lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown failure domain '{name}'. Valid values are: "
            f"{', '.join(sorted(_POLICIES))}"
        ) from None
