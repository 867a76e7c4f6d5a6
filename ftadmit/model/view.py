"""SubtreeView: read-only, rooted cut of a FatTree."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

from ftadmit.types.base import HEIGHT, Level, NodeKey, VMKind

if TYPE_CHECKING:
    from ftadmit.model.request import Request
    from ftadmit.model.topology import FatTree, Link, Node, PhysicalMachine

__all__ = ["SubtreeView"]


@dataclass(frozen=True)
class SubtreeView:
    """Handle on the subtree rooted at one node of a shared FatTree.

    The view holds no resource state of its own. Every query reads the
    ledger on the underlying tree, so a view obtained before a reservation
    reflects that reservation afterwards. Views compare equal when they wrap
    the same tree and root.

    Example:
        ```python
        tor = tree.subtree((1, 0))
        tor.available_vms
        tor.parent().level   # Level.AGGREGATE
        ```

    Attributes:
        _tree: The topology carrying the ledger.
        root_key: ``(level, index)`` of the subtree root.
    """

    _tree: "FatTree"
    root_key: NodeKey

    @property
    def tree(self) -> "FatTree":
        return self._tree

    @property
    def root(self) -> "Node":
        return self._tree.node(self.root_key)

    @property
    def level(self) -> Level:
        return Level(self.root_key[0])

    @property
    def is_top(self) -> bool:
        """True for the core, where a search can widen no further."""
        return self.root_key[0] >= HEIGHT

    @property
    def servers(self) -> List["PhysicalMachine"]:
        """Servers under the root, in index order."""
        return self._tree.servers_under(self.root_key)

    @property
    def links(self) -> List["Link"]:
        """Links inside the subtree, i.e. uplinks of every node below the root."""
        return self._tree.links_under(self.root_key)

    @property
    def uplink(self) -> Optional["Link"]:
        return self.root.uplink

    @property
    def available_vms(self) -> int:
        """Free VM slots across every server in the subtree."""
        return sum(pm.available_vms for pm in self.servers)

    def contains(self, key: NodeKey) -> bool:
        """Check whether a node lies in this subtree.

        Args:
            key: Node to test.

        Returns:
            True if ``key`` is the root or below it.
        """
        return self._tree.is_under(key, self.root_key)

    def hosting_servers(self, request: "Request") -> List["PhysicalMachine"]:
        """Servers in the subtree holding at least one primary of ``request``."""
        return [pm for pm in self.servers if pm.hosted_vms(request) > 0]

    def non_hosting_servers(self, request: "Request") -> List["PhysicalMachine"]:
        """Servers in the subtree holding no primary of ``request``."""
        return [pm for pm in self.servers if pm.hosted_vms(request) == 0]

    def hosted_vms(self, request: "Request", kind: VMKind = VMKind.PRIMARY) -> int:
        """Number of VMs of ``kind`` the subtree holds for ``request``."""
        return sum(pm.hosted_vms(request, kind) for pm in self.servers)

    def min_hosted_vms(self, request: "Request") -> int:
        """Smallest non-zero primary count on a hosting server, 0 if none.

        Backups collocated on a server with this count can cover any other
        hosting server's failure without leaving a hole behind.
        """
        counts = [pm.hosted_vms(request) for pm in self.servers]
        return min((c for c in counts if c > 0), default=0)

    def available_on_non_hosting(self, request: "Request") -> int:
        return sum(pm.available_vms for pm in self.non_hosting_servers(request))

    def children(self, request: Optional["Request"] = None) -> List["SubtreeView"]:
        """Child subtrees, most ``request`` primaries first.

        Args:
            request: Request whose primaries order the children. Without it
                the children come in node order.

        Returns:
            Views of the nodes one level below the root; empty for a server.
        """
        views = [SubtreeView(self._tree, child.key) for child in self.root.children]
        if request is not None:
            views.sort(key=lambda view: -view.hosted_vms(request))
        return views

    def parent(self) -> Optional["SubtreeView"]:
        """View one level up, or None at the core."""
        parent = self.root.parent
        if parent is None:
            return None
        return SubtreeView(self._tree, parent.key)

    def can_collocate_backups(
        self,
        child: "SubtreeView",
        request: "Request",
        hosted_off_host: int,
    ) -> bool:
        """Decide whether backups may share hosting servers inside ``child``.

        A backup placed on a hosting server cannot cover that server's own
        primaries, so the scope must also keep at least ``min_hosted_vms``
        backups on servers without primaries.

        Args:
            child: Candidate subtree, ``self`` or one of its children.
            request: Request being protected.
            hosted_off_host: Backups already placed on non-hosting servers.

        Returns:
            True only if ``child`` has a hosting server with exactly the
            minimum primary count and a free slot, enough off-host backups are
            placed or placeable, and the primaries span more than one server.
        """
        minimum = self.min_hosted_vms(request)
        if minimum == 0:
            return False
        if not any(
            pm.available_vms > 0 and pm.hosted_vms(request) == minimum
            for pm in child.servers
        ):
            return False
        if hosted_off_host < minimum and (
            self.available_on_non_hosting(request) < minimum - hosted_off_host
        ):
            return False
        return request.hosting_server_count > 1

    def __repr__(self) -> str:
        return f"SubtreeView({self.root.name})"
