"""Fat-tree topology and the resource ledger it carries.

Nodes live in per-level arena lists and are addressed by ``(level, index)``
keys. Every non-core node has exactly one uplink. The same structure is kept
as a ``networkx.DiGraph`` with edges pointing child to parent, which answers
subtree membership and path queries.

The ledger state is the VM slots on each :class:`PhysicalMachine` and the
per-request reservations and sharing sets on each :class:`Link`.
:meth:`FatTree.release_request` is the one rollback primitive.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Union

import networkx as nx

from ftadmit.exceptions import CapacityError
from ftadmit.logging import get_logger
from ftadmit.model.request import LinkUsage, Request, VirtualMachine
from ftadmit.model.sharing import SharingSet
from ftadmit.types.base import HEIGHT, MIN_BW, BandwidthKind, Level, NodeKey, VMKind

if TYPE_CHECKING:
    from ftadmit.model.view import SubtreeView

__all__ = ["FatTree", "Link", "Node", "PhysicalMachine", "Switch"]

logger = get_logger(__name__)


@dataclass(eq=False)
class Node:
    """A server or switch.

    Attributes:
        id: Index of the node within its level.
        level: Tree level.
        parent: Node one level up, None for the core.
        children: Nodes one level down, in index order.
        uplink: Link towards ``parent``, None for the core.
    """

    id: int
    level: Level
    parent: Optional["Node"] = field(default=None, repr=False)
    children: List["Node"] = field(default_factory=list, repr=False)
    uplink: Optional["Link"] = field(default=None, repr=False)

    @property
    def key(self) -> NodeKey:
        return (int(self.level), self.id)

    @property
    def type(self) -> str:
        return self.level.name.lower()

    @property
    def name(self) -> str:
        return f"{self.type}-{self.id}"


@dataclass(eq=False)
class Switch(Node):
    """TOR, aggregate or core switch."""


@dataclass(eq=False)
class PhysicalMachine(Node):
    """A server with a fixed number of VM slots."""

    capacity: int = 0
    slots: List[Optional[VirtualMachine]] = field(default_factory=list, repr=False)
    _vm_ids: Iterator[int] = field(default_factory=itertools.count, repr=False)

    def __post_init__(self) -> None:
        if not self.slots:
            self.slots = [None] * self.capacity

    @property
    def available_vms(self) -> int:
        return sum(1 for slot in self.slots if slot is None)

    @property
    def used_vms(self) -> int:
        return self.capacity - self.available_vms

    def vms(self, kind: Optional[VMKind] = None) -> List[VirtualMachine]:
        return [
            vm
            for vm in self.slots
            if vm is not None and (kind is None or vm.kind == kind)
        ]

    def hosted_vms(self, request: Request, kind: VMKind = VMKind.PRIMARY) -> int:
        """Number of VMs of ``kind`` this server holds for ``request``."""
        return sum(
            1
            for vm in self.slots
            if vm is not None and vm.request is request and vm.kind == kind
        )

    def reserve_vms(
        self, count: int, request: Request, kind: VMKind
    ) -> List[VirtualMachine]:
        """Occupy ``count`` free slots for ``request``.

        Args:
            count: Number of slots to occupy.
            request: Owning request; the new VMs are appended to ``request.vms``.
            kind: PRIMARY or BACKUP.

        Returns:
            The new VMs.

        Raises:
            CapacityError: If fewer than ``count`` slots are free.
        """
        if count < 0:
            raise ValueError("count must be >= 0")
        if count > self.available_vms:
            raise CapacityError(
                f"{self.name}: cannot reserve {count} VM(s) for request "
                f"{request.id}, only {self.available_vms} free"
            )
        created: List[VirtualMachine] = []
        for index, slot in enumerate(self.slots):
            if len(created) == count:
                break
            if slot is None:
                vm = VirtualMachine(
                    id=next(self._vm_ids), kind=kind, request=request, host=self
                )
                self.slots[index] = vm
                created.append(vm)
        request.vms.extend(created)
        return created

    def release_vms(self, request_id: int, kind: Optional[VMKind] = None) -> int:
        """Free the slots ``request_id`` holds here, optionally of one kind.

        Returns:
            Number of slots freed. Unknown requests free nothing.
        """
        freed = 0
        for index, vm in enumerate(self.slots):
            if vm is None or vm.request.id != request_id:
                continue
            if kind is not None and vm.kind != kind:
                continue
            vm.detach()
            try:
                vm.request.vms.remove(vm)
            except ValueError:
                pass
            self.slots[index] = None
            freed += 1
        return freed


@dataclass(eq=False)
class Link:
    """Upward link from ``source`` to its parent.

    Attributes:
        id: Arena index.
        source: Child endpoint.
        destination: Parent endpoint.
        capacity: Bandwidth capacity.
        reservations: Per-request primary/backup/shared bandwidth.
        sharing_sets: Committed sharing sets on this link.
    """

    id: int
    source: Node = field(repr=False)
    destination: Node = field(repr=False)
    capacity: float
    reservations: Dict[int, LinkUsage] = field(default_factory=dict, repr=False)
    sharing_sets: List[SharingSet] = field(default_factory=list, repr=False)

    @property
    def level(self) -> int:
        """1 for server-TOR, 2 for TOR-aggregate, 3 for aggregate-core."""
        return int(self.destination.level)

    @property
    def name(self) -> str:
        return f"{self.source.name}->{self.destination.name}"

    @property
    def reserved_bandwidth(self) -> float:
        own = sum(usage.total for usage in self.reservations.values())
        return own + sum(s.reserved for s in self.sharing_sets)

    @property
    def residual_bandwidth(self) -> float:
        return self.capacity - self.reserved_bandwidth

    @property
    def bandwidth_to_share(self) -> float:
        """Sum of member needs across this link's sharing sets."""
        return sum(usage.shared for usage in self.reservations.values())

    @property
    def shared_bandwidth(self) -> float:
        """Bandwidth actually reserved by this link's sharing sets."""
        return sum(s.reserved for s in self.sharing_sets)

    def usage(self, request_id: int) -> LinkUsage:
        """Reservation of ``request_id``; a zero record if it has none."""
        return self.reservations.get(request_id, LinkUsage())

    def reserve_bandwidth(
        self,
        amount: float,
        request_id: int,
        kind: BandwidthKind = BandwidthKind.PRIMARY,
    ) -> bool:
        """Add ``amount`` to the request's reservation of ``kind``.

        Returns:
            False, leaving the link untouched, if ``amount`` exceeds the
            residual bandwidth.
        """
        if amount < 0:
            raise ValueError(f"{self.name}: negative bandwidth {amount}")
        if kind == BandwidthKind.SHARED_BACKUP:
            raise ValueError("shared backup bandwidth is managed by sharing sets")
        if amount > self.residual_bandwidth + MIN_BW:
            return False
        if amount <= MIN_BW:
            return True
        usage = self.reservations.setdefault(request_id, LinkUsage())
        if kind == BandwidthKind.PRIMARY:
            usage.primary += amount
        else:
            usage.backup += amount
        return True

    def release_bandwidth(
        self, request_id: int, kind: Optional[BandwidthKind] = None
    ) -> float:
        """Free bandwidth held by ``request_id``.

        Releasing BACKUP also takes the request out of its sharing set.
        Leaving a set never raises the link's reserved bandwidth: the set
        shrinks to the largest remaining need, and a set left with one
        member turns back into that member's plain backup reservation.

        Args:
            request_id: Request to release.
            kind: PRIMARY, BACKUP, SHARED_BACKUP or None for everything.

        Returns:
            Bandwidth freed on this link.
        """
        usage = self.reservations.get(request_id)
        if usage is None:
            return 0.0
        before = self.reserved_bandwidth
        if kind in (None, BandwidthKind.BACKUP, BandwidthKind.SHARED_BACKUP):
            self._leave_sharing_set(request_id)
        if kind in (None, BandwidthKind.PRIMARY):
            usage.primary = 0.0
        if kind in (None, BandwidthKind.BACKUP):
            usage.backup = 0.0
        if usage.primary <= MIN_BW and usage.backup <= MIN_BW and usage.shared <= MIN_BW:
            del self.reservations[request_id]
        return before - self.reserved_bandwidth

    def sharing_set_of(self, request_id: int) -> Optional[SharingSet]:
        for sharing_set in self.sharing_sets:
            if request_id in sharing_set:
                return sharing_set
        return None

    def add_sharing_set(self, sharing_set: SharingSet) -> None:
        """Move each member's backup reservation into ``sharing_set``."""
        for request_id, need in sharing_set.needs.items():
            usage = self.reservations[request_id]
            usage.shared = need
            usage.backup = 0.0
        self.sharing_sets.append(sharing_set)

    def clear_sharing_sets(self) -> None:
        """Dissolve every sharing set, restoring members' own backup bandwidth."""
        for sharing_set in self.sharing_sets:
            for request_id, need in sharing_set.needs.items():
                usage = self.reservations[request_id]
                usage.backup = need
                usage.shared = 0.0
        self.sharing_sets.clear()

    def _leave_sharing_set(self, request_id: int) -> None:
        sharing_set = self.sharing_set_of(request_id)
        if sharing_set is None:
            return
        sharing_set.remove(request_id)
        self.reservations[request_id].shared = 0.0
        if len(sharing_set) <= 1:
            self.sharing_sets.remove(sharing_set)
            for member, need in sharing_set.needs.items():
                usage = self.reservations[member]
                usage.shared = 0.0
                usage.backup = need


class FatTree:
    """Three-tier tree of servers, TOR, aggregate and one core switch.

    Example:
        ```python
        tree = FatTree(8, 4, 2, 2, 2, 1000, 10000, 10000)
        tree.core.key      # (3, 0)
        len(tree.links)    # 8 + 4 + 2
        ```
    """

    def __init__(
        self,
        servers: int,
        vm_slots_per_server: int,
        servers_per_tor: int,
        tors_per_agg: int,
        aggs_per_core: int,
        server_tor_capacity: float,
        tor_agg_capacity: float,
        agg_core_capacity: float,
    ) -> None:
        fanouts = [servers_per_tor, tors_per_agg, aggs_per_core]
        if servers < 1 or vm_slots_per_server < 0 or min(fanouts) < 1:
            raise ValueError("servers and fan-outs must be positive")
        counts = [servers]
        for fanout in fanouts:
            if counts[-1] % fanout:
                raise ValueError(
                    f"{counts[-1]} level-{len(counts) - 1} nodes do not divide "
                    f"into groups of {fanout}"
                )
            counts.append(counts[-1] // fanout)
        if counts[-1] != 1:
            raise ValueError(f"topology needs exactly one core switch, got {counts[-1]}")
        capacities = [server_tor_capacity, tor_agg_capacity, agg_core_capacity]
        if min(capacities) < 0:
            raise ValueError("link capacities must be >= 0")

        self.vm_slots_per_server = vm_slots_per_server
        self.fanouts = fanouts
        self.requests: Dict[int, Request] = {}
        self.graph = nx.DiGraph()
        self.links: List[Link] = []
        self.nodes: List[List[Node]] = []

        vm_ids = itertools.count()
        self.nodes.append(
            [
                PhysicalMachine(
                    id=i,
                    level=Level.SERVER,
                    capacity=vm_slots_per_server,
                    _vm_ids=vm_ids,
                )
                for i in range(servers)
            ]
        )
        for level in range(1, HEIGHT + 1):
            self.nodes.append(
                [Switch(id=i, level=Level(level)) for i in range(counts[level])]
            )
        for node in itertools.chain.from_iterable(self.nodes):
            self.graph.add_node(node.key, level=int(node.level))

        # link ids run level by level, server uplinks first
        for level in range(HEIGHT):
            for child in self.nodes[level]:
                parent = self.nodes[level + 1][child.id // fanouts[level]]
                link = Link(
                    id=len(self.links),
                    source=child,
                    destination=parent,
                    capacity=capacities[level],
                )
                child.parent = parent
                child.uplink = link
                parent.children.append(child)
                self.links.append(link)
                self.graph.add_edge(child.key, parent.key, link_id=link.id)

        self._servers_under: Dict[NodeKey, List[PhysicalMachine]] = {}
        logger.debug(
            "Built fat-tree: %d servers, %d TOR, %d aggregate, %d link(s)",
            counts[0],
            counts[1],
            counts[2],
            len(self.links),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FatTree":
        """Build a tree from a scenario ``topology`` mapping."""
        capacity = data.get("link_capacity", {})
        return cls(
            servers=data["servers"],
            vm_slots_per_server=data["vm_slots_per_server"],
            servers_per_tor=data["servers_per_tor"],
            tors_per_agg=data["tors_per_agg"],
            aggs_per_core=data["aggs_per_core"],
            server_tor_capacity=capacity.get("server_tor", 1000.0),
            tor_agg_capacity=capacity.get("tor_agg", 10000.0),
            agg_core_capacity=capacity.get("agg_core", 10000.0),
        )

    # Structure

    @property
    def servers(self) -> List[PhysicalMachine]:
        return self.nodes[Level.SERVER]  # type: ignore[return-value]

    @property
    def core(self) -> Node:
        return self.nodes[Level.CORE][0]

    def nodes_at(self, level: Union[int, Level]) -> List[Node]:
        return self.nodes[int(level)]

    def node(self, key: NodeKey) -> Node:
        """Look up a node by ``(level, index)``.

        Raises:
            KeyError: If no such node exists.
        """
        level, index = key
        if not 0 <= level <= HEIGHT or not 0 <= index < len(self.nodes[level]):
            raise KeyError(f"Unknown node {key}")
        return self.nodes[level][index]

    def link(self, link_id: int) -> Link:
        if not 0 <= link_id < len(self.links):
            raise KeyError(f"Unknown link {link_id}")
        return self.links[link_id]

    def servers_under(self, key: NodeKey) -> List[PhysicalMachine]:
        """Servers in the subtree rooted at ``key``, in index order."""
        cached = self._servers_under.get(key)
        if cached is None:
            if key[0] == Level.SERVER:
                cached = [self.node(key)]  # type: ignore[list-item]
            else:
                below = nx.ancestors(self.graph, key)
                cached = [
                    self.servers[index]
                    for level, index in sorted(below)
                    if level == Level.SERVER
                ]
            self._servers_under[key] = cached
        return cached

    def nodes_under(self, key: NodeKey) -> List[Node]:
        """Nodes strictly below ``key``."""
        return [self.node(k) for k in sorted(nx.ancestors(self.graph, key))]

    def links_under(self, key: NodeKey) -> List[Link]:
        """Uplinks of every node strictly below ``key``."""
        return sorted(
            (node.uplink for node in self.nodes_under(key) if node.uplink),
            key=lambda link: link.id,
        )

    def ancestors(self, key: NodeKey) -> List[NodeKey]:
        """Keys above ``key``, nearest first."""
        return sorted(nx.descendants(self.graph, key))

    def is_under(self, key: NodeKey, root: NodeKey) -> bool:
        """True if ``key`` is ``root`` or lies below it."""
        node: Optional[Node] = self.node(key)
        while node is not None:
            if node.key == root:
                return True
            node = node.parent
        return False

    def lowest_common_ancestor(self, a: NodeKey, b: NodeKey) -> NodeKey:
        if a == b:
            return a
        up_a = [a] + self.ancestors(a)
        up_b = set([b] + self.ancestors(b))
        for key in up_a:
            if key in up_b:
                return key
        raise KeyError(f"{a} and {b} share no ancestor")

    def path_links(self, a: NodeKey, b: NodeKey) -> List[Link]:
        """Links on the tree path between two nodes."""
        path = nx.shortest_path(self.graph.to_undirected(as_view=True), a, b)
        links = []
        for u, v in zip(path, path[1:]):
            data = self.graph.get_edge_data(u, v) or self.graph.get_edge_data(v, u)
            links.append(self.links[data["link_id"]])
        return links

    def subtree(self, key: NodeKey) -> "SubtreeView":
        from ftadmit.model.view import SubtreeView

        self.node(key)
        return SubtreeView(self, key)

    def root_view(self) -> "SubtreeView":
        return self.subtree(self.core.key)

    # Ledger

    def total_available_vms(self) -> int:
        return sum(pm.available_vms for pm in self.servers)

    def total_vm_slots(self) -> int:
        return sum(pm.capacity for pm in self.servers)

    def reserved_bandwidth(self) -> float:
        return sum(link.reserved_bandwidth for link in self.links)

    def bandwidth_to_share(self) -> float:
        return sum(link.bandwidth_to_share for link in self.links)

    def shared_bandwidth(self) -> float:
        return sum(link.shared_bandwidth for link in self.links)

    def register(self, request: Request) -> None:
        """Record ``request`` as holding resources in this tree."""
        self.requests[request.id] = request

    def get_request(self, request_id: int) -> Request:
        return self.requests[request_id]

    def links_used_by(self, request_id: int) -> List[Link]:
        return [link for link in self.links if request_id in link.reservations]

    def sharing_sets_of(self, request_id: int) -> List[SharingSet]:
        return [
            sharing_set
            for link in self.links
            for sharing_set in link.sharing_sets
            if request_id in sharing_set
        ]

    def release_request(self, request: Request, kind: Optional[VMKind] = None) -> None:
        """Free every slot and bandwidth reservation ``request`` holds.

        Idempotent. With ``kind`` only VMs of that kind and the matching
        bandwidth component are freed; otherwise the request is also dropped
        from the registry.

        Args:
            request: Request to release.
            kind: PRIMARY, BACKUP or None for everything.
        """
        for pm in self.servers:
            pm.release_vms(request.id, kind)
        bandwidth_kind = None if kind is None else BandwidthKind(int(kind))
        touched = []
        for link in self.links:
            if request.id in link.reservations:
                touched.append(link)
                link.release_bandwidth(request.id, bandwidth_kind)
        if kind is None:
            self.requests.pop(request.id, None)
        self.refresh_request(request)
        for link in touched:
            for member in link.reservations:
                other = self.requests.get(member)
                if other is not None and other is not request:
                    other.sharing_sets = self.sharing_sets_of(member)
        logger.debug(
            "Released %s of request %d",
            "everything" if kind is None else kind.name,
            request.id,
        )

    def refresh_request(self, request: Request) -> None:
        """Rebuild the read-only summaries on ``request`` from the ledger."""
        request.reserved_bandwidth = {
            link.id: LinkUsage(usage.primary, usage.backup, usage.shared)
            for link in self.links
            for usage in [link.reservations.get(request.id)]
            if usage is not None
        }
        request.reserved_backup_vms = len(request.backups)
        request.sharing_sets = self.sharing_sets_of(request.id)
