"""Shared fixtures: small fat-trees, manual placement helpers and test doubles."""

from __future__ import annotations

import random
from typing import Dict, List, Optional

import pytest

from ftadmit.model.request import Request
from ftadmit.model.topology import FatTree
from ftadmit.placement.primary import hose_bandwidth
from ftadmit.solver.base import MappingProblem, MappingResult
from ftadmit.solver.hose import HoseMappingSolver
from ftadmit.types.base import BandwidthKind, NodeKey, VMKind

# 8 servers x 4 slots, 2 servers per TOR, 2 TORs per aggregate, 2 aggregates.
# Link ids: 0-7 server uplinks, 8-11 TOR uplinks, 12-13 aggregate uplinks.
SMALL_TREE = dict(
    servers=8,
    vm_slots_per_server=4,
    servers_per_tor=2,
    tors_per_agg=2,
    aggs_per_core=2,
    server_tor_capacity=1000,
    tor_agg_capacity=10000,
    agg_core_capacity=10000,
)


def place_primaries(
    tree: FatTree,
    request: Request,
    allocation: Dict[int, int],
    subtree_key: Optional[NodeKey] = None,
):
    """Reserve primaries on the given servers plus their hose bandwidth.

    Args:
        tree: Topology to reserve in.
        request: Request to place.
        allocation: Primary count per server index.
        subtree_key: Scope to record on the request. Defaults to the lowest
            common ancestor of the hosting servers.

    Returns:
        The request's subtree view.
    """
    keys = [(0, index) for index in allocation]
    root = keys[0]
    for key in keys[1:]:
        root = tree.lowest_common_ancestor(root, key)
    if subtree_key is not None:
        root = subtree_key

    for index, count in allocation.items():
        tree.servers[index].reserve_vms(count, request, VMKind.PRIMARY)
    view = tree.subtree(root)
    per_host = request.vms_per_host()
    for link in view.links:
        inside = sum(
            count for key, count in per_host.items() if tree.is_under(key, link.source.key)
        )
        need = hose_bandwidth(inside, request.n_vms, request.bandwidth)
        assert link.reserve_bandwidth(need, request.id, BandwidthKind.PRIMARY)
    request.subtree = view
    tree.register(request)
    tree.refresh_request(request)
    return view


def fill(tree: FatTree, server: int, count: int, request_id: int = 900) -> Request:
    """Occupy ``count`` slots on one server with a throwaway request."""
    filler = Request(id=request_id, n_vms=max(count, 1), bandwidth=0.0)
    tree.servers[server].reserve_vms(count, filler, VMKind.PRIMARY)
    return filler


class FixedBackupSearch:
    """Backup search double that always places backups on given servers."""

    def __init__(self, tree: FatTree, hosts: Dict[int, int]) -> None:
        self.tree = tree
        self.hosts = hosts
        self.calls: List[tuple] = []

    def search(self, request, subtree, main_subtree, collocate=True):
        self.calls.append((subtree, collocate))
        for index, count in self.hosts.items():
            self.tree.servers[index].reserve_vms(count, request, VMKind.BACKUP)
        return self.tree.root_view()


class ScriptedSolver:
    """Solver double that replays scripted verdicts.

    Each script entry is a :class:`MappingResult` to return, an exception to
    raise, or None to defer to :class:`HoseMappingSolver`. The last entry
    repeats once the script runs out. Every call records the ledger state
    it saw.
    """

    def __init__(self, *script) -> None:
        self.script = list(script)
        self.calls: List[Dict[str, float]] = []
        self._hose = HoseMappingSolver()

    def solve(self, problem: MappingProblem) -> MappingResult:
        self.calls.append(
            {
                "available_vms": problem.tree.total_available_vms(),
                "backups": len(problem.backups),
                "reserved_bandwidth": problem.tree.reserved_bandwidth(),
            }
        )
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, Exception):
            raise step
        if step is None:
            return self._hose.solve(problem)
        return step


@pytest.fixture
def tree() -> FatTree:
    return FatTree(**SMALL_TREE)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(7)


@pytest.fixture
def placer():
    return place_primaries


@pytest.fixture
def filler():
    return fill


@pytest.fixture
def fixed_search():
    return FixedBackupSearch


@pytest.fixture
def scripted_solver():
    return ScriptedSolver


@pytest.fixture
def infeasible() -> MappingResult:
    return MappingResult.infeasible("scripted")
