"""Tests for the fat-tree topology and its resource ledger."""

import pytest

from ftadmit.exceptions import CapacityError
from ftadmit.model.request import LinkUsage, Request
from ftadmit.model.sharing import SharingSet
from ftadmit.model.topology import FatTree, Link, PhysicalMachine, Switch
from ftadmit.types.base import BandwidthKind, Level, VMKind


class TestFatTreeStructure:
    def test_node_counts(self, tree):
        assert len(tree.servers) == 8
        assert len(tree.nodes_at(Level.TOR)) == 4
        assert len(tree.nodes_at(Level.AGGREGATE)) == 2
        assert tree.core.key == (3, 0)
        assert all(isinstance(pm, PhysicalMachine) for pm in tree.servers)
        assert isinstance(tree.core, Switch)

    def test_links_numbered_level_by_level(self, tree):
        assert len(tree.links) == 14
        assert [link.id for link in tree.links] == list(range(14))
        assert tree.links[0].source.key == (0, 0)
        assert tree.links[8].source.key == (1, 0)
        assert tree.links[12].source.key == (2, 0)
        assert [tree.links[i].level for i in (0, 8, 12)] == [1, 2, 3]
        assert tree.links[0].capacity == 1000
        assert tree.links[8].capacity == 10000

    def test_parent_child_wiring(self, tree):
        server = tree.servers[3]
        assert server.parent.key == (1, 1)
        assert server.uplink.destination is server.parent
        assert server in server.parent.children
        assert tree.core.parent is None
        assert tree.core.uplink is None

    def test_names(self, tree):
        assert tree.servers[0].name == "server-0"
        assert tree.links[8].name == "tor-0->aggregate-0"

    def test_graph_mirrors_links(self, tree):
        assert tree.graph.number_of_nodes() == 8 + 4 + 2 + 1
        assert tree.graph.number_of_edges() == 14
        assert tree.graph.edges[(0, 5), (1, 2)]["link_id"] == 5

    @pytest.mark.parametrize(
        "args",
        [
            (6, 4, 4, 2, 2, 1, 1, 1),
            (8, 4, 2, 2, 1, 1, 1, 1),
            (0, 4, 1, 1, 1, 1, 1, 1),
            (8, 4, 2, 2, 2, -1, 1, 1),
        ],
    )
    def test_invalid_shapes(self, args):
        with pytest.raises(ValueError):
            FatTree(*args)

    def test_from_dict(self):
        tree = FatTree.from_dict(
            {
                "servers": 4,
                "vm_slots_per_server": 2,
                "servers_per_tor": 2,
                "tors_per_agg": 2,
                "aggs_per_core": 1,
                "link_capacity": {"server_tor": 50},
            }
        )
        assert tree.total_vm_slots() == 8
        assert tree.links[0].capacity == 50
        assert tree.links[4].capacity == 10000.0

    def test_node_lookup(self, tree):
        assert tree.node((1, 2)).key == (1, 2)
        with pytest.raises(KeyError):
            tree.node((1, 4))
        with pytest.raises(KeyError):
            tree.node((4, 0))
        with pytest.raises(KeyError):
            tree.link(14)


class TestFatTreeQueries:
    def test_servers_under(self, tree):
        assert [pm.id for pm in tree.servers_under((1, 1))] == [2, 3]
        assert [pm.id for pm in tree.servers_under((2, 1))] == [4, 5, 6, 7]
        assert len(tree.servers_under((3, 0))) == 8
        assert tree.servers_under((0, 5)) == [tree.servers[5]]

    def test_links_under(self, tree):
        assert [link.id for link in tree.links_under((2, 0))] == [0, 1, 2, 3, 8, 9]
        assert tree.links_under((0, 0)) == []

    def test_ancestors_and_is_under(self, tree):
        assert tree.ancestors((0, 0)) == [(1, 0), (2, 0), (3, 0)]
        assert tree.is_under((0, 3), (2, 0))
        assert tree.is_under((2, 0), (2, 0))
        assert not tree.is_under((0, 4), (2, 0))

    def test_lowest_common_ancestor(self, tree):
        assert tree.lowest_common_ancestor((0, 0), (0, 1)) == (1, 0)
        assert tree.lowest_common_ancestor((0, 0), (0, 3)) == (2, 0)
        assert tree.lowest_common_ancestor((0, 0), (0, 7)) == (3, 0)
        assert tree.lowest_common_ancestor((0, 2), (0, 2)) == (0, 2)

    def test_path_links(self, tree):
        path = tree.path_links((0, 0), (0, 3))
        assert [link.id for link in path] == [0, 8, 9, 3]
        assert tree.path_links((0, 0), (0, 0)) == []


class TestPhysicalMachine:
    def test_reserve_and_release(self, tree):
        pm = tree.servers[0]
        request = Request(id=1, n_vms=3, bandwidth=10)
        vms = pm.reserve_vms(3, request, VMKind.PRIMARY)

        assert len(vms) == 3
        assert pm.available_vms == 1
        assert pm.used_vms == 3
        assert pm.hosted_vms(request) == 3
        assert pm.hosted_vms(request, VMKind.BACKUP) == 0
        assert request.vms == vms
        assert all(vm.host is pm for vm in vms)

        assert pm.release_vms(request.id) == 3
        assert pm.available_vms == 4
        assert request.vms == []
        assert pm.release_vms(request.id) == 0

    def test_over_reservation_raises_and_changes_nothing(self, tree):
        pm = tree.servers[0]
        request = Request(id=1, n_vms=6, bandwidth=10)
        pm.reserve_vms(3, request, VMKind.PRIMARY)

        with pytest.raises(CapacityError):
            pm.reserve_vms(2, request, VMKind.BACKUP)
        assert pm.available_vms == 1
        assert len(request.vms) == 3

    def test_negative_count(self, tree):
        with pytest.raises(ValueError):
            tree.servers[0].reserve_vms(-1, Request(id=1, n_vms=1, bandwidth=1), VMKind.PRIMARY)

    def test_release_by_kind(self, tree):
        pm = tree.servers[0]
        request = Request(id=1, n_vms=2, bandwidth=10)
        pm.reserve_vms(2, request, VMKind.PRIMARY)
        pm.reserve_vms(1, request, VMKind.BACKUP)

        assert pm.release_vms(request.id, VMKind.BACKUP) == 1
        assert len(pm.vms(VMKind.PRIMARY)) == 2
        assert pm.vms(VMKind.BACKUP) == []

    def test_vm_ids_unique_across_tree(self, tree):
        request = Request(id=1, n_vms=4, bandwidth=10)
        a = tree.servers[0].reserve_vms(2, request, VMKind.PRIMARY)
        b = tree.servers[5].reserve_vms(2, request, VMKind.PRIMARY)
        ids = [vm.id for vm in a + b]
        assert len(set(ids)) == 4


class TestLink:
    @pytest.fixture
    def link(self, tree) -> Link:
        return tree.links[0]

    def test_reserve_within_residual(self, link):
        assert link.reserve_bandwidth(600, 1)
        assert link.residual_bandwidth == 400
        assert not link.reserve_bandwidth(500, 2)
        assert set(link.reservations) == {1}
        assert link.reserved_bandwidth == 600

    def test_zero_reservation_leaves_no_record(self, link):
        assert link.reserve_bandwidth(0, 1)
        assert link.reservations == {}

    def test_invalid_reservations(self, link):
        with pytest.raises(ValueError):
            link.reserve_bandwidth(-1, 1)
        with pytest.raises(ValueError):
            link.reserve_bandwidth(10, 1, BandwidthKind.SHARED_BACKUP)

    def test_release_by_kind(self, link):
        link.reserve_bandwidth(100, 1, BandwidthKind.PRIMARY)
        link.reserve_bandwidth(50, 1, BandwidthKind.BACKUP)
        assert link.usage(1) == LinkUsage(primary=100, backup=50)

        assert link.release_bandwidth(1, BandwidthKind.BACKUP) == 50
        assert link.usage(1) == LinkUsage(primary=100)
        assert link.release_bandwidth(1) == 100
        assert link.reservations == {}
        assert link.release_bandwidth(1) == 0.0

    def test_sharing_set_moves_backup_into_set(self, link):
        link.reserve_bandwidth(100, 1, BandwidthKind.BACKUP)
        link.reserve_bandwidth(80, 2, BandwidthKind.BACKUP)
        link.add_sharing_set(SharingSet(link.id, {1: 100, 2: 80}))

        assert link.reserved_bandwidth == 100
        assert link.bandwidth_to_share == 180
        assert link.shared_bandwidth == 100
        assert link.usage(1) == LinkUsage(shared=100)
        assert link.sharing_set_of(2) is link.sharing_sets[0]

        link.clear_sharing_sets()
        assert link.sharing_sets == []
        assert link.reserved_bandwidth == 180
        assert link.usage(2) == LinkUsage(backup=80)

    def test_leaving_a_sharing_set_never_raises_reservation(self, link):
        for request_id, need in ((1, 100), (2, 80), (3, 50)):
            link.reserve_bandwidth(need, request_id, BandwidthKind.BACKUP)
        link.add_sharing_set(SharingSet(link.id, {1: 100, 2: 80, 3: 50}))
        assert link.reserved_bandwidth == 100

        link.release_bandwidth(1, BandwidthKind.BACKUP)
        assert link.reserved_bandwidth == 80
        assert list(link.sharing_sets[0]) == [2, 3]
        assert 1 not in link.reservations

        link.release_bandwidth(2)
        assert link.sharing_sets == []
        assert link.usage(3) == LinkUsage(backup=50)
        assert link.reserved_bandwidth == 50


class TestReleaseRequest:
    def test_release_is_complete_and_idempotent(self, tree, placer):
        request = Request(id=1, n_vms=3, bandwidth=100)
        placer(tree, request, {0: 2, 1: 1})
        tree.servers[2].reserve_vms(2, request, VMKind.BACKUP)
        tree.links[9].reserve_bandwidth(100, request.id, BandwidthKind.BACKUP)
        tree.refresh_request(request)

        assert tree.get_request(1) is request
        assert request.reserved_backup_vms == 2
        assert {link.id for link in tree.links_used_by(1)} == {0, 1, 9}
        assert request.reserved_bandwidth[9] == LinkUsage(backup=100)

        tree.release_request(request)
        assert tree.total_available_vms() == tree.total_vm_slots()
        assert tree.reserved_bandwidth() == 0
        assert 1 not in tree.requests
        assert not request.holds_resources

        tree.release_request(request)
        assert tree.total_available_vms() == tree.total_vm_slots()

    def test_release_backups_only(self, tree, placer):
        request = Request(id=1, n_vms=2, bandwidth=100)
        placer(tree, request, {0: 1, 1: 1})
        tree.servers[2].reserve_vms(1, request, VMKind.BACKUP)
        tree.links[2].reserve_bandwidth(100, request.id, BandwidthKind.BACKUP)

        tree.release_request(request, VMKind.BACKUP)
        assert request.backups == []
        assert len(request.primaries) == 2
        assert tree.links[2].reservations == {}
        assert tree.links[0].usage(1).primary == 100
        assert tree.get_request(1) is request

    def test_release_refreshes_other_sharing_members(self, tree):
        a = Request(id=1, n_vms=2, bandwidth=100)
        b = Request(id=2, n_vms=2, bandwidth=100)
        tree.register(a)
        tree.register(b)
        link = tree.links[9]
        link.reserve_bandwidth(100, 1, BandwidthKind.BACKUP)
        link.reserve_bandwidth(100, 2, BandwidthKind.BACKUP)
        link.add_sharing_set(SharingSet(link.id, {1: 100, 2: 100}))
        tree.refresh_request(a)
        assert len(a.sharing_sets) == 1

        tree.release_request(b)
        assert a.sharing_sets == []
        assert link.usage(1) == LinkUsage(backup=100)
