"""Tests for the recursive backup placement search."""

import random

import pytest

from ftadmit.model.request import Request
from ftadmit.model.topology import FatTree
from ftadmit.placement.backup import BackupPlacementSearch
from ftadmit.placement.policy import TorFailurePolicy
from ftadmit.types.base import VMKind


def backup_hosts(request):
    return sorted(vm.host.id for vm in request.backups)


@pytest.fixture
def search(tree):
    return BackupPlacementSearch(tree, rng=random.Random(7))


class TestBackupPlacementSearch:
    def test_fits_in_own_subtree(self, tree, placer, filler, search):
        """Three free non-hosting slots next to the primaries are enough."""
        request = Request(id=1, n_vms=3, bandwidth=100)
        placer(tree, request, {0: 3}, subtree_key=(1, 0))
        filler(tree, 1, 1)

        result = search.search(request, request.subtree, request.subtree)

        assert result == tree.subtree((1, 0))
        assert tree.servers[1].hosted_vms(request, VMKind.BACKUP) == 3
        assert tree.servers[1].available_vms == 0

    def test_widens_without_leftovers(self, tree, placer, filler, search):
        """Two free non-hosting slots are not enough; the parent scope is."""
        request = Request(id=1, n_vms=3, bandwidth=100)
        placer(tree, request, {0: 3}, subtree_key=(1, 0))
        filler(tree, 1, 2)

        result = search.search(request, request.subtree, request.subtree)

        assert result == tree.subtree((2, 0))
        assert len(request.backups) == 3
        assert 0 not in backup_hosts(request)
        assert all(result.contains(vm.host_key) for vm in request.backups)
        assert tree.total_available_vms() == 32 - 3 - 2 - 3

    def test_placement_is_reproducible_with_seed(self, placer, filler):
        hosts = []
        for _ in range(2):
            tree = FatTree(8, 4, 2, 2, 2, 1000, 10000, 10000)
            request = Request(id=1, n_vms=3, bandwidth=100)
            placer(tree, request, {0: 3}, subtree_key=(1, 0))
            filler(tree, 1, 2)
            BackupPlacementSearch(tree, rng=random.Random(11)).search(
                request, request.subtree, request.subtree
            )
            hosts.append(backup_hosts(request))
        assert hosts[0] == hosts[1]

    def test_collocates_on_min_server(self, tree, placer, search):
        request = Request(id=1, n_vms=3, bandwidth=100)
        placer(tree, request, {0: 2, 1: 1})

        result = search.search(request, request.subtree, request.subtree)

        assert result == tree.subtree((2, 0))
        hosts = backup_hosts(request)
        assert len(hosts) == 2
        assert hosts[0] == 1
        assert hosts[1] in (2, 3)

    def test_collocation_holds_back_min_backups(self, tree, placer, search):
        request = Request(id=1, n_vms=6, bandwidth=100)
        placer(tree, request, {0: 4, 1: 2})

        result = search.search(request, request.subtree, request.subtree)

        assert result == tree.subtree((2, 0))
        assert tree.servers[1].hosted_vms(request, VMKind.BACKUP) == 2
        assert tree.subtree((1, 1)).hosted_vms(request, VMKind.BACKUP) == 2

    def test_without_collocation(self, tree, placer, search):
        request = Request(id=1, n_vms=3, bandwidth=100)
        placer(tree, request, {0: 2, 1: 1})

        result = search.search(request, request.subtree, request.subtree, collocate=False)

        assert result == tree.subtree((2, 0))
        assert all(host in (2, 3) for host in backup_hosts(request))
        assert len(request.backups) == 2

    def test_no_room_anywhere(self, tree, placer, filler, search):
        request = Request(id=1, n_vms=2, bandwidth=100)
        placer(tree, request, {0: 2})
        for server in range(1, 8):
            filler(tree, server, 4)

        assert search.search(request, request.subtree, request.subtree) is None
        assert request.backups == []
        assert tree.servers[0].available_vms == 2

    def test_nothing_to_protect(self, tree, search):
        request = Request(id=1, n_vms=2, bandwidth=100)
        scope = tree.subtree((1, 0))
        assert search.search(request, scope, scope) == scope
        assert request.vms == []

    def test_policy_sizes_backup_set(self, tree, placer):
        request = Request(id=1, n_vms=2, bandwidth=100)
        placer(tree, request, {0: 1, 1: 1})
        search = BackupPlacementSearch(tree, rng=random.Random(3), policy=TorFailurePolicy())

        assert search.search(request, request.subtree, request.subtree) == tree.subtree(
            (2, 0)
        )
        assert len(request.backups) == 2
        assert all(host in (2, 3) for host in backup_hosts(request))

    @pytest.mark.parametrize("seed", range(40))
    def test_tor_policy_keeps_backups_out_of_primary_tor(self, placer, filler, seed):
        """Free slots under the primaries' own TOR never receive backups."""
        tree = FatTree(8, 4, 2, 2, 2, 1000, 10000, 10000)
        request = Request(id=1, n_vms=2, bandwidth=100)
        placer(tree, request, {0: 2}, subtree_key=(1, 0))
        for server in range(2, 8):
            filler(tree, server, 3, request_id=900 + server)
        search = BackupPlacementSearch(
            tree, rng=random.Random(seed), policy=TorFailurePolicy()
        )

        result = search.search(request, request.subtree, request.subtree)

        assert result == tree.subtree((2, 0))
        assert backup_hosts(request) == [2, 3]
        assert tree.servers[1].available_vms == 4
