"""Tests for single-failure survivability queries."""

import random

import pytest

from ftadmit.admission import AdmissionController
from ftadmit.failure import (
    active_vms_after_failure,
    average_fault_tolerance,
    fault_tolerance,
    network_fault_tolerance,
    worst_case_survivability,
)
from ftadmit.model.request import Request
from ftadmit.placement.primary import HosePrimaryPlacer
from ftadmit.types.base import Level


@pytest.fixture
def protected(tree):
    """Three primaries on server 0 backed up on server 1."""
    request = Request(id=1, n_vms=3, bandwidth=100)
    HosePrimaryPlacer(tree).place(request)
    AdmissionController(tree, rng=random.Random(1)).protect_request(request)
    return request


@pytest.fixture
def unprotected(tree, placer):
    request = Request(id=2, n_vms=2, bandwidth=10)
    placer(tree, request, {4: 1, 5: 1})
    return request


class TestFailureQueries:
    def test_server_failure_is_covered(self, tree, protected):
        server0 = tree.subtree((0, 0))
        assert active_vms_after_failure(protected, server0) == 3
        assert fault_tolerance(protected, server0) == 1.0
        assert fault_tolerance(protected, tree.subtree((0, 1))) == 1.0

    def test_tor_failure_takes_backups_along(self, tree, protected):
        assert active_vms_after_failure(protected, tree.subtree((1, 0))) == 0
        assert worst_case_survivability(tree, protected, Level.TOR) == 0.0
        assert worst_case_survivability(tree, protected) == 1.0

    def test_unprotected_request(self, tree, unprotected):
        assert fault_tolerance(unprotected, tree.subtree((0, 4))) == 0.5
        assert worst_case_survivability(tree, unprotected) == 0.5
        assert fault_tolerance(unprotected, tree.subtree((0, 0))) == 1.0

    def test_request_without_primaries(self, tree):
        assert worst_case_survivability(tree, Request(id=3, n_vms=1, bandwidth=1)) == 1.0

    def test_average_fault_tolerance(self, tree, protected, unprotected):
        server4 = tree.subtree((0, 4))
        assert average_fault_tolerance([protected, unprotected], server4) == 0.75
        assert average_fault_tolerance([], server4) == 1.0

    def test_network_fault_tolerance(self, tree, protected, unprotected):
        # only the failures of servers 4 and 5 hurt, each halving one request
        expected = (6 * 1.0 + 2 * 0.75) / 8
        assert network_fault_tolerance(
            tree, [protected, unprotected]
        ) == pytest.approx(expected)
        assert network_fault_tolerance(tree, []) == 1.0
