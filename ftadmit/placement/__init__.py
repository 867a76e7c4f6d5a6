"""Primary and backup VM placement."""

from ftadmit.placement.backup import BackupPlacementSearch
from ftadmit.placement.enumeration import EnumerationBackupSearch
from ftadmit.placement.policy import (
    FailureDomainPolicy,
    ServerFailurePolicy,
    TorFailurePolicy,
    policy_from_name,
)
from ftadmit.placement.primary import HosePrimaryPlacer, PrimaryPlacer, hose_bandwidth

__all__ = [
    "BackupPlacementSearch",
    "EnumerationBackupSearch",
    "FailureDomainPolicy",
    "HosePrimaryPlacer",
    "PrimaryPlacer",
    "ServerFailurePolicy",
    "TorFailurePolicy",
    "hose_bandwidth",
    "policy_from_name",
]
