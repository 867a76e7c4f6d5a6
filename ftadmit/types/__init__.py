"""Shared enums and type aliases."""

from ftadmit.types.base import (
    HEIGHT,
    MIN_BW,
    BandwidthKind,
    EventType,
    Level,
    MappingStatus,
    NodeKey,
    RejectionReason,
    RetryState,
    VMKind,
)

__all__ = [
    "HEIGHT",
    "MIN_BW",
    "BandwidthKind",
    "EventType",
    "Level",
    "MappingStatus",
    "NodeKey",
    "RejectionReason",
    "RetryState",
    "VMKind",
]
