"""Sharing sets: requests whose backups share bandwidth on one link."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator

__all__ = ["SharingSet"]


@dataclass(eq=False)
class SharingSet:
    """Requests on one link whose backups never activate together.

    The set reserves the largest member need instead of the sum.

    Attributes:
        link_id: Link the set lives on.
        needs: Backup bandwidth each member would hold on its own, by
            request id.
    """

    link_id: int
    needs: Dict[int, float] = field(default_factory=dict)

    @property
    def reserved(self) -> float:
        return max(self.needs.values(), default=0.0)

    @property
    def savings(self) -> float:
        """Bandwidth saved compared with reserving every need separately."""
        return sum(self.needs.values()) - self.reserved

    def add(self, request_id: int, need: float) -> None:
        self.needs[request_id] = need

    def remove(self, request_id: int) -> float:
        return self.needs.pop(request_id)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self.needs

    def __len__(self) -> int:
        return len(self.needs)

    def __iter__(self) -> Iterator[int]:
        return iter(self.needs)
