"""Deterministic random sources for placement and workload generation."""

from __future__ import annotations

import hashlib
import random
from typing import Any, Optional


class SeedManager:
    """Derive independent, reproducible seeds from one master seed.

    Backup server selection, request generation and event timing each get
    their own ``random.Random`` so that adding draws in one component does
    not shift the sequence seen by another.

    Usage:
        seeds = SeedManager(7)
        rng = seeds.create_random_state("backup_search")
    """

    def __init__(self, master_seed: Optional[int] = None) -> None:
        """Initialize the manager.

        Args:
            master_seed: Master seed. ``None`` makes every derived source
                unseeded (non-deterministic).
        """
        self.master_seed = master_seed

    def derive_seed(self, *components: Any) -> Optional[int]:
        """Hash the master seed and component labels into a 31-bit seed.

        Args:
            *components: Labels identifying the consumer, e.g.
                ``("workload", "arrivals")``.

        Returns:
            Non-negative seed, or None without a master seed.
        """
        if self.master_seed is None:
            return None

        seed_input = f"{self.master_seed}:" + ":".join(str(c) for c in components)
        digest = hashlib.sha256(seed_input.encode()).digest()
        return int.from_bytes(digest[:4], byteorder="big") & 0x7FFFFFFF

    def create_random_state(self, *components: Any) -> random.Random:
        """Return a ``random.Random`` seeded for the given component.

        Args:
            *components: Labels passed to :meth:`derive_seed`.

        Returns:
            Seeded generator, or an unseeded one without a master seed.
        """
        rng = random.Random()
        derived_seed = self.derive_seed(*components)
        if derived_seed is not None:
            rng.seed(derived_seed)
        return rng
