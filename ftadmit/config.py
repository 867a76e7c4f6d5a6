"""Configuration classes for admission control and reporting."""

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional


@dataclass
class AdmissionConfig:
    """Knobs for the admission pipeline."""

    # Try to put backups on hosting servers before spreading them out
    collocate: bool = True

    # Recompute backup sharing sets after every admission and departure
    share_bandwidth: bool = True

    # Failure domain the backups must cover: "server" or "tor"
    failure_domain: str = "server"

    # Upper bound on controller state transitions; None derives it from tree height
    max_steps: Optional[int] = None

    # Random tree-wide backup draws per search; 0 keeps the recursive search
    enumeration_attempts: int = 0

    def with_overrides(self, overrides: Dict[str, Any]) -> "AdmissionConfig":
        """Return a copy with the given fields replaced."""
        unknown = set(overrides) - set(self.__dataclass_fields__)
        if unknown:
            raise ValueError(
                f"Unknown admission option(s): {', '.join(sorted(unknown))}"
            )
        return replace(self, **overrides)


@dataclass
class RevenueConfig:
    """Unit prices used when reporting revenue of admitted requests."""

    # Price per VM of an admitted request
    vm_cost: float = 1.0

    # Flat price per VM for its bandwidth guarantee, independent of the rate
    bandwidth_cost: float = 1.0

    def request_revenue(self, n_vms: int) -> float:
        """Revenue of one admitted request with ``n_vms`` VMs."""
        return n_vms * self.vm_cost + n_vms * self.bandwidth_cost


# Global configuration instances
ADMISSION_CONFIG = AdmissionConfig()
REVENUE_CONFIG = RevenueConfig()
