"""Scenario files: topology, admission settings and workload in one YAML.

Example:
    ```yaml
    seed: 7
    topology:
      servers: 8
      vm_slots_per_server: 4
      servers_per_tor: 2
      tors_per_agg: 2
      aggs_per_core: 2
      link_capacity: {server_tor: 1000, tor_agg: 10000, agg_core: 10000}
    admission:
      collocate: true
      share_bandwidth: true
    workload:
      generate:
        count: 50
        vms: [2, 6]
        bandwidth: [50, 200]
        arrival_rate: 4
        departure_rate: 1
    ```
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import jsonschema
import yaml

from ftadmit.config import AdmissionConfig, RevenueConfig
from ftadmit.events import generate_requests
from ftadmit.logging import get_logger
from ftadmit.model.request import Request
from ftadmit.model.topology import FatTree
from ftadmit.seed_manager import SeedManager
from ftadmit.simulation import Simulation
from ftadmit.status import NetworkStatus

__all__ = ["Scenario", "load_scenario_yaml"]

logger = get_logger(__name__)

_RECOGNIZED_KEYS = {"seed", "topology", "admission", "revenue", "workload"}


def load_scenario_yaml(yaml_str: str) -> Dict[str, Any]:
    """Parse and validate a scenario YAML string.

    Args:
        yaml_str: YAML text.

    Returns:
        The validated mapping.

    Raises:
        ValueError: If the document is not a mapping, has unknown top-level
            keys, or names a workload with neither or both of ``generate``
            and ``requests``.
        jsonschema.ValidationError: If the document violates the schema.
    """
    data = yaml.safe_load(yaml_str)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("The provided YAML must map to a dictionary at top-level.")

    extra = set(data.keys()) - _RECOGNIZED_KEYS
    if extra:
        raise ValueError(
            f"Unrecognized top-level key(s) in scenario: {', '.join(sorted(extra))}. "
            f"Allowed keys are {sorted(_RECOGNIZED_KEYS)}"
        )

    with (
        resources.files("ftadmit.schemas")
        .joinpath("scenario.json")
        .open("r", encoding="utf-8")
    ) as f:
        schema_data = json.load(f)
    jsonschema.validate(data, schema_data)

    workload = data["workload"]
    if ("generate" in workload) == ("requests" in workload):
        raise ValueError("workload must define exactly one of 'generate' or 'requests'")
    return data


@dataclass
class Scenario:
    """A runnable scenario.

    Attributes:
        topology: ``topology`` section, fed to :meth:`FatTree.from_dict`.
        requests: Workload.
        admission: Admission settings.
        revenue: Prices for the revenue metric.
        seed: Master seed.
    """

    topology: Dict[str, Any]
    requests: List[Request]
    admission: AdmissionConfig = field(default_factory=AdmissionConfig)
    revenue: RevenueConfig = field(default_factory=RevenueConfig)
    seed: Optional[int] = None

    @classmethod
    def from_yaml(cls, yaml_str: str) -> "Scenario":
        data = load_scenario_yaml(yaml_str)
        seed = data.get("seed")
        admission = AdmissionConfig().with_overrides(data.get("admission", {}))
        revenue = RevenueConfig(**data.get("revenue", {}))
        requests = _build_requests(data["workload"], SeedManager(seed))
        logger.debug("Loaded scenario with %d request(s)", len(requests))
        return cls(
            topology=data["topology"],
            requests=requests,
            admission=admission,
            revenue=revenue,
            seed=seed,
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Scenario":
        return cls.from_yaml(Path(path).read_text(encoding="utf-8"))

    def build_tree(self) -> FatTree:
        return FatTree.from_dict(self.topology)

    def simulation(self) -> Simulation:
        """Fresh simulation over a new tree and fresh copies of the requests."""
        requests = [
            Request(
                id=r.id,
                n_vms=r.n_vms,
                bandwidth=r.bandwidth,
                arrival_time=r.arrival_time,
                departure_time=r.departure_time,
            )
            for r in self.requests
        ]
        return Simulation(
            self.build_tree(),
            requests,
            config=self.admission,
            seed=self.seed,
            revenue=self.revenue,
        )

    def run(self) -> NetworkStatus:
        return self.simulation().run()


def _build_requests(workload: Dict[str, Any], seeds: SeedManager) -> List[Request]:
    if "generate" in workload:
        params = workload["generate"]
        return generate_requests(
            count=params["count"],
            vms=params["vms"],
            bandwidth=params["bandwidth"],
            arrival_rate=params["arrival_rate"],
            departure_rate=params["departure_rate"],
            rng=seeds.create_random_state("workload"),
        )
    requests = []
    for entry in workload["requests"]:
        departure = entry.get("departure")
        requests.append(
            Request(
                id=entry["id"],
                n_vms=entry["vms"],
                bandwidth=float(entry["bandwidth"]),
                arrival_time=float(entry.get("arrival", 0.0)),
                departure_time=math.inf if departure is None else float(departure),
            )
        )
    return requests
