"""Bandwidth mapping solvers."""

from ftadmit.solver.base import BandwidthMappingSolver, MappingProblem, MappingResult
from ftadmit.solver.hose import HoseMappingSolver

__all__ = [
    "BandwidthMappingSolver",
    "HoseMappingSolver",
    "MappingProblem",
    "MappingResult",
]
