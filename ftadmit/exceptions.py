"""Exceptions raised for programming defects and unavailable solvers.

Rejections are not exceptions: they are reported through
:class:`ftadmit.admission.AdmissionOutcome` and ``Request.rejection_reason``.
"""


class FtAdmitError(RuntimeError):
    """Base class for ftadmit errors."""


class CapacityError(FtAdmitError):
    """A VM slot reservation asked for more slots than a server has free."""


class AdmissionError(FtAdmitError):
    """The admission loop exceeded its iteration bound."""


class SolverError(FtAdmitError):
    """A bandwidth mapping solver could not produce a verdict."""
