"""Topology, request and view model."""

from ftadmit.model.request import LinkUsage, Request, VirtualMachine
from ftadmit.model.sharing import SharingSet
from ftadmit.model.topology import FatTree, Link, Node, PhysicalMachine, Switch
from ftadmit.model.view import SubtreeView

__all__ = [
    "FatTree",
    "Link",
    "LinkUsage",
    "Node",
    "PhysicalMachine",
    "Request",
    "SharingSet",
    "SubtreeView",
    "Switch",
    "VirtualMachine",
]
