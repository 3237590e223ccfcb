"""clusterform: drive an external converger to provision clusters.

Public surface::

    from clusterform import ProvisioningController, ClusterDefinition, Group
    from clusterform.httputil import HTTPClient
"""

from .errors import (
    ClusterformError,
    ConvergerError,
    DiscoveryError,
    InvalidArgumentError,
    LeaseBusyError,
    LeaseClosedError,
    ProvisioningError,
    ServerRejectedError,
    UnavailableError,
)
from .metadata import ClusterDefinition, Group, Instance, Node
from .provisioning import ControllerState, ProvisioningController
from .settings import ClusterformSettings

__version__ = "0.1.0"

__all__ = [
    "ClusterDefinition",
    "ClusterformError",
    "ClusterformSettings",
    "ControllerState",
    "ConvergerError",
    "DiscoveryError",
    "Group",
    "Instance",
    "InvalidArgumentError",
    "LeaseBusyError",
    "LeaseClosedError",
    "Node",
    "ProvisioningController",
    "ProvisioningError",
    "ServerRejectedError",
    "UnavailableError",
]
