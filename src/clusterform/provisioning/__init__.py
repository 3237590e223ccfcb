"""Provisioning lifecycle: lease, converger runner, discovery, controller."""

from .controller import ControllerState, ProvisioningController
from .discovery import (
    Ec2InstanceDiscovery,
    InMemoryInstanceDiscovery,
    InstanceDiscovery,
)
from .lease import LeaseGuard
from .runner import InMemoryProcessRunner, ProcessRunner, SubprocessRunner

__all__ = [
    'ControllerState',
    'Ec2InstanceDiscovery',
    'InMemoryInstanceDiscovery',
    'InMemoryProcessRunner',
    'InstanceDiscovery',
    'LeaseGuard',
    'ProcessRunner',
    'ProvisioningController',
    'SubprocessRunner',
]
