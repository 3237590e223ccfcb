"""Running-instance discovery per deployment unit.

A deployment unit is an EC2 auto-scaling group. Its members are found by
the ``aws:autoscaling:groupName`` tag that AWS attaches to every instance
it launches for the group. The lookup is read-only.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import DiscoveryError
from ..metadata import Instance
from ..observability.logging import get_logger

logger = get_logger(__name__)

GROUP_NAME_TAG = 'aws:autoscaling:groupName'


# ── Protocol ─────────────────────────────────────────────────────────


class InstanceDiscovery(Protocol):
    """Look up running instances that belong to a deployment unit."""

    async def discover(self, group_name: str, region: str) -> list[Instance]:
        """Return running instances, in the order the provider reports them.

        An empty list is a valid answer. Lookup failures raise DiscoveryError.
        """
        ...


# ── EC2 implementation ───────────────────────────────────────────────


class Ec2InstanceDiscovery:
    """InstanceDiscovery backed by EC2 ``DescribeInstances``.

    Args:
        session: boto3 session to build clients from. Defaults to a new
            session using the standard credential chain.
    """

    def __init__(self, session: boto3.Session | None = None) -> None:
        self._session = session or boto3.Session()
        self._clients: dict[str, Any] = {}
        self._clients_lock = threading.Lock()

    def _client(self, region: str) -> Any:
        with self._clients_lock:
            client = self._clients.get(region)
            if client is None:
                client = self._session.client('ec2', region_name=region)
                self._clients[region] = client
            return client

    async def discover(self, group_name: str, region: str) -> list[Instance]:
        return await asyncio.to_thread(self._discover_sync, group_name, region)

    def _discover_sync(self, group_name: str, region: str) -> list[Instance]:
        try:
            paginator = self._client(region).get_paginator('describe_instances')
            pages = paginator.paginate(
                Filters=[
                    {'Name': f'tag:{GROUP_NAME_TAG}', 'Values': [group_name]},
                    {'Name': 'instance-state-name', 'Values': ['running']},
                ]
            )
            instances = [
                _to_instance(raw)
                for page in pages
                for reservation in page.get('Reservations', [])
                for raw in reservation.get('Instances', [])
            ]
        except (BotoCoreError, ClientError) as exc:
            raise DiscoveryError(group_name, region, str(exc)) from exc

        logger.debug(
            'instances_discovered',
            group_name=group_name,
            region=region,
            count=len(instances),
        )
        return instances


def _to_instance(raw: dict[str, Any]) -> Instance:
    return Instance(
        instance_id=raw.get('InstanceId', ''),
        private_ip=raw.get('PrivateIpAddress', ''),
        instance_type=raw.get('InstanceType', ''),
    )


# ── In-memory implementation (testing) ───────────────────────────────


class InMemoryInstanceDiscovery:
    """Test discovery that serves canned instances per (group, region)."""

    def __init__(
        self,
        instances: dict[tuple[str, str], list[Instance]] | None = None,
        *,
        fail_for: tuple[str, ...] = (),
    ) -> None:
        self.instances = dict(instances or {})
        self.fail_for = set(fail_for)
        self.calls: list[tuple[str, str]] = []

    async def discover(self, group_name: str, region: str) -> list[Instance]:
        self.calls.append((group_name, region))
        if group_name in self.fail_for:
            raise DiscoveryError(group_name, region, 'lookup failed')
        return list(self.instances.get((group_name, region), []))
