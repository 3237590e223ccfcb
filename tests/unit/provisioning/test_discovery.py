"""EC2 instance discovery with a mocked boto3 session."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from clusterform.errors import DiscoveryError
from clusterform.metadata import Instance
from clusterform.provisioning.discovery import (
    GROUP_NAME_TAG,
    Ec2InstanceDiscovery,
    InMemoryInstanceDiscovery,
)


def _session_with_pages(pages):
    paginator = MagicMock()
    paginator.paginate.return_value = iter(pages)
    client = MagicMock()
    client.get_paginator.return_value = paginator
    session = MagicMock()
    session.client.return_value = client
    return session, client, paginator


def _raw(instance_id, ip, instance_type='t3.micro'):
    return {
        'InstanceId': instance_id,
        'PrivateIpAddress': ip,
        'InstanceType': instance_type,
        'State': {'Name': 'running'},
    }


class TestEc2InstanceDiscovery:
    @pytest.mark.asyncio
    async def test_filters_by_group_tag_and_running_state(self):
        session, client, paginator = _session_with_pages([{'Reservations': []}])

        await Ec2InstanceDiscovery(session).discover('c1-0', 'us-east-1')

        session.client.assert_called_once_with('ec2', region_name='us-east-1')
        client.get_paginator.assert_called_once_with('describe_instances')
        paginator.paginate.assert_called_once_with(
            Filters=[
                {'Name': f'tag:{GROUP_NAME_TAG}', 'Values': ['c1-0']},
                {'Name': 'instance-state-name', 'Values': ['running']},
            ]
        )

    @pytest.mark.asyncio
    async def test_flattens_pages_in_reported_order(self):
        pages = [
            {
                'Reservations': [
                    {'Instances': [_raw('i-1', '10.0.0.1'), _raw('i-2', '10.0.0.2')]},
                ]
            },
            {
                'Reservations': [
                    {'Instances': [_raw('i-3', '10.0.0.3', 'm5.large')]},
                ]
            },
        ]
        session, _, _ = _session_with_pages(pages)

        instances = await Ec2InstanceDiscovery(session).discover('c1-0', 'us-east-1')

        assert instances == [
            Instance('i-1', '10.0.0.1', 't3.micro'),
            Instance('i-2', '10.0.0.2', 't3.micro'),
            Instance('i-3', '10.0.0.3', 'm5.large'),
        ]

    @pytest.mark.asyncio
    async def test_empty_group_is_not_an_error(self):
        session, _, _ = _session_with_pages([{}])

        assert await Ec2InstanceDiscovery(session).discover('c1-0', 'us-east-1') == []

    @pytest.mark.asyncio
    async def test_client_error_becomes_discovery_error(self):
        session, _, paginator = _session_with_pages([])
        paginator.paginate.side_effect = ClientError(
            {'Error': {'Code': 'UnauthorizedOperation', 'Message': 'denied'}},
            'DescribeInstances',
        )

        with pytest.raises(DiscoveryError) as excinfo:
            await Ec2InstanceDiscovery(session).discover('c1-0', 'us-east-1')

        assert excinfo.value.group_name == 'c1-0'
        assert excinfo.value.region == 'us-east-1'
        assert 'UnauthorizedOperation' in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_connection_error_becomes_discovery_error(self):
        session, _, paginator = _session_with_pages([])
        paginator.paginate.side_effect = EndpointConnectionError(
            endpoint_url='https://ec2.us-east-1.amazonaws.com'
        )

        with pytest.raises(DiscoveryError):
            await Ec2InstanceDiscovery(session).discover('c1-0', 'us-east-1')

    @pytest.mark.asyncio
    async def test_reuses_client_per_region(self):
        session, _, paginator = _session_with_pages([])
        paginator.paginate.side_effect = lambda **_: iter([])
        discovery = Ec2InstanceDiscovery(session)

        await discovery.discover('c1-0', 'us-east-1')
        await discovery.discover('c1-1', 'us-east-1')
        await discovery.discover('c1-2', 'eu-west-1')

        assert session.client.call_count == 2


class TestInMemoryInstanceDiscovery:
    @pytest.mark.asyncio
    async def test_serves_canned_instances(self):
        discovery = InMemoryInstanceDiscovery(
            {('c1-0', 'us-east-1'): [Instance('i-1', '10.0.0.1', 't2')]}
        )

        assert await discovery.discover('c1-0', 'us-east-1') == [
            Instance('i-1', '10.0.0.1', 't2')
        ]
        assert await discovery.discover('c1-0', 'eu-west-1') == []
        assert discovery.calls == [('c1-0', 'us-east-1'), ('c1-0', 'eu-west-1')]

    @pytest.mark.asyncio
    async def test_scripted_failure(self):
        discovery = InMemoryInstanceDiscovery(fail_for=('c1-0',))

        with pytest.raises(DiscoveryError):
            await discovery.discover('c1-0', 'us-east-1')
