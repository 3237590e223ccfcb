"""Cluster definition and node inventory value objects."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .errors import InvalidArgumentError


@dataclass(frozen=True, slots=True)
class Group:
    """One deployment unit's worth of homogeneous instances."""

    region: str
    labels: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ClusterDefinition:
    """Ordered groups to converge. Group position names the deployment unit."""

    groups: tuple[Group, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ClusterDefinition:
        """Parse ``{"groups": [{"region": ..., "labels": [...]}, ...]}``.

        Raises:
            InvalidArgumentError: If the shape or any field is malformed.
        """
        if not isinstance(data, Mapping):
            raise InvalidArgumentError('cluster definition must be a mapping')

        raw_groups = data.get('groups', [])
        if not isinstance(raw_groups, list):
            raise InvalidArgumentError("'groups' must be a list")

        groups: list[Group] = []
        for index, raw in enumerate(raw_groups):
            if not isinstance(raw, Mapping):
                raise InvalidArgumentError(f'group {index} must be a mapping')

            region = raw.get('region')
            if not isinstance(region, str) or not region.strip():
                raise InvalidArgumentError(f'group {index}: region is required')

            labels = raw.get('labels', [])
            if not isinstance(labels, list) or not all(
                isinstance(label, str) for label in labels
            ):
                raise InvalidArgumentError(
                    f'group {index}: labels must be a list of strings'
                )

            groups.append(Group(region=region.strip(), labels=tuple(labels)))

        return cls(groups=tuple(groups))


@dataclass(frozen=True, slots=True)
class Instance:
    """A running instance as reported by the hosting environment."""

    instance_id: str
    private_ip: str
    instance_type: str


@dataclass(frozen=True, slots=True)
class Node:
    """A provisioned cluster node.

    ``labels`` is positional: instance id, instance type, region, then the
    group's declared labels.
    """

    id: str
    address: str
    labels: tuple[str, ...] = field(default=())

    @classmethod
    def from_instance(cls, instance: Instance, group: Group) -> Node:
        return cls(
            id=instance.instance_id,
            address=instance.private_ip,
            labels=(
                instance.instance_id,
                instance.instance_type,
                group.region,
                *group.labels,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'address': self.address,
            'labels': list(self.labels),
        }


def deployment_unit_name(cluster_id: str, index: int) -> str:
    """Deterministic deployment-unit name: ``{cluster_id}-{index}``."""
    return f'{cluster_id}-{index}'
