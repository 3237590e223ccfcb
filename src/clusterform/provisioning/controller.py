"""Provisioning lifecycle controller.

Drives the converger against one workspace directory:

  uninitialized --init--> ready --apply/destroy--> applying|destroying --> ready
  any state --close--> closed

Every apply/destroy holds the workspace lease for its whole duration. A
second caller is rejected immediately with LeaseBusyError. After close()
every call is rejected with LeaseClosedError. The lease is released on every
exit path.
"""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from ..errors import (
    ConvergerError,
    DiscoveryError,
    InvalidArgumentError,
    ProvisioningError,
    UnavailableError,
)
from ..metadata import ClusterDefinition, Group, Node, deployment_unit_name
from ..observability.logging import get_logger
from .discovery import InstanceDiscovery
from .lease import LeaseGuard
from .runner import ProcessRunner, Sink

AUTO_APPROVE = '-auto-approve'


class ControllerState(str, Enum):
    """Lifecycle states of a ProvisioningController."""

    UNINITIALIZED = 'uninitialized'
    READY = 'ready'
    APPLYING = 'applying'
    DESTROYING = 'destroying'
    CLOSED = 'closed'


class ProvisioningController:
    """Serializes apply/destroy against a converger workspace.

    Use :meth:`create` rather than the constructor: it runs the converger's
    ``init`` and only hands back a controller once that succeeded.

    Args:
        work_dir: Workspace root holding the converger templates and state.
        runner: Runs the converger binary.
        discovery: Finds running instances per deployment unit.
        stdout: Sink for converger stdout (None inherits the process's).
        stderr: Sink for converger stderr (None inherits the process's).
        logger: Structured logger; defaults to this module's.
    """

    def __init__(
        self,
        work_dir: Path | str,
        *,
        runner: ProcessRunner,
        discovery: InstanceDiscovery,
        stdout: Sink | None = None,
        stderr: Sink | None = None,
        logger: Any | None = None,
    ) -> None:
        self._work_dir = Path(work_dir)
        self._runner = runner
        self._discovery = discovery
        self._stdout = stdout
        self._stderr = stderr
        self._logger = logger or get_logger(__name__)
        self._lease = LeaseGuard()
        self._state = ControllerState.UNINITIALIZED

    @classmethod
    async def create(
        cls,
        work_dir: Path | str,
        *,
        runner: ProcessRunner,
        discovery: InstanceDiscovery,
        stdout: Sink | None = None,
        stderr: Sink | None = None,
        logger: Any | None = None,
    ) -> ProvisioningController:
        """Build a controller and run the converger's ``init`` once.

        Raises:
            InvalidArgumentError: ``work_dir`` is not a directory.
            ConvergerError: ``init`` failed; no controller is returned.
        """
        controller = cls(
            work_dir,
            runner=runner,
            discovery=discovery,
            stdout=stdout,
            stderr=stderr,
            logger=logger,
        )
        await controller._initialize()
        return controller

    # ------ properties ------

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def work_dir(self) -> Path:
        return self._work_dir

    # ------ lifecycle ------

    async def _initialize(self) -> None:
        if not self._work_dir.is_dir():
            raise InvalidArgumentError(
                f'workspace {str(self._work_dir)!r} is not a directory'
            )
        self._logger.info('converger_init_started', work_dir=self._work_dir)
        await self._converge('init')
        self._state = ControllerState.READY
        self._logger.info('converger_init_finished', work_dir=self._work_dir)

    def close(self) -> None:
        """Invalidate the lease. Later apply/destroy calls fail with LeaseClosedError."""
        if self._state is ControllerState.CLOSED:
            return
        self._lease.invalidate()
        self._state = ControllerState.CLOSED
        self._logger.info('controller_closed', work_dir=self._work_dir)

    async def __aenter__(self) -> ProvisioningController:
        return self

    async def __aexit__(self, *args: object) -> None:
        self.close()

    # ------ operations ------

    async def apply(self, cluster_id: str, definition: ClusterDefinition) -> list[Node]:
        """Converge the workspace and return the resulting node inventory.

        Nodes are ordered by group position, then by the order discovery
        reported instances within each group.

        Raises:
            InvalidArgumentError: ``cluster_id`` is blank.
            UnavailableError: Another operation is running, or the
                controller is closed.
            ProvisioningError: The converger or a discovery lookup failed.
        """
        if not cluster_id or not cluster_id.strip():
            raise InvalidArgumentError('cluster_id is required')

        with self._operation('apply', ControllerState.APPLYING):
            self._logger.info(
                'converger_apply_started',
                cluster_id=cluster_id,
                groups=len(definition.groups),
            )
            try:
                await self._converge('apply', AUTO_APPROVE)
            except ConvergerError as exc:
                raise ProvisioningError(
                    'apply', f'failed to auto-approve apply templates: {exc}'
                ) from exc
            self._logger.info('converger_apply_finished', cluster_id=cluster_id)

            nodes = await self._discover_nodes(cluster_id, definition)

        self._logger.info('nodes_discovered', cluster_id=cluster_id, count=len(nodes))
        return nodes

    async def destroy(self) -> None:
        """Tear down everything the workspace manages.

        Raises:
            UnavailableError: Another operation is running, or the
                controller is closed.
            ProvisioningError: The converger failed.
        """
        with self._operation('destroy', ControllerState.DESTROYING):
            self._logger.info('converger_destroy_started', work_dir=self._work_dir)
            try:
                await self._converge('destroy', AUTO_APPROVE)
            except ConvergerError as exc:
                raise ProvisioningError(
                    'destroy', f'failed to auto-approve destroy: {exc}'
                ) from exc
            self._logger.info('converger_destroy_finished', work_dir=self._work_dir)

    # ------ helpers ------

    @contextmanager
    def _operation(self, name: str, state: ControllerState) -> Iterator[None]:
        if self._state is ControllerState.UNINITIALIZED:
            raise UnavailableError('controller is not initialized')
        try:
            self._lease.try_acquire()
        except UnavailableError as exc:
            self._logger.warning(
                'lease_rejected',
                operation=name,
                reason=type(exc).__name__,
            )
            raise

        self._state = state
        try:
            yield
        except BaseException:
            self._logger.warning('operation_failed', operation=name, exc_info=True)
            raise
        finally:
            self._lease.release()
            if self._state is not ControllerState.CLOSED:
                self._state = ControllerState.READY

    async def _converge(self, *args: str) -> None:
        await self._runner.run(
            self._work_dir,
            *args,
            stdout=self._stdout,
            stderr=self._stderr,
        )

    async def _discover_nodes(
        self,
        cluster_id: str,
        definition: ClusterDefinition,
    ) -> list[Node]:
        tasks = [
            asyncio.create_task(
                self._discover_group(deployment_unit_name(cluster_id, index), group)
            )
            for index, group in enumerate(definition.groups)
        ]
        try:
            per_group = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return [node for nodes in per_group for node in nodes]

    async def _discover_group(self, unit: str, group: Group) -> list[Node]:
        try:
            instances = await self._discovery.discover(unit, group.region)
        except DiscoveryError as exc:
            raise ProvisioningError('apply', str(exc)) from exc
        except Exception as exc:
            raise ProvisioningError(
                'apply',
                f'failed to discover instances for group {unit!r} in {group.region!r}: {exc}',
            ) from exc
        return [Node.from_instance(instance, group) for instance in instances]
