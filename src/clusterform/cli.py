"""Command-line entry point: ``python -m clusterform {apply,destroy}``."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Sequence

import boto3
import yaml

from .errors import ClusterformError, InvalidArgumentError, UnavailableError
from .metadata import ClusterDefinition
from .observability.logging import configure_logging, get_logger
from .provisioning import (
    Ec2InstanceDiscovery,
    InstanceDiscovery,
    ProcessRunner,
    ProvisioningController,
    SubprocessRunner,
)
from .settings import ClusterformSettings

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_UNAVAILABLE = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clusterform",
        description="Provision and tear down a cluster through an external converger.",
    )
    parser.add_argument("--workspace", type=Path, help="Converger workspace directory.")
    parser.add_argument("--converger", help="Converger binary (default: terraform).")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR.")
    parser.add_argument("--log-format", choices=("json", "console"))

    sub = parser.add_subparsers(dest="command", required=True)

    apply = sub.add_parser("apply", help="Converge and print the node inventory as JSON.")
    apply.add_argument("--cluster-id", required=True)
    apply.add_argument(
        "--definition",
        type=Path,
        required=True,
        help="Cluster definition file (JSON or YAML).",
    )

    sub.add_parser("destroy", help="Destroy everything the workspace manages.")
    return parser


def load_definition(path: Path) -> ClusterDefinition:
    """Read a cluster definition from a JSON or YAML file."""
    try:
        text = path.read_text()
    except OSError as exc:
        raise InvalidArgumentError(f"cannot read definition {str(path)!r}: {exc}") from exc

    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise InvalidArgumentError(f"cannot parse definition {str(path)!r}: {exc}") from exc

    return ClusterDefinition.from_dict(data or {})


def _settings_from_args(args: argparse.Namespace, settings: ClusterformSettings) -> ClusterformSettings:
    overrides: dict[str, Any] = {}
    if args.workspace is not None:
        overrides["workspace_dir"] = args.workspace
    if args.converger:
        overrides["converger_binary"] = args.converger
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    if args.log_format:
        overrides["log_format"] = args.log_format
    return replace(settings, **overrides)


def _default_runner(settings: ClusterformSettings) -> ProcessRunner:
    return SubprocessRunner(settings.converger_binary, timeout=settings.converger_timeout)


def _default_discovery(settings: ClusterformSettings) -> InstanceDiscovery:
    return Ec2InstanceDiscovery(boto3.Session(profile_name=settings.aws_profile))


async def _run(
    args: argparse.Namespace,
    settings: ClusterformSettings,
    runner: ProcessRunner,
    discovery: InstanceDiscovery,
) -> int:
    definition = load_definition(args.definition) if args.command == "apply" else None

    # Keep stdout for the JSON inventory; converger output goes to stderr.
    async with await ProvisioningController.create(
        settings.workspace_dir,
        runner=runner,
        discovery=discovery,
        stdout=sys.stderr,
        stderr=sys.stderr,
    ) as controller:
        if args.command == "apply":
            nodes = await controller.apply(args.cluster_id, definition)
            json.dump([node.to_dict() for node in nodes], sys.stdout, indent=2)
            sys.stdout.write("\n")
        else:
            await controller.destroy()
    return EXIT_OK


def main(
    argv: Sequence[str] | None = None,
    *,
    env: dict[str, str] | None = None,
    runner_factory: Callable[[ClusterformSettings], ProcessRunner] = _default_runner,
    discovery_factory: Callable[[ClusterformSettings], InstanceDiscovery] = _default_discovery,
) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = _settings_from_args(args, ClusterformSettings.from_env(env))
    except InvalidArgumentError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE

    problems = settings.validate()
    if problems:
        for problem in problems:
            print(f"error: {problem}", file=sys.stderr)
        return EXIT_USAGE

    configure_logging(
        level=settings.log_level,
        json_output=settings.log_format == "json",
    )

    try:
        return asyncio.run(
            _run(args, settings, runner_factory(settings), discovery_factory(settings))
        )
    except InvalidArgumentError as exc:
        logger.error("invalid_argument", error=str(exc))
        return EXIT_USAGE
    except UnavailableError as exc:
        logger.error("workspace_unavailable", error=str(exc))
        return EXIT_UNAVAILABLE
    except ClusterformError as exc:
        logger.error("operation_failed", command=args.command, error=str(exc))
        return EXIT_FAILED
    except KeyboardInterrupt:
        logger.warning("interrupted", command=args.command)
        return 130
