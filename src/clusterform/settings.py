"""clusterform configuration settings.

ClusterformSettings is a plain frozen dataclass (not env-coupled) so tests
can inject config without touching os.environ. ``from_env`` is the
production convenience factory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .errors import InvalidArgumentError

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_LOG_FORMATS = frozenset({"json", "console"})


@dataclass(frozen=True, slots=True)
class ClusterformSettings:
    """Configuration for the provisioning controller and node HTTP client."""

    # ── Converger ──────────────────────────────────────────────────
    workspace_dir: Path = Path(".")
    """Directory holding the converger templates and state."""

    converger_binary: str = "terraform"
    """Converger executable name or path."""

    converger_timeout: float | None = None
    """Wall-clock limit per converger invocation in seconds. None = unlimited."""

    # ── AWS ────────────────────────────────────────────────────────
    aws_profile: str | None = None
    """Named AWS profile for instance discovery. None uses the default chain."""

    # ── Node HTTP ──────────────────────────────────────────────────
    http_timeout: float = 30.0
    """Per-attempt HTTP timeout in seconds."""

    http_max_attempts: int = 3
    """Total attempts for transient HTTP failures."""

    # ── Logging ────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"
    """One of: json, console."""

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if not self.converger_binary:
            errors.append("converger_binary is required")
        if self.converger_timeout is not None and self.converger_timeout <= 0:
            errors.append("converger_timeout must be > 0")
        if self.http_timeout <= 0:
            errors.append("http_timeout must be > 0")
        if self.http_max_attempts < 1:
            errors.append("http_max_attempts must be >= 1")
        if self.log_level.upper() not in _LOG_LEVELS:
            errors.append(f"log_level {self.log_level!r} is not a known level")
        if self.log_format not in _LOG_FORMATS:
            errors.append(f"log_format must be json or console, got {self.log_format!r}")
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> ClusterformSettings:
        """Build settings from environment variables.

        Environment variables:
          - ``CLUSTERFORM_WORKSPACE``: converger workspace directory.
          - ``CLUSTERFORM_CONVERGER``: converger binary.
          - ``CLUSTERFORM_CONVERGER_TIMEOUT``: seconds per invocation.
          - ``AWS_PROFILE``: named AWS profile.
          - ``CLUSTERFORM_HTTP_TIMEOUT``: seconds per HTTP attempt.
          - ``CLUSTERFORM_HTTP_MAX_ATTEMPTS``: total HTTP attempts.
          - ``LOG_LEVEL`` / ``LOG_FORMAT``.

        Raises:
            InvalidArgumentError: A numeric variable does not parse.
        """
        if env is None:
            env = dict(os.environ)

        timeout_raw = env.get("CLUSTERFORM_CONVERGER_TIMEOUT", "").strip()

        return cls(
            workspace_dir=Path(env.get("CLUSTERFORM_WORKSPACE", ".")),
            converger_binary=env.get("CLUSTERFORM_CONVERGER", "terraform"),
            converger_timeout=(
                _parse_float("CLUSTERFORM_CONVERGER_TIMEOUT", timeout_raw)
                if timeout_raw
                else None
            ),
            aws_profile=env.get("AWS_PROFILE") or None,
            http_timeout=_parse_float(
                "CLUSTERFORM_HTTP_TIMEOUT", env.get("CLUSTERFORM_HTTP_TIMEOUT", "30")
            ),
            http_max_attempts=_parse_int(
                "CLUSTERFORM_HTTP_MAX_ATTEMPTS",
                env.get("CLUSTERFORM_HTTP_MAX_ATTEMPTS", "3"),
            ),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            log_format=env.get("LOG_FORMAT", "json"),
        )


def _parse_float(name: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise InvalidArgumentError(f"{name}={raw!r} is not a number") from None


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise InvalidArgumentError(f"{name}={raw!r} is not an integer") from None
