"""Configuration management with validation.

Timeouts and poll intervals are injected into each reconciler instead of
being held in module state, so independent instances can be reconciled
concurrently with different settings.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field

from .models import OperationKind


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_CREATE_TIMEOUT_SECONDS = 600.0
DEFAULT_UPDATE_TIMEOUT_SECONDS = 600.0
DEFAULT_DELETE_TIMEOUT_SECONDS = 600.0
DEFAULT_ASSOCIATE_TIMEOUT_SECONDS = 120.0
DEFAULT_DISASSOCIATE_TIMEOUT_SECONDS = 120.0

MIN_TIMEOUT_SECONDS = 1.0
MAX_TIMEOUT_SECONDS = 24 * 3600.0

DEFAULT_INSTANCE_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_FLOATING_IP_POLL_INTERVAL_SECONDS = 2.0

MAX_RECORD_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max record file

# Go-style durations as used by the platform's timeout settings: "10m", "1h30m", "45s"
_DURATION_PART_PATTERN = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: str) -> float:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds) or Go-style durations such as ``10m``,
    ``1h30m`` or ``90s``.

    Raises:
        ValueError: If the value cannot be parsed.
    """
    text = value.strip().lower()
    if not text:
        raise ValueError("duration must not be empty")

    try:
        return float(text)
    except ValueError:
        pass

    position = 0
    total = 0.0
    for match in _DURATION_PART_PATTERN.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNIT_SECONDS[match.group(2)]
        position = match.end()

    if position != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


@dataclass(frozen=True)
class OperationTimeouts:
    """Wait ceilings per operation kind, in seconds."""

    create: float = DEFAULT_CREATE_TIMEOUT_SECONDS
    update: float = DEFAULT_UPDATE_TIMEOUT_SECONDS
    delete: float = DEFAULT_DELETE_TIMEOUT_SECONDS
    associate: float = DEFAULT_ASSOCIATE_TIMEOUT_SECONDS
    disassociate: float = DEFAULT_DISASSOCIATE_TIMEOUT_SECONDS

    def for_kind(self, kind: OperationKind) -> float:
        """Get the timeout that applies to an operation kind."""
        match kind:
            case OperationKind.CREATE:
                return self.create
            case OperationKind.UPDATE:
                return self.update
            case OperationKind.DELETE:
                return self.delete
            case OperationKind.ASSOCIATE_FLOATING_IP:
                return self.associate
            case OperationKind.DISASSOCIATE_FLOATING_IP:
                return self.disassociate
            case _:
                raise ValueError(f"Unsupported operation kind: {kind}")


@dataclass(frozen=True)
class ReconcilerConfig:
    """Reconciler configuration.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-reconcile.
    """

    timeouts: OperationTimeouts = field(default_factory=OperationTimeouts)

    # Polling
    instance_poll_interval_seconds: float = DEFAULT_INSTANCE_POLL_INTERVAL_SECONDS
    floating_ip_poll_interval_seconds: float = DEFAULT_FLOATING_IP_POLL_INTERVAL_SECONDS

    # Behavior
    wait_for_active: bool = True
    wait_for_deleted: bool = True
    require_security_group: bool = False
    dry_run: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        for kind_name in ("create", "update", "delete", "associate", "disassociate"):
            value = getattr(self.timeouts, kind_name)
            if not (MIN_TIMEOUT_SECONDS <= value <= MAX_TIMEOUT_SECONDS):
                errors.append(
                    f"{kind_name} timeout must be between {MIN_TIMEOUT_SECONDS:g} "
                    f"and {MAX_TIMEOUT_SECONDS:g} seconds: {value:g}"
                )

        if self.instance_poll_interval_seconds <= 0:
            errors.append("instance poll interval must be positive")
        elif self.instance_poll_interval_seconds > min(
            self.timeouts.create, self.timeouts.update, self.timeouts.delete
        ):
            errors.append("instance poll interval must not exceed the instance timeouts")

        if self.floating_ip_poll_interval_seconds <= 0:
            errors.append("floating IP poll interval must be positive")
        elif self.floating_ip_poll_interval_seconds > min(
            self.timeouts.associate, self.timeouts.disassociate
        ):
            errors.append("floating IP poll interval must not exceed the floating IP timeouts")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> ReconcilerConfig:
        """Load configuration from environment variables.

        Environment Variables:
            RECONCILER_CREATE_TIMEOUT: Wait ceiling for creation (default: 10m)
            RECONCILER_UPDATE_TIMEOUT: Wait ceiling for attachment updates (default: 10m)
            RECONCILER_DELETE_TIMEOUT: Wait ceiling for deletion (default: 10m)
            RECONCILER_ASSOCIATE_TIMEOUT: Wait ceiling for floating IP association (default: 2m)
            RECONCILER_DISASSOCIATE_TIMEOUT: Wait ceiling for disassociation (default: 2m)
            RECONCILER_INSTANCE_POLL_INTERVAL: Instance poll interval (default: 5s)
            RECONCILER_FLOATING_IP_POLL_INTERVAL: Floating IP poll interval (default: 2s)
            RECONCILER_WAIT_FOR_ACTIVE: Wait for "active" after create (default: true)
            RECONCILER_WAIT_FOR_DELETED: Wait for confirmed absence after delete (default: true)
            RECONCILER_REQUIRE_SECURITY_GROUP: Reject attachments without security groups
                (default: false)
            RECONCILER_DRY_RUN: If "true", plan without applying (default: false)

        Durations accept seconds ("300") or Go-style values ("10m", "1h30m").
        """

        def get_duration(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return parse_duration(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a duration: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            timeouts=OperationTimeouts(
                create=get_duration("RECONCILER_CREATE_TIMEOUT", DEFAULT_CREATE_TIMEOUT_SECONDS),
                update=get_duration("RECONCILER_UPDATE_TIMEOUT", DEFAULT_UPDATE_TIMEOUT_SECONDS),
                delete=get_duration("RECONCILER_DELETE_TIMEOUT", DEFAULT_DELETE_TIMEOUT_SECONDS),
                associate=get_duration(
                    "RECONCILER_ASSOCIATE_TIMEOUT", DEFAULT_ASSOCIATE_TIMEOUT_SECONDS
                ),
                disassociate=get_duration(
                    "RECONCILER_DISASSOCIATE_TIMEOUT", DEFAULT_DISASSOCIATE_TIMEOUT_SECONDS
                ),
            ),
            instance_poll_interval_seconds=get_duration(
                "RECONCILER_INSTANCE_POLL_INTERVAL", DEFAULT_INSTANCE_POLL_INTERVAL_SECONDS
            ),
            floating_ip_poll_interval_seconds=get_duration(
                "RECONCILER_FLOATING_IP_POLL_INTERVAL", DEFAULT_FLOATING_IP_POLL_INTERVAL_SECONDS
            ),
            wait_for_active=get_bool("RECONCILER_WAIT_FOR_ACTIVE", True),
            wait_for_deleted=get_bool("RECONCILER_WAIT_FOR_DELETED", True),
            require_security_group=get_bool("RECONCILER_REQUIRE_SECURITY_GROUP", False),
            dry_run=get_bool("RECONCILER_DRY_RUN", False),
        )
