"""Structural validation of desired instance records.

Validation checks shape only, never change legality: immutable-field
conflicts are the planner's concern. No remote calls are made here.

Validation is all-or-nothing. Callers must not plan against a record that
produced any violation.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import Instance

logger = logging.getLogger(__name__)

# Input validation patterns
VALID_UUID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"

MIN_NAME_LENGTH = 1
MAX_NAME_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 1000

PRIMARY_CONSTRAINT_REASON = "at most one network attachment may have primary=true"


@dataclass(frozen=True)
class Violation:
    """A single structural violation.

    Attributes:
        path: Dotted field path, with list indexes (e.g. network_attachments[1].ip_address).
        reason: Human-readable explanation.
    """

    path: str
    reason: str

    def __str__(self) -> str:
        return f"{self.path}: {self.reason}"


def validate(
    desired: Instance | Mapping[str, Any],
    *,
    require_security_group: bool = False,
) -> list[Violation]:
    """Validate a desired record.

    Args:
        desired: Parsed record, or a raw mapping from the front end.
        require_security_group: Whether every attachment needs at least one
            security group (platforms without a default rule-set).

    Returns:
        List of violations; empty when the record is valid.
    """
    if isinstance(desired, Instance):
        instance = desired
    else:
        try:
            instance = Instance.model_validate(desired)
        except PydanticValidationError as e:
            return [_violation_from_pydantic(error) for error in e.errors()]

    violations: list[Violation] = []
    violations.extend(_check_descriptive_fields(instance))
    violations.extend(_check_attachments(instance, require_security_group))

    if violations:
        logger.debug(
            "Desired record failed validation",
            extra={"name": instance.name, "violation_count": len(violations)},
        )
    return violations


def ensure_valid(
    desired: Instance | Mapping[str, Any],
    *,
    require_security_group: bool = False,
) -> Instance:
    """Validate a desired record and return it parsed.

    Raises:
        ValidationError: If any violation is found.
    """
    violations = validate(desired, require_security_group=require_security_group)
    if violations:
        raise ValidationError(violations)
    if isinstance(desired, Instance):
        return desired
    return Instance.model_validate(desired)


def _violation_from_pydantic(error: Mapping[str, Any]) -> Violation:
    path = ""
    for part in error["loc"]:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return Violation(path=path or "<record>", reason=error["msg"])


def _check_descriptive_fields(instance: Instance) -> list[Violation]:
    violations: list[Violation] = []

    if not (MIN_NAME_LENGTH <= len(instance.name) <= MAX_NAME_LENGTH):
        violations.append(
            Violation(
                "name",
                f"must be between {MIN_NAME_LENGTH} and {MAX_NAME_LENGTH} characters",
            )
        )

    if instance.description is not None and len(instance.description) > MAX_DESCRIPTION_LENGTH:
        violations.append(
            Violation("description", f"must not exceed {MAX_DESCRIPTION_LENGTH} characters")
        )

    if not instance.flavor_id.strip():
        violations.append(Violation("flavor_id", "is required"))
    if not instance.image_id.strip():
        violations.append(Violation("image_id", "is required"))

    return violations


def _check_attachments(instance: Instance, require_security_group: bool) -> list[Violation]:
    violations: list[Violation] = []
    attachments = instance.network_attachments

    if not attachments:
        violations.append(
            Violation("network_attachments", "at least one network attachment is required")
        )
        return violations

    primary_count = sum(1 for attachment in attachments if attachment.primary)
    if primary_count > 1:
        violations.append(
            Violation(
                "network_attachments",
                f"{PRIMARY_CONSTRAINT_REASON}, found {primary_count}",
            )
        )

    network_counts = Counter(attachment.network_id for attachment in attachments)
    floating_ip_counts = Counter(
        attachment.floating_ip_id for attachment in attachments if attachment.floating_ip_id
    )
    reported_networks: set[str] = set()
    reported_floating_ips: set[str] = set()

    for index, attachment in enumerate(attachments):
        prefix = f"network_attachments[{index}]"

        if not attachment.network_id.strip():
            violations.append(Violation(f"{prefix}.network_id", "is required"))
        elif network_counts[attachment.network_id] > 1 and (
            attachment.network_id not in reported_networks
        ):
            reported_networks.add(attachment.network_id)
            violations.append(
                Violation(
                    f"{prefix}.network_id",
                    f"network '{attachment.network_id}' is attached more than once",
                )
            )

        if attachment.ip_address is not None:
            try:
                ipaddress.ip_address(attachment.ip_address)
            except ValueError:
                violations.append(
                    Violation(
                        f"{prefix}.ip_address",
                        f"'{attachment.ip_address}' is not a valid IPv4 or IPv6 address",
                    )
                )

        if require_security_group and not attachment.security_group_ids:
            violations.append(
                Violation(
                    f"{prefix}.security_group_ids",
                    "at least one security group is required on this platform",
                )
            )
        if any(not sg_id.strip() for sg_id in attachment.security_group_ids):
            violations.append(
                Violation(f"{prefix}.security_group_ids", "security group IDs must not be empty")
            )

        floating_ip_id = attachment.floating_ip_id
        if floating_ip_id is not None:
            if not re.match(VALID_UUID_PATTERN, floating_ip_id):
                violations.append(
                    Violation(
                        f"{prefix}.floating_ip.floating_ip_id",
                        f"'{floating_ip_id}' is not a valid UUID "
                        "(expected lowercase xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx)",
                    )
                )
            elif floating_ip_counts[floating_ip_id] > 1 and (
                floating_ip_id not in reported_floating_ips
            ):
                reported_floating_ips.add(floating_ip_id)
                violations.append(
                    Violation(
                        f"{prefix}.floating_ip.floating_ip_id",
                        f"floating IP '{floating_ip_id}' is bound to more than one attachment",
                    )
                )

    return violations
