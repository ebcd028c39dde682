"""Mapping of raw Cloud API responses to canonical records.

Raw responses are loosely shaped: fields may be missing, empty, nested or
differently cased. Everything is normalized here so the next reconciliation
pass sees no false-positive differences.

NORMALIZATIONS:
- "", [], {} and missing fields become explicit None / empty
- Status strings are matched case-insensitively onto InstanceStatus
- Timestamps (RFC 3339 strings or epoch seconds) become aware UTC datetimes
- Nested {"id": ...} references (flavor, image, keypair) are flattened
- Security group lists become sets; NIC order is irrelevant
- Write-only fields (password, user_data) are carried over from the
  previous record because the API never returns them

Materialization is a pure function of (raw, previous): doing it twice
yields identical records.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from .models import (
    FloatingIP,
    FloatingIPAssociation,
    FloatingIPStatus,
    Instance,
    InstanceStatus,
    NetworkAttachment,
)

logger = logging.getLogger(__name__)

# Remote status spellings per canonical status (compared lowercase)
_STATUS_ALIASES: dict[str, InstanceStatus] = {
    "build": InstanceStatus.BUILDING,
    "building": InstanceStatus.BUILDING,
    "creating": InstanceStatus.BUILDING,
    "pending": InstanceStatus.BUILDING,
    "active": InstanceStatus.ACTIVE,
    "running": InstanceStatus.ACTIVE,
    "shutoff": InstanceStatus.SHUTOFF,
    "stopped": InstanceStatus.SHUTOFF,
    "deleting": InstanceStatus.DELETING,
    "deleted": InstanceStatus.DELETING,
    "error": InstanceStatus.ERROR,
    "failed": InstanceStatus.ERROR,
}


def _clean(value: Any) -> Any:
    """Normalize empty values to None."""
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, Sequence | Mapping) and len(value) == 0:
        return None
    return value


def _reference(raw: Mapping[str, Any], *keys: str) -> str | None:
    """Read the first present reference among keys, flattening {"id": ...} objects."""
    for key in keys:
        value = _clean(raw.get(key))
        if isinstance(value, Mapping):
            value = _clean(value.get("id"))
        if value is not None:
            return str(value)
    return None


def _string_list(value: Any) -> list[str]:
    value = _clean(value)
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item).strip() for item in value if _clean(item) is not None]


def normalize_status(value: Any) -> InstanceStatus | None:
    """Map a remote status string onto InstanceStatus."""
    text = _clean(value)
    if text is None:
        return None
    status = _STATUS_ALIASES.get(str(text).lower())
    if status is None:
        logger.warning("Unrecognized instance status", extra={"status": text})
        return InstanceStatus.UNKNOWN
    return status


def normalize_timestamp(value: Any) -> datetime | None:
    """Convert an RFC 3339 string or epoch seconds to an aware UTC datetime."""
    value = _clean(value)
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, int | float) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=UTC)
        except (OverflowError, OSError, ValueError):
            logger.warning("Epoch timestamp out of range", extra={"timestamp": value})
            return None
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Unparseable timestamp", extra={"timestamp": value})
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _floating_ip_binding(raw_nic: Mapping[str, Any]) -> FloatingIPAssociation | None:
    nested = _clean(raw_nic.get("floating_ip"))
    if isinstance(nested, Mapping):
        floating_ip_id = _clean(nested.get("id"))
        address = _clean(nested.get("address")) or _clean(nested.get("ip_address"))
    else:
        floating_ip_id = _clean(raw_nic.get("floating_ip_id"))
        address = nested if isinstance(nested, str) else None

    if floating_ip_id is None:
        return None
    return FloatingIPAssociation(floating_ip_id=str(floating_ip_id), address=address)


def _raw_primary(raw_nic: Mapping[str, Any]) -> bool | None:
    for key in ("primary", "is_primary"):
        value = raw_nic.get(key)
        if isinstance(value, bool):
            return value
    return None


def materialize_attachments(
    raw_nics: Any,
    previous: Instance | None = None,
) -> tuple[NetworkAttachment, ...]:
    """Map raw NICs to attachments, sorted by network ID.

    The primary flag comes from the response when reported. Otherwise it is
    carried from the previous record, and without one the first NIC by
    network ID is taken as primary.
    """
    nics = [nic for nic in (_clean(raw_nics) or []) if isinstance(nic, Mapping)]
    nics.sort(key=lambda nic: _reference(nic, "network_id", "network") or "")

    reported = [_raw_primary(nic) for nic in nics]
    any_reported = any(flag is not None for flag in reported)

    attachments: list[NetworkAttachment] = []
    for index, nic in enumerate(nics):
        network_id = _reference(nic, "network_id", "network") or ""
        addresses = _string_list(nic.get("addresses"))

        primary = reported[index]
        if primary is None:
            if any_reported:
                primary = False
            elif previous is not None:
                previous_attachment = previous.attachment(network_id)
                primary = bool(previous_attachment and previous_attachment.primary)
            else:
                primary = index == 0

        attachments.append(
            NetworkAttachment(
                network_id=network_id,
                ip_address=addresses[0] if addresses else _clean(nic.get("fixed_ip")),
                primary=primary,
                security_group_ids=frozenset(
                    _string_list(nic.get("sg_ids") or nic.get("security_group_ids"))
                ),
                floating_ip=_floating_ip_binding(nic),
            )
        )
    return tuple(attachments)


def materialize_instance(raw: Mapping[str, Any], previous: Instance | None = None) -> Instance:
    """Map a raw instance response to the canonical record.

    Args:
        raw: Response from GetInstance / CreateInstance / UpdateInstance.
        previous: Last known record (or the desired record right after
            creation), used for fields the API does not return.

    Returns:
        Canonical Instance.

    Raises:
        ValueError: If the response has no instance ID.
    """
    instance_id = _reference(raw, "id")
    if instance_id is None:
        raise ValueError("Instance response has no ID")

    keypair = _reference(raw, "keypair_id", "keypair")
    if keypair is None and previous is not None:
        keypair = previous.keypair

    ip_addresses = sorted(
        set(_string_list(raw.get("private_ips")) + _string_list(raw.get("public_ips")))
    )

    return Instance(
        id=instance_id,
        name=_clean(raw.get("name")) or "",
        description=_clean(raw.get("description")),
        flavor_id=_reference(raw, "flavor_id", "flavor") or "",
        image_id=_reference(raw, "image_id", "image") or "",
        keypair=keypair,
        password=previous.password if previous is not None else None,
        user_data=previous.user_data if previous is not None else None,
        network_attachments=materialize_attachments(raw.get("nics"), previous),
        status=normalize_status(raw.get("status")),
        created_at=normalize_timestamp(raw.get("created_at")),
        ip_addresses=tuple(ip_addresses),
    )


def materialize_floating_ip(raw: Mapping[str, Any]) -> FloatingIP:
    """Map a raw floating IP response to the canonical record.

    Raises:
        ValueError: If the response has no floating IP ID.
    """
    floating_ip_id = _reference(raw, "id")
    if floating_ip_id is None:
        raise ValueError("Floating IP response has no ID")

    status_text = _clean(raw.get("status"))
    try:
        status = (
            FloatingIPStatus(str(status_text).upper())
            if status_text is not None
            else FloatingIPStatus.UNKNOWN
        )
    except ValueError:
        logger.warning("Unrecognized floating IP status", extra={"status": status_text})
        status = FloatingIPStatus.UNKNOWN

    return FloatingIP(
        id=floating_ip_id,
        address=_clean(raw.get("address")) or _clean(raw.get("ip_address")),
        status=status,
        device_id=_clean(raw.get("device_id")),
    )
