"""Pydantic models for instance records and the operation plan.

These models provide:
1. Type-safe parsing of desired-state payloads from the front end
2. A single canonical shape shared by desired and observed records
3. Typed operations the executor can apply without re-inspecting raw data

Shape checks that must be reported as a list (primary constraint, address
literals, UUID form) live in validator.py, not here.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _empty_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


# =============================================================================
# Enumerations
# =============================================================================


class InstanceStatus(str, Enum):
    """Remote-observed instance lifecycle status. Never set by the client."""

    BUILDING = "building"
    ACTIVE = "active"
    SHUTOFF = "shutoff"
    DELETING = "deleting"
    ERROR = "error"
    UNKNOWN = "unknown"


class FloatingIPStatus(str, Enum):
    """Floating IP status as reported by the platform."""

    ACTIVE = "ACTIVE"
    DOWN = "DOWN"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"


class OperationKind(str, Enum):
    """Remote operation types.

    Replacement is planned as a Delete followed by a Create, both flagged
    with ``replacement=True``.
    """

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ASSOCIATE_FLOATING_IP = "associate_floating_ip"
    DISASSOCIATE_FLOATING_IP = "disassociate_floating_ip"


class UpdateAction(str, Enum):
    """In-place update variants."""

    SET_FIELDS = "set_fields"
    ADD_ATTACHMENT = "add_attachment"
    REMOVE_ATTACHMENT = "remove_attachment"
    MODIFY_ATTACHMENT = "modify_attachment"


# =============================================================================
# Records
# =============================================================================


class FloatingIPAssociation(BaseModel):
    """One-to-one binding of a network attachment to a floating IP."""

    model_config = {"extra": "ignore", "frozen": True}

    floating_ip_id: str
    # Resolved public address, read-only
    address: str | None = None

    @field_validator("address", mode="before")
    @classmethod
    def normalize_address(cls, v: Any) -> Any:
        return _empty_to_none(v)


class NetworkAttachment(BaseModel):
    """Network interface binding on an instance, keyed by network_id."""

    model_config = {"extra": "ignore", "frozen": True}

    network_id: str
    ip_address: str | None = None
    primary: bool = False
    security_group_ids: frozenset[str] = Field(default_factory=frozenset)
    floating_ip: FloatingIPAssociation | None = None

    @field_validator("ip_address", mode="before")
    @classmethod
    def normalize_ip_address(cls, v: Any) -> Any:
        return _empty_to_none(v)

    @field_validator("floating_ip", mode="before")
    @classmethod
    def accept_floating_ip_id(cls, v: Any) -> Any:
        # Front ends commonly supply just the floating IP ID
        v = _empty_to_none(v)
        if isinstance(v, str):
            return {"floating_ip_id": v}
        return v

    @property
    def floating_ip_id(self) -> str | None:
        """ID of the bound floating IP, if any."""
        return self.floating_ip.floating_ip_id if self.floating_ip else None


class Instance(BaseModel):
    """Canonical instance record, used for both desired and observed state.

    ``id``, ``status``, ``created_at`` and ``ip_addresses`` are remote-assigned
    and ignored when the record is used as desired state.
    """

    model_config = {"extra": "ignore", "frozen": True}

    id: str | None = None
    name: str
    description: str | None = None

    # Immutable: a change requires replacement
    flavor_id: str
    image_id: str
    keypair: str | None = None
    # Write-only: never returned by the API
    password: str | None = Field(None, repr=False)
    user_data: str | None = Field(None, repr=False)

    network_attachments: tuple[NetworkAttachment, ...] = ()

    # Computed attributes (read-only)
    status: InstanceStatus | None = None
    created_at: datetime | None = None
    ip_addresses: tuple[str, ...] = ()

    @field_validator("id", "description", "keypair", "password", "user_data", mode="before")
    @classmethod
    def normalize_optional_strings(cls, v: Any) -> Any:
        return _empty_to_none(v)

    def attachment(self, network_id: str) -> NetworkAttachment | None:
        """Get the attachment for a network, if present."""
        for attachment in self.network_attachments:
            if attachment.network_id == network_id:
                return attachment
        return None

    @property
    def primary_attachment(self) -> NetworkAttachment | None:
        """Get the attachment marked primary, if any."""
        for attachment in self.network_attachments:
            if attachment.primary:
                return attachment
        return None


class FloatingIP(BaseModel):
    """Materialized floating IP as reported by the platform."""

    model_config = {"extra": "ignore", "frozen": True}

    id: str
    address: str | None = None
    status: FloatingIPStatus = FloatingIPStatus.UNKNOWN
    device_id: str | None = None

    @property
    def is_bound(self) -> bool:
        return self.device_id is not None


# =============================================================================
# Operation plan
# =============================================================================


@dataclass(frozen=True)
class AttachmentPatch:
    """Minimal in-place change to an existing attachment."""

    network_id: str
    add_security_group_ids: frozenset[str] = frozenset()
    remove_security_group_ids: frozenset[str] = frozenset()
    primary: bool | None = None
    ip_address: str | None = None

    @property
    def is_empty(self) -> bool:
        return (
            not self.add_security_group_ids
            and not self.remove_security_group_ids
            and self.primary is None
            and self.ip_address is None
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"network_id": self.network_id}
        if self.add_security_group_ids:
            payload["add_sg_ids"] = sorted(self.add_security_group_ids)
        if self.remove_security_group_ids:
            payload["remove_sg_ids"] = sorted(self.remove_security_group_ids)
        if self.primary is not None:
            payload["primary"] = self.primary
        if self.ip_address is not None:
            payload["fixed_ip"] = self.ip_address
        return payload


@dataclass(frozen=True)
class Operation:
    """A single remote operation with the minimal payload it needs.

    Use the classmethod constructors rather than building instances directly.
    """

    kind: OperationKind
    await_completion: bool = False
    update_action: UpdateAction | None = None
    replacement: bool = False

    # Create
    desired: Instance | None = None
    # Update (set_fields)
    fields: Mapping[str, Any] = field(default_factory=dict)
    # Update (add_attachment)
    attachment: NetworkAttachment | None = None
    # Update (remove/modify attachment), floating IP operations
    network_id: str | None = None
    attachment_patch: AttachmentPatch | None = None
    floating_ip_id: str | None = None

    @classmethod
    def create(cls, desired: Instance, *, replacement: bool = False) -> Operation:
        return cls(
            kind=OperationKind.CREATE,
            await_completion=True,
            desired=desired,
            replacement=replacement,
        )

    @classmethod
    def delete(cls, *, replacement: bool = False) -> Operation:
        return cls(kind=OperationKind.DELETE, await_completion=True, replacement=replacement)

    @classmethod
    def set_fields(cls, fields: Mapping[str, Any]) -> Operation:
        return cls(
            kind=OperationKind.UPDATE,
            update_action=UpdateAction.SET_FIELDS,
            fields=dict(fields),
        )

    @classmethod
    def add_attachment(cls, attachment: NetworkAttachment) -> Operation:
        return cls(
            kind=OperationKind.UPDATE,
            await_completion=True,
            update_action=UpdateAction.ADD_ATTACHMENT,
            attachment=attachment,
            network_id=attachment.network_id,
        )

    @classmethod
    def remove_attachment(cls, network_id: str) -> Operation:
        return cls(
            kind=OperationKind.UPDATE,
            await_completion=True,
            update_action=UpdateAction.REMOVE_ATTACHMENT,
            network_id=network_id,
        )

    @classmethod
    def modify_attachment(cls, patch: AttachmentPatch) -> Operation:
        return cls(
            kind=OperationKind.UPDATE,
            await_completion=True,
            update_action=UpdateAction.MODIFY_ATTACHMENT,
            network_id=patch.network_id,
            attachment_patch=patch,
        )

    @classmethod
    def associate(cls, floating_ip_id: str, network_id: str) -> Operation:
        return cls(
            kind=OperationKind.ASSOCIATE_FLOATING_IP,
            await_completion=True,
            floating_ip_id=floating_ip_id,
            network_id=network_id,
        )

    @classmethod
    def disassociate(cls, floating_ip_id: str, network_id: str) -> Operation:
        return cls(
            kind=OperationKind.DISASSOCIATE_FLOATING_IP,
            await_completion=True,
            floating_ip_id=floating_ip_id,
            network_id=network_id,
        )

    def update_payload(self) -> dict[str, Any]:
        """Build the patch sent to UpdateInstance.

        Raises:
            ValueError: If this is not an update operation.
        """
        match self.update_action:
            case UpdateAction.SET_FIELDS:
                return {"action": UpdateAction.SET_FIELDS.value, **self.fields}
            case UpdateAction.ADD_ATTACHMENT:
                assert self.attachment is not None
                payload: dict[str, Any] = {
                    "action": UpdateAction.ADD_ATTACHMENT.value,
                    "network_id": self.attachment.network_id,
                    "sg_ids": sorted(self.attachment.security_group_ids),
                    "primary": self.attachment.primary,
                }
                if self.attachment.ip_address is not None:
                    payload["fixed_ip"] = self.attachment.ip_address
                return payload
            case UpdateAction.REMOVE_ATTACHMENT:
                return {
                    "action": UpdateAction.REMOVE_ATTACHMENT.value,
                    "network_id": self.network_id,
                }
            case UpdateAction.MODIFY_ATTACHMENT:
                assert self.attachment_patch is not None
                return {
                    "action": UpdateAction.MODIFY_ATTACHMENT.value,
                    **self.attachment_patch.to_payload(),
                }
            case _:
                raise ValueError(f"Operation {self.kind.value} has no update payload")

    def describe(self) -> str:
        """Short human-readable label, used in logs and CLI output."""
        match self.kind:
            case OperationKind.CREATE | OperationKind.DELETE:
                suffix = " (replacement)" if self.replacement else ""
                return f"{self.kind.value}{suffix}"
            case OperationKind.UPDATE:
                assert self.update_action is not None
                if self.update_action == UpdateAction.SET_FIELDS:
                    return f"update:{self.update_action.value}[{','.join(sorted(self.fields))}]"
                return f"update:{self.update_action.value}[{self.network_id}]"
            case _:
                return f"{self.kind.value}[{self.floating_ip_id} @ {self.network_id}]"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "await_completion": self.await_completion,
        }
        if self.replacement:
            data["replacement"] = True
        if self.kind == OperationKind.UPDATE:
            data["patch"] = self.update_payload()
        elif self.kind == OperationKind.CREATE and self.desired is not None:
            data["name"] = self.desired.name
        elif self.floating_ip_id is not None:
            data["floating_ip_id"] = self.floating_ip_id
            data["network_id"] = self.network_id
        return data


@dataclass(frozen=True)
class OperationPlan:
    """Ordered operations that converge observed state to desired state."""

    operations: tuple[Operation, ...] = ()

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    def __getitem__(self, index: int) -> Operation:
        return self.operations[index]

    @property
    def is_empty(self) -> bool:
        return not self.operations

    @property
    def requires_replacement(self) -> bool:
        return any(op.replacement for op in self.operations)

    @property
    def kinds(self) -> list[OperationKind]:
        return [op.kind for op in self.operations]

    def to_dict(self) -> dict[str, Any]:
        return {
            "requires_replacement": self.requires_replacement,
            "operations": [op.to_dict() for op in self.operations],
        }
