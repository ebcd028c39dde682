"""Cloud API Client contract.

The reconciler never talks HTTP itself. It drives an injected client that
implements CloudAPIClient and returns raw response mappings; the
materializer turns those into canonical records.

Clients signal failures with azure-core exceptions:
- ResourceNotFoundError: the referenced resource does not exist
- ResourceExistsError, or HttpResponseError with status 409: conflict
- Any other AzureError, or a transport error such as OSError: generic
  remote failure

translate_client_error maps these onto the reconciler's own error taxonomy,
keeping the client error attached.
"""

from __future__ import annotations

import base64
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
)

from .errors import ConflictError, NotFoundError, RemoteError
from .models import Instance

HTTP_CONFLICT = 409
HTTP_NOT_FOUND = 404


@dataclass(frozen=True)
class AttachmentRef:
    """Identifies one network attachment of one instance."""

    instance_id: str
    network_id: str


@runtime_checkable
class CloudAPIClient(Protocol):
    """Asynchronous Cloud API operations used by the reconciler.

    Methods raise azure.core.exceptions.AzureError subclasses for API
    failures; transport errors may surface as any other Exception.
    """

    async def create_instance(self, request: Mapping[str, Any]) -> Mapping[str, Any]: ...

    async def get_instance(self, instance_id: str) -> Mapping[str, Any]: ...

    async def update_instance(
        self, instance_id: str, patch: Mapping[str, Any]
    ) -> Mapping[str, Any]: ...

    async def delete_instance(self, instance_id: str) -> None: ...

    async def associate_floating_ip(
        self, floating_ip_id: str, attachment: AttachmentRef
    ) -> None: ...

    async def disassociate_floating_ip(self, floating_ip_id: str) -> None: ...

    async def get_floating_ip(self, floating_ip_id: str) -> Mapping[str, Any]: ...


def _encode(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def build_create_request(desired: Instance) -> dict[str, Any]:
    """Build the CreateInstance request body from a desired record.

    Floating IP bindings are not part of the request; they are associated
    once the instance is active. Password and user data are sent base64
    encoded.
    """
    nics: list[dict[str, Any]] = []
    for attachment in sorted(desired.network_attachments, key=lambda a: not a.primary):
        nic: dict[str, Any] = {
            "network_id": attachment.network_id,
            "sg_ids": sorted(attachment.security_group_ids),
            "primary": attachment.primary,
        }
        if attachment.ip_address is not None:
            nic["fixed_ip"] = attachment.ip_address
        nics.append(nic)

    request: dict[str, Any] = {
        "name": desired.name,
        "flavor_id": desired.flavor_id,
        "image_id": desired.image_id,
        "nics": nics,
    }
    if desired.description is not None:
        request["description"] = desired.description
    if desired.keypair is not None:
        request["keypair_id"] = desired.keypair
    if desired.password is not None:
        request["password"] = _encode(desired.password)
    if desired.user_data is not None:
        request["boot_script"] = _encode(desired.user_data)
    return request


def is_not_found(error: BaseException) -> bool:
    """Check whether a client error means the resource does not exist."""
    if isinstance(error, ResourceNotFoundError):
        return True
    return isinstance(error, HttpResponseError) and error.status_code == HTTP_NOT_FOUND


def is_conflict(error: BaseException) -> bool:
    """Check whether a client error means the resource is in a conflicting state."""
    if isinstance(error, ResourceExistsError):
        return True
    return isinstance(error, HttpResponseError) and error.status_code == HTTP_CONFLICT


def translate_client_error(error: Exception, action: str) -> RemoteError:
    """Map a client error onto the reconciler error taxonomy.

    Args:
        error: Error raised by the Cloud API Client.
        action: What was being attempted, used in the message.

    Returns:
        NotFoundError, ConflictError or RemoteError wrapping the client error.
    """
    detail = error.message if isinstance(error, AzureError) and error.message else error
    message = f"{action} failed: {detail}"
    if is_not_found(error):
        return NotFoundError(message, error=error)
    if is_conflict(error):
        return ConflictError(message, error=error)
    return RemoteError(message, error=error)
