"""Operation planning: desired vs. observed instance records.

The planner is pure: it never calls the remote API. Given a validated
desired record and the last observed record it produces an ordered
OperationPlan.

ORDERING:
1. All floating IP disassociations (bounds swap exposure: no IP is ever
   bound twice, and no attachment carries two IPs)
2. Descriptive field update
3. Attachment removals
4. Attachment modifications, primary demotions before promotions
5. Attachment additions
6. All floating IP associations

Replacement-required changes collapse the whole plan to [Delete, Create].
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from .differ import DuplicateKeyError, build_attachment_patch, diff_attachments
from .errors import PlanningError
from .models import Instance, NetworkAttachment, Operation, OperationPlan

logger = logging.getLogger(__name__)

# Fields updated in place
IN_PLACE_FIELDS = ("name", "description")

# Fields whose change requires destroying and recreating the instance
REPLACEMENT_FIELDS = ("flavor_id", "image_id", "keypair")

# Create-only fields the API never returns; compared only when the observed value is known
WRITE_ONLY_FIELDS = ("password", "user_data")


def replacement_reasons(desired: Instance, observed: Instance) -> list[str]:
    """List the replacement-required fields that differ.

    Args:
        desired: Desired record.
        observed: Observed record.

    Returns:
        Names of changed immutable fields, empty if none.
    """
    changed = [
        name for name in REPLACEMENT_FIELDS if getattr(desired, name) != getattr(observed, name)
    ]
    for name in WRITE_ONLY_FIELDS:
        observed_value = getattr(observed, name)
        if observed_value is not None and getattr(desired, name) != observed_value:
            changed.append(name)
    return changed


def plan_operations(desired: Instance | None, observed: Instance | None) -> OperationPlan:
    """Compute the ordered operations that converge observed to desired.

    Args:
        desired: Validated desired record, or None to request deletion.
        observed: Last observed record, or None if the instance does not exist.

    Returns:
        OperationPlan, empty when nothing needs to change.

    Raises:
        PlanningError: If the resulting state would be structurally invalid.
            No plan is produced in that case.
    """
    exists = observed is not None and observed.id is not None

    if desired is None:
        if not exists:
            return OperationPlan()
        return OperationPlan((Operation.delete(),))

    _check_attachment_set(desired.network_attachments, "desired")

    if not exists:
        logger.debug("Instance does not exist, planning creation", extra={"name": desired.name})
        return OperationPlan((Operation.create(desired),))

    assert observed is not None
    reasons = replacement_reasons(desired, observed)
    if reasons:
        logger.info(
            "Immutable attributes changed, planning replacement",
            extra={"instance_id": observed.id, "fields": reasons},
        )
        return OperationPlan(
            (
                Operation.delete(replacement=True),
                Operation.create(desired, replacement=True),
            )
        )

    operations = _plan_in_place(desired, observed)
    logger.debug(
        "Planned in-place reconciliation",
        extra={
            "instance_id": observed.id,
            "operations": [op.describe() for op in operations],
        },
    )
    return OperationPlan(tuple(operations))


def _plan_in_place(desired: Instance, observed: Instance) -> list[Operation]:
    fields: dict[str, Any] = {
        name: getattr(desired, name)
        for name in IN_PLACE_FIELDS
        if getattr(desired, name) != getattr(observed, name)
    }

    try:
        attachment_diff = diff_attachments(
            desired.network_attachments, observed.network_attachments
        )
    except DuplicateKeyError as e:
        raise PlanningError(
            f"Cannot plan instance {observed.id}: {e}. Refresh observed state first."
        ) from e

    disassociations: list[Operation] = []
    removals: list[Operation] = []
    modifications: list[Operation] = []
    additions: list[Operation] = []
    associations: list[Operation] = []

    for network_id, attachment in attachment_diff.to_remove.items():
        if attachment.floating_ip_id is not None:
            disassociations.append(Operation.disassociate(attachment.floating_ip_id, network_id))
        removals.append(Operation.remove_attachment(network_id))

    for network_id, (observed_att, desired_att) in attachment_diff.to_modify.items():
        patch = build_attachment_patch(desired_att, observed_att)
        if not patch.is_empty:
            modifications.append(Operation.modify_attachment(patch))

        if desired_att.floating_ip_id != observed_att.floating_ip_id:
            # Swap: the old binding is released before the new one is made
            if observed_att.floating_ip_id is not None:
                disassociations.append(
                    Operation.disassociate(observed_att.floating_ip_id, network_id)
                )
            if desired_att.floating_ip_id is not None:
                associations.append(Operation.associate(desired_att.floating_ip_id, network_id))

    for network_id, attachment in attachment_diff.to_add.items():
        # The binding is applied by a separate associate once the NIC exists
        unbound = attachment.model_copy(update={"floating_ip": None})
        additions.append(Operation.add_attachment(unbound))
        if attachment.floating_ip_id is not None:
            associations.append(Operation.associate(attachment.floating_ip_id, network_id))

    # Demote before promote so the instance never carries two primaries
    modifications.sort(key=lambda op: bool(op.attachment_patch and op.attachment_patch.primary))

    operations: list[Operation] = [*disassociations]
    if fields:
        operations.append(Operation.set_fields(fields))
    operations.extend(removals)
    operations.extend(modifications)
    operations.extend(additions)
    operations.extend(associations)
    return operations


def _check_attachment_set(attachments: Iterable[NetworkAttachment], side: str) -> None:
    """Fail closed on attachment sets that cannot be applied safely."""
    seen: set[str] = set()
    primaries = 0
    for attachment in attachments:
        if not attachment.network_id:
            if attachment.primary:
                raise PlanningError(
                    f"Primary attachment in {side} state has no addressable network"
                )
            raise PlanningError(f"Attachment in {side} state has no network reference")
        if attachment.network_id in seen:
            raise PlanningError(
                f"Network '{attachment.network_id}' is attached more than once in {side} state"
            )
        seen.add(attachment.network_id)
        if attachment.primary:
            primaries += 1

    if primaries > 1:
        raise PlanningError(f"{side.capitalize()} state has {primaries} primary attachments")
