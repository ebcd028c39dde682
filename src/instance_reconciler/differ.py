"""Key-based diffing of unordered nested collections.

Collections are matched on a stable key, never by position, so reordering
attachments or security groups produces no operations.

DESIGN RULES:
- A changed key is always a remove plus an add, never a modify: remote
  identity is tied to the key, so renames are not inferred.
- Computed fields (resolved floating IP address) never count as a change.
- An unset desired fixed address accepts whatever the platform assigned.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from .models import AttachmentPatch, NetworkAttachment

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


class DuplicateKeyError(ValueError):
    """Raised when a collection holds two items with the same key."""

    def __init__(self, key: Hashable, side: str) -> None:
        super().__init__(f"Duplicate key {key!r} in {side} collection")
        self.key = key
        self.side = side


@dataclass(frozen=True)
class CollectionDiff(Generic[K, T]):
    """Result of a key-based diff.

    Attributes:
        to_add: Items whose key exists only in desired.
        to_remove: Items whose key exists only in observed.
        to_modify: (observed, desired) pairs for keys in both with differing payload.

    All three mappings iterate in sorted key order.
    """

    to_add: dict[K, T] = field(default_factory=dict)
    to_remove: dict[K, T] = field(default_factory=dict)
    to_modify: dict[K, tuple[T, T]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.to_add or self.to_remove or self.to_modify)


def index_by_key(items: Iterable[T], key: Callable[[T], K], side: str) -> dict[K, T]:
    """Index items by key.

    Raises:
        DuplicateKeyError: If two items share a key.
    """
    indexed: dict[K, T] = {}
    for item in items:
        item_key = key(item)
        if item_key in indexed:
            raise DuplicateKeyError(item_key, side)
        indexed[item_key] = item
    return indexed


def diff_by_key(
    desired: Iterable[T],
    observed: Iterable[T],
    key: Callable[[T], K],
    equivalent: Callable[[T, T], bool] | None = None,
) -> CollectionDiff[K, T]:
    """Compute add/remove/modify sets for two unordered collections.

    Args:
        desired: Desired items.
        observed: Observed items.
        key: Stable key extractor.
        equivalent: Predicate called as ``equivalent(desired_item, observed_item)``;
            defaults to equality.

    Returns:
        CollectionDiff with deterministic (sorted) key order.

    Raises:
        DuplicateKeyError: If either side holds duplicate keys.
    """
    same = equivalent or (lambda a, b: a == b)
    desired_by_key = index_by_key(desired, key, "desired")
    observed_by_key = index_by_key(observed, key, "observed")

    to_add: dict[K, T] = {}
    to_modify: dict[K, tuple[T, T]] = {}
    for item_key in sorted(desired_by_key, key=str):
        desired_item = desired_by_key[item_key]
        observed_item = observed_by_key.get(item_key)
        if observed_item is None:
            to_add[item_key] = desired_item
        elif not same(desired_item, observed_item):
            to_modify[item_key] = (observed_item, desired_item)

    to_remove = {
        item_key: observed_by_key[item_key]
        for item_key in sorted(observed_by_key, key=str)
        if item_key not in desired_by_key
    }

    return CollectionDiff(to_add=to_add, to_remove=to_remove, to_modify=to_modify)


def diff_security_groups(
    desired: Iterable[str], observed: Iterable[str]
) -> CollectionDiff[str, str]:
    """Diff two security group ID sets. Membership only, so to_modify is always empty."""
    return diff_by_key(set(desired), set(observed), key=lambda sg_id: sg_id)


def attachment_key(attachment: NetworkAttachment) -> str:
    return attachment.network_id


def attachments_equivalent(desired: NetworkAttachment, observed: NetworkAttachment) -> bool:
    """Check whether an observed attachment already satisfies a desired one."""
    if desired.primary != observed.primary:
        return False
    if desired.security_group_ids != observed.security_group_ids:
        return False
    if desired.floating_ip_id != observed.floating_ip_id:
        return False
    # Unset desired address means "platform-assigned"
    return desired.ip_address is None or desired.ip_address == observed.ip_address


def diff_attachments(
    desired: Iterable[NetworkAttachment], observed: Iterable[NetworkAttachment]
) -> CollectionDiff[str, NetworkAttachment]:
    """Diff network attachments keyed by network reference."""
    return diff_by_key(desired, observed, key=attachment_key, equivalent=attachments_equivalent)


def build_attachment_patch(
    desired: NetworkAttachment, observed: NetworkAttachment
) -> AttachmentPatch:
    """Compute the in-place patch for a modified attachment.

    Floating IP changes are not part of the patch; they become separate
    associate/disassociate operations.
    """
    sg_diff = diff_security_groups(desired.security_group_ids, observed.security_group_ids)

    ip_address = None
    if desired.ip_address is not None and desired.ip_address != observed.ip_address:
        ip_address = desired.ip_address

    return AttachmentPatch(
        network_id=desired.network_id,
        add_security_group_ids=frozenset(sg_diff.to_add),
        remove_security_group_ids=frozenset(sg_diff.to_remove),
        primary=desired.primary if desired.primary != observed.primary else None,
        ip_address=ip_address,
    )
