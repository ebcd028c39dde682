"""Sequential execution of an OperationPlan against the Cloud API Client.

Operations are applied strictly in plan order and never pipelined: later
operations may depend on the settled state of earlier ones (an Associate
cannot run until the preceding Disassociate is confirmed).

FAILURE MODEL:
- The first failing operation stops execution
- Already-applied operations are not rolled back
- The caller gets the partially-updated observed state plus one
  OperationResult per attempted operation, and re-runs reconciliation to
  converge from there
- A set cancel event stops execution before the next operation is sent
- Nothing is retried here; retry policy belongs to the client
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .client import (
    AttachmentRef,
    CloudAPIClient,
    build_create_request,
    is_not_found,
    translate_client_error,
)
from .config import ReconcilerConfig
from .errors import (
    NotFoundError,
    PlanningError,
    ReconcileError,
    RemoteError,
    WaitCancelledError,
)
from .materializer import materialize_floating_ip, materialize_instance
from .models import (
    FloatingIP,
    Instance,
    InstanceStatus,
    Operation,
    OperationKind,
    OperationPlan,
    UpdateAction,
)
from .waiter import (
    Condition,
    Waiter,
    attachment_absent,
    attachment_present,
    attachment_settled,
    floating_ip_bound_to,
    floating_ip_unbound,
    instance_absent,
    instance_status_is,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass
class OperationResult:
    """Outcome of one attempted operation."""

    index: int
    operation: Operation
    success: bool
    error: ReconcileError | None = None

    @property
    def kind(self) -> OperationKind:
        return self.operation.kind

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "index": self.index,
            "operation": self.operation.describe(),
            "success": self.success,
        }
        if self.error is not None:
            data["error"] = str(self.error)
            data["error_type"] = type(self.error).__name__
        return data


@dataclass
class ExecutionResult:
    """Observed state after execution plus per-operation outcomes."""

    observed: Instance | None
    results: list[OperationResult] = field(default_factory=list)

    @property
    def failed(self) -> OperationResult | None:
        """The operation that stopped execution, if any."""
        for result in self.results:
            if not result.success:
                return result
        return None

    @property
    def error(self) -> ReconcileError | None:
        failed = self.failed
        return failed.error if failed is not None else None

    @property
    def success(self) -> bool:
        return self.failed is None


class PlanExecutor:
    """Applies one OperationPlan for one instance.

    An executor belongs to a single reconciliation flow: it tracks the
    observed record as operations land, so it must not be shared between
    concurrent flows.
    """

    def __init__(
        self,
        client: CloudAPIClient,
        config: ReconcilerConfig,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """Initialize executor.

        Args:
            client: Cloud API Client.
            config: Validated reconciler configuration.
            cancel_event: Set by the caller to abort the remaining operations
                and any in-progress wait.
        """
        self._client = client
        self._config = config
        self._cancel_event = cancel_event
        self._instance_waiter = Waiter(
            config.instance_poll_interval_seconds, cancel_event=cancel_event
        )
        self._floating_ip_waiter = Waiter(
            config.floating_ip_poll_interval_seconds, cancel_event=cancel_event
        )
        self._observed: Instance | None = None

    async def execute(self, plan: OperationPlan, observed: Instance | None) -> ExecutionResult:
        """Apply every operation of the plan in order.

        Args:
            plan: Plan produced by the planner.
            observed: Observed record the plan was computed against.

        Returns:
            ExecutionResult with the latest observed record. Execution stops
            at the first failed operation.
        """
        self._observed = observed
        results: list[OperationResult] = []

        for index, operation in enumerate(plan):
            if self._cancel_event is not None and self._cancel_event.is_set():
                logger.warning(
                    "Reconciliation cancelled, skipping remaining operations",
                    extra={
                        "index": index,
                        "remaining": len(plan) - index,
                        "instance_id": self._current_id(),
                    },
                )
                cancelled = WaitCancelledError(
                    f"Reconciliation cancelled before {operation.describe()}"
                )
                results.append(OperationResult(index, operation, success=False, error=cancelled))
                break

            logger.info(
                "Applying operation",
                extra={
                    "index": index,
                    "operation": operation.describe(),
                    "instance_id": self._current_id(),
                },
            )
            try:
                await self._apply(operation)
            except ReconcileError as e:
                logger.error(
                    "Operation failed, stopping execution",
                    extra={
                        "index": index,
                        "operation": operation.describe(),
                        "instance_id": self._current_id(),
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                results.append(OperationResult(index, operation, success=False, error=e))
                break
            results.append(OperationResult(index, operation, success=True))

        return ExecutionResult(observed=self._observed, results=results)

    async def _apply(self, operation: Operation) -> None:
        match operation.kind:
            case OperationKind.CREATE:
                await self._create(operation)
            case OperationKind.DELETE:
                await self._delete(operation)
            case OperationKind.UPDATE:
                await self._update(operation)
            case OperationKind.ASSOCIATE_FLOATING_IP:
                await self._associate(operation)
            case OperationKind.DISASSOCIATE_FLOATING_IP:
                await self._disassociate(operation)
            case _:
                raise PlanningError(f"Unsupported operation kind: {operation.kind}")

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def _create(self, operation: Operation) -> None:
        desired = operation.desired
        if desired is None:
            raise PlanningError("Create operation carries no desired record")

        raw = await self._call(
            "CreateInstance", self._client.create_instance(build_create_request(desired))
        )
        created = self._materialize(raw, previous=desired)
        self._observed = created
        instance_id = created.id
        assert instance_id is not None

        logger.info(
            "Instance created",
            extra={
                "instance_id": instance_id,
                "name": desired.name,
                "replacement": operation.replacement,
                "password_set": desired.password is not None,
                "user_data_set": desired.user_data is not None,
            },
        )

        if self._config.wait_for_active and created.status != InstanceStatus.ACTIVE:
            result = await self._instance_waiter.wait_for(
                lambda: self._fetch_instance(instance_id, previous=desired),
                instance_status_is(InstanceStatus.ACTIVE),
                timeout_seconds=self._config.timeouts.for_kind(operation.kind),
                description=f"instance {instance_id} to become active",
            )
            self._observed = result.snapshot

        # Floating IPs can only be bound once the NICs exist
        for attachment in desired.network_attachments:
            if attachment.floating_ip_id is None:
                continue
            await self._bind_floating_ip(
                attachment.floating_ip_id, attachment.network_id, previous=desired
            )

    async def _delete(self, operation: Operation) -> None:
        current = self._observed
        if current is None or current.id is None:
            logger.info("Instance already absent, nothing to delete")
            self._observed = None
            return
        instance_id = current.id

        try:
            await self._client.delete_instance(instance_id)
        except Exception as e:
            if not is_not_found(e):
                raise translate_client_error(e, f"DeleteInstance {instance_id}") from e
            logger.info("Instance already deleted", extra={"instance_id": instance_id})
            self._observed = None
            return

        self._observed = current.model_copy(update={"status": InstanceStatus.DELETING})

        if self._config.wait_for_deleted:
            await self._instance_waiter.wait_for(
                lambda: self._fetch_instance(instance_id, previous=current),
                instance_absent(),
                timeout_seconds=self._config.timeouts.for_kind(operation.kind),
                description=f"instance {instance_id} to be deleted",
            )

        logger.info(
            "Instance deleted",
            extra={"instance_id": instance_id, "replacement": operation.replacement},
        )
        self._observed = None

    async def _update(self, operation: Operation) -> None:
        current = self._require_instance(operation)
        instance_id = current.id
        assert instance_id is not None
        expected = _expected_after(operation, current)

        raw = await self._call(
            f"UpdateInstance {instance_id}",
            self._client.update_instance(instance_id, operation.update_payload()),
        )
        self._observed = self._materialize(raw, previous=expected)

        condition = _update_condition(operation)
        if condition is None:
            return

        result = await self._instance_waiter.wait_for(
            lambda: self._fetch_instance(instance_id, previous=expected),
            condition,
            timeout_seconds=self._config.timeouts.for_kind(operation.kind),
            description=f"{operation.describe()} on instance {instance_id}",
        )
        self._observed = result.snapshot

    async def _associate(self, operation: Operation) -> None:
        current = self._require_instance(operation)
        assert operation.floating_ip_id is not None and operation.network_id is not None
        await self._bind_floating_ip(
            operation.floating_ip_id, operation.network_id, previous=current
        )

    async def _disassociate(self, operation: Operation) -> None:
        current = self._require_instance(operation)
        instance_id = current.id
        floating_ip_id = operation.floating_ip_id
        assert instance_id is not None and floating_ip_id is not None

        await self._call(
            f"DisassociateFloatingIP {floating_ip_id}",
            self._client.disassociate_floating_ip(floating_ip_id),
        )
        self._observed = _with_floating_ip(current, operation.network_id, None)

        await self._floating_ip_waiter.wait_for(
            lambda: self._fetch_floating_ip(floating_ip_id),
            floating_ip_unbound(),
            timeout_seconds=self._config.timeouts.for_kind(operation.kind),
            description=f"floating IP {floating_ip_id} to be released",
        )
        await self._refresh(instance_id, previous=current)

    async def _bind_floating_ip(
        self, floating_ip_id: str, network_id: str, *, previous: Instance
    ) -> None:
        # Instance ID is taken at execution time: a preceding Create may have just assigned it
        current = self._observed
        if current is None or current.id is None:
            raise PlanningError(
                f"Cannot associate floating IP {floating_ip_id}: instance does not exist"
            )
        instance_id = current.id

        await self._call(
            f"AssociateFloatingIP {floating_ip_id}",
            self._client.associate_floating_ip(
                floating_ip_id, AttachmentRef(instance_id=instance_id, network_id=network_id)
            ),
        )

        result = await self._floating_ip_waiter.wait_for(
            lambda: self._fetch_floating_ip(floating_ip_id),
            floating_ip_bound_to(instance_id),
            timeout_seconds=self._config.timeouts.for_kind(OperationKind.ASSOCIATE_FLOATING_IP),
            description=f"floating IP {floating_ip_id} to bind to instance {instance_id}",
        )
        logger.info(
            "Floating IP associated",
            extra={
                "instance_id": instance_id,
                "floating_ip_id": floating_ip_id,
                "network_id": network_id,
                "address": result.snapshot.address if result.snapshot else None,
            },
        )
        await self._refresh(instance_id, previous=previous)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _call(self, action: str, request: Awaitable[R]) -> R:
        try:
            return await request
        except Exception as e:
            raise translate_client_error(e, action) from e

    def _materialize(self, raw: Mapping[str, Any], previous: Instance | None) -> Instance:
        try:
            return materialize_instance(raw, previous)
        except ValueError as e:
            raise RemoteError(f"Malformed instance response: {e}") from e

    async def _fetch_instance(self, instance_id: str, previous: Instance | None) -> Instance | None:
        try:
            raw = await self._client.get_instance(instance_id)
        except Exception as e:
            if is_not_found(e):
                return None
            raise translate_client_error(e, f"GetInstance {instance_id}") from e
        return self._materialize(raw, previous)

    async def _fetch_floating_ip(self, floating_ip_id: str) -> FloatingIP | None:
        try:
            raw = await self._client.get_floating_ip(floating_ip_id)
        except Exception as e:
            if is_not_found(e):
                return None
            raise translate_client_error(e, f"GetFloatingIP {floating_ip_id}") from e
        try:
            return materialize_floating_ip(raw)
        except ValueError as e:
            raise RemoteError(f"Malformed floating IP response: {e}") from e

    async def _refresh(self, instance_id: str, previous: Instance) -> None:
        refreshed = await self._fetch_instance(instance_id, previous=previous)
        if refreshed is None:
            self._observed = None
            raise NotFoundError(f"Instance {instance_id} disappeared during reconciliation")
        self._observed = refreshed

    def _require_instance(self, operation: Operation) -> Instance:
        current = self._observed
        if current is None or current.id is None:
            raise PlanningError(
                f"Cannot apply {operation.describe()}: instance does not exist"
            )
        return current

    def _current_id(self) -> str | None:
        return self._observed.id if self._observed is not None else None


def _update_condition(operation: Operation) -> Condition[Instance | None] | None:
    """Waiter condition confirming an update, or None if it completes synchronously."""
    if not operation.await_completion:
        return None
    match operation.update_action:
        case UpdateAction.ADD_ATTACHMENT:
            assert operation.network_id is not None
            return attachment_present(operation.network_id)
        case UpdateAction.REMOVE_ATTACHMENT:
            assert operation.network_id is not None
            return attachment_absent(operation.network_id)
        case UpdateAction.MODIFY_ATTACHMENT:
            assert operation.attachment_patch is not None
            return attachment_settled(operation.attachment_patch)
        case _:
            return None


def _expected_after(operation: Operation, current: Instance) -> Instance:
    """Record the update is expected to produce.

    Used as the materializer's ``previous`` so that fields the API does not
    report (primary flag) reflect the change being applied.
    """
    attachments = list(current.network_attachments)
    match operation.update_action:
        case UpdateAction.ADD_ATTACHMENT if operation.attachment is not None:
            attachments.append(operation.attachment)
        case UpdateAction.REMOVE_ATTACHMENT:
            attachments = [a for a in attachments if a.network_id != operation.network_id]
        case UpdateAction.MODIFY_ATTACHMENT if operation.attachment_patch is not None:
            patch = operation.attachment_patch
            if patch.primary is not None:
                attachments = [
                    a.model_copy(update={"primary": patch.primary})
                    if a.network_id == patch.network_id
                    else a
                    for a in attachments
                ]
        case _:
            return current
    return current.model_copy(update={"network_attachments": tuple(attachments)})


def _with_floating_ip(current: Instance, network_id: str | None, binding: Any) -> Instance:
    attachments = tuple(
        a.model_copy(update={"floating_ip": binding}) if a.network_id == network_id else a
        for a in current.network_attachments
    )
    return current.model_copy(update={"network_attachments": attachments})
