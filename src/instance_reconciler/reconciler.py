"""Reconciliation entry points.

This module implements one reconciliation pass for one instance:
1. Validate the desired record (no remote calls on failure)
2. Plan operations against the last observed record
3. Resolve floating IP references before any mutation
4. Execute the plan, waiting on asynchronous operations
5. Return the new observed record with per-operation outcomes

The caller serializes reconciliation requests per instance ID. Independent
instances may be reconciled concurrently with separate InstanceReconciler
objects, or with one reconciler, since no per-flow state is kept on it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .client import CloudAPIClient, is_not_found, translate_client_error
from .config import ReconcilerConfig
from .errors import (
    ConflictError,
    NotFoundError,
    PlanningError,
    ReconcileError,
    RemoteError,
    ValidationError,
)
from .executor import OperationResult, PlanExecutor
from .materializer import materialize_floating_ip, materialize_instance
from .models import Instance, OperationPlan
from .planner import plan_operations
from .validator import Violation, ensure_valid
from .validator import validate as validate_record

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Result of a single reconciliation pass."""

    observed: Instance | None = None
    plan: OperationPlan | None = None
    results: list[OperationResult] = field(default_factory=list)
    violations: list[Violation] = field(default_factory=list)
    dry_run: bool = False
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if reconciliation succeeded."""
        return self.error is None

    @property
    def changes_applied(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed_operation(self) -> OperationResult | None:
        for result in self.results:
            if not result.success:
                return result
        return None


class InstanceReconciler:
    """Converges one instance's observed state toward its desired state.

    The Cloud API Client and configuration are injected; nothing is held in
    module state, so reconcilers with different clients or timeouts can run
    side by side.
    """

    def __init__(self, client: CloudAPIClient, config: ReconcilerConfig | None = None) -> None:
        """Initialize reconciler.

        Args:
            client: Cloud API Client used for every remote call.
            config: Validated configuration; defaults to ReconcilerConfig().
        """
        self._client = client
        self._config = config or ReconcilerConfig()

    @property
    def config(self) -> ReconcilerConfig:
        return self._config

    def validate(self, desired: Instance | Mapping[str, Any]) -> list[Violation]:
        """Validate a desired record without touching the remote API."""
        return validate_record(
            desired, require_security_group=self._config.require_security_group
        )

    def plan(
        self,
        desired: Instance | Mapping[str, Any] | None,
        observed: Instance | None,
    ) -> OperationPlan:
        """Validate and plan without applying anything.

        Raises:
            ValidationError: If the desired record is invalid.
            PlanningError: If no safe plan exists.
        """
        parsed = self._parse_desired(desired)
        return plan_operations(parsed, observed)

    async def refresh(self, observed: Instance) -> Instance | None:
        """Re-read an instance from the remote API.

        Args:
            observed: Last known record; supplies the ID and write-only fields.

        Returns:
            Fresh record, or None if the instance no longer exists.

        Raises:
            RemoteError: If the read fails for any other reason.
        """
        if observed.id is None:
            return None
        try:
            raw = await self._client.get_instance(observed.id)
        except Exception as e:
            if is_not_found(e):
                return None
            raise translate_client_error(e, f"GetInstance {observed.id}") from e
        try:
            return materialize_instance(raw, previous=observed)
        except ValueError as e:
            raise RemoteError(f"Malformed instance response: {e}") from e

    async def reconcile(
        self,
        desired: Instance | Mapping[str, Any] | None,
        observed: Instance | None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ReconcileResult:
        """Run one reconciliation pass.

        Args:
            desired: Desired record, or None to delete the instance.
            observed: Last observed record, or None if the instance does not exist.
            cancel_event: Set by the caller to abort in-progress waits.

        Returns:
            ReconcileResult. Errors are reported in ``error`` rather than
            raised; ``observed`` always holds the latest known state.
        """
        result = ReconcileResult(observed=observed, dry_run=self._config.dry_run)

        try:
            parsed = self._parse_desired(desired)
            plan = plan_operations(parsed, observed)
            result.plan = plan

            if plan.is_empty:
                logger.info(
                    "Instance is up to date",
                    extra={"instance_id": observed.id if observed else None},
                )
            elif self._config.dry_run:
                logger.info(
                    "Dry run: plan computed, not applied",
                    extra={"operations": [op.describe() for op in plan]},
                )
            else:
                if parsed is not None:
                    await self._resolve_references(parsed, observed)

                executor = PlanExecutor(self._client, self._config, cancel_event=cancel_event)
                execution = await executor.execute(plan, observed)
                result.observed = execution.observed
                result.results = execution.results
                result.error = execution.error

        except ValidationError as e:
            logger.warning(
                "Desired state is invalid",
                extra={"violation_count": len(e.violations)},
            )
            result.violations = e.violations
            result.error = e
        except PlanningError as e:
            logger.error("Planning failed", extra={"error": str(e)})
            result.error = e
        except ConflictError as e:
            logger.error("Floating IP reference conflict", extra={"error": str(e)})
            result.error = e
        except NotFoundError as e:
            logger.error("Referenced resource not found", extra={"error": str(e)})
            result.error = e
        except ReconcileError as e:
            logger.error("Reconciliation error", extra={"error": str(e)})
            result.error = e
        except Exception as e:
            logger.exception("Unexpected error during reconciliation")
            result.error = e

        if result.end_time is None:
            result.end_time = datetime.now(UTC)

        self._log_result(result)
        return result

    def _parse_desired(self, desired: Instance | Mapping[str, Any] | None) -> Instance | None:
        if desired is None:
            return None
        return ensure_valid(desired, require_security_group=self._config.require_security_group)

    async def _resolve_references(self, desired: Instance, observed: Instance | None) -> None:
        """Check desired floating IPs exist and are free before mutating anything.

        Raises:
            NotFoundError: If a floating IP does not exist.
            ConflictError: If a floating IP is bound to another instance.
            RemoteError: If a lookup fails.
        """
        own_id = observed.id if observed is not None else None

        for index, attachment in enumerate(desired.network_attachments):
            floating_ip_id = attachment.floating_ip_id
            if floating_ip_id is None:
                continue

            current = observed.attachment(attachment.network_id) if observed else None
            if current is not None and current.floating_ip_id == floating_ip_id:
                continue

            try:
                raw = await self._client.get_floating_ip(floating_ip_id)
            except Exception as e:
                if is_not_found(e):
                    raise NotFoundError(
                        f"Floating IP {floating_ip_id} referenced by "
                        f"network_attachments[{index}] does not exist",
                        error=e,
                    ) from e
                raise translate_client_error(e, f"GetFloatingIP {floating_ip_id}") from e

            try:
                floating_ip = materialize_floating_ip(raw)
            except ValueError as e:
                raise RemoteError(f"Malformed floating IP response: {e}") from e

            # Bound to this instance is fine: the plan releases it before rebinding
            if floating_ip.is_bound and floating_ip.device_id != own_id:
                raise ConflictError(
                    f"Floating IP {floating_ip_id} is already bound to "
                    f"{floating_ip.device_id}"
                )

    def _log_result(self, result: ReconcileResult) -> None:
        """Log reconciliation result with structured data."""
        extra: dict[str, Any] = {
            "instance_id": result.observed.id if result.observed else None,
            "duration_seconds": result.duration_seconds,
            "planned_operations": len(result.plan) if result.plan is not None else 0,
            "changes_applied": result.changes_applied,
            "dry_run": result.dry_run,
        }

        failed = result.failed_operation
        if failed is not None:
            extra["failed_index"] = failed.index
            extra["failed_operation"] = failed.operation.describe()

        if result.error is not None:
            extra["error"] = str(result.error)
            extra["error_type"] = type(result.error).__name__
            logger.error("Reconciliation failed", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)


async def reconcile(
    client: CloudAPIClient,
    desired: Instance | Mapping[str, Any] | None,
    observed: Instance | None,
    *,
    config: ReconcilerConfig | None = None,
    cancel_event: asyncio.Event | None = None,
) -> ReconcileResult:
    """Run one reconciliation pass with an ad-hoc reconciler."""
    reconciler = InstanceReconciler(client, config)
    return await reconciler.reconcile(desired, observed, cancel_event=cancel_event)


def validate(
    desired: Instance | Mapping[str, Any],
    *,
    config: ReconcilerConfig | None = None,
) -> list[Violation]:
    """Validate a desired record as a standalone pre-check."""
    require_security_group = config.require_security_group if config is not None else False
    return validate_record(desired, require_security_group=require_security_group)
