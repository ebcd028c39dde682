"""Polling waiter for asynchronous remote operations.

Each awaited operation follows: pending -> {active | error | timeout}, plus
cancelled when the overall request is aborted.

- An error status observed mid-poll ends the wait immediately
  (TerminalStateError); no further polling happens.
- The deadline is enforced per wait, and the number of polls is bounded by
  ceil(timeout / interval) + 1.
- A set cancel event ends the sleep at once (WaitCancelledError). Task
  cancellation (asyncio.CancelledError) propagates untouched. Neither leaves
  a pending timer behind.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from .errors import TerminalStateError, WaitCancelledError, WaitTimeoutError
from .models import (
    AttachmentPatch,
    FloatingIP,
    FloatingIPStatus,
    Instance,
    InstanceStatus,
)

logger = logging.getLogger(__name__)

S = TypeVar("S")


class WaitOutcome(str, Enum):
    """Result of evaluating a condition against one snapshot."""

    PENDING = "pending"
    SATISFIED = "satisfied"
    FAILED = "failed"


Condition = Callable[[S], WaitOutcome]


@dataclass(frozen=True)
class WaitResult(Generic[S]):
    """Final snapshot of a successful wait."""

    snapshot: S
    polls: int
    elapsed_seconds: float


def max_polls(timeout_seconds: float, interval_seconds: float) -> int:
    """Upper bound on the number of polls for a wait."""
    return math.ceil(timeout_seconds / interval_seconds) + 1


class Waiter:
    """Polls observed state at a fixed interval until a condition holds.

    A waiter belongs to one reconciliation flow. It suspends only that flow
    and shares nothing with waiters of other instances.
    """

    def __init__(
        self,
        interval_seconds: float,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """Initialize waiter.

        Args:
            interval_seconds: Fixed delay between polls.
            cancel_event: Set by the caller to abort the wait.

        Raises:
            ValueError: If the interval is not positive.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._interval = interval_seconds
        self._cancel_event = cancel_event

    @property
    def interval_seconds(self) -> float:
        return self._interval

    async def wait_for(
        self,
        fetch: Callable[[], Awaitable[S]],
        condition: Condition[S],
        *,
        timeout_seconds: float,
        description: str,
    ) -> WaitResult[S]:
        """Poll until the condition is satisfied.

        Args:
            fetch: Coroutine factory returning the current observed snapshot.
            condition: Evaluates a snapshot.
            timeout_seconds: Wait ceiling for this operation kind.
            description: Human-readable target, used in logs and errors.

        Returns:
            WaitResult with the satisfying snapshot.

        Raises:
            TerminalStateError: If the condition reports a terminal error state.
            WaitTimeoutError: If the deadline elapses first.
            WaitCancelledError: If the cancel event is set.
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + timeout_seconds
        poll_limit = max_polls(timeout_seconds, self._interval)
        polls = 0

        while True:
            self._raise_if_cancelled(description, polls)

            snapshot = await fetch()
            polls += 1
            outcome = condition(snapshot)

            logger.debug(
                "Polled observed state",
                extra={"target": description, "poll": polls, "outcome": outcome.value},
            )

            if outcome == WaitOutcome.SATISFIED:
                elapsed = loop.time() - started
                logger.info(
                    "Wait condition satisfied",
                    extra={"target": description, "polls": polls, "elapsed_seconds": elapsed},
                )
                return WaitResult(snapshot=snapshot, polls=polls, elapsed_seconds=elapsed)

            if outcome == WaitOutcome.FAILED:
                logger.error(
                    "Terminal error state observed while waiting",
                    extra={"target": description, "polls": polls},
                )
                raise TerminalStateError(
                    f"Resource entered an error state while waiting for {description}",
                    snapshot=snapshot,
                )

            remaining = deadline - loop.time()
            if remaining <= 0 or polls >= poll_limit:
                logger.error(
                    "Wait timed out",
                    extra={
                        "target": description,
                        "polls": polls,
                        "timeout_seconds": timeout_seconds,
                    },
                )
                raise WaitTimeoutError(
                    f"Timed out after {timeout_seconds:g}s waiting for {description}",
                    polls=polls,
                    timeout_seconds=timeout_seconds,
                )

            await self._sleep(min(self._interval, remaining), description, polls)

    async def _sleep(self, delay: float, description: str, polls: int) -> None:
        if self._cancel_event is None:
            await asyncio.sleep(delay)
            return

        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)
        except TimeoutError:
            # Normal timeout, poll again
            return
        self._raise_if_cancelled(description, polls)

    def _raise_if_cancelled(self, description: str, polls: int) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            logger.warning(
                "Wait cancelled",
                extra={"target": description, "polls": polls},
            )
            raise WaitCancelledError(f"Cancelled while waiting for {description}")


# =============================================================================
# Conditions
# =============================================================================


def instance_status_is(target: InstanceStatus) -> Condition[Instance | None]:
    """Instance reports the target status. Absence keeps the wait pending."""

    def condition(snapshot: Instance | None) -> WaitOutcome:
        if snapshot is None:
            return WaitOutcome.PENDING
        if snapshot.status == target:
            return WaitOutcome.SATISFIED
        if snapshot.status == InstanceStatus.ERROR:
            return WaitOutcome.FAILED
        return WaitOutcome.PENDING

    return condition


def instance_absent() -> Condition[Instance | None]:
    """Instance is gone (not found, or reported deleted)."""

    def condition(snapshot: Instance | None) -> WaitOutcome:
        if snapshot is None:
            return WaitOutcome.SATISFIED
        if snapshot.status == InstanceStatus.ERROR:
            return WaitOutcome.FAILED
        return WaitOutcome.PENDING

    return condition


def _instance_condition(
    check: Callable[[Instance], bool],
) -> Condition[Instance | None]:
    def condition(snapshot: Instance | None) -> WaitOutcome:
        if snapshot is None:
            return WaitOutcome.PENDING
        if snapshot.status == InstanceStatus.ERROR:
            return WaitOutcome.FAILED
        if check(snapshot):
            return WaitOutcome.SATISFIED
        return WaitOutcome.PENDING

    return condition


def attachment_present(network_id: str) -> Condition[Instance | None]:
    return _instance_condition(lambda instance: instance.attachment(network_id) is not None)


def attachment_absent(network_id: str) -> Condition[Instance | None]:
    return _instance_condition(lambda instance: instance.attachment(network_id) is None)


def attachment_settled(patch: AttachmentPatch) -> Condition[Instance | None]:
    """The attachment reflects every change in the patch."""

    def check(instance: Instance) -> bool:
        attachment = instance.attachment(patch.network_id)
        if attachment is None:
            return False
        if not patch.add_security_group_ids <= attachment.security_group_ids:
            return False
        if patch.remove_security_group_ids & attachment.security_group_ids:
            return False
        if patch.primary is not None and attachment.primary != patch.primary:
            return False
        return patch.ip_address is None or attachment.ip_address == patch.ip_address

    return _instance_condition(check)


def floating_ip_bound_to(device_id: str) -> Condition[FloatingIP | None]:
    """Floating IP is active and bound to the given instance."""

    def condition(snapshot: FloatingIP | None) -> WaitOutcome:
        if snapshot is None:
            return WaitOutcome.FAILED
        if snapshot.status == FloatingIPStatus.ERROR:
            return WaitOutcome.FAILED
        if snapshot.device_id == device_id and snapshot.status == FloatingIPStatus.ACTIVE:
            return WaitOutcome.SATISFIED
        return WaitOutcome.PENDING

    return condition


def floating_ip_unbound() -> Condition[FloatingIP | None]:
    """Floating IP no longer has a device (or no longer exists)."""

    def condition(snapshot: FloatingIP | None) -> WaitOutcome:
        if snapshot is None:
            return WaitOutcome.SATISFIED
        if snapshot.status == FloatingIPStatus.ERROR:
            return WaitOutcome.FAILED
        if not snapshot.is_bound:
            return WaitOutcome.SATISFIED
        return WaitOutcome.PENDING

    return condition
