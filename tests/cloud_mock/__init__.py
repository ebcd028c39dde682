"""Cloud API Mock for Integration Testing.

This module provides an in-memory implementation of the Cloud API Client
that enables reconciliation tests without a real platform.

Key Features:
- In-memory state for instances and floating IPs
- Status transitions (BUILD -> ACTIVE, DELETING -> gone) settling after N reads
- Floating IP association settling (DOWN -> ACTIVE)
- Error injection for testing failure scenarios
- Call log for asserting operation order

Usage:
    from cloud_mock import MockCloudClient

    client = MockCloudClient(build_reads=2)
    result = await reconcile(client, desired, None, config=fast_config)

    assert client.call_names()[0] == "create_instance"
"""

from .client import MockCloudClient, conflict_error
from .state import MockCloudState, MockFloatingIP, MockInstance, MockNic, MockStatus

__all__ = [
    "MockCloudClient",
    "MockCloudState",
    "MockFloatingIP",
    "MockInstance",
    "MockNic",
    "MockStatus",
    "conflict_error",
]
