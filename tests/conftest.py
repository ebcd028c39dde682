"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for cloud_mock and records imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from cloud_mock import MockCloudClient  # noqa: E402

from instance_reconciler.config import OperationTimeouts, ReconcilerConfig  # noqa: E402


@pytest.fixture
def fast_config() -> ReconcilerConfig:
    """Configuration with minimal timeouts and near-instant polling."""
    return ReconcilerConfig(
        timeouts=OperationTimeouts(
            create=1.0, update=1.0, delete=1.0, associate=1.0, disassociate=1.0
        ),
        instance_poll_interval_seconds=0.01,
        floating_ip_poll_interval_seconds=0.01,
    )


@pytest.fixture
def mock_client() -> MockCloudClient:
    """Fresh in-memory Cloud API Client."""
    return MockCloudClient()
