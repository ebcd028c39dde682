"""Tests for configuration loading."""

import pytest

from instance_reconciler.config import (
    DEFAULT_ASSOCIATE_TIMEOUT_SECONDS,
    DEFAULT_CREATE_TIMEOUT_SECONDS,
    ConfigurationError,
    OperationTimeouts,
    ReconcilerConfig,
    parse_duration,
)
from instance_reconciler.models import OperationKind

ENV_VARS = (
    "RECONCILER_CREATE_TIMEOUT",
    "RECONCILER_UPDATE_TIMEOUT",
    "RECONCILER_DELETE_TIMEOUT",
    "RECONCILER_ASSOCIATE_TIMEOUT",
    "RECONCILER_DISASSOCIATE_TIMEOUT",
    "RECONCILER_INSTANCE_POLL_INTERVAL",
    "RECONCILER_FLOATING_IP_POLL_INTERVAL",
    "RECONCILER_WAIT_FOR_ACTIVE",
    "RECONCILER_WAIT_FOR_DELETED",
    "RECONCILER_REQUIRE_SECURITY_GROUP",
    "RECONCILER_DRY_RUN",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


class TestParseDuration:
    """Tests for duration parsing."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("300", 300.0),
            ("1.5", 1.5),
            ("10m", 600.0),
            ("1h30m", 5400.0),
            ("45s", 45.0),
            ("500ms", 0.5),
            (" 2M ", 120.0),
        ],
    )
    def test_valid_durations(self, value: str, expected: float) -> None:
        """Test seconds and Go-style durations."""
        assert parse_duration(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "ten minutes", "10x", "m10", "10m foo"])
    def test_invalid_durations(self, value: str) -> None:
        """Test that malformed durations are rejected."""
        with pytest.raises(ValueError):
            parse_duration(value)


class TestOperationTimeouts:
    """Tests for per-kind timeouts."""

    def test_defaults(self) -> None:
        """Test that instance operations default to 10 minutes, floating IPs to 2."""
        timeouts = OperationTimeouts()

        assert timeouts.create == 600.0
        assert timeouts.update == 600.0
        assert timeouts.delete == 600.0
        assert timeouts.associate == 120.0
        assert timeouts.disassociate == 120.0

    def test_for_kind(self) -> None:
        """Test timeout lookup by operation kind."""
        timeouts = OperationTimeouts(create=10, update=20, delete=30, associate=40, disassociate=50)

        assert timeouts.for_kind(OperationKind.CREATE) == 10
        assert timeouts.for_kind(OperationKind.UPDATE) == 20
        assert timeouts.for_kind(OperationKind.DELETE) == 30
        assert timeouts.for_kind(OperationKind.ASSOCIATE_FLOATING_IP) == 40
        assert timeouts.for_kind(OperationKind.DISASSOCIATE_FLOATING_IP) == 50


class TestReconcilerConfig:
    """Tests for ReconcilerConfig validation."""

    def test_defaults(self) -> None:
        """Test the default configuration is valid."""
        config = ReconcilerConfig()

        assert config.timeouts.create == DEFAULT_CREATE_TIMEOUT_SECONDS
        assert config.instance_poll_interval_seconds == 5.0
        assert config.floating_ip_poll_interval_seconds == 2.0
        assert config.wait_for_active is True
        assert config.wait_for_deleted is True
        assert config.require_security_group is False
        assert config.dry_run is False

    def test_timeout_below_minimum(self) -> None:
        """Test that sub-second timeouts are rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            ReconcilerConfig(
                timeouts=OperationTimeouts(create=0.5),
                instance_poll_interval_seconds=0.1,
            )

        assert "create timeout" in str(exc_info.value)

    def test_timeout_above_maximum(self) -> None:
        """Test that timeouts beyond 24 hours are rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            ReconcilerConfig(timeouts=OperationTimeouts(delete=90000))

        assert "delete timeout" in str(exc_info.value)

    def test_non_positive_interval(self) -> None:
        """Test that poll intervals must be positive."""
        with pytest.raises(ConfigurationError) as exc_info:
            ReconcilerConfig(instance_poll_interval_seconds=0)

        assert "instance poll interval must be positive" in str(exc_info.value)

    def test_interval_exceeding_timeout(self) -> None:
        """Test that a poll interval longer than its timeouts is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            ReconcilerConfig(
                timeouts=OperationTimeouts(associate=5, disassociate=5),
                floating_ip_poll_interval_seconds=10,
            )

        assert "floating IP poll interval" in str(exc_info.value)

    def test_all_errors_reported_together(self) -> None:
        """Test that every problem is collected into one error."""
        with pytest.raises(ConfigurationError) as exc_info:
            ReconcilerConfig(
                timeouts=OperationTimeouts(create=0, update=0),
                floating_ip_poll_interval_seconds=-1,
            )

        message = str(exc_info.value)
        assert "create timeout" in message
        assert "update timeout" in message
        assert "floating IP poll interval must be positive" in message


class TestConfigFromEnv:
    """Tests for ReconcilerConfig.from_env."""

    def test_from_env_empty(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test defaults when no variables are set."""
        config = ReconcilerConfig.from_env()

        assert config == ReconcilerConfig()

    def test_from_env_durations(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test duration variables in both formats."""
        clean_env.setenv("RECONCILER_CREATE_TIMEOUT", "20m")
        clean_env.setenv("RECONCILER_DELETE_TIMEOUT", "900")
        clean_env.setenv("RECONCILER_FLOATING_IP_POLL_INTERVAL", "500ms")

        config = ReconcilerConfig.from_env()

        assert config.timeouts.create == 1200.0
        assert config.timeouts.delete == 900.0
        assert config.timeouts.associate == DEFAULT_ASSOCIATE_TIMEOUT_SECONDS
        assert config.floating_ip_poll_interval_seconds == 0.5

    def test_from_env_flags(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test boolean variables."""
        clean_env.setenv("RECONCILER_WAIT_FOR_ACTIVE", "false")
        clean_env.setenv("RECONCILER_REQUIRE_SECURITY_GROUP", "yes")
        clean_env.setenv("RECONCILER_DRY_RUN", "1")

        config = ReconcilerConfig.from_env()

        assert config.wait_for_active is False
        assert config.wait_for_deleted is True
        assert config.require_security_group is True
        assert config.dry_run is True

    def test_from_env_invalid_duration(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test that unparseable durations raise ConfigurationError."""
        clean_env.setenv("RECONCILER_UPDATE_TIMEOUT", "soon")

        with pytest.raises(ConfigurationError) as exc_info:
            ReconcilerConfig.from_env()

        assert "RECONCILER_UPDATE_TIMEOUT" in str(exc_info.value)

    def test_from_env_out_of_bounds(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test that parsed values still go through validation."""
        clean_env.setenv("RECONCILER_ASSOCIATE_TIMEOUT", "48h")

        with pytest.raises(ConfigurationError):
            ReconcilerConfig.from_env()
