"""Tests for desired record validation."""

import pytest
from records import FIP_A, FIP_B, attachment, desired_mapping, instance

from instance_reconciler.errors import ValidationError
from instance_reconciler.validator import (
    PRIMARY_CONSTRAINT_REASON,
    Violation,
    ensure_valid,
    validate,
)


class TestValidRecords:
    """Tests for records that pass validation."""

    def test_minimal_record(self) -> None:
        """Test that a minimal record has no violations."""
        assert validate(instance()) == []

    def test_mapping_input(self) -> None:
        """Test that raw mappings are parsed and validated."""
        assert validate(desired_mapping()) == []

    def test_full_record(self) -> None:
        """Test a record using every optional feature."""
        record = instance(
            attachment("net-1", primary=True, sgs={"sg-a"}, ip_address="10.0.0.5",
                       floating_ip=FIP_A),
            attachment("net-2", sgs={"sg-b"}, ip_address="fd00::5", floating_ip=FIP_B),
            description="frontend",
            keypair="ops-key",
            password="s3cret",
        )

        assert validate(record, require_security_group=True) == []

    def test_no_primary_is_allowed(self) -> None:
        """Test that zero primary attachments is not a violation."""
        assert validate(instance(attachment("net-1"))) == []


class TestPrimaryConstraint:
    """Tests for the single-primary rule."""

    def test_two_primaries_one_violation(self) -> None:
        """Test that two primaries yield exactly one violation."""
        record = instance(
            attachment("net-1", primary=True),
            attachment("net-2", primary=True),
        )

        violations = validate(record)

        assert len(violations) == 1
        assert violations[0].path == "network_attachments"
        assert PRIMARY_CONSTRAINT_REASON in violations[0].reason

    def test_three_primaries_still_one_violation(self) -> None:
        """Test that the violation is reported once regardless of count."""
        record = instance(
            attachment("net-1", primary=True),
            attachment("net-2", primary=True),
            attachment("net-3", primary=True),
        )

        violations = [v for v in validate(record) if PRIMARY_CONSTRAINT_REASON in v.reason]

        assert len(violations) == 1
        assert "found 3" in violations[0].reason


class TestAttachmentRules:
    """Tests for per-attachment checks."""

    def test_no_attachments(self) -> None:
        """Test that at least one attachment is required."""
        violations = validate(desired_mapping(network_attachments=[]))

        assert violations == [
            Violation("network_attachments", "at least one network attachment is required")
        ]

    def test_invalid_address(self) -> None:
        """Test that fixed addresses must be IP literals."""
        record = instance(attachment("net-1", primary=True, ip_address="10.0.0.300"))

        violations = validate(record)

        assert [v.path for v in violations] == ["network_attachments[0].ip_address"]

    def test_duplicate_network(self) -> None:
        """Test that a network may only be attached once."""
        record = instance(attachment("net-1", primary=True), attachment("net-1"))

        violations = validate(record)

        assert len(violations) == 1
        assert violations[0].path == "network_attachments[0].network_id"

    def test_empty_network_id(self) -> None:
        """Test that network_id must not be blank."""
        violations = validate(
            desired_mapping(network_attachments=[{"network_id": " ", "primary": True}])
        )

        assert [v.path for v in violations] == ["network_attachments[0].network_id"]

    def test_security_group_required_when_configured(self) -> None:
        """Test the platform-specific security group requirement."""
        record = instance(attachment("net-1", primary=True))

        assert validate(record) == []
        violations = validate(record, require_security_group=True)
        assert [v.path for v in violations] == ["network_attachments[0].security_group_ids"]

    def test_floating_ip_must_be_uuid(self) -> None:
        """Test that floating IP IDs must be lowercase UUIDs."""
        record = instance(
            attachment("net-1", primary=True, floating_ip="fip-1"),
            attachment("net-2", floating_ip=FIP_A.upper()),
        )

        violations = validate(record)

        assert [v.path for v in violations] == [
            "network_attachments[0].floating_ip.floating_ip_id",
            "network_attachments[1].floating_ip.floating_ip_id",
        ]

    def test_floating_ip_on_two_attachments(self) -> None:
        """Test that one floating IP cannot be bound to two attachments."""
        record = instance(
            attachment("net-1", primary=True, floating_ip=FIP_A),
            attachment("net-2", floating_ip=FIP_A),
        )

        violations = validate(record)

        assert len(violations) == 1
        assert "more than one attachment" in violations[0].reason


class TestDescriptiveFields:
    """Tests for name and description checks."""

    def test_empty_name(self) -> None:
        """Test that a name is required."""
        violations = validate(desired_mapping(name=""))

        assert [v.path for v in violations] == ["name"]

    def test_name_too_long(self) -> None:
        """Test the maximum name length."""
        violations = validate(desired_mapping(name="x" * 256))

        assert [v.path for v in violations] == ["name"]

    def test_description_too_long(self) -> None:
        """Test the maximum description length."""
        violations = validate(desired_mapping(description="d" * 1001))

        assert [v.path for v in violations] == ["description"]

    def test_blank_flavor(self) -> None:
        """Test that flavor_id must not be blank."""
        violations = validate(desired_mapping(flavor_id=" "))

        assert [v.path for v in violations] == ["flavor_id"]

    def test_immutable_changes_not_checked(self) -> None:
        """Test that validation ignores observed state entirely."""
        assert validate(instance(flavor_id="flavor-large")) == []


class TestParseErrors:
    """Tests for payloads that do not parse as records."""

    def test_missing_field_path(self) -> None:
        """Test that pydantic errors become violations with field paths."""
        data = desired_mapping()
        del data["image_id"]

        violations = validate(data)

        assert [v.path for v in violations] == ["image_id"]

    def test_nested_path(self) -> None:
        """Test that nested errors carry list indexes."""
        violations = validate(
            desired_mapping(network_attachments=[{"network_id": "net-1", "primary": "maybe"}])
        )

        assert [v.path for v in violations] == ["network_attachments[0].primary"]


class TestEnsureValid:
    """Tests for ensure_valid."""

    def test_returns_parsed_record(self) -> None:
        """Test that a valid mapping is returned as an Instance."""
        record = ensure_valid(desired_mapping())

        assert record.name == "web-1"
        assert record.network_attachments[0].primary is True

    def test_raises_with_all_violations(self) -> None:
        """Test that every violation is carried by the error."""
        with pytest.raises(ValidationError) as exc_info:
            ensure_valid(desired_mapping(name="", network_attachments=[]))

        assert {v.path for v in exc_info.value.violations} == {"name", "network_attachments"}
        assert "2 violations" in str(exc_info.value)
