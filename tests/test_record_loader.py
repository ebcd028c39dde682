"""Tests for instance record file loading."""

import json
from pathlib import Path

import pytest
import yaml
from records import FIP_A, desired_mapping

from instance_reconciler.config import MAX_RECORD_FILE_SIZE_BYTES
from instance_reconciler.record_loader import (
    RecordLoadError,
    load_instance_record,
    load_record_data,
)


def write_yaml(path: Path, data: object) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


class TestLoadRecordData:
    """Tests for load_record_data."""

    def test_bare_record(self, tmp_path: Path) -> None:
        """Test a file holding the record itself."""
        path = write_yaml(tmp_path / "desired.yaml", desired_mapping())

        assert load_record_data(path) == desired_mapping()

    def test_envelope(self, tmp_path: Path) -> None:
        """Test a kind/apiVersion envelope with a spec section."""
        path = write_yaml(
            tmp_path / "desired.yaml",
            {
                "apiVersion": "instances/v1",
                "kind": "Instance",
                "metadata": {"name": "web-1"},
                "spec": desired_mapping(),
            },
        )

        assert load_record_data(path) == desired_mapping()

    def test_json_file(self, tmp_path: Path) -> None:
        """Test that JSON is accepted."""
        path = tmp_path / "desired.json"
        path.write_text(json.dumps(desired_mapping()))

        assert load_record_data(path)["name"] == "web-1"

    def test_wrong_kind(self, tmp_path: Path) -> None:
        """Test that other envelope kinds are rejected."""
        path = write_yaml(
            tmp_path / "desired.yaml", {"kind": "Network", "spec": {"name": "n"}}
        )

        with pytest.raises(RecordLoadError, match="Unsupported record kind 'Network'"):
            load_record_data(path)

    def test_spec_not_mapping(self, tmp_path: Path) -> None:
        """Test that the envelope body must be a mapping."""
        path = write_yaml(tmp_path / "desired.yaml", {"kind": "Instance", "spec": ["x"]})

        with pytest.raises(RecordLoadError, match="must be a mapping"):
            load_record_data(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test a missing file."""
        with pytest.raises(RecordLoadError, match="not found"):
            load_record_data(tmp_path / "missing.yaml")

    def test_oversized_file(self, tmp_path: Path) -> None:
        """Test that the size limit is checked before parsing."""
        path = tmp_path / "huge.yaml"
        path.write_text("x" * (MAX_RECORD_FILE_SIZE_BYTES + 1))

        with pytest.raises(RecordLoadError, match="exceeds maximum size"):
            load_record_data(path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Test malformed YAML."""
        path = tmp_path / "broken.yaml"
        path.write_text("name: [unclosed\n")

        with pytest.raises(RecordLoadError, match="Invalid YAML"):
            load_record_data(path)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        """Test that top-level lists and scalars are rejected."""
        path = write_yaml(tmp_path / "list.yaml", ["web-1"])

        with pytest.raises(RecordLoadError, match="must contain a mapping"):
            load_record_data(path)


class TestLoadInstanceRecord:
    """Tests for load_instance_record."""

    def test_loads_record(self, tmp_path: Path) -> None:
        """Test a valid record with a floating IP."""
        data = desired_mapping(
            id="vm-1",
            network_attachments=[
                {"network_id": "net-1", "primary": True, "floating_ip": FIP_A},
            ],
        )
        path = write_yaml(tmp_path / "observed.yaml", data)

        record = load_instance_record(path)

        assert record.id == "vm-1"
        assert record.network_attachments[0].floating_ip_id == FIP_A

    def test_shape_errors_listed(self, tmp_path: Path) -> None:
        """Test that field errors are reported with their location."""
        data = desired_mapping()
        del data["flavor_id"]
        path = write_yaml(tmp_path / "desired.yaml", data)

        with pytest.raises(RecordLoadError) as exc_info:
            load_instance_record(path)

        assert "Invalid instance record" in str(exc_info.value)
        assert "flavor_id" in str(exc_info.value)

    def test_structural_rules_not_checked(self, tmp_path: Path) -> None:
        """Test that loading leaves structural rules to the validator."""
        data = desired_mapping(
            network_attachments=[
                {"network_id": "net-1", "primary": True},
                {"network_id": "net-2", "primary": True},
            ]
        )
        path = write_yaml(tmp_path / "desired.yaml", data)

        record = load_instance_record(path)

        assert len(record.network_attachments) == 2
