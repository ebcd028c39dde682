"""Instance record loading from YAML or JSON files.

Records are read at the boundary only; the reconciliation core never parses
files. File size is checked before reading.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_RECORD_FILE_SIZE_BYTES
from .models import Instance

logger = logging.getLogger(__name__)

RECORD_KIND = "Instance"


class RecordLoadError(Exception):
    """Raised when a record file cannot be loaded or parsed."""

    pass


def load_record_data(path: Path) -> dict[str, Any]:
    """Read a record file into a mapping without validating its content.

    Accepts a bare record or an envelope with ``kind``/``apiVersion`` and a
    ``spec`` section. JSON files are read too, as YAML is a superset.

    Args:
        path: Record file.

    Returns:
        The record mapping.

    Raises:
        RecordLoadError: If the file is missing, too large or malformed.
    """
    if not path.exists():
        raise RecordLoadError(f"Record file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise RecordLoadError(f"Failed to stat record file {path}: {e}") from e

    if file_size > MAX_RECORD_FILE_SIZE_BYTES:
        raise RecordLoadError(
            f"Record file exceeds maximum size of {MAX_RECORD_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise RecordLoadError(f"Failed to read record file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise RecordLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise RecordLoadError(f"Record file must contain a mapping: {path}")

    if "spec" in raw_data and ("kind" in raw_data or "apiVersion" in raw_data):
        kind = raw_data.get("kind", RECORD_KIND)
        if kind != RECORD_KIND:
            raise RecordLoadError(f"Unsupported record kind '{kind}' in {path}")
        spec_data = raw_data.get("spec")
        if not isinstance(spec_data, dict):
            raise RecordLoadError(f"Spec section must be a mapping: {path}")
        return spec_data

    return raw_data


def load_instance_record(path: Path) -> Instance:
    """Load a canonical instance record.

    Only the record shape is checked here; structural rules (primary
    constraint, address literals) are the validator's job.

    Raises:
        RecordLoadError: If the file cannot be read or does not parse as a record.
    """
    data = load_record_data(path)

    try:
        record = Instance.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise RecordLoadError(f"Invalid instance record in {path}:\n{error_list}") from e

    logger.info("Loaded instance record '%s' from %s", record.name, path)
    return record
