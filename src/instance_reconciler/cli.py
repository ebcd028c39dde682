"""Instance reconciler CLI (instancectl).

Offline front end for checking desired records and previewing plans.
Nothing here calls the Cloud API.

Usage:
    instancectl validate desired.yaml
    instancectl plan desired.yaml --observed observed.yaml
    instancectl plan desired.yaml --observed response.json --raw-observed --json
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import IO

import click

from .config import ConfigurationError, ReconcilerConfig
from .errors import PlanningError, ValidationError
from .materializer import materialize_instance
from .models import Instance, OperationPlan
from .planner import plan_operations
from .record_loader import RecordLoadError, load_instance_record, load_record_data
from .validator import ensure_valid, validate

# LogRecord attributes that are not user-supplied extras
_RESERVED_LOG_ATTRIBUTES = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_ATTRIBUTES:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "WARNING", stream: IO[str] | None = None) -> None:
    """Configure structured JSON logging.

    Logs go to stderr by default so that command output on stdout stays
    machine-readable.
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_config() -> ReconcilerConfig:
    """Load reconciler configuration from the environment."""
    try:
        return ReconcilerConfig.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def load_observed(path: Path, raw: bool) -> Instance:
    """Load an observed record, materializing it first if it is a raw API response."""
    try:
        if not raw:
            return load_instance_record(path)
        return materialize_instance(load_record_data(path))
    except RecordLoadError as e:
        raise click.ClickException(str(e)) from e
    except ValueError as e:
        raise click.ClickException(f"Invalid instance response in {path}: {e}") from e


def render_plan(plan: OperationPlan) -> str:
    """Render a plan as human-readable lines."""
    if plan.is_empty:
        return "No changes. Observed state matches desired state."

    lines = [f"Plan: {len(plan)} operation(s)"]
    if plan.requires_replacement:
        lines.append("  ! instance will be replaced")
    for index, operation in enumerate(plan):
        marker = "~" if operation.await_completion else " "
        lines.append(f"  {index + 1}. {marker} {operation.describe()}")
    return "\n".join(lines)


# =============================================================================
# Commands
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="instancectl")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Log level for structured logs on stderr",
)
def cli(log_level: str) -> None:
    """Instance reconciler CLI (instancectl).

    Validate desired instance records and preview reconciliation plans.

    \b
    Quick Start:
        instancectl validate desired.yaml
        instancectl plan desired.yaml --observed observed.yaml
    """
    setup_logging(log_level)


@cli.command("validate")
@click.argument("desired", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--require-security-group",
    is_flag=True,
    help="Require at least one security group per attachment",
)
def validate_command(desired: Path, require_security_group: bool) -> None:
    """Check a desired record for structural violations."""
    config = load_config()
    require_security_group = require_security_group or config.require_security_group

    try:
        data = load_record_data(desired)
    except RecordLoadError as e:
        raise click.ClickException(str(e)) from e

    violations = validate(data, require_security_group=require_security_group)
    if violations:
        click.secho(f"✗ {desired}: {len(violations)} violation(s)", fg="red", err=True)
        for violation in violations:
            click.echo(f"  - {violation.path}: {violation.reason}", err=True)
        sys.exit(1)

    click.secho(f"✓ {desired} is valid", fg="green")


@cli.command("plan")
@click.argument("desired", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--observed",
    "-o",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Observed record (omit if the instance does not exist yet)",
)
@click.option(
    "--raw-observed",
    is_flag=True,
    help="Treat the observed file as a raw GetInstance response",
)
@click.option("--json", "as_json", is_flag=True, help="Print the plan as JSON")
def plan_command(
    desired: Path,
    observed: Path | None,
    raw_observed: bool,
    as_json: bool,
) -> None:
    """Preview the operations that would converge observed to desired.

    \b
    Examples:
        instancectl plan desired.yaml
        instancectl plan desired.yaml --observed observed.yaml --json
    """
    config = load_config()

    try:
        data = load_record_data(desired)
    except RecordLoadError as e:
        raise click.ClickException(str(e)) from e
    observed_record = load_observed(observed, raw_observed) if observed is not None else None

    try:
        desired_record = ensure_valid(data, require_security_group=config.require_security_group)
        plan = plan_operations(desired_record, observed_record)
    except ValidationError as e:
        click.secho(f"✗ {desired}: {len(e.violations)} violation(s)", fg="red", err=True)
        for violation in e.violations:
            click.echo(f"  - {violation.path}: {violation.reason}", err=True)
        sys.exit(1)
    except PlanningError as e:
        raise click.ClickException(f"Planning failed: {e}") from e

    if as_json:
        click.echo(json.dumps(plan.to_dict(), indent=2, sort_keys=True))
    else:
        click.echo(render_plan(plan))


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
