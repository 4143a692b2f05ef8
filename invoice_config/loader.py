"""
Lifecycle configuration loader.

Responsibility
--------------
Parse a YAML configuration file into a validated ``LifecycleConfig``.

Invariants enforced
-------------------
* Amounts and rates are parsed from strings into ``Decimal``; YAML floats
  are converted through ``str`` so no binary rounding leaks in.
* Unknown top-level sections are rejected so that typos fail loudly.

Failure modes
-------------
* Missing file      -> ``ConfigurationError``.
* Malformed YAML    -> ``ConfigurationError`` wrapping ``yaml.YAMLError``.
* Invalid values    -> ``ConfigurationError`` wrapping the ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from invoice_config.schema import LifecycleConfig, OverdueDetectionConfig
from invoice_engines.payment_validation import PaymentValidationRules
from invoice_engines.reconciliation import Tolerance
from invoice_kernel.exceptions import ConfigurationError

_KNOWN_SECTIONS = frozenset(
    {"config_id", "version", "default_currency", "operation_timeout_seconds",
     "tolerance", "payment_rules", "overdue_detection"}
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"{field_name}: expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{field_name}: cannot parse {value!r} as a decimal") from exc


def parse_tolerance(data: dict[str, Any]) -> Tolerance:
    return Tolerance(
        rate=parse_decimal(data.get("rate", "0.01"), "tolerance.rate"),
        minimum_minor_units=int(data.get("minimum_minor_units", 1)),
    )


def parse_payment_rules(data: dict[str, Any]) -> PaymentValidationRules:
    maximum = data.get("maximum_payment_amount")
    return PaymentValidationRules(
        allow_future_payments=bool(data.get("allow_future_payments", False)),
        require_reference_for_bank_transfer=bool(
            data.get("require_reference_for_bank_transfer", True)
        ),
        require_reference_for_cheque=bool(data.get("require_reference_for_cheque", True)),
        allow_overpayment=bool(data.get("allow_overpayment", False)),
        overpayment_tolerance_percent=parse_decimal(
            data.get("overpayment_tolerance_percent", "1.0"),
            "payment_rules.overpayment_tolerance_percent",
        ),
        minimum_payment_amount=parse_decimal(
            data.get("minimum_payment_amount", "0.01"),
            "payment_rules.minimum_payment_amount",
        ),
        maximum_payment_amount=(
            parse_decimal(maximum, "payment_rules.maximum_payment_amount")
            if maximum is not None
            else None
        ),
    )


def parse_overdue_detection(data: dict[str, Any]) -> OverdueDetectionConfig:
    return OverdueDetectionConfig(
        grace_period_days=int(data.get("grace_period_days", 0)),
        batch_size=int(data.get("batch_size", 100)),
        enable_notifications=bool(data.get("enable_notifications", True)),
        dry_run=bool(data.get("dry_run", False)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form; identical data, identical checksum."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_lifecycle_config(data: dict[str, Any]) -> LifecycleConfig:
    unknown = set(data) - _KNOWN_SECTIONS
    if unknown:
        raise ValueError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")
    timeout = data.get("operation_timeout_seconds")
    return LifecycleConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        default_currency=str(data.get("default_currency", "AED")),
        operation_timeout_seconds=float(timeout) if timeout is not None else None,
        tolerance=parse_tolerance(data.get("tolerance") or {}),
        payment_rules=parse_payment_rules(data.get("payment_rules") or {}),
        overdue=parse_overdue_detection(data.get("overdue_detection") or {}),
        checksum=compute_checksum(data),
    )


def load_lifecycle_config(path: Path) -> LifecycleConfig:
    """Load and validate one configuration file."""
    try:
        data = load_yaml_file(path)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {path}", str(path)) from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}", str(path)) from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {path}", str(path))
    try:
        return parse_lifecycle_config(data)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError(f"Invalid configuration in {path}: {exc}", str(path)) from exc
