"""
Lifecycle configuration schema.

The typed, frozen form of a lifecycle configuration file.  YAML is parsed
into these types by the loader; services only ever see a validated
``LifecycleConfig``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from invoice_engines.payment_validation import PaymentValidationRules
from invoice_engines.reconciliation import Tolerance


@dataclass(frozen=True)
class OverdueDetectionConfig:
    """Settings for the automated overdue sweep."""

    grace_period_days: int = 0
    batch_size: int = 100
    enable_notifications: bool = True
    dry_run: bool = False

    def __post_init__(self) -> None:
        if self.grace_period_days < 0:
            raise ValueError("grace_period_days cannot be negative")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")


@dataclass(frozen=True)
class LifecycleConfig:
    """Complete, validated configuration for the lifecycle engine."""

    config_id: str = "default"
    version: int = 1
    default_currency: str = "AED"
    operation_timeout_seconds: float | None = None
    tolerance: Tolerance = field(default_factory=Tolerance)
    payment_rules: PaymentValidationRules = field(default_factory=PaymentValidationRules)
    overdue: OverdueDetectionConfig = field(default_factory=OverdueDetectionConfig)
    checksum: str = ""

    def __post_init__(self) -> None:
        if not self.default_currency or not self.default_currency.strip():
            raise ValueError("default_currency is required")
        if self.operation_timeout_seconds is not None and self.operation_timeout_seconds <= 0:
            raise ValueError("operation_timeout_seconds must be positive")
