"""
invoice_config -- single public entrypoint for lifecycle configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    directly.  Returns a frozen ``LifecycleConfig``.

Architecture position:
    Configuration -- sits above ``invoice_kernel`` and ``invoice_engines``
    and below ``invoice_services``.  The kernel and engines MUST NEVER
    import from ``invoice_config``.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``INVOICE_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying each decision back to the configuration that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from invoice_config.loader import load_lifecycle_config
from invoice_config.schema import LifecycleConfig, OverdueDetectionConfig

_logger = logging.getLogger("invoice_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | None = None) -> LifecycleConfig:
    """
    The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a configuration file.  Defaults to the
            packaged ``defaults.yaml``.

    Raises:
        ConfigurationError: If the file is missing or invalid.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    config = load_lifecycle_config(path)
    _logger.info(
        "INVOICE_CONFIG_TRACE",
        extra={
            "trace_type": "INVOICE_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "path": str(path),
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "LifecycleConfig",
    "OverdueDetectionConfig",
    "get_active_config",
]
