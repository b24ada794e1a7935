"""
fabshop_config -- single public entrypoint for shop configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``ShopConfig``.

Architecture position:
    Configuration.  Sits beside ``fabshop_kernel`` and below
    ``fabshop_modules`` / ``fabshop_services``.  The kernel MUST NEVER
    import from ``fabshop_config``.

Failure modes:
    - ``FileNotFoundError`` -- an explicit override file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every call emits a ``FABSHOP_CONFIG_TRACE`` log entry with the config id,
    version and checksum.
"""

from __future__ import annotations

import os
from pathlib import Path

from fabshop_config.loader import deep_merge, load_yaml_file, parse_config
from fabshop_config.schema import (
    BudgetsConfig,
    DatabaseConfig,
    LoggingConfig,
    NumberingConfig,
    OrdersConfig,
    ReportingConfig,
    ShopConfig,
)
from fabshop_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_ENV_VAR = "FABSHOP_CONFIG"


def get_active_config(config_path: Path | str | None = None) -> ShopConfig:
    """The ONLY public configuration entrypoint.

    Loads ``defaults.yaml`` and deep-merges an override file on top.  The
    override is ``config_path`` when given, else the file named by the
    ``FABSHOP_CONFIG`` environment variable, else none.

    Raises:
        FileNotFoundError: If the override file does not exist.
        ValueError: If the merged configuration is invalid.
    """
    data = load_yaml_file(DEFAULTS_PATH)

    override = config_path or os.environ.get(CONFIG_ENV_VAR)
    if override:
        data = deep_merge(data, load_yaml_file(Path(override)))

    config = parse_config(data)

    _logger.info(
        "FABSHOP_CONFIG_TRACE",
        extra={
            "trace_type": "FABSHOP_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "override": str(override) if override else None,
        },
    )
    return config


__all__ = [
    "BudgetsConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "NumberingConfig",
    "OrdersConfig",
    "ReportingConfig",
    "ShopConfig",
    "get_active_config",
]
