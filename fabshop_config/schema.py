"""
Shop configuration schema.

Frozen dataclasses produced by ``fabshop_config.loader`` from YAML.  Each
section validates itself in ``__post_init__`` and raises ``ValueError``
naming the offending key.
"""

from __future__ import annotations

from dataclasses import dataclass, field

_URGENCIES = ("low", "medium", "high")
_DIRECT_ORDER_STATUSES = ("received", "pending")
_BUDGET_START_STATUSES = ("draft", "pending")


@dataclass(frozen=True)
class NumberingConfig:
    """Document number formats and the allocator retry cap."""

    quote_prefix: str = "ORC"
    order_prefix: str = "OS"
    invoice_prefix: str = "FAT"
    separator: str = "-"
    padding: int = 4
    max_allocation_attempts: int = 50

    def __post_init__(self) -> None:
        for name in ("quote_prefix", "order_prefix", "invoice_prefix"):
            if not getattr(self, name):
                raise ValueError(f"numbering.{name} must not be empty")
        if self.quote_prefix == self.order_prefix:
            raise ValueError("numbering.order_prefix must differ from quote_prefix")
        if not self.separator:
            raise ValueError("numbering.separator must not be empty")
        if self.padding < 1:
            raise ValueError("numbering.padding must be >= 1")
        if self.max_allocation_attempts < 1:
            raise ValueError("numbering.max_allocation_attempts must be >= 1")


@dataclass(frozen=True)
class OrdersConfig:
    default_urgency: str = "medium"
    direct_order_status: str = "received"
    allow_reopen_terminal: bool = True
    auto_sync_status: bool = True

    def __post_init__(self) -> None:
        if self.default_urgency not in _URGENCIES:
            raise ValueError(
                f"orders.default_urgency must be one of {_URGENCIES}, "
                f"got {self.default_urgency!r}"
            )
        if self.direct_order_status not in _DIRECT_ORDER_STATUSES:
            raise ValueError(
                f"orders.direct_order_status must be one of {_DIRECT_ORDER_STATUSES}"
            )


@dataclass(frozen=True)
class BudgetsConfig:
    default_status: str = "draft"
    reject_expired: bool = True

    def __post_init__(self) -> None:
        if self.default_status not in _BUDGET_START_STATUSES:
            raise ValueError(
                f"budgets.default_status must be one of {_BUDGET_START_STATUSES}"
            )


@dataclass(frozen=True)
class ReportingConfig:
    open_order_excluded: tuple[str, ...] = ("completed", "delivered", "cancelled")
    open_task_excluded: tuple[str, ...] = ("completed", "cancelled")


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///fabshop.db"
    echo: bool = False

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("database.url must not be empty")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self) -> None:
        if self.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"logging.level is not a logging level: {self.level!r}")


@dataclass(frozen=True)
class ShopConfig:
    """The complete runtime configuration."""

    config_id: str = "fabshop-default"
    version: int = 1
    numbering: NumberingConfig = field(default_factory=NumberingConfig)
    orders: OrdersConfig = field(default_factory=OrdersConfig)
    budgets: BudgetsConfig = field(default_factory=BudgetsConfig)
    reporting: ReportingConfig = field(default_factory=ReportingConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
