"""
Process start-up (``fabshop_services.startup``).

Turns a ``ShopConfig`` into a running process: logging at the configured
level, the engine for ``database.url`` and, unless told otherwise, the full
schema.  Returns the session factory callers hand to ``WorkshopService``.

Usage::

    factory = bootstrap()
    session = factory()
    try:
        workshop = WorkshopService(session)
        ...
    finally:
        session.close()
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.orm import Session, sessionmaker

from fabshop_config import get_active_config
from fabshop_config.schema import ShopConfig
from fabshop_kernel.db.engine import get_session_factory, init_engine_from_url
from fabshop_kernel.logging_config import configure_logging, get_logger
from fabshop_modules._orm_registry import create_all_tables

logger = get_logger("services.startup")


def bootstrap(
    config: ShopConfig | None = None,
    *,
    config_path: Path | str | None = None,
    create_schema: bool = True,
) -> sessionmaker[Session]:
    """Configure logging, initialise the engine and return the session factory."""
    if config is None:
        config = get_active_config(config_path)

    # Must run before the engine logs anything; configure_logging is first-call-wins.
    configure_logging(level=config.logging.level.upper())
    init_engine_from_url(config.database.url, echo=config.database.echo)
    if create_schema:
        create_all_tables()

    logger.info(
        "fabshop_started",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "schema_created": create_schema,
        },
    )
    return get_session_factory()
