"""
Module ORM Registry (``fabshop_modules._orm_registry``).

Responsibility
--------------
Import every SQLAlchemy model so that ``Base.metadata`` holds the complete
schema before tables are created, and provide ``create_all_tables()``, the
one entry point scripts and ``tests/conftest.py`` use to build it.

Architecture position
---------------------
**Modules layer** -- utility.  MUST NOT be imported by ``fabshop_kernel``.
"""


def import_all_orm_models() -> None:
    """Register kernel and module ORM models.  Idempotent."""
    # Kernel tables first (parties, sequence counters)
    import fabshop_kernel.models  # noqa: F401
    import fabshop_kernel.services.sequence_service  # noqa: F401
    # fmt: off
    import fabshop_modules.budgets.orm  # noqa: F401
    import fabshop_modules.orders.orm  # noqa: F401
    import fabshop_modules.tasks.orm  # noqa: F401
    import fabshop_modules.invoicing.orm  # noqa: F401
    # fmt: on


def create_all_tables() -> None:
    """Create kernel + module tables.

    Preconditions:
        Engine must be initialized via ``init_engine_from_url()``.
    """
    from fabshop_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()
