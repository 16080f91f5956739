"""
Module ORM Registry (``stock_modules._orm_registry``).

Responsibility
--------------
Ensure every SQLAlchemy model is imported so that ``Base.metadata`` holds
all table definitions before ``create_tables()`` runs, and so that the
immutability listeners see every protected model.

Usage
-----
``stock_kernel.db.engine.create_tables`` and
``stock_kernel.db.immutability.register_immutability_listeners`` call
``import_all_orm_models()`` at run time; callers rarely need it directly.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``stock_modules.*.orm`` module.  Idempotent."""
    import stock_kernel.models  # noqa: F401
    import stock_modules.counts.orm  # noqa: F401
    import stock_modules.receipts.orm  # noqa: F401
    import stock_modules.transfers.orm  # noqa: F401
