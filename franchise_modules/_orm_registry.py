"""
Module ORM Registry (``franchise_modules._orm_registry``).

Responsibility
--------------
Ensure all module-level SQLAlchemy ORM models (and the kernel's sequence
counter table) are imported so that ``Base.metadata`` contains their table
definitions before ``create_tables()`` runs.

Architecture position
---------------------
**Modules layer** -- utility.  Imported lazily by
``franchise_kernel.db.engine.create_tables`` and by ``tests/conftest.py``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``franchise_modules.*.orm`` module.

    This function is idempotent -- repeated calls are harmless.
    """
    import franchise_kernel.services.sequence_service  # noqa: F401
    import franchise_modules.obligations.orm  # noqa: F401
