"""SQLAlchemy declarative base and model imports for Alembic."""
from allocation_survey.db.session import Base

# Import all models so Alembic can see them
from allocation_survey.models.kv_entry import KVEntry  # noqa: F401

__all__ = ["Base", "KVEntry"]
