"""Key-value entry: one JSON value per scoped key (progress, rows, flags)."""
from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from allocation_survey.db.session import Base


class KVEntry(Base):
    __tablename__ = "kv_entries"

    # Keys look like "<session_id>:progress_idx_v1"
    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True
    )
