"""Body of the ingestion endpoint."""
from typing import Any

from pydantic import BaseModel, Field


class AppendRowSchema(BaseModel):
    headers: list[str] = Field(min_length=1)
    row: dict[str, Any]
