"""Logical transaction marker schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class LogicalTransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    state: str
    started_by: str | None
    started_at: datetime
    finished_at: datetime | None
