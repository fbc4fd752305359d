"""Security event schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Severity = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]


class SecurityEventCreate(BaseModel):
    """Insert payload for a security-relevant event."""

    event_type: str = Field(min_length=1, max_length=64)
    severity: Severity = "LOW"
    metadata: dict[str, object] = Field(default_factory=dict)


class SecurityEventRead(BaseModel):
    """Serialized security event."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: str
    severity: str
    user_id: str | None
    ip_address: str | None
    user_agent: str | None
    metadata_json: dict[str, object]
    created_at: datetime


class SecurityEventAccepted(BaseModel):
    accepted: bool = True
