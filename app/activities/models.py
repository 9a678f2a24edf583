from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.connections.models import ActivityKind


class ActivityCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    location: str = Field(..., min_length=1, max_length=255)
    starts_at: datetime
    max_participants: Optional[int] = Field(None, ge=2)

    model_config = ConfigDict(extra="forbid")


class Activity(BaseModel):
    """Dîner ou événement (collections ``dinners`` / ``events``)"""
    id: str = Field(alias="_id")
    kind: ActivityKind
    title: str
    description: Optional[str] = None
    location: str
    starts_at: datetime
    host_id: str
    participant_ids: List[str] = Field(default_factory=list)
    max_participants: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def is_full(self) -> bool:
        return self.max_participants is not None and len(self.participant_ids) >= self.max_participants
