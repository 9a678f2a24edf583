from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ActivityKind(str, Enum):
    DINNER = "dinner"
    EVENT = "event"

    @property
    def ref_field(self) -> str:
        """Champ du ConnectionRecord qui porte les références de ce type."""
        return REF_FIELDS[self]


REF_FIELDS: Dict[ActivityKind, str] = {
    ActivityKind.DINNER: "dinner_refs",
    ActivityKind.EVENT: "event_refs",
}


class ConnectionRecord(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    pair_key: str
    members: List[str]
    dinner_refs: List[str] = Field(default_factory=list)
    event_refs: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True)

    def other_member(self, user_id: str) -> str:
        return self.members[1] if self.members[0] == str(user_id) else self.members[0]


class ActivitySummary(BaseModel):
    """Projection minimale d'un dîner / événement"""
    id: str = Field(alias="_id")
    title: Optional[str] = None
    location: Optional[str] = None
    starts_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True)


class DetailedConnection(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    pair_key: str
    members: List[str]
    dinners: List[ActivitySummary] = Field(default_factory=list)
    events: List[ActivitySummary] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True)


class ConnectionListItem(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user: Optional[dict] = None  # profil public de l'autre membre
    dinner_refs: List[str] = Field(default_factory=list)
    event_refs: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True)


class ConnectionStatusesRequest(BaseModel):
    user_ids: List[str] = Field(..., min_length=1, max_length=500)
