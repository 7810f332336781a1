"""Key/value application settings persisted in the local store."""
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from mindnest.models.common import new_id, utcnow


class Setting(SQLModel, table=True):
    __tablename__ = "settings"

    id: str = Field(default_factory=lambda: new_id("set"), primary_key=True)
    key: str = Field(unique=True, index=True)
    value: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
