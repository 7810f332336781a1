"""Sync audit log model and the enums shared across the sync subsystem."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from mindnest.models.common import new_id, utcnow


class SyncType(str, Enum):
    MANUAL = "manual"
    POST_REVIEW = "post_review"


class EntityType(str, Enum):
    WORKSPACE = "workspace"
    REVIEW = "review"
    REVIEW_FILE = "review_file"
    ISSUE = "issue"
    FILE = "file"


class SyncErrorType(str, Enum):
    NETWORK = "network"
    AUTH = "auth"
    SERVER = "server"
    CLIENT = "client"
    UNKNOWN = "unknown"


class SyncLog(SQLModel, table=True):
    """One row per push attempt for one entity. Append-only."""

    __tablename__ = "sync_logs"

    id: str = Field(default_factory=lambda: new_id("sync"), primary_key=True)
    sync_type: str = SyncType.MANUAL.value
    entity_type: str = Field(index=True)
    entity_id: str = Field(index=True)
    success: bool = False
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    items_synced: int = 0
    started_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    completed_at: datetime = Field(default_factory=utcnow, sa_type=DateTime, index=True)

    @classmethod
    def succeeded(
        cls,
        sync_type: SyncType,
        entity_type: EntityType,
        entity_id: str,
        *,
        started_at: datetime,
        items_synced: int = 1,
    ) -> "SyncLog":
        return cls(
            sync_type=SyncType(sync_type).value,
            entity_type=EntityType(entity_type).value,
            entity_id=entity_id,
            success=True,
            items_synced=items_synced,
            started_at=started_at,
            completed_at=utcnow(),
        )

    @classmethod
    def failed(
        cls,
        sync_type: SyncType,
        entity_type: EntityType,
        entity_id: str,
        *,
        started_at: datetime,
        error_type: SyncErrorType,
        error_message: str,
    ) -> "SyncLog":
        return cls(
            sync_type=SyncType(sync_type).value,
            entity_type=EntityType(entity_type).value,
            entity_id=entity_id,
            success=False,
            error_type=SyncErrorType(error_type).value,
            error_message=error_message,
            started_at=started_at,
            completed_at=utcnow(),
        )
