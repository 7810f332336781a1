"""Workspace and source file models."""
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from mindnest.models.common import needs_sync, new_id, utcnow


class Workspace(SQLModel, table=True):
    """A local repository under review."""

    __tablename__ = "workspaces"

    id: str = Field(default_factory=lambda: new_id("ws"), primary_key=True)
    name: str
    path: str = Field(unique=True, index=True)
    git_repo_url: Optional[str] = None
    description: Optional[str] = None
    config_json: str = "{}"  # raw JSON, LLM model settings

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime, index=True)
    synced_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    def touch(self) -> None:
        self.updated_at = utcnow()

    @property
    def needs_sync(self) -> bool:
        return needs_sync(self.synced_at, self.updated_at)


class File(SQLModel, table=True):
    """A source file tracked inside a workspace."""

    __tablename__ = "files"

    id: str = Field(default_factory=lambda: new_id("file"), primary_key=True)
    workspace_id: str = Field(foreign_key="workspaces.id", index=True)
    path: str = Field(index=True)
    language: str = ""
    last_parsed: Optional[datetime] = Field(default=None, sa_type=DateTime)
    metadata_json: Optional[str] = None  # raw JSON

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime, index=True)
    synced_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    def touch(self) -> None:
        self.updated_at = utcnow()

    @property
    def needs_sync(self) -> bool:
        return needs_sync(self.synced_at, self.updated_at)
