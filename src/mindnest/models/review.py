"""Review models: a review run, its per-file results, and individual issues."""
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from mindnest.models.common import needs_sync, new_id, utcnow


class Review(SQLModel, table=True):
    """One code review over a commit, branch diff or staged changes."""

    __tablename__ = "reviews"

    id: str = Field(default_factory=lambda: new_id("rev"), primary_key=True)
    workspace_id: str = Field(foreign_key="workspaces.id", index=True)
    review_type: str  # "staged", "commit", "branch"
    commit_hash: Optional[str] = None
    branch_from: Optional[str] = None
    branch_to: Optional[str] = None
    status: str = Field(default="pending", index=True)
    result_json: Optional[str] = None  # raw JSON summary, None until completed

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime, index=True)
    synced_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    def touch(self) -> None:
        self.updated_at = utcnow()

    @property
    def needs_sync(self) -> bool:
        return needs_sync(self.synced_at, self.updated_at)


class ReviewFile(SQLModel, table=True):
    """Review outcome for a single file."""

    __tablename__ = "review_files"

    id: str = Field(default_factory=lambda: new_id("rf"), primary_key=True)
    review_id: str = Field(foreign_key="reviews.id", index=True)
    file_id: str = Field(foreign_key="files.id", index=True)
    status: str = "pending"
    issues_count: int = 0
    summary: Optional[str] = None
    assessment: Optional[str] = None
    metadata_json: Optional[str] = None  # raw JSON

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime, index=True)
    synced_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    def touch(self) -> None:
        self.updated_at = utcnow()

    @property
    def needs_sync(self) -> bool:
        return needs_sync(self.synced_at, self.updated_at)


class Issue(SQLModel, table=True):
    """A single finding raised against a file during a review."""

    __tablename__ = "issues"

    id: str = Field(default_factory=lambda: new_id("iss"), primary_key=True)
    review_id: str = Field(foreign_key="reviews.id", index=True)
    file_id: str = Field(foreign_key="files.id", index=True)
    type: str = Field(index=True)  # "bug", "security", "performance", ...
    severity: str = Field(index=True)  # "critical", "high", "medium", "low", "info"
    title: str
    description: str
    line_start: Optional[int] = None
    line_end: Optional[int] = None
    suggestion: Optional[str] = None
    affected_code: Optional[str] = None
    code_snippet: Optional[str] = None
    is_valid: bool = False

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime, index=True)
    synced_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    def touch(self) -> None:
        self.updated_at = utcnow()

    @property
    def needs_sync(self) -> bool:
        return needs_sync(self.synced_at, self.updated_at)
