"""
Wire payloads for the sync endpoints.

Each payload is a flat copy of one local record. Raw JSON columns
(workspace model config, file/review-file metadata, review result) are
parsed and re-emitted unchanged; the server treats them as opaque blobs.
Empty optional values are left out of the body.
"""
import json
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Optional

from pydantic import BaseModel, Field, PlainSerializer

from mindnest.models.review import Issue, Review, ReviewFile
from mindnest.models.sync import EntityType
from mindnest.models.workspace import File, Workspace
from mindnest.sync.errors import PayloadError


def _utc_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


UtcDatetime = Annotated[datetime, PlainSerializer(_utc_iso, when_used="json")]


def _raw_json(value: Optional[str], field: str) -> Any:
    """Parse a stored JSON blob; None/empty stays None so it is omitted."""
    if value is None or value.strip() == "":
        return None
    try:
        return json.loads(value)
    except ValueError as exc:
        raise PayloadError(f"failed to marshal {field}: {exc}") from exc


def _opt(value):
    return value or None


class _Payload(BaseModel):
    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True, by_alias=True)


class WorkspacePayload(_Payload):
    id: str
    name: str
    path: str
    git_repo_url: Optional[str] = None
    description: Optional[str] = None
    llm_config: Any = Field(default=None, serialization_alias="model_config")
    created_at: UtcDatetime
    updated_at: UtcDatetime

    @classmethod
    def from_model(cls, ws: Workspace) -> "WorkspacePayload":
        return cls(
            id=ws.id,
            name=ws.name,
            path=ws.path,
            git_repo_url=_opt(ws.git_repo_url),
            description=_opt(ws.description),
            llm_config=_raw_json(ws.config_json, "workspace model config"),
            created_at=ws.created_at,
            updated_at=ws.updated_at,
        )


class FilePayload(_Payload):
    id: str
    workspace_id: str
    path: str
    language: str
    last_parsed: Optional[UtcDatetime] = None
    metadata: Any = None
    created_at: UtcDatetime
    updated_at: UtcDatetime

    @classmethod
    def from_model(cls, f: File) -> "FilePayload":
        return cls(
            id=f.id,
            workspace_id=f.workspace_id,
            path=f.path,
            language=f.language,
            last_parsed=f.last_parsed,
            metadata=_raw_json(f.metadata_json, "file metadata"),
            created_at=f.created_at,
            updated_at=f.updated_at,
        )


class ReviewPayload(_Payload):
    id: str
    workspace_id: str
    review_type: str
    commit_hash: Optional[str] = None
    branch_from: Optional[str] = None
    branch_to: Optional[str] = None
    status: str
    result: Any = None
    created_at: UtcDatetime
    updated_at: UtcDatetime

    @classmethod
    def from_model(cls, r: Review) -> "ReviewPayload":
        return cls(
            id=r.id,
            workspace_id=r.workspace_id,
            review_type=r.review_type,
            commit_hash=_opt(r.commit_hash),
            branch_from=_opt(r.branch_from),
            branch_to=_opt(r.branch_to),
            status=r.status,
            result=_raw_json(r.result_json, "review result"),
            created_at=r.created_at,
            updated_at=r.updated_at,
        )


class ReviewFilePayload(_Payload):
    id: str
    review_id: str
    file_id: str
    status: str
    issues_count: int
    summary: Optional[str] = None
    assessment: Optional[str] = None
    metadata: Any = None
    created_at: UtcDatetime
    updated_at: UtcDatetime

    @classmethod
    def from_model(cls, rf: ReviewFile) -> "ReviewFilePayload":
        return cls(
            id=rf.id,
            review_id=rf.review_id,
            file_id=rf.file_id,
            status=rf.status,
            issues_count=rf.issues_count,
            summary=_opt(rf.summary),
            assessment=_opt(rf.assessment),
            metadata=_raw_json(rf.metadata_json, "review file metadata"),
            created_at=rf.created_at,
            updated_at=rf.updated_at,
        )


class IssuePayload(_Payload):
    id: str
    review_id: str
    file_id: str
    type: str
    severity: str
    title: str
    description: str
    line_start: Optional[int] = None
    line_end: Optional[int] = None
    suggestion: Optional[str] = None
    affected_code: Optional[str] = None
    code_snippet: Optional[str] = None
    is_valid: bool
    created_at: UtcDatetime
    updated_at: UtcDatetime

    @classmethod
    def from_model(cls, i: Issue) -> "IssuePayload":
        return cls(
            id=i.id,
            review_id=i.review_id,
            file_id=i.file_id,
            type=i.type,
            severity=i.severity,
            title=i.title,
            description=i.description,
            line_start=_opt(i.line_start),
            line_end=_opt(i.line_end),
            suggestion=_opt(i.suggestion),
            affected_code=_opt(i.affected_code),
            code_snippet=_opt(i.code_snippet),
            is_valid=i.is_valid,
            created_at=i.created_at,
            updated_at=i.updated_at,
        )


PAYLOAD_BY_ENTITY_TYPE = {
    EntityType.WORKSPACE: WorkspacePayload,
    EntityType.FILE: FilePayload,
    EntityType.REVIEW: ReviewPayload,
    EntityType.REVIEW_FILE: ReviewFilePayload,
    EntityType.ISSUE: IssuePayload,
}


def build_payload(entity_type: EntityType, record) -> _Payload:
    """Build the wire payload for record. Raises PayloadError on bad blobs."""
    return PAYLOAD_BY_ENTITY_TYPE[EntityType(entity_type)].from_model(record)


class SyncResponse(BaseModel):
    """Body of a 2xx push response."""

    success: bool
    message: Optional[str] = None
    error_message: Optional[str] = None


class APIErrorBody(BaseModel):
    """Body of a non-2xx response, when the server sends one."""

    status_code: Optional[int] = None
    error: Optional[str] = None
    message: Optional[str] = None
