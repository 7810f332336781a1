"""Tests for wire payload construction."""
from datetime import datetime

import pytest

from mindnest.models.review import Issue, Review, ReviewFile
from mindnest.models.sync import EntityType
from mindnest.models.workspace import File, Workspace
from mindnest.sync.errors import PayloadError
from mindnest.sync.payloads import (
    FilePayload,
    IssuePayload,
    WorkspacePayload,
    build_payload,
)

CREATED = datetime(2025, 3, 1, 9, 30)


class TestWorkspacePayload:
    def test_model_config_passes_through_as_json(self):
        ws = Workspace(
            id="ws-1", name="demo", path="/demo",
            config_json='{"provider": "gemini", "temperature": 0.2}',
            created_at=CREATED, updated_at=CREATED,
        )
        wire = WorkspacePayload.from_model(ws).to_wire()
        assert wire["model_config"] == {"provider": "gemini", "temperature": 0.2}
        assert "llm_config" not in wire

    def test_empty_optionals_are_omitted(self):
        ws = Workspace(
            id="ws-1", name="demo", path="/demo", git_repo_url="", description=None,
            config_json="", created_at=CREATED, updated_at=CREATED,
        )
        wire = WorkspacePayload.from_model(ws).to_wire()
        assert "git_repo_url" not in wire
        assert "description" not in wire
        assert "model_config" not in wire

    def test_timestamps_are_utc_iso(self):
        ws = Workspace(id="ws-1", name="d", path="/d", created_at=CREATED, updated_at=CREATED)
        wire = WorkspacePayload.from_model(ws).to_wire()
        assert wire["created_at"] == "2025-03-01T09:30:00+00:00"

    def test_invalid_config_raises_payload_error(self):
        ws = Workspace(id="ws-1", name="d", path="/d", config_json="{not json")
        with pytest.raises(PayloadError, match="workspace model config"):
            WorkspacePayload.from_model(ws)


class TestOtherPayloads:
    def test_file_metadata_passes_through(self):
        f = File(
            id="file-1", workspace_id="ws-1", path="a.py", language="python",
            metadata_json='{"functions": ["main"]}', created_at=CREATED, updated_at=CREATED,
        )
        wire = FilePayload.from_model(f).to_wire()
        assert wire["metadata"] == {"functions": ["main"]}
        assert "last_parsed" not in wire

    def test_review_result_passes_through(self):
        rev = Review(
            id="rev-1", workspace_id="ws-1", review_type="commit", commit_hash="abc",
            status="completed", result_json='{"summary": "ok", "score": 8}',
        )
        wire = build_payload(EntityType.REVIEW, rev).to_wire()
        assert wire["result"] == {"summary": "ok", "score": 8}
        assert wire["commit_hash"] == "abc"
        assert "branch_from" not in wire

    def test_review_file_invalid_metadata(self):
        rf = ReviewFile(id="rf-1", review_id="rev-1", file_id="f-1", metadata_json="[")
        with pytest.raises(PayloadError, match="review file metadata"):
            build_payload(EntityType.REVIEW_FILE, rf)

    def test_issue_keeps_false_flag_and_drops_empty_lines(self):
        issue = Issue(
            id="iss-1", review_id="rev-1", file_id="f-1", type="bug", severity="low",
            title="t", description="d", line_start=None, suggestion="",
        )
        wire = IssuePayload.from_model(issue).to_wire()
        assert wire["is_valid"] is False
        assert "line_start" not in wire
        assert "suggestion" not in wire
