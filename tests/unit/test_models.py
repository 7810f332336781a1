"""Tests for domain and sync log models."""
from datetime import datetime, timedelta

from sqlalchemy import DateTime
from sqlmodel import Session, select

from mindnest.models.common import needs_sync, new_id
from mindnest.models.review import Issue, Review, ReviewFile
from mindnest.models.setting import Setting
from mindnest.models.sync import EntityType, SyncErrorType, SyncLog, SyncType
from mindnest.models.workspace import File, Workspace


class TestNeedsSync:
    def test_never_synced(self):
        assert needs_sync(None, datetime(2025, 1, 1))

    def test_synced_before_last_update(self):
        assert needs_sync(datetime(2025, 1, 1), datetime(2025, 1, 2))

    def test_synced_at_update_time(self):
        ts = datetime(2025, 1, 1, 12, 0)
        assert not needs_sync(ts, ts)

    def test_synced_after_update(self):
        assert not needs_sync(datetime(2025, 1, 3), datetime(2025, 1, 2))


class TestDomainModels:
    def test_ids_are_prefixed_and_unique(self):
        a, b = Workspace(name="a", path="/a"), Workspace(name="b", path="/b")
        assert a.id.startswith("ws-")
        assert a.id != b.id
        assert new_id("rev").startswith("rev-")

    def test_new_workspace_needs_sync(self):
        ws = Workspace(name="demo", path="/demo")
        assert ws.synced_at is None
        assert ws.needs_sync

    def test_touch_after_sync_makes_record_stale(self):
        issue = Issue(
            review_id="rev-1", file_id="file-1", type="bug", severity="low",
            title="t", description="d",
        )
        issue.updated_at = datetime(2024, 6, 1)
        issue.synced_at = issue.updated_at + timedelta(seconds=1)
        assert not issue.needs_sync

        issue.touch()
        assert issue.updated_at > issue.synced_at
        assert issue.needs_sync

    def test_persists_all_entity_types(self, test_session: Session):
        ws = Workspace(name="demo", path="/demo", config_json='{"model": "x"}')
        f = File(workspace_id=ws.id, path="main.go", language="go")
        rev = Review(workspace_id=ws.id, review_type="commit", commit_hash="abc123")
        rf = ReviewFile(review_id=rev.id, file_id=f.id, issues_count=1)
        issue = Issue(
            review_id=rev.id, file_id=f.id, type="security", severity="high",
            title="SQL injection", description="Unescaped input", line_start=10,
        )
        test_session.add_all([ws, f, rev, rf, issue])
        test_session.commit()

        assert test_session.exec(select(Workspace)).one().config_json == '{"model": "x"}'
        assert test_session.exec(select(Review)).one().status == "pending"
        assert test_session.exec(select(ReviewFile)).one().status == "pending"
        assert test_session.exec(select(Issue)).one().is_valid is False
        assert test_session.exec(select(File)).one().synced_at is None


class TestSyncLog:
    def test_succeeded(self):
        started = datetime(2025, 1, 1, 8, 0)
        log = SyncLog.succeeded(
            SyncType.MANUAL, EntityType.WORKSPACE, "ws-1", started_at=started
        )
        assert log.success is True
        assert log.items_synced == 1
        assert log.entity_type == "workspace"
        assert log.sync_type == "manual"
        assert log.error_type is None
        assert log.completed_at >= started

    def test_failed(self):
        log = SyncLog.failed(
            SyncType.POST_REVIEW,
            EntityType.REVIEW_FILE,
            "rf-1",
            started_at=datetime(2025, 1, 1),
            error_type=SyncErrorType.SERVER,
            error_message="API error (503): unavailable",
        )
        assert log.success is False
        assert log.items_synced == 0
        assert log.entity_type == "review_file"
        assert log.sync_type == "post_review"
        assert log.error_type == "server"
        assert "503" in log.error_message

    def test_persists(self, test_session: Session):
        test_session.add(
            SyncLog.succeeded(SyncType.MANUAL, EntityType.ISSUE, "iss-1", started_at=datetime(2025, 1, 1))
        )
        test_session.commit()
        row = test_session.exec(select(SyncLog)).one()
        assert row.id.startswith("sync-")
        assert row.entity_id == "iss-1"


class TestTimestampColumns:
    MODELS = (Workspace, File, Review, ReviewFile, Issue, SyncLog, Setting)

    def test_timestamp_columns_are_naive(self):
        for model in self.MODELS:
            stamps = [
                c for c in model.__table__.columns
                if c.name.endswith("_at") or c.name == "last_parsed"
            ]
            assert stamps
            for column in stamps:
                assert type(column.type) is DateTime, (model.__name__, column.name)
                assert column.type.timezone is False

    def test_naive_timestamps_round_trip(self, test_session: Session):
        synced = datetime(2025, 1, 15, 7, 30)
        ws = Workspace(name="demo", path="/demo", synced_at=synced)
        log = SyncLog.succeeded(SyncType.MANUAL, EntityType.WORKSPACE, ws.id, started_at=synced)
        test_session.add_all([ws, log, Setting(key="sync.enabled", value="true")])
        test_session.commit()
        test_session.expire_all()

        assert test_session.get(Workspace, ws.id).synced_at == synced
        assert test_session.get(SyncLog, log.id).started_at == synced
        assert test_session.exec(select(Setting)).one().updated_at.tzinfo is None
