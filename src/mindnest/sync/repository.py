"""
Sync log persistence and entity sync-state queries.

SyncRepository is the capability the service depends on; SQLSyncRepository
implements it on the local SQLite store. Tests can substitute any object
with the same methods.

All queries open their own short-lived Session and retry briefly on
"database is locked", since the review command may be writing at the
same time.
"""
import logging
from datetime import datetime
from typing import List, Optional, Protocol

from sqlalchemy import func, or_, update
from sqlmodel import Session, select

from mindnest.db.records import model_for
from mindnest.db.retry import with_lock_retry
from mindnest.models.review import Issue, Review, ReviewFile
from mindnest.models.sync import EntityType, SyncLog
from mindnest.models.workspace import File, Workspace


class SyncRepository(Protocol):
    def create_sync_log(self, log: SyncLog) -> SyncLog: ...

    def get_sync_logs(
        self,
        entity_type: Optional[EntityType] = None,
        entity_id: Optional[str] = None,
        limit: int = 0,
        offset: int = 0,
    ) -> List[SyncLog]: ...

    def get_latest_sync_log(self, entity_type: EntityType, entity_id: str) -> Optional[SyncLog]: ...

    def get_failed_entity_ids(self, entity_type: EntityType, limit: int = 0) -> List[str]: ...

    def update_entity_sync_status(
        self, entity_type: EntityType, entity_id: str, synced_at: datetime
    ) -> None: ...

    def get_unsynced_workspaces(self, limit: int = 0) -> List[str]: ...

    def get_unsynced_files(self, workspace_id: Optional[str] = None, limit: int = 0) -> List[str]: ...

    def get_unsynced_reviews(self, workspace_id: Optional[str] = None, limit: int = 0) -> List[str]: ...

    def get_unsynced_review_files(self, review_id: Optional[str] = None, limit: int = 0) -> List[str]: ...

    def get_unsynced_issues(self, review_id: Optional[str] = None, limit: int = 0) -> List[str]: ...

    def needs_sync(self, entity_type: EntityType, entity_id: str) -> bool: ...


class SQLSyncRepository:
    """SyncRepository backed by the local SQLModel engine."""

    def __init__(
        self,
        engine,
        logger: Optional[logging.Logger] = None,
        *,
        lock_retries: int = 5,
        lock_backoff_seconds: float = 0.05,
    ):
        self.engine = engine
        self._logger = logger or logging.getLogger(__name__)
        self._lock_retries = lock_retries
        self._lock_backoff = lock_backoff_seconds

    def _retry(self, fn):
        return with_lock_retry(
            fn, attempts=self._lock_retries, backoff_seconds=self._lock_backoff
        )

    # ── Sync logs ─────────────────────────────────────────────────────────────

    def create_sync_log(self, log: SyncLog) -> SyncLog:
        """Append one audit row. Rows are never updated or deleted."""

        def _insert() -> SyncLog:
            row = SyncLog.model_validate(log.model_dump())
            with Session(self.engine) as s:
                s.add(row)
                s.commit()
                s.refresh(row)
                s.expunge(row)
            return row

        return self._retry(_insert)

    def get_sync_logs(
        self,
        entity_type: Optional[EntityType] = None,
        entity_id: Optional[str] = None,
        limit: int = 0,
        offset: int = 0,
    ) -> List[SyncLog]:
        """Sync logs, most recent completion first, optionally filtered."""
        query = select(SyncLog)
        if entity_type:
            query = query.where(SyncLog.entity_type == EntityType(entity_type).value)
        if entity_id:
            query = query.where(SyncLog.entity_id == entity_id)
        query = query.order_by(SyncLog.completed_at.desc(), SyncLog.id.desc())
        if limit > 0:
            query = query.limit(limit)
        if offset > 0:
            query = query.offset(offset)

        def _list() -> List[SyncLog]:
            with Session(self.engine) as s:
                return list(s.exec(query).all())

        return self._retry(_list)

    def get_latest_sync_log(self, entity_type: EntityType, entity_id: str) -> Optional[SyncLog]:
        logs = self.get_sync_logs(entity_type, entity_id, limit=1)
        return logs[0] if logs else None

    def get_failed_entity_ids(self, entity_type: EntityType, limit: int = 0) -> List[str]:
        """Entity ids whose most recent sync log is a failure.

        Latest-log-wins: an entity that failed and then succeeded is not
        returned. The ranking is done in SQL with row_number() so the result
        does not depend on how many log rows exist.
        """
        ranked = (
            select(
                SyncLog.entity_id.label("entity_id"),
                SyncLog.success.label("success"),
                SyncLog.completed_at.label("completed_at"),
                func.row_number()
                .over(
                    partition_by=SyncLog.entity_id,
                    order_by=(SyncLog.completed_at.desc(), SyncLog.id.desc()),
                )
                .label("rn"),
            )
            .where(SyncLog.entity_type == EntityType(entity_type).value)
            .subquery()
        )
        query = (
            select(ranked.c.entity_id)
            .where(ranked.c.rn == 1, ranked.c.success == False)  # noqa: E712
            .order_by(ranked.c.completed_at.desc())
        )
        if limit > 0:
            query = query.limit(limit)

        def _list() -> List[str]:
            with Session(self.engine) as s:
                return list(s.exec(query).all())

        return self._retry(_list)

    # ── Entity sync state ─────────────────────────────────────────────────────

    def update_entity_sync_status(
        self, entity_type: EntityType, entity_id: str, synced_at: datetime
    ) -> None:
        """Advance synced_at for one entity. Never moves it backwards."""
        model = model_for(entity_type)
        stmt = (
            update(model)
            .where(model.id == entity_id)
            .where(or_(model.synced_at.is_(None), model.synced_at < synced_at))
            .values(synced_at=synced_at)
        )

        def _update() -> None:
            with Session(self.engine) as s:
                s.exec(stmt)
                s.commit()

        self._retry(_update)

    def needs_sync(self, entity_type: EntityType, entity_id: str) -> bool:
        model = model_for(entity_type)
        query = select(func.count()).select_from(model).where(
            model.id == entity_id, _needs_sync_clause(model)
        )

        def _count() -> int:
            with Session(self.engine) as s:
                return s.exec(query).one()

        return self._retry(_count) > 0

    def get_unsynced_workspaces(self, limit: int = 0) -> List[str]:
        return self._unsynced(Workspace, None, None, limit)

    def get_unsynced_files(self, workspace_id: Optional[str] = None, limit: int = 0) -> List[str]:
        return self._unsynced(File, File.workspace_id, workspace_id, limit)

    def get_unsynced_reviews(self, workspace_id: Optional[str] = None, limit: int = 0) -> List[str]:
        return self._unsynced(Review, Review.workspace_id, workspace_id, limit)

    def get_unsynced_review_files(self, review_id: Optional[str] = None, limit: int = 0) -> List[str]:
        return self._unsynced(ReviewFile, ReviewFile.review_id, review_id, limit)

    def get_unsynced_issues(self, review_id: Optional[str] = None, limit: int = 0) -> List[str]:
        return self._unsynced(Issue, Issue.review_id, review_id, limit)

    def _unsynced(self, model, parent_column, parent_id: Optional[str], limit: int) -> List[str]:
        """Ids of model rows needing sync, newest change first.

        parent_id=None means no parent filter, which also picks up records
        whose parent is not itself pending.
        """
        query = select(model.id).where(_needs_sync_clause(model))
        if parent_id:
            query = query.where(parent_column == parent_id)
        query = query.order_by(model.updated_at.desc())
        if limit > 0:
            query = query.limit(limit)

        def _list() -> List[str]:
            with Session(self.engine) as s:
                return list(s.exec(query).all())

        return self._retry(_list)


def _needs_sync_clause(model):
    return or_(model.synced_at.is_(None), model.synced_at < model.updated_at)
