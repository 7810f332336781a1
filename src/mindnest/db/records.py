"""Read access to domain records by entity type.

Stands in for the owning domain services' GetByID lookups; the sync
subsystem never writes these rows except for their ``synced_at`` column.
"""
from typing import Dict, Optional, Type, Union

from sqlmodel import Session, SQLModel

from mindnest.db.retry import with_lock_retry
from mindnest.models.review import Issue, Review, ReviewFile
from mindnest.models.sync import EntityType
from mindnest.models.workspace import File, Workspace

SyncableRecord = Union[Workspace, File, Review, ReviewFile, Issue]

MODEL_BY_ENTITY_TYPE: Dict[EntityType, Type[SQLModel]] = {
    EntityType.WORKSPACE: Workspace,
    EntityType.FILE: File,
    EntityType.REVIEW: Review,
    EntityType.REVIEW_FILE: ReviewFile,
    EntityType.ISSUE: Issue,
}


def model_for(entity_type: EntityType) -> Type[SQLModel]:
    try:
        return MODEL_BY_ENTITY_TYPE[EntityType(entity_type)]
    except (KeyError, ValueError) as exc:
        raise ValueError(f"unknown entity type: {entity_type}") from exc


class RecordStore:
    """Fetches one detached domain record per call."""

    def __init__(self, engine, *, lock_retries: int = 5, lock_backoff_seconds: float = 0.05):
        self.engine = engine
        self._lock_retries = lock_retries
        self._lock_backoff = lock_backoff_seconds

    def get(self, entity_type: EntityType, entity_id: str) -> Optional[SyncableRecord]:
        """Return the record, or None if no row has that id."""
        model = model_for(entity_type)

        def _get():
            with Session(self.engine) as s:
                record = s.get(model, entity_id)
                if record is not None:
                    s.expunge(record)
                return record

        return with_lock_retry(
            _get, attempts=self._lock_retries, backoff_seconds=self._lock_backoff
        )
