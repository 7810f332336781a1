"""Run-scoped result types: the plan, per-entity outcomes and the aggregate."""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Set

from mindnest.models.common import utcnow
from mindnest.models.sync import EntityType, SyncErrorType

# Push order. Parents go before children so the server sees a workspace
# before its files and reviews.
SYNC_ORDER = (
    EntityType.WORKSPACE,
    EntityType.FILE,
    EntityType.REVIEW,
    EntityType.REVIEW_FILE,
    EntityType.ISSUE,
)


@dataclass
class SyncPlan:
    """Candidate ids per entity type, as resolved by discovery."""

    candidates: Dict[EntityType, Set[str]] = field(
        default_factory=lambda: {t: set() for t in SYNC_ORDER}
    )

    def ids(self, entity_type: EntityType) -> Set[str]:
        return self.candidates.setdefault(EntityType(entity_type), set())

    @property
    def counts(self) -> Dict[str, int]:
        return {t.value: len(self.candidates.get(t, ())) for t in SYNC_ORDER}

    @property
    def total(self) -> int:
        return sum(len(ids) for ids in self.candidates.values())


@dataclass
class EntityOutcome:
    """What happened to one entity's push.

    ``logged_success`` is True when a success row reached the sync log.
    ``success`` also requires that row and the synced_at update.
    """

    entity_type: EntityType
    entity_id: str
    success: bool
    logged_success: bool = False
    error_type: Optional[SyncErrorType] = None
    error_message: Optional[str] = None


@dataclass
class TypeCounts:
    candidates: int = 0
    total: int = 0
    success: int = 0
    failed: int = 0


@dataclass
class SyncResult:
    """Aggregate of one reconciliation run.

    The first recorded failure provides error_type/error_message; later
    failures only bump the counters.
    """

    total_items: int = 0
    success_items: int = 0
    failed_items: int = 0
    by_type: Dict[str, TypeCounts] = field(
        default_factory=lambda: {t.value: TypeCounts() for t in SYNC_ORDER}
    )
    error_type: Optional[SyncErrorType] = None
    error_message: Optional[str] = None
    interrupted: bool = False
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.failed_items == 0

    def set_plan(self, plan: SyncPlan) -> None:
        for entity_type, ids in plan.candidates.items():
            self._counts(entity_type).candidates = len(ids)

    def record(self, outcome: EntityOutcome) -> None:
        counts = self._counts(outcome.entity_type)
        self.total_items += 1
        counts.total += 1
        if outcome.success:
            self.success_items += 1
            counts.success += 1
            return
        self.failed_items += 1
        counts.failed += 1
        if self.error_type is None:
            self.error_type = outcome.error_type or SyncErrorType.UNKNOWN
            self.error_message = outcome.error_message

    def finish(self, duration_seconds: float) -> None:
        self.finished_at = utcnow()
        self.duration_seconds = duration_seconds

    def _counts(self, entity_type: EntityType) -> TypeCounts:
        return self.by_type.setdefault(EntityType(entity_type).value, TypeCounts())

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "total_items": self.total_items,
            "success_items": self.success_items,
            "failed_items": self.failed_items,
            "by_type": {
                name: {
                    "candidates": c.candidates,
                    "total": c.total,
                    "success": c.success,
                    "failed": c.failed,
                }
                for name, c in self.by_type.items()
            },
            "error_type": self.error_type.value if self.error_type else None,
            "error_message": self.error_message,
            "interrupted": self.interrupted,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class ResultAggregator:
    """Serializes writes to a SyncResult when pushes run concurrently."""

    def __init__(self, result: Optional[SyncResult] = None):
        self.result = result or SyncResult()
        self._lock = asyncio.Lock()

    async def record(self, outcome: EntityOutcome) -> None:
        async with self._lock:
            self.result.record(outcome)
