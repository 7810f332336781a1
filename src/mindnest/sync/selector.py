"""
Candidate selection: which entity ids should be pushed in this run.

    candidates(type, scope) = unsynced(type, scope) ∪ failed(type)

"Failed" means the entity's most recent sync log row is a failure, so an
entity that failed once and later succeeded drops out. A lookup that raises
is logged and contributes nothing; the other lookups still run.
"""
import logging
from typing import Callable, Iterable, List, Optional, Set

from mindnest.models.sync import EntityType
from mindnest.sync.repository import SyncRepository


class EntitySelector:
    """Computes deduplicated candidate id sets per entity type."""

    def __init__(
        self,
        repository: SyncRepository,
        *,
        limit: int = 100,
        logger: Optional[logging.Logger] = None,
    ):
        self.repository = repository
        self.limit = limit
        self._logger = logger or logging.getLogger(__name__)

    def unsynced(self, entity_type: EntityType, scope: Optional[str] = None) -> List[str]:
        """Ids needing sync, optionally under one parent (workspace or review)."""
        entity_type = EntityType(entity_type)
        repo = self.repository
        lookups = {
            EntityType.WORKSPACE: lambda: repo.get_unsynced_workspaces(self.limit),
            EntityType.FILE: lambda: repo.get_unsynced_files(scope, self.limit),
            EntityType.REVIEW: lambda: repo.get_unsynced_reviews(scope, self.limit),
            EntityType.REVIEW_FILE: lambda: repo.get_unsynced_review_files(scope, self.limit),
            EntityType.ISSUE: lambda: repo.get_unsynced_issues(scope, self.limit),
        }
        where = f"{entity_type.value} (scope={scope})" if scope else entity_type.value
        return self._safe(lookups[entity_type], f"unsynced {where}")

    def failed(self, entity_type: EntityType) -> List[str]:
        """Ids whose latest sync attempt failed."""
        entity_type = EntityType(entity_type)
        return self._safe(
            lambda: self.repository.get_failed_entity_ids(entity_type, self.limit),
            f"failed {entity_type.value}",
        )

    def candidates(
        self,
        entity_type: EntityType,
        scopes: Optional[Iterable[str]] = None,
        *,
        include_global: bool = True,
    ) -> Set[str]:
        """Unsynced ∪ failed for one type.

        Args:
            entity_type: Type to select.
            scopes: Parent ids to scope the unsynced lookup to.
            include_global: Also add the unscoped unsynced lookup, which
                picks up records whose parent is not itself a candidate.
        """
        ids: Set[str] = set()
        for scope in scopes or ():
            ids.update(self.unsynced(entity_type, scope))
        if include_global:
            ids.update(self.unsynced(entity_type))
        ids.update(self.failed(entity_type))
        return ids

    def _safe(self, lookup: Callable[[], List[str]], what: str) -> List[str]:
        try:
            return list(lookup())
        except Exception as exc:
            self._logger.error("Failed to look up %s candidates: %s", what, exc)
            return []
