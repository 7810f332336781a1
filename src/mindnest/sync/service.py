"""
SyncService: reconciles local records with the Mindnest server.

A run has two phases:

  discovery  workspace -> file -> review -> review_file/issue candidates.
             Each stage scopes its lookups to the ids resolved by the stage
             before it. Discovery never depends on a push having succeeded.
  push       every candidate, in the order workspace, file, review,
             review_file, issue.

Per entity:
  1. Load the record and build its payload
  2. POST it
  3. Success: append a success SyncLog, then advance synced_at
     Failure: append a failed SyncLog with the classified error_type

A failed status update after an accepted push leaves a success log row
but counts as a failed item, so the operator sees the run as failed. A
success row that cannot be written counts as a failed item the same way.

Cancelling the task running sync_all() stops it after the push in flight
has finished and been logged; cancel_event does the same without raising.

Nothing is retried within a run. The next run picks up every entity that is
still stale or whose latest log row is a failure.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from mindnest.config import Settings, get_settings
from mindnest.db.records import RecordStore
from mindnest.db.settings_store import (
    ENABLED_KEY,
    SERVER_TOKEN_KEY,
    ServerSettings,
    SettingsStore,
)
from mindnest.models.common import utcnow
from mindnest.models.sync import EntityType, SyncLog, SyncType
from mindnest.sync.auth import TokenProvider
from mindnest.sync.client import SyncClient
from mindnest.sync.errors import (
    EntityNotFoundError,
    StatusUpdateError,
    SyncLogWriteError,
    SyncNotConfiguredError,
    classify_error,
)
from mindnest.sync.payloads import build_payload
from mindnest.sync.repository import SQLSyncRepository, SyncRepository
from mindnest.sync.result import (
    SYNC_ORDER,
    EntityOutcome,
    ResultAggregator,
    SyncPlan,
    SyncResult,
)
from mindnest.sync.selector import EntitySelector


class SyncService:
    """Orchestrates candidate discovery and pushes for one local store."""

    def __init__(
        self,
        engine,
        *,
        settings: Optional[Settings] = None,
        settings_store: Optional[SettingsStore] = None,
        records: Optional[RecordStore] = None,
        repository: Optional[SyncRepository] = None,
        client: Optional[SyncClient] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            engine: SQLAlchemy engine for the local store.
            settings: Runtime settings; defaults to get_settings().
            settings_store: Server URL / token store.
            records: Domain record lookups.
            repository: Sync log and sync-state queries.
            client: Pre-built SyncClient (tests). When omitted a client is
                opened per run from the stored server settings.
            logger: Defaults to this module's logger.
        """
        self.engine = engine
        self.settings = settings or get_settings()
        retry = {
            "lock_retries": self.settings.db_lock_retries,
            "lock_backoff_seconds": self.settings.db_lock_backoff_seconds,
        }
        self._logger = logger or logging.getLogger(__name__)
        self.settings_store = settings_store or SettingsStore(engine, self._logger, **retry)
        self.records = records or RecordStore(engine, **retry)
        self.repository = repository or SQLSyncRepository(engine, self._logger, **retry)
        self.selector = EntitySelector(
            self.repository, limit=self.settings.sync_candidate_limit, logger=self._logger
        )
        self._client = client

    # ── Configuration ─────────────────────────────────────────────────────────

    def server_settings(self) -> ServerSettings:
        """Stored server settings, with the environment as fallback."""
        defaults = ServerSettings(
            url=self.settings.server_url,
            token=self.settings.server_token,
            device_name=self.settings.server_device_name,
            enabled=self.settings.server_enabled,
        )
        return self.settings_store.load_sync_settings(defaults)

    def is_configured(self) -> bool:
        return self.server_settings().is_complete

    def set_token(self, token: str) -> None:
        """Store a new bearer token and enable sync."""
        self.settings_store.set_setting(SERVER_TOKEN_KEY, token)
        self.settings_store.set_setting(ENABLED_KEY, "true")
        if self._client is not None:
            self._client.tokens.set(token)

    def clear_token(self) -> None:
        """Forget the bearer token and disable sync."""
        self.settings_store.delete_setting(SERVER_TOKEN_KEY)
        self.settings_store.set_setting(ENABLED_KEY, "false")
        if self._client is not None:
            self._client.tokens.clear()

    async def verify_token(self) -> bool:
        server = self._require_configured()
        async with self._open_client(server) as client:
            return await client.verify_token()

    # ── Sync log queries ──────────────────────────────────────────────────────

    def get_sync_logs(
        self,
        entity_type: Optional[EntityType] = None,
        entity_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[SyncLog]:
        return self.repository.get_sync_logs(entity_type, entity_id, limit, offset)

    def get_latest_sync_log(self, entity_type: EntityType, entity_id: str) -> Optional[SyncLog]:
        return self.repository.get_latest_sync_log(entity_type, entity_id)

    def get_failed_sync_logs(self, entity_type: EntityType, limit: int = 100) -> List[str]:
        """Ids of entities whose most recent sync attempt failed."""
        return self.repository.get_failed_entity_ids(entity_type, limit)

    def get_unsynced_workspaces(self, limit: int = 100) -> List[str]:
        return self.repository.get_unsynced_workspaces(limit)

    def get_unsynced_files(self, workspace_id: Optional[str] = None, limit: int = 100) -> List[str]:
        return self.repository.get_unsynced_files(workspace_id, limit)

    def get_unsynced_reviews(self, workspace_id: Optional[str] = None, limit: int = 100) -> List[str]:
        return self.repository.get_unsynced_reviews(workspace_id, limit)

    def get_unsynced_review_files(self, review_id: Optional[str] = None, limit: int = 100) -> List[str]:
        return self.repository.get_unsynced_review_files(review_id, limit)

    def get_unsynced_issues(self, review_id: Optional[str] = None, limit: int = 100) -> List[str]:
        return self.repository.get_unsynced_issues(review_id, limit)

    # ── Discovery ─────────────────────────────────────────────────────────────

    def plan(self) -> SyncPlan:
        """Resolve candidate ids for every entity type without pushing."""
        plan = SyncPlan()
        select = self.selector

        workspaces = plan.ids(EntityType.WORKSPACE)
        workspaces.update(select.candidates(EntityType.WORKSPACE))

        plan.ids(EntityType.FILE).update(
            select.candidates(EntityType.FILE, workspaces)
        )

        reviews = plan.ids(EntityType.REVIEW)
        reviews.update(
            select.candidates(EntityType.REVIEW, workspaces, include_global=False)
        )

        plan.ids(EntityType.REVIEW_FILE).update(
            select.candidates(EntityType.REVIEW_FILE, reviews)
        )
        plan.ids(EntityType.ISSUE).update(
            select.candidates(EntityType.ISSUE, reviews)
        )

        self._logger.debug("Sync plan: %s", plan.counts)
        return plan

    # ── Push ──────────────────────────────────────────────────────────────────

    async def sync_one(
        self,
        entity_type: EntityType,
        entity_id: str,
        sync_type: SyncType = SyncType.MANUAL,
    ) -> EntityOutcome:
        """Push a single entity outside of a full run."""
        server = self._require_configured()
        async with self._open_client(server) as client:
            return await self._push_entity(
                client, EntityType(entity_type), entity_id, SyncType(sync_type)
            )

    async def sync_all(
        self,
        sync_type: SyncType = SyncType.MANUAL,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SyncResult:
        """
        Run a full reconciliation.

        Args:
            sync_type: Recorded on every sync log row of this run.
            cancel_event: When set, no new push is started; pushes already
                in flight finish and are recorded.

        Returns:
            The aggregated SyncResult. Per-entity failures are reported
            there and never raised.

        Raises:
            SyncNotConfiguredError: sync is disabled or has no URL / token.
        """
        server = self._require_configured()
        sync_type = SyncType(sync_type)
        started = time.monotonic()
        deadline = started + self.settings.sync_run_timeout_seconds
        aggregator = ResultAggregator()
        result = aggregator.result

        self._logger.info("Sync run starting (%s)", sync_type.value)
        plan = self.plan()
        result.set_plan(plan)

        async with self._open_client(server) as client:
            for entity_type in SYNC_ORDER:
                ids = sorted(plan.ids(entity_type))
                if not ids:
                    continue
                completed = await self._push_stage(
                    client, entity_type, ids, sync_type, aggregator, cancel_event, deadline
                )
                if not completed:
                    result.interrupted = True
                    self._logger.warning(
                        "Sync run stopped during %s stage; remaining candidates "
                        "are left for the next run",
                        entity_type.value,
                    )
                    break

        result.finish(time.monotonic() - started)
        self._logger.info(
            "Sync run finished: %d total, %d ok, %d failed in %.2fs",
            result.total_items,
            result.success_items,
            result.failed_items,
            result.duration_seconds,
        )
        return result

    async def _push_stage(
        self,
        client: SyncClient,
        entity_type: EntityType,
        ids: List[str],
        sync_type: SyncType,
        aggregator: ResultAggregator,
        cancel_event: Optional[asyncio.Event],
        deadline: float,
    ) -> bool:
        """Push every id of one type. Returns False if the run was stopped."""
        concurrency = max(1, self.settings.sync_max_concurrency)

        if concurrency == 1:
            for entity_id in ids:
                if self._should_stop(cancel_event, deadline):
                    return False
                outcome = await self._push_to_completion(
                    client, entity_type, entity_id, sync_type, self._request_timeout(deadline)
                )
                await aggregator.record(outcome)
            return True

        semaphore = asyncio.Semaphore(concurrency)
        stopped = False

        async def _worker(entity_id: str) -> None:
            nonlocal stopped
            async with semaphore:
                if self._should_stop(cancel_event, deadline):
                    stopped = True
                    return
                outcome = await self._push_to_completion(
                    client, entity_type, entity_id, sync_type, self._request_timeout(deadline)
                )
                await aggregator.record(outcome)

        await asyncio.gather(*(_worker(entity_id) for entity_id in ids))
        return not stopped

    async def _push_to_completion(
        self,
        client: SyncClient,
        entity_type: EntityType,
        entity_id: str,
        sync_type: SyncType,
        timeout: float,
    ) -> EntityOutcome:
        """Push one entity. If the run task is cancelled meanwhile, the push
        still finishes and is logged before the cancellation propagates."""
        push = asyncio.ensure_future(
            self._push_entity(client, entity_type, entity_id, sync_type, timeout=timeout)
        )
        try:
            return await asyncio.shield(push)
        except asyncio.CancelledError:
            self._logger.info(
                "Sync run cancelled; waiting for %s %s to be recorded",
                entity_type.value, entity_id,
            )
            await asyncio.wait({push})
            raise

    async def _push_entity(
        self,
        client: SyncClient,
        entity_type: EntityType,
        entity_id: str,
        sync_type: SyncType,
        *,
        timeout: Optional[float] = None,
    ) -> EntityOutcome:
        started_at = utcnow()
        label = entity_type.value.replace("_", " ")

        try:
            try:
                record = self.records.get(entity_type, entity_id)
            except Exception as exc:
                raise EntityNotFoundError(f"failed to get {label}: {exc}") from exc
            if record is None:
                raise EntityNotFoundError(f"failed to get {label}: {entity_id} not found")
            # synced_at covers at least the version that was pushed
            synced_at = max(utcnow(), record.updated_at)
            payload = build_payload(entity_type, record)
            await client.push(entity_type, payload.to_wire(), timeout=timeout)
        except Exception as exc:
            error_type = classify_error(exc)
            self._logger.warning(
                "Sync of %s %s failed (%s): %s", label, entity_id, error_type.value, exc
            )
            self._write_log(
                SyncLog.failed(
                    sync_type,
                    entity_type,
                    entity_id,
                    started_at=started_at,
                    error_type=error_type,
                    error_message=str(exc),
                )
            )
            return EntityOutcome(
                entity_type=entity_type,
                entity_id=entity_id,
                success=False,
                error_type=error_type,
                error_message=str(exc),
            )

        log_error = self._write_log(
            SyncLog.succeeded(sync_type, entity_type, entity_id, started_at=started_at)
        )
        logged = log_error is None

        try:
            self.repository.update_entity_sync_status(entity_type, entity_id, synced_at)
        except Exception as exc:
            error = StatusUpdateError(f"failed to update {label} sync status: {exc}")
            self._logger.error(
                "Pushed %s %s but could not record synced_at: %s", label, entity_id, exc
            )
            return EntityOutcome(
                entity_type=entity_type,
                entity_id=entity_id,
                success=False,
                logged_success=logged,
                error_type=error.error_type,
                error_message=str(error),
            )

        if log_error is not None:
            # synced_at has moved on; the missing row is still a failure
            error = SyncLogWriteError(f"failed to create sync log: {log_error}")
            return EntityOutcome(
                entity_type=entity_type,
                entity_id=entity_id,
                success=False,
                logged_success=False,
                error_type=error.error_type,
                error_message=str(error),
            )

        self._logger.debug("Synced %s %s", label, entity_id)
        return EntityOutcome(
            entity_type=entity_type,
            entity_id=entity_id,
            success=True,
            logged_success=logged,
        )

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _write_log(self, log: SyncLog) -> Optional[Exception]:
        """Append a log row. Returns the failure instead of raising it."""
        try:
            self.repository.create_sync_log(log)
        except Exception as exc:
            self._logger.error(
                "Failed to create sync log for %s %s: %s", log.entity_type, log.entity_id, exc
            )
            return exc
        return None

    def _require_configured(self) -> ServerSettings:
        server = self.server_settings()
        if not server.is_complete:
            raise SyncNotConfiguredError(
                "sync is not configured: enable it and set a server URL and token"
            )
        return server

    @asynccontextmanager
    async def _open_client(self, server: ServerSettings) -> AsyncIterator[SyncClient]:
        if self._client is not None:
            yield self._client
            return
        client = SyncClient(
            server.url,
            TokenProvider(server.token, self.settings_store, self._logger),
            timeout=self.settings.server_timeout_seconds,
            max_connections=self.settings.sync_max_connections,
            max_keepalive=self.settings.sync_max_keepalive,
            logger=self._logger,
        )
        try:
            yield client
        finally:
            await client.aclose()

    def _request_timeout(self, deadline: float) -> float:
        remaining = deadline - time.monotonic()
        return max(0.001, min(self.settings.server_timeout_seconds, remaining))

    @staticmethod
    def _should_stop(cancel_event: Optional[asyncio.Event], deadline: float) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return time.monotonic() >= deadline
