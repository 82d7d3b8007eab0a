"""Local-first synchronization with the remote blob.

Every sync direction is a total overwrite of the losing side: there is no
merge and no timestamp comparison. Concurrent edits from two devices
clobber each other, whichever side synced last wins.

Remote calls are blocking, so they run in the loop's default executor.
Background pulls and pushes are detached tasks tracked in ``_tasks``.
"""

import asyncio
import functools
import logging
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, Optional, Set

from .errors import SyncError
from .gist import BlobService
from .models import BackupEnvelope, SyncConfig, now_ms
from .storage import LocalStore

logger = logging.getLogger(__name__)

ApplyEnvelope = Callable[[BackupEnvelope], None]


class SyncState(str, Enum):
    LOCAL_ONLY = "local-only"
    IDLE = "idle"
    IN_PROGRESS = "in-progress"
    ERROR = "error"


class Synchronizer:
    def __init__(
        self,
        store: LocalStore,
        blob_service: BlobService,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.blob_service = blob_service
        self.clock = clock
        self.last_error: Optional[str] = None
        self._in_flight = 0
        # bumped on every local mutation, a pull started before the bump is stale
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> SyncState:
        if self._in_flight:
            return SyncState.IN_PROGRESS
        if self.last_error:
            return SyncState.ERROR
        if self.active_config() is not None:
            return SyncState.IDLE
        return SyncState.LOCAL_ONLY

    def active_config(self) -> Optional[SyncConfig]:
        config = self.store.get_sync_config()
        if config is None or not config.is_active:
            return None
        return config

    def status(self) -> Dict[str, Any]:
        config = self.store.get_sync_config()
        return {
            "state": self.state.value,
            "enabled": bool(config and config.is_active),
            "gistId": config.blob_id if config else None,
            "lastSync": config.last_sync if config else None,
            "lastError": self.last_error,
        }

    # plumbing

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        self._in_flight += 1
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args))
        finally:
            self._in_flight -= 1

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no event loop (scripts, sync callers): run to completion inline
            asyncio.run(coro)
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every background pull/push started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _failed(self, what: str, exc: BaseException) -> None:
        self.last_error = f"{what}: {exc}"
        logger.warning("%s: %s", what, exc)

    def _synced(self, blob_id: str) -> None:
        self.last_error = None
        config = self.store.get_sync_config()
        # sync may have been disabled or re-pointed while the call was in flight
        if config is not None and config.is_active and config.blob_id == blob_id:
            config.last_sync = self.clock()
            self.store.save_sync_config(config)

    def _store_envelope(self, envelope: BackupEnvelope) -> None:
        self.store.save_links(envelope.links)
        self.store.save_site_config(envelope.site_config)
        if envelope.auth_check:
            self.store.set_password(envelope.auth_check)

    # pull

    def start_silent_pull(self, apply: ApplyEnvelope) -> Optional[asyncio.Task]:
        """Schedule the startup pull when sync is configured.

        Local data is already loaded and served by the time this runs. A
        fetched snapshot overwrites links, site config and password without
        asking; failures only get logged.
        """
        config = self.active_config()
        if config is None:
            return None
        return self._spawn(self._silent_pull(config, self._generation, apply))

    async def _silent_pull(self, config: SyncConfig, generation: int, apply: ApplyEnvelope) -> None:
        try:
            envelope = await self._call(self.blob_service.get, config.token, config.blob_id)
        except Exception as exc:
            self._failed("auto-sync failed", exc)
            return
        if envelope is None:
            self._failed("auto-sync failed", SyncError(f"no usable snapshot in gist {config.blob_id}"))
            return
        if generation != self._generation:
            logger.info("discarding remote snapshot, local data changed while it was fetched")
            return
        self._store_envelope(envelope)
        apply(envelope)
        self._synced(config.blob_id)
        logger.info("loaded %d links from gist %s", len(envelope.links), config.blob_id)

    async def restore(self, apply: ApplyEnvelope, confirm: bool = False) -> BackupEnvelope:
        """Replace local data with the gist snapshot.

        Irreversible, so the caller must pass ``confirm=True``. On failure
        local data is left as it was and :class:`SyncError` is raised.
        """
        if not confirm:
            raise SyncError("Restoring from the cloud overwrites local data and must be confirmed")
        config = self.active_config()
        if config is None:
            raise SyncError("Cloud sync is not configured")
        try:
            envelope = await self._call(self.blob_service.get, config.token, config.blob_id)
        except Exception as exc:
            self._failed("restore failed", exc)
            raise SyncError(f"Restore failed: {exc}") from exc
        if envelope is None:
            self._failed("restore failed", SyncError("no usable snapshot"))
            raise SyncError(f"No usable backup found in gist {config.blob_id}")
        self._store_envelope(envelope)
        apply(envelope)
        self._synced(config.blob_id)
        logger.info("restored %d links from gist %s", len(envelope.links), config.blob_id)
        return envelope

    # push

    def notify_mutation(self, snapshot: BackupEnvelope) -> Optional[asyncio.Task]:
        """Called after every local write; pushes the snapshot when sync is on.

        The push is not awaited and never retried.
        """
        self._generation += 1
        config = self.active_config()
        if config is None:
            return None
        return self._spawn(self._push(config, snapshot))

    async def _push(self, config: SyncConfig, snapshot: BackupEnvelope) -> None:
        try:
            await self._call(self.blob_service.update, config.token, config.blob_id, snapshot)
        except Exception as exc:
            self._failed("sync push failed", exc)
            return
        self._synced(config.blob_id)
        logger.debug("pushed %d links to gist %s", len(snapshot.links), config.blob_id)

    # manual configuration

    async def enable(
        self,
        token: str,
        blob_id: Optional[str],
        snapshot: BackupEnvelope,
    ) -> SyncConfig:
        """Turn sync on, seeding the gist from ``snapshot``.

        With a gist id the existing gist is overwritten by local data,
        without one a new private gist is created. The sync record is only
        saved once the remote call succeeded.
        """
        token = (token or "").strip()
        blob_id = (blob_id or "").strip()
        if not token:
            raise SyncError("A GitHub token is required")
        try:
            valid = await self._call(self.blob_service.validate_token, token)
            if not valid:
                raise SyncError("Invalid GitHub token")
            if blob_id:
                await self._call(self.blob_service.update, token, blob_id, snapshot)
            else:
                blob_id = await self._call(self.blob_service.create, token, snapshot)
        except SyncError as exc:
            self._failed("enabling sync failed", exc)
            raise
        except Exception as exc:
            self._failed("enabling sync failed", exc)
            raise SyncError(f"Could not reach GitHub: {exc}") from exc

        config = SyncConfig(enabled=True, token=token, blob_id=blob_id, last_sync=self.clock())
        self.store.save_sync_config(config)
        self.last_error = None
        logger.info("cloud sync enabled with gist %s", blob_id)
        return config

    def disable(self) -> None:
        self.store.clear_sync_config()
        self.last_error = None
        logger.info("cloud sync disabled")
