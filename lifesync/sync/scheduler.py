"""Sync triggers: manual, background interval and realtime debounce.

Every trigger goes through ``SyncService.run_sync``. Timed triggers check
``is_running`` first and skip instead of queueing behind an active run.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from lifesync import config
from lifesync.models import SyncRunResult, SyncSettings, SyncSettingsPatch
from lifesync.sync.errors import SyncAlreadyRunningError
from lifesync.sync.orchestrator import SyncService

logger = logging.getLogger("lifesync.scheduler")

_BACKGROUND_FIELDS = ("backgroundSyncEnabled", "backgroundSyncInterval")


class SyncScheduler:
    """Owns the background timer task and the realtime debounce timer."""

    def __init__(self, service: SyncService, *, startup_delay_seconds: float | None = None):
        self.service = service
        self.startup_delay_seconds = (
            startup_delay_seconds
            if startup_delay_seconds is not None
            else config.BACKGROUND_STARTUP_DELAY_SECONDS
        )
        self._background_task: Optional[asyncio.Task] = None
        self._debounce_task: Optional[asyncio.Task] = None
        self._realtime_run: Optional[asyncio.Task] = None
        self._pending_changes: list[tuple[str, str, str]] = []
        self._running = False

    async def start(self) -> None:
        """Start the background loop when background sync is enabled."""
        if self._running:
            logger.warning("Sync scheduler already running")
            return
        self._running = True
        self._start_background()
        logger.info("Sync scheduler started")

    async def stop(self) -> None:
        self._running = False
        await self._cancel_background()
        if self._debounce_task:
            self._debounce_task.cancel()
            try:
                await self._debounce_task
            except asyncio.CancelledError:
                pass
            self._debounce_task = None
        run, self._realtime_run = self._realtime_run, None
        if run:
            # a fired timer keeps running as the realtime sync itself
            run.cancel()
            try:
                await run
            except asyncio.CancelledError:
                pass
        self._pending_changes = []
        logger.info("Sync scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def background_active(self) -> bool:
        return self._background_task is not None and not self._background_task.done()

    @property
    def pending_changes(self) -> int:
        return len(self._pending_changes)

    async def run_manual(self) -> SyncRunResult:
        """User-initiated run of every enabled layer. Raises when a run is active."""
        return await self.service.run_sync(run_type="manual")

    # ── Realtime ──────────────────────────────────────────────────────

    def notify_change(self, entity_type: str, entity_id: str, operation: str = "update") -> bool:
        """Record an entity mutation and (re)arm the debounce timer.

        Returns False when realtime sync is disabled and nothing was scheduled.
        """
        settings = self.service.settings
        if not settings.realtimeSyncEnabled:
            return False
        self._pending_changes.append((entity_type, entity_id, operation))
        if self._debounce_task and not self._debounce_task.done():
            self._debounce_task.cancel()
        delay = max(0, settings.realtimeSyncDebounce) / 1000.0
        self._debounce_task = asyncio.create_task(self._debounced_run(delay))
        return True

    async def _debounced_run(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # From here on the timer can no longer be cancelled by a newer change.
        self._debounce_task = None
        changes, self._pending_changes = self._pending_changes, []
        if self.service.is_running:
            logger.info("Realtime sync skipped: a run is already active (%s change(s))", len(changes))
            return
        logger.info("Realtime sync for %s change(s)", len(changes))
        self._realtime_run = asyncio.current_task()
        try:
            await self.service.run_sync(layer1=True, layer2=False, layer3=False, run_type="realtime")
        except SyncAlreadyRunningError:
            logger.info("Realtime sync skipped: a run is already active")
        except Exception as e:
            logger.error(f"Realtime sync failed: {e}")
        finally:
            if self._realtime_run is asyncio.current_task():
                self._realtime_run = None

    # ── Background ────────────────────────────────────────────────────

    def _start_background(self) -> None:
        if not self.service.settings.backgroundSyncEnabled or self.background_active:
            return
        self._background_task = asyncio.create_task(self._background_loop())

    async def _cancel_background(self) -> None:
        if self._background_task:
            self._background_task.cancel()
            try:
                await self._background_task
            except asyncio.CancelledError:
                pass
            self._background_task = None

    async def _background_loop(self) -> None:
        try:
            await asyncio.sleep(self.startup_delay_seconds)
            while self._running:
                if self.service.is_running:
                    logger.info("Background sync skipped: a run is already active")
                else:
                    try:
                        await self.service.run_sync(run_type="background")
                    except SyncAlreadyRunningError:
                        logger.info("Background sync skipped: a run is already active")
                    except Exception as e:
                        logger.error(f"Background sync failed: {e}")
                await asyncio.sleep(self.service.settings.backgroundSyncInterval * 60)
        except asyncio.CancelledError:
            logger.info("Background sync task cancelled")
            raise

    async def apply_settings(self, previous: SyncSettings, current: SyncSettings) -> None:
        """Restart or stop timers whose settings changed."""
        if not current.realtimeSyncEnabled and self._debounce_task:
            self._debounce_task.cancel()
            self._debounce_task = None
            self._pending_changes = []
        if any(getattr(previous, f) != getattr(current, f) for f in _BACKGROUND_FIELDS):
            await self._cancel_background()
            if self._running:
                self._start_background()
            logger.info(
                "Background sync %s (every %s min)",
                "enabled" if current.backgroundSyncEnabled else "disabled",
                current.backgroundSyncInterval,
            )

    async def update_settings(self, patch: SyncSettingsPatch | dict) -> SyncSettings:
        previous = self.service.settings
        current = self.service.update_settings(patch)
        await self.apply_settings(previous, current)
        return current
