"""Background task that reclaims expired upload state."""

import asyncio
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Optional

from common.constants import CHUNK_OBJECT_PREFIX, UPLOAD_TASK_TTL_SECONDS
from gateway.backends import BackendRegistry
from gateway.exceptions import GatewayException
from gateway.repositories.kv_repository import KVRepository
from gateway.types import CleanupOutcome

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 15 * 60


class ExpiredStateSweeper:
    """
    Periodically hard-deletes KV rows whose TTL elapsed and staged chunk
    objects older than the upload task lifetime.

    Expired rows are already invisible to readers; the sweep only reclaims
    space.
    """

    def __init__(
        self,
        kv: KVRepository,
        registry: Optional[BackendRegistry] = None,
        interval_seconds: int = SWEEP_INTERVAL_SECONDS,
        max_age_seconds: int = UPLOAD_TASK_TTL_SECONDS
    ):
        """
        Args:
            kv: Metadata store to purge
            registry: Backend registry, used to reach the R2 staging bucket
            interval_seconds: Time between sweeps
            max_age_seconds: Age after which a staged chunk object is abandoned
        """
        self.kv = kv
        self.registry = registry
        self.interval_seconds = interval_seconds
        self.max_age_seconds = max_age_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._running:
            logger.warning("Expiry sweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started expiry sweeper (interval: {self.interval_seconds}s)")

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Stopped expiry sweeper")

    async def _run(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                if not self._running:
                    break
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in expiry sweeper: {e}", exc_info=True)

    async def sweep(self) -> CleanupOutcome:
        """
        Run one sweep.

        Returns:
            Outcome counting purged rows and deleted chunk objects
        """
        outcome = CleanupOutcome(operation="expiry-sweep")

        try:
            purged = self.kv.purge_expired()
            outcome.attempted += purged
            outcome.succeeded += purged
            if purged:
                logger.info(f"Purged {purged} expired KV entries")
        except sqlite3.Error as e:
            outcome.record_failure(f"kv purge failed: {e}")
            logger.error(f"Failed to purge expired KV entries: {e}")

        await self._sweep_staged_chunks(outcome)
        return outcome

    async def _sweep_staged_chunks(self, outcome: CleanupOutcome) -> None:
        bucket = self.registry.object_staging() if self.registry is not None else None
        if bucket is None:
            return

        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.max_age_seconds)
        try:
            objects = await bucket.list_objects(f"{CHUNK_OBJECT_PREFIX}/")
        except GatewayException as e:
            outcome.record_failure(f"chunk listing failed: {e}")
            logger.warning(f"Failed to list staged chunks: {e}")
            return

        stale = [key for key, modified in objects if _as_utc(modified) < cutoff]
        removed = 0
        for key in stale:
            try:
                await bucket.delete_object(key)
                outcome.record_success()
                removed += 1
            except GatewayException as e:
                outcome.record_failure(f"{key}: {e}")
                logger.warning(f"Failed to delete stale chunk object {key}: {e}")

        if stale:
            logger.info(f"Removed {removed} of {len(stale)} abandoned chunk objects")


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
