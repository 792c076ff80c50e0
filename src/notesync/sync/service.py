"""Long-running sync service: watcher intake, schedule and retries.

``SyncService`` is the caller the engine expects.  It:

- consumes ``ChangeNotification`` items from the ``ChangeDetector`` in
  ``realtime`` mode (created/modified sync the document, deleted and
  renamed are propagated to the remote store);
- runs ``sync_all`` every ``auto_sync_interval`` minutes in ``auto`` mode;
- retries operations that failed with a ``network`` error, with
  exponential backoff, up to ``max_retries`` times.  Every attempt is
  bounded by ``sync_timeout`` seconds.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING

from notesync.config_schema import SyncSettings

from .models import (
    ChangeKind,
    ChangeNotification,
    SyncAllResult,
    SyncDirection,
    SyncError,
    SyncErrorType,
    SyncOperation,
    SyncStatus,
)

if TYPE_CHECKING:
    from .engine import SyncEngine
    from .watcher import ChangeDetector

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 60.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

RETRYABLE_ERRORS = frozenset({SyncErrorType.NETWORK})


def _timed_out(
    path: str, direction: SyncDirection, attempt: int, timeout: float
) -> SyncOperation:
    op = SyncOperation(
        id=uuid.uuid4().hex, path=path, direction=direction, retry_count=attempt
    ).advance(SyncStatus.IN_PROGRESS)
    message = f"Sync timed out after {timeout:g}s"
    return op.advance(
        SyncStatus.FAILED,
        error=SyncError(type=SyncErrorType.NETWORK, message=message),
        message=message,
    )


class SyncService:
    """Drive a ``SyncEngine`` from watcher notifications and a schedule.

    Args:
        engine: The engine to drive.
        detector: Change detector; required for ``realtime`` mode.
        settings: Defaults to the engine's settings.
        initial_backoff: First retry delay in seconds.
        max_backoff: Upper bound for a single retry delay.
    """

    def __init__(
        self,
        engine: SyncEngine,
        detector: ChangeDetector | None = None,
        settings: SyncSettings | None = None,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
    ) -> None:
        self.engine = engine
        self.detector = detector
        self.settings = settings or engine.settings
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self._tasks: list[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        """Start background work for the configured ``sync_mode``."""
        if self._tasks:
            return

        mode = self.settings.sync_mode
        if mode == "realtime":
            if self.detector is None:
                raise ValueError("realtime sync mode requires a change detector")
            await self.detector.start()
            self._tasks.append(asyncio.create_task(self._consume()))
        elif mode == "auto":
            self._tasks.append(asyncio.create_task(self._scheduled()))
        logger.info("Sync service started in %s mode", mode)

    async def stop(self) -> None:
        """Cancel background work, stop the watcher and drain the engine."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self.detector is not None:
            await self.detector.stop()
        await self.engine.stop()
        logger.info("Sync service stopped")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number *attempt* (0-based)."""
        delay = self.initial_backoff * DEFAULT_BACKOFF_MULTIPLIER**attempt
        return min(delay, self.max_backoff)

    async def sync_with_retry(
        self,
        path: str,
        direction: SyncDirection | str = SyncDirection.BIDIRECTIONAL,
    ) -> SyncOperation:
        """Run ``sync_file`` with timeout and retry on network errors.

        Returns:
            The operation of the last attempt.
        """
        direction = SyncDirection(direction)
        timeout = self.settings.sync_timeout
        max_retries = self.settings.max_retries

        attempt = 0
        while True:
            try:
                op = await asyncio.wait_for(
                    self.engine.sync_file(path, direction, retry_count=attempt),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                op = _timed_out(path, direction, attempt, timeout)

            retryable = (
                op.status == SyncStatus.FAILED
                and op.error is not None
                and op.error.type in RETRYABLE_ERRORS
            )
            if not retryable or attempt >= max_retries:
                if retryable:
                    logger.error(
                        "Giving up on %s after %d attempt(s): %s",
                        path,
                        attempt + 1,
                        op.error.message if op.error else "",
                    )
                return op

            delay = self.backoff_delay(attempt)
            logger.warning(
                "Sync of %s failed (attempt %d/%d), retrying in %.1fs",
                path,
                attempt + 1,
                max_retries + 1,
                delay,
            )
            await asyncio.sleep(delay)
            attempt += 1

    async def sync_all(self) -> SyncAllResult:
        """Run ``engine.sync_all()`` and retry its network failures."""
        result = await self.engine.sync_all()
        retry_paths = [
            op.path
            for op in result.failed_operations
            if op.error is not None and op.error.type in RETRYABLE_ERRORS
        ]
        if not retry_paths or self.settings.max_retries == 0:
            return result

        logger.info("Retrying %d document(s) after network errors", len(retry_paths))
        retried = {
            op.path: op
            for op in await asyncio.gather(
                *(self._retry_after_failure(p) for p in retry_paths)
            )
        }
        operations = [retried.get(op.path, op) for op in result.operations]
        return result.model_copy(
            update={
                "operations": operations,
                "successful": sum(
                    1 for op in operations if op.status == SyncStatus.COMPLETED
                ),
                "failed": sum(
                    1 for op in operations if op.status == SyncStatus.FAILED
                ),
                "conflicts": sum(
                    1 for op in operations if op.status == SyncStatus.CONFLICT
                ),
            }
        )

    async def _retry_after_failure(self, path: str) -> SyncOperation:
        await asyncio.sleep(self.backoff_delay(0))
        return await self.sync_with_retry(path, SyncDirection.BIDIRECTIONAL)

    async def handle(self, notification: ChangeNotification) -> SyncOperation:
        """Apply one change notification to the remote store."""
        match notification.kind:
            case ChangeKind.DELETED:
                return await self.engine.delete_remote(notification.path)
            case ChangeKind.RENAMED:
                return await self.engine.rename_remote(
                    notification.old_path or "", notification.path
                )
            case _:
                return await self.sync_with_retry(
                    notification.path, self.settings.watch_direction
                )

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    async def _consume(self) -> None:
        assert self.detector is not None
        queue = self.detector.queue
        while True:
            notification = await queue.get()
            try:
                op = await self.handle(notification)
                logger.info(
                    "%s %s: %s",
                    notification.kind.value,
                    notification.path,
                    op.status.value,
                )
            except Exception:
                logger.exception(
                    "Failed to handle %s for %s",
                    notification.kind.value,
                    notification.path,
                )
            finally:
                queue.task_done()

    async def _scheduled(self) -> None:
        interval = self.settings.auto_sync_interval * 60
        while True:
            await asyncio.sleep(interval)
            try:
                result = await self.sync_all()
                logger.info("Scheduled %s", result.summary().lower())
            except Exception:
                logger.exception("Scheduled sync failed")
