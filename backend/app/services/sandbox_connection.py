"""
Sandbox Connection Guard - make sure a sandbox is usable before touching it

Waking a stopped sandbox takes seconds and costs provider quota, so
concurrent callers asking for the same sandbox share one in-flight
resolution instead of each issuing their own start.

The lock map is per process. Replicas may still start the same sandbox
twice; that is harmless, only wasteful.

Usage:
    from app.services.sandbox_connection import ensure_sandbox_running

    handle, was_started = await ensure_sandbox_running(provider, sandbox_id)
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple

from app.core.config import settings
from app.core.exceptions import (
    SandboxNotFoundError,
    SandboxProviderUnavailableError,
    SandboxStartError,
)
from app.core.logging_config import logger
from app.services.error_classifier import ErrorClassifier, ErrorKind
from app.services.identifiers import normalize_id
from app.services.sandbox_provider import SandboxHandle, SandboxProvider


EnsureResult = Tuple[SandboxHandle, bool]


@dataclass
class ConnectionLock:
    """In-flight resolution for one sandbox"""
    task: "asyncio.Task[EnsureResult]"
    started_at: float

    def is_live(self, now: float, timeout: float) -> bool:
        return not self.task.done() and (now - self.started_at) < timeout


class SandboxConnectionGuard:
    """
    Resolves a sandbox ID to a running handle.

    Per attempt: list sandboxes, locate the ID, probe the root directory.
    Gateway errors and empty listings are retried with linear backoff.
    A stopped sandbox is started once. A sandbox missing from a non-empty
    listing is reported as deleted right away.
    """

    def __init__(
        self,
        lock_timeout: Optional[float] = None,
        retry_base_delay: Optional[float] = None,
        start_settle_seconds: Optional[float] = None,
        dedup_enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.lock_timeout = settings.SANDBOX_LOCK_TIMEOUT_SECONDS if lock_timeout is None else lock_timeout
        self.retry_base_delay = settings.SANDBOX_RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay
        self.start_settle_seconds = (
            settings.SANDBOX_START_SETTLE_SECONDS if start_settle_seconds is None else start_settle_seconds
        )
        self.dedup_enabled = dedup_enabled
        self._clock = clock
        self._sleep = sleep
        self._locks: Dict[str, ConnectionLock] = {}

    # ========== Lock map ==========

    def is_locked(self, sandbox_id: str) -> bool:
        entry = self._locks.get(normalize_id(sandbox_id))
        return entry is not None and entry.is_live(self._clock(), self.lock_timeout)

    def lock_count(self) -> int:
        return len(self._locks)

    def _release(self, sandbox_id: str, entry: ConnectionLock) -> None:
        # A stale entry may already have been replaced by a newer resolution
        if self._locks.get(sandbox_id) is entry:
            del self._locks[sandbox_id]
        if not entry.task.cancelled():
            entry.task.exception()  # mark retrieved when every waiter went away

    # ========== Public API ==========

    async def ensure_running(
        self,
        provider: SandboxProvider,
        sandbox_id: str,
        max_attempts: Optional[int] = None,
    ) -> EnsureResult:
        """
        Return ``(handle, was_just_started)`` for a reachable sandbox.

        Raises:
            SandboxNotFoundError: sandbox deleted at the provider
            SandboxStartError: sandbox stopped and would not start
            SandboxProviderUnavailableError: transient failures on every attempt
        """
        sandbox_id = normalize_id(sandbox_id)
        attempts = max_attempts or settings.SANDBOX_ENSURE_MAX_ATTEMPTS

        if not self.dedup_enabled:
            return await self._resolve(provider, sandbox_id, attempts)

        now = self._clock()
        entry = self._locks.get(sandbox_id)
        if entry is not None:
            if entry.is_live(now, self.lock_timeout):
                logger.info(f"[SandboxGuard:{sandbox_id}] Waiting for in-flight connection")
                return await asyncio.shield(entry.task)
            age = now - entry.started_at
            if age >= self.lock_timeout:
                logger.warning(f"[SandboxGuard:{sandbox_id}] Discarding stale lock ({age:.1f}s old)")
            else:
                # Finished; its done-callback has not run yet
                logger.debug(f"[SandboxGuard:{sandbox_id}] Dropping finished lock")
            self._locks.pop(sandbox_id, None)

        task = asyncio.ensure_future(self._resolve(provider, sandbox_id, attempts))
        entry = ConnectionLock(task=task, started_at=now)
        self._locks[sandbox_id] = entry
        task.add_done_callback(lambda _t: self._release(sandbox_id, entry))
        return await asyncio.shield(task)

    # ========== Resolution ==========

    async def _resolve(
        self,
        provider: SandboxProvider,
        sandbox_id: str,
        max_attempts: int,
    ) -> EnsureResult:
        last_transient: Optional[BaseException] = None
        last_was_empty = False

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                delay = self.retry_base_delay * (attempt - 1)
                logger.info(f"[SandboxGuard:{sandbox_id}] Retry {attempt}/{max_attempts} in {delay:.1f}s")
                await self._sleep(delay)

            try:
                handles = await asyncio.wait_for(provider.list(), settings.SANDBOX_LIST_TIMEOUT)
            except Exception as e:
                if not ErrorClassifier.is_transient(e):
                    raise
                logger.warning(f"[SandboxGuard:{sandbox_id}] List failed (transient): {e!r}")
                last_transient, last_was_empty = e, False
                continue

            handle = next((h for h in handles if normalize_id(h.id) == sandbox_id), None)
            if handle is None:
                if handles:
                    logger.warning(f"[SandboxGuard:{sandbox_id}] Not in provider listing, likely deleted")
                    raise SandboxNotFoundError(sandbox_id)
                logger.warning(f"[SandboxGuard:{sandbox_id}] Provider returned empty listing")
                last_transient, last_was_empty = None, True
                continue

            try:
                await asyncio.wait_for(handle.get_root_dir(), settings.SANDBOX_PROBE_TIMEOUT)
                return handle, False
            except Exception as e:
                kind = ErrorClassifier.classify(e).kind
                if kind == ErrorKind.TRANSIENT:
                    logger.warning(f"[SandboxGuard:{sandbox_id}] Probe failed (transient): {e!r}")
                    last_transient, last_was_empty = e, False
                    continue
                if kind != ErrorKind.STOPPED:
                    raise
                logger.info(f"[SandboxGuard:{sandbox_id}] Sandbox is stopped, starting")

            return await self._start(handle, sandbox_id)

        if last_was_empty or last_transient is None:
            raise SandboxNotFoundError(sandbox_id)
        raise SandboxProviderUnavailableError(
            sandbox_id, str(last_transient) or type(last_transient).__name__
        )

    async def _start(self, handle: SandboxHandle, sandbox_id: str) -> EnsureResult:
        started_at = self._clock()
        try:
            await asyncio.wait_for(handle.start(), settings.SANDBOX_START_TIMEOUT)
            await self._sleep(self.start_settle_seconds)
            await asyncio.wait_for(handle.get_root_dir(), settings.SANDBOX_PROBE_TIMEOUT)
        except Exception as e:
            logger.error(f"[SandboxGuard:{sandbox_id}] Start failed: {e!r}")
            raise SandboxStartError(sandbox_id, str(e)) from e

        logger.log_sandbox_event(sandbox_id, "started")
        logger.log_performance("sandbox_start", (self._clock() - started_at) * 1000, threshold_ms=15000)
        return handle, True


# Singleton instance
sandbox_connection_guard = SandboxConnectionGuard()


async def ensure_sandbox_running(
    provider: SandboxProvider,
    sandbox_id: str,
    max_attempts: Optional[int] = None,
) -> EnsureResult:
    """Module-level entry point using the shared guard"""
    return await sandbox_connection_guard.ensure_running(provider, sandbox_id, max_attempts)
