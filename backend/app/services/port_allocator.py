"""
Port Allocator - collision-free dev server ports inside a shared sandbox

All projects colocated in one sandbox share the 3000-3999 range. The
UNIQUE(sandbox_id, dev_port) constraint is the real guarantee; this module
just tries hard not to hit it:

1. Start at an offset derived from the user ID so different users' first
   choices are spread apart.
2. Probe up to 200 candidates in 3000-3199, wrapping, skipping the known
   taken set and confirming each candidate against the database.
3. Repeat the whole probe up to 10 times with growing, jittered delays.
4. Fall back to a time-derived port in 3200-3999.
5. If claiming the fallback violates the constraint, take the lowest free
   port in the whole range once. A second collision is an error.

Usage:
    allocator = PortAllocator(db)
    port = await allocator.claim_port(project)
"""

import asyncio
import random
import re
import time
from typing import Callable, Iterable, Iterator, Optional, Set

from datetime import datetime
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import PortAllocationError, ProjectNotFoundError
from app.core.logging_config import logger
from app.models.project import Project
from app.services.identifiers import normalize_id


def port_offset(user_id: Optional[str]) -> int:
    """Offset 0-99 from the digits of the first segment of the user ID"""
    first_segment = (user_id or "").split("-")[0]
    digits = re.sub(r"\D", "", first_segment) or "0"
    return int(digits[-3:]) % 100


class PortAllocator:
    """Picks, and optionally claims, a free dev port in a sandbox"""

    def __init__(
        self,
        db: AsyncSession,
        range_start: Optional[int] = None,
        probe_end: Optional[int] = None,
        fallback_start: Optional[int] = None,
        range_end: Optional[int] = None,
        probe_limit: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        clock_ms: Callable[[], int] = lambda: int(time.time() * 1000),
    ):
        self.db = db
        self.range_start = range_start or settings.DEV_PORT_RANGE_START
        self.probe_end = probe_end or settings.DEV_PORT_PROBE_END
        self.fallback_start = fallback_start or settings.DEV_PORT_FALLBACK_START
        self.range_end = range_end or settings.DEV_PORT_RANGE_END
        self.probe_limit = probe_limit or settings.DEV_PORT_PROBE_LIMIT
        self.max_retries = max_retries or settings.PORT_ALLOCATION_MAX_RETRIES
        self.retry_delay = settings.PORT_ALLOCATION_RETRY_DELAY if retry_delay is None else retry_delay
        self._clock_ms = clock_ms

    # ========== Candidates ==========

    def candidates(self, user_id: Optional[str]) -> Iterator[int]:
        """Probe order for this user: offset start, wrapping inside the window"""
        window = self.probe_end - self.range_start + 1
        offset = port_offset(user_id) % window
        for i in range(self.probe_limit):
            yield self.range_start + (offset + i) % window

    def fallback_port(self) -> int:
        span = self.range_end - self.fallback_start  # 3200 + (ms % 799) stays below 3999
        return self.fallback_start + (self._clock_ms() % span)

    # ========== Store reads ==========

    async def taken_ports(self, sandbox_id: str) -> Set[int]:
        result = await self.db.execute(
            select(Project.dev_port).where(
                Project.sandbox_id == normalize_id(sandbox_id),
                Project.dev_port.is_not(None),
            )
        )
        return {port for port in result.scalars().all()}

    async def is_port_free(self, sandbox_id: str, port: int) -> bool:
        result = await self.db.execute(
            select(Project.id).where(
                Project.sandbox_id == normalize_id(sandbox_id),
                Project.dev_port == port,
            ).limit(1)
        )
        return result.first() is None

    # ========== Allocation ==========

    async def allocate_port(
        self,
        sandbox_id: str,
        existing_ports: Optional[Iterable[int]] = None,
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> int:
        """
        Pick a free port in the sandbox.

        With ``project_id`` the port is also written to that project and
        committed, so the returned port is owned by it. Without one the
        result is only free as of the confirmatory read.

        Raises:
            PortAllocationError: fallback collided and no port is free
        """
        sandbox_id = normalize_id(sandbox_id)
        known_taken = set(existing_ports or ())

        for retry in range(1, self.max_retries + 1):
            port = await self._probe(sandbox_id, known_taken, user_id, project_id)
            if port is not None:
                return port

            delay = self.retry_delay * retry
            logger.warning(
                f"[PortAllocator:{sandbox_id}] Probe exhausted, retry {retry}/{self.max_retries}"
            )
            if delay > 0:
                await asyncio.sleep(delay + random.uniform(0, delay / 2))

        port = self.fallback_port()
        logger.warning(f"[PortAllocator:{sandbox_id}] Retries exhausted, falling back to port {port}")
        if project_id is None or await self._claim(sandbox_id, project_id, port):
            return port

        return await self._reallocate_once(sandbox_id, project_id)

    async def claim_port(self, project: Project) -> int:
        """Allocate and persist a port for a project that has a sandbox"""
        if project.dev_port is not None:
            return project.dev_port
        port = await self.allocate_port(
            project.sandbox_id,
            user_id=project.user_id,
            project_id=project.id,
        )
        # Failed claims roll back, which expires the instance
        await self.db.refresh(project)
        return port

    async def _probe(
        self,
        sandbox_id: str,
        known_taken: Set[int],
        user_id: Optional[str],
        project_id: Optional[str],
    ) -> Optional[int]:
        taken = known_taken | await self.taken_ports(sandbox_id)
        for port in self.candidates(user_id):
            if port in taken:
                continue
            # Snapshot may be stale by now
            if not await self.is_port_free(sandbox_id, port):
                taken.add(port)
                continue
            if project_id is None or await self._claim(sandbox_id, project_id, port):
                return port
            taken.add(port)
        return None

    async def _claim(self, sandbox_id: str, project_id: str, port: int) -> bool:
        """Conditional write; False when another project got the port first"""
        try:
            result = await self.db.execute(
                update(Project)
                .where(Project.id == project_id, Project.sandbox_id == sandbox_id)
                .values(dev_port=port, updated_at=datetime.utcnow())
            )
            if result.rowcount == 0:
                await self.db.rollback()
                raise ProjectNotFoundError(project_id)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"[PortAllocator:{sandbox_id}] Port {port} lost to a concurrent claim")
            return False
        return True

    async def _reallocate_once(self, sandbox_id: str, project_id: str) -> int:
        taken = await self.taken_ports(sandbox_id)
        port = next(
            (p for p in range(self.range_start, self.range_end + 1) if p not in taken),
            None,
        )
        if port is not None and await self._claim(sandbox_id, project_id, port):
            logger.warning(f"[PortAllocator:{sandbox_id}] Re-allocated port {port} after fallback collision")
            return port

        logger.error(f"[PortAllocator:{sandbox_id}] No available ports for project {project_id}")
        raise PortAllocationError(sandbox_id)
