"""
Sandbox Pool Allocator - assigns users to shared, capacity-bounded sandboxes
Handles: user_sandboxes assignment, sandboxes bookkeeping, self-healing migration

A user keeps the same sandbox for every project. When that sandbox has been
deleted at the provider, a replacement is created and every database
reference is moved over before the user gets an answer.
"""

import asyncio
from typing import Optional
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import delete, select, update

from app.core.config import settings
from app.core.exceptions import SandboxCreationError
from app.core.logging_config import logger
from app.models.sandbox import Sandbox, UserSandbox
from app.models.project import Project
from app.services.error_classifier import ErrorClassifier
from app.services.identifiers import normalize_id, build_project_path
from app.services.sandbox_provider import (
    CreateSandboxParams,
    SandboxProvider,
    get_sandbox_provider,
)


class SandboxPoolAllocator:
    """
    Resolves the sandbox a user's projects live in.

    ``active_users <= capacity`` is honoured when picking a sandbox for a new
    user, but it is a soft cap: concurrent first-time users may push a
    sandbox one or two over.
    """

    def __init__(
        self,
        db: AsyncSession,
        provider: Optional[SandboxProvider] = None,
        capacity: Optional[int] = None,
    ):
        self.db = db
        self.provider = provider or get_sandbox_provider()
        self.capacity = capacity or settings.SANDBOX_CAPACITY

    async def assign_sandbox(self, user_id: str) -> str:
        """
        Return the sandbox ID for this user, creating or healing as needed.

        Raises:
            SandboxCreationError: provider refused to create a sandbox
        """
        user_id = normalize_id(user_id)

        assignment = await self.get_assignment(user_id)
        if assignment is not None:
            logger.info(f"[SandboxPool] User {user_id} already has sandbox {assignment.sandbox_id}")
            return await self._verify_or_heal(user_id, assignment.sandbox_id)

        sandbox = await self._pick_sandbox_with_capacity()
        if sandbox is None:
            logger.info(f"[SandboxPool] No sandbox with free capacity, creating one")
            sandbox = await self._create_and_register()

        return await self._record_assignment(user_id, sandbox.sandbox_id)

    async def get_assignment(self, user_id: str) -> Optional[UserSandbox]:
        result = await self.db.execute(
            select(UserSandbox).where(UserSandbox.user_id == normalize_id(user_id))
        )
        return result.scalar_one_or_none()

    async def get_sandbox(self, sandbox_id: str) -> Optional[Sandbox]:
        return await self.db.get(Sandbox, normalize_id(sandbox_id))

    # ========== Allocation ==========

    async def _pick_sandbox_with_capacity(self) -> Optional[Sandbox]:
        result = await self.db.execute(
            select(Sandbox)
            .where(Sandbox.active_users < Sandbox.capacity)
            .order_by(Sandbox.active_users.asc(), Sandbox.created_at.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _create_remote(self) -> str:
        try:
            handle = await asyncio.wait_for(
                self.provider.create(CreateSandboxParams.from_settings()),
                settings.SANDBOX_CREATE_TIMEOUT
            )
        except Exception as e:
            logger.log_error_with_context(e, context="SandboxPool.create")
            raise SandboxCreationError(str(e) or type(e).__name__) from e
        return normalize_id(handle.id)

    async def _create_and_register(self) -> Sandbox:
        sandbox_id = await self._create_remote()
        sandbox = Sandbox(
            sandbox_id=sandbox_id,
            capacity=self.capacity,
            active_users=0,
        )
        self.db.add(sandbox)
        await self.db.commit()
        await self.db.refresh(sandbox)
        logger.log_sandbox_event(sandbox_id, "registered in pool", capacity=self.capacity)
        return sandbox

    async def _record_assignment(self, user_id: str, sandbox_id: str) -> str:
        now = datetime.utcnow()
        self.db.add(UserSandbox(user_id=user_id, sandbox_id=sandbox_id, assigned_at=now))
        try:
            await self.db.flush()
        except IntegrityError:
            # Another request assigned this user first; theirs wins
            await self.db.rollback()
            existing = await self.get_assignment(user_id)
            if existing is None:
                raise
            logger.info(f"[SandboxPool] Concurrent assignment for {user_id}, using {existing.sandbox_id}")
            return existing.sandbox_id

        await self.db.execute(
            update(Sandbox)
            .where(Sandbox.sandbox_id == sandbox_id)
            .values(
                active_users=Sandbox.active_users + 1,
                last_assigned_at=now,
                updated_at=now,
            )
        )
        await self.db.commit()
        logger.info(f"[SandboxPool] Assigned user {user_id} to sandbox {sandbox_id}")
        return sandbox_id

    # ========== Verification & self-healing ==========

    async def _verify_or_heal(self, user_id: str, sandbox_id: str) -> str:
        try:
            handles = await asyncio.wait_for(self.provider.list(), settings.SANDBOX_LIST_TIMEOUT)
        except Exception as e:
            if not ErrorClassifier.is_transient(e):
                raise
            # Outage: keep the stored sandbox, first real use will surface it
            logger.warning(f"[SandboxPool] Could not verify sandbox {sandbox_id}: {e!r}")
            return sandbox_id

        if any(normalize_id(h.id) == sandbox_id for h in handles):
            return sandbox_id

        logger.warning(
            f"[SandboxPool] Sandbox {sandbox_id} of user {user_id} exists in database "
            f"but not at provider, recreating"
        )
        return await self.migrate_sandbox(sandbox_id, user_id)

    async def _assigned_sandbox_id(self, user_id: str) -> Optional[str]:
        # Column select, so a stale identity-map object cannot mask a newer row
        result = await self.db.execute(
            select(UserSandbox.sandbox_id).where(UserSandbox.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def migrate_sandbox(self, old_sandbox_id: str, user_id: str) -> str:
        """
        Replace a deleted sandbox and move every reference to the new one.

        One transaction: register the new sandbox, re-point projects and
        rewrite their paths, drop the old row, and finally re-point the
        user assignments. A crash before commit leaves the old state intact.

        When another request has already migrated ``old_sandbox_id``, the
        transaction is rolled back and the user's current sandbox is returned.
        """
        old_sandbox_id = normalize_id(old_sandbox_id)
        user_id = normalize_id(user_id)

        current = await self._assigned_sandbox_id(user_id)
        if current is not None and current != old_sandbox_id:
            logger.info(f"[SandboxPool] Sandbox {old_sandbox_id} already replaced by {current}")
            return current

        new_sandbox_id = await self._create_remote()
        now = datetime.utcnow()

        try:
            old = await self.db.get(Sandbox, old_sandbox_id, populate_existing=True)
            assigned = (await self.db.execute(
                select(UserSandbox.user_id).where(UserSandbox.sandbox_id == old_sandbox_id)
            )).scalars().all()

            self.db.add(Sandbox(
                sandbox_id=new_sandbox_id,
                capacity=old.capacity if old is not None else self.capacity,
                active_users=max(old.active_users if old is not None else 0, len(assigned), 1),
                last_assigned_at=now,
            ))
            await self.db.flush()

            projects = (await self.db.execute(
                select(Project).where(Project.sandbox_id == old_sandbox_id)
            )).scalars().all()
            for project in projects:
                project.sandbox_id = new_sandbox_id
                project.project_path = build_project_path(project.user_id, new_sandbox_id, project.id)
            await self.db.flush()

            await self.db.execute(delete(Sandbox).where(Sandbox.sandbox_id == old_sandbox_id))

            # Assignment rows go last; zero rows means a concurrent migration won
            result = await self.db.execute(
                update(UserSandbox)
                .where(UserSandbox.sandbox_id == old_sandbox_id)
                .values(sandbox_id=new_sandbox_id, assigned_at=now)
            )
            if result.rowcount == 0:
                await self.db.rollback()
                return await self._yield_to_concurrent_migration(user_id, old_sandbox_id, new_sandbox_id)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.log_sandbox_event(
            new_sandbox_id,
            f"replaced deleted sandbox {old_sandbox_id}",
            migrated_projects=len(projects),
            migrated_users=result.rowcount,
        )
        return new_sandbox_id

    async def _yield_to_concurrent_migration(
        self,
        user_id: str,
        old_sandbox_id: str,
        orphan_sandbox_id: str,
    ) -> str:
        logger.warning(
            f"[SandboxPool] Sandbox {old_sandbox_id} was migrated by another request; "
            f"remote sandbox {orphan_sandbox_id} is orphaned and left unregistered"
        )
        current = await self._assigned_sandbox_id(user_id)
        if current is None:
            return await self.assign_sandbox(user_id)
        return current
