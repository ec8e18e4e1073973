"""
Project Service - project creation and sandbox/port placement
Ties the pool allocator, port allocator and connection guard together
"""

from typing import Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select

from app.models.project import Project, ProjectStatus
from app.core.exceptions import DuplicateProjectNameError, ProjectNotFoundError
from app.core.logging_config import logger, set_sandbox_id, set_user_id
from app.core.types import generate_uuid
from app.services.identifiers import normalize_id, build_project_path
from app.services.port_allocator import PortAllocator
from app.services.sandbox_connection import SandboxConnectionGuard, sandbox_connection_guard
from app.services.sandbox_pool import SandboxPoolAllocator
from app.services.sandbox_provider import SandboxHandle, SandboxProvider, get_sandbox_provider


class ProjectService:
    """
    Project placement inside the shared sandbox pool.

    Flow for a new project:
    - resolve (or create, or heal) the user's sandbox
    - insert the project row with its three-level path
    - claim a dev port, enforced by UNIQUE(sandbox_id, dev_port)
    """

    def __init__(
        self,
        db: AsyncSession,
        provider: Optional[SandboxProvider] = None,
        guard: Optional[SandboxConnectionGuard] = None,
        port_allocator: Optional[PortAllocator] = None,
    ):
        self.db = db
        self.provider = provider or get_sandbox_provider()
        self.guard = guard or sandbox_connection_guard
        self.pool = SandboxPoolAllocator(db, self.provider)
        self.ports = port_allocator or PortAllocator(db)

    # ========== Project Operations ==========

    async def get_project(self, user_id: str, project_id: str) -> Optional[Project]:
        result = await self.db.execute(
            select(Project).where(
                Project.id == project_id,
                Project.user_id == normalize_id(user_id),
            )
        )
        return result.scalar_one_or_none()

    async def create_project(
        self,
        user_id: str,
        name: str,
        prompt: Optional[str] = None,
        project_id: Optional[str] = None,
        preview_url: Optional[str] = None,
    ) -> Project:
        """Create a project in the user's sandbox with path and port allocated"""
        user_id = normalize_id(user_id)
        set_user_id(user_id)
        project_id = normalize_id(project_id) or generate_uuid()

        sandbox_id = await self.pool.assign_sandbox(user_id)
        set_sandbox_id(sandbox_id)

        project = Project(
            id=project_id,
            user_id=user_id,
            sandbox_id=sandbox_id,
            name=name,
            prompt=prompt,
            preview_url=preview_url,
            project_path=build_project_path(user_id, sandbox_id, project_id),
            status=ProjectStatus.CREATED,
        )
        self.db.add(project)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"[ProjectService] Insert rejected for '{name}': {e.orig}")
            raise DuplicateProjectNameError(user_id, name) from e

        port = await self.ports.claim_port(project)
        logger.info(
            f"[ProjectService] Created project {project_id} in sandbox {sandbox_id} "
            f"(port {port}, path {project.project_path})"
        )
        return project

    async def ensure_project_allocation(self, user_id: str, project_id: str) -> Project:
        """
        Give an existing project a path and port if it lacks either.

        The project is placed in the user's assigned sandbox when one exists,
        otherwise it stays where its row says. With neither, the user is
        assigned a sandbox first.
        """
        user_id = normalize_id(user_id)
        set_user_id(user_id)
        project = await self.get_project(user_id, project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)

        if project.is_allocated:
            return project

        assignment = await self.pool.get_assignment(user_id)
        if assignment is not None:
            sandbox_id = normalize_id(assignment.sandbox_id)
        elif project.sandbox_id:
            sandbox_id = normalize_id(project.sandbox_id)
        else:
            # Neither the user nor the project has a sandbox yet
            sandbox_id = await self.pool.assign_sandbox(user_id)
        set_sandbox_id(sandbox_id)

        if project.sandbox_id != sandbox_id:
            # Its old port means nothing in another sandbox
            project.dev_port = None
        project.sandbox_id = sandbox_id
        project.project_path = build_project_path(user_id, sandbox_id, project.id)
        await self.db.commit()

        await self.ports.claim_port(project)
        logger.info(
            f"[ProjectService] Allocated project {project.id}: "
            f"path={project.project_path} port={project.dev_port}"
        )
        return project

    async def get_running_sandbox(
        self,
        user_id: str,
        project_id: str,
    ) -> Tuple[SandboxHandle, bool]:
        """Resolve the project's sandbox and make sure it is running"""
        set_user_id(normalize_id(user_id))
        project = await self.get_project(user_id, project_id)
        if project is None or not project.sandbox_id:
            raise ProjectNotFoundError(project_id)
        set_sandbox_id(project.sandbox_id)
        return await self.guard.ensure_running(self.provider, project.sandbox_id)
