"""
Unit Tests for ProjectService

Project creation end to end: sandbox assignment, path, port.
"""
import pytest

from app.core.exceptions import DuplicateProjectNameError, ProjectNotFoundError
from app.core.logging_config import get_sandbox_id, get_user_id
from app.models.project import ProjectStatus
from app.services.port_allocator import port_offset
from app.services.project_service import ProjectService
from app.services.sandbox_pool import SandboxPoolAllocator
from app.services.sandbox_connection import SandboxConnectionGuard
from tests.mocks.factories import register_sandbox, add_project, assign_user


def make_service(db, provider) -> ProjectService:
    guard = SandboxConnectionGuard(retry_base_delay=0, start_settle_seconds=0)
    return ProjectService(db, provider=provider, guard=guard)


class TestCreateProject:
    """Test project creation"""

    @pytest.mark.asyncio
    async def test_create_allocates_sandbox_path_and_port(self, db_session, provider, user_id):
        """Test a new project gets the user's sandbox, a 3-level path and a port"""
        await register_sandbox(db_session, provider, "s1")

        project = await make_service(db_session, provider).create_project(
            user_id, "todo-app", prompt="Build a todo app"
        )

        assert project.sandbox_id == "s1"
        assert project.project_path == f"/root/projects/{user_id}/s1/{project.id}"
        assert project.dev_port == 3000 + port_offset(user_id)
        assert project.status == ProjectStatus.CREATED
        assert project.prompt == "Build a todo app"

    @pytest.mark.asyncio
    async def test_projects_of_one_user_share_sandbox(self, db_session, provider, user_id):
        """Test a second project reuses the sandbox with a different port"""
        await register_sandbox(db_session, provider, "s1")
        service = make_service(db_session, provider)

        first = await service.create_project(user_id, "one")
        second = await service.create_project(user_id, "two")

        assert first.sandbox_id == second.sandbox_id == "s1"
        assert first.dev_port != second.dev_port
        assert first.project_path != second.project_path

    @pytest.mark.asyncio
    async def test_explicit_project_id_is_normalized(self, db_session, provider, user_id):
        """Test a caller-supplied ID is normalized before use"""
        await register_sandbox(db_session, provider, "s1")

        project = await make_service(db_session, provider).create_project(
            user_id, "app", project_id="proj--42"
        )

        assert project.id == "proj-42"
        assert project.project_path.endswith("/s1/proj-42")

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, db_session, provider, user_id):
        """Test the same name twice for one user raises DuplicateProjectNameError"""
        await register_sandbox(db_session, provider, "s1")
        service = make_service(db_session, provider)
        await service.create_project(user_id, "same")

        with pytest.raises(DuplicateProjectNameError) as exc_info:
            await service.create_project(user_id, "same")

        assert exc_info.value.code == "DUPLICATE_PROJECT_NAME"

    @pytest.mark.asyncio
    async def test_log_context_carries_user_and_sandbox(self, db_session, provider, user_id):
        """Test log lines emitted during creation are tagged with the user"""
        await register_sandbox(db_session, provider, "s1")

        await make_service(db_session, provider).create_project(user_id, "tagged")

        assert get_user_id() == user_id
        assert get_sandbox_id() == "s1"


class TestEnsureProjectAllocation:
    """Lazy path/port allocation"""

    @pytest.mark.asyncio
    async def test_allocates_missing_path_and_port(self, db_session, provider, user_id):
        """Test a bare project gets path and port in the assigned sandbox"""
        await register_sandbox(db_session, provider, "s1")
        await assign_user(db_session, user_id, "s1")
        project = await add_project(db_session, user_id, "s1")

        result = await make_service(db_session, provider).ensure_project_allocation(user_id, project.id)

        assert result.project_path == f"/root/projects/{user_id}/s1/{project.id}"
        assert result.dev_port == 3000 + port_offset(user_id)

    @pytest.mark.asyncio
    async def test_already_allocated_is_untouched(self, db_session, provider, user_id):
        """Test a fully allocated project is returned as is"""
        await register_sandbox(db_session, provider, "s1")
        project = await add_project(db_session, user_id, "s1", dev_port=3111, project_path="/custom/path")

        result = await make_service(db_session, provider).ensure_project_allocation(user_id, project.id)

        assert result.dev_port == 3111
        assert result.project_path == "/custom/path"

    @pytest.mark.asyncio
    async def test_moves_into_assigned_sandbox(self, db_session, provider, user_id):
        """Test a project pointing elsewhere follows the user's assignment"""
        await register_sandbox(db_session, provider, "s-old")
        await register_sandbox(db_session, provider, "s-new")
        await assign_user(db_session, user_id, "s-new")
        project = await add_project(db_session, user_id, "s-old", dev_port=3005)

        result = await make_service(db_session, provider).ensure_project_allocation(user_id, project.id)

        assert result.sandbox_id == "s-new"
        assert "/s-new/" in result.project_path
        assert result.dev_port == 3000 + port_offset(user_id)

    @pytest.mark.asyncio
    async def test_project_without_any_sandbox_gets_one(self, db_session, provider, user_id):
        """Test a sandbox-less project of an unassigned user is placed in the pool"""
        await register_sandbox(db_session, provider, "s1")
        project = await add_project(db_session, user_id, None)

        result = await make_service(db_session, provider).ensure_project_allocation(user_id, project.id)

        assert result.sandbox_id == "s1"
        assert result.project_path == f"/root/projects/{user_id}/s1/{project.id}"
        assert result.dev_port == 3000 + port_offset(user_id)
        assignment = await SandboxPoolAllocator(db_session, provider).get_assignment(user_id)
        assert assignment.sandbox_id == "s1"

    @pytest.mark.asyncio
    async def test_project_without_any_sandbox_empty_pool(self, db_session, provider, user_id):
        """Test an empty pool creates the sandbox instead of using an empty ID"""
        project = await add_project(db_session, user_id, None)

        result = await make_service(db_session, provider).ensure_project_allocation(user_id, project.id)

        assert result.sandbox_id in provider.sandboxes
        assert provider.create_calls == 1
        assert result.project_path == f"/root/projects/{user_id}/{result.sandbox_id}/{project.id}"

    @pytest.mark.asyncio
    async def test_unknown_project(self, db_session, provider, user_id):
        """Test an unknown project raises ProjectNotFoundError"""
        with pytest.raises(ProjectNotFoundError):
            await make_service(db_session, provider).ensure_project_allocation(user_id, "missing")


class TestGetRunningSandbox:
    """Connection guard wiring"""

    @pytest.mark.asyncio
    async def test_wakes_stopped_sandbox(self, db_session, provider, user_id):
        """Test the project's sandbox is started when stopped"""
        await register_sandbox(db_session, provider, "s1")
        provider.sandboxes["s1"].running = False
        project = await add_project(db_session, user_id, "s1")

        handle, was_started = await make_service(db_session, provider).get_running_sandbox(user_id, project.id)

        assert handle.id == "s1"
        assert was_started is True
        assert provider.start_calls == 1

    @pytest.mark.asyncio
    async def test_other_users_project_not_found(self, db_session, provider, user_id):
        """Test a project is only visible to its owner"""
        await register_sandbox(db_session, provider, "s1")
        project = await add_project(db_session, "someone-else", "s1")

        with pytest.raises(ProjectNotFoundError):
            await make_service(db_session, provider).get_running_sandbox(user_id, project.id)
