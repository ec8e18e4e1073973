# Re-export all models for convenient imports
from app.models.sandbox import Sandbox, UserSandbox
from app.models.project import Project, ProjectStatus
from app.models.user import AppUser

__all__ = [
    # Sandbox pool
    "Sandbox",
    "UserSandbox",
    # Project
    "Project",
    "ProjectStatus",
    # User
    "AppUser",
]
