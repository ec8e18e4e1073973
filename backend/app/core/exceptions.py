"""
Custom Exceptions for the Sandbox Pool
======================================

Every failure that leaves a service carries a stable ``code`` so the API
layer can map it to an HTTP status without string matching.

Usage:
    from app.core.exceptions import SandboxNotFoundError

    if sandbox_id not in remote_ids:
        raise SandboxNotFoundError(sandbox_id)
"""

from typing import Optional, Any, Dict


class SandboxPoolError(Exception):
    """Base exception for all sandbox pool errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Resource Errors (404-type)
# ============================================

class ResourceNotFoundError(SandboxPoolError):
    """Base class for not found errors"""

    def __init__(self, resource_type: str, resource_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"{resource_type} with ID '{resource_id}' not found",
            code=f"{resource_type.upper()}_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id}
        )


class ProjectNotFoundError(ResourceNotFoundError):
    """Project not found"""

    def __init__(self, project_id: str):
        super().__init__("Project", project_id)


class SandboxNotFoundError(ResourceNotFoundError):
    """Sandbox no longer exists at the provider (deleted externally). Permanent."""

    def __init__(self, sandbox_id: str):
        super().__init__(
            "Sandbox",
            sandbox_id,
            message=f"Sandbox {sandbox_id} not found in Daytona. It may have been deleted."
        )


# ============================================
# Conflict Errors (409-type)
# ============================================

class DuplicateProjectNameError(SandboxPoolError):
    """A project with the same name already exists for this user"""

    def __init__(self, user_id: str, name: str):
        super().__init__(
            f"Project '{name}' already exists",
            code="DUPLICATE_PROJECT_NAME",
            details={"user_id": user_id, "name": name}
        )


class PortAllocationError(SandboxPoolError):
    """No dev port could be claimed inside the sandbox"""

    def __init__(self, sandbox_id: str, message: str = "No available ports"):
        super().__init__(
            message,
            code="PORT_ALLOCATION_FAILED",
            details={"sandbox_id": sandbox_id}
        )


# ============================================
# Sandbox Provider Errors
# ============================================

class SandboxProviderError(SandboxPoolError):
    """Provider call failed. Carries the provider's message verbatim."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, code="SANDBOX_PROVIDER_ERROR")
        self.status_code = status_code
        if status_code is not None:
            self.details["status_code"] = status_code


class SandboxProviderUnavailableError(SandboxPoolError):
    """Transient provider failures persisted through every retry"""

    def __init__(self, sandbox_id: str, last_error: str):
        super().__init__(
            f"Daytona API is unreachable ({last_error}). Please try again in a few moments.",
            code="SANDBOX_PROVIDER_UNAVAILABLE",
            details={"sandbox_id": sandbox_id, "last_error": last_error}
        )


class SandboxStartError(SandboxPoolError):
    """Sandbox was stopped and could not be started"""

    def __init__(self, sandbox_id: str, reason: str = ""):
        super().__init__(
            f"Sandbox {sandbox_id} is stopped and could not be started"
            + (f": {reason}" if reason else ""),
            code="SANDBOX_START_FAILED",
            details={"sandbox_id": sandbox_id}
        )


class SandboxCreationError(SandboxPoolError):
    """Provider refused to create a new sandbox"""

    def __init__(self, reason: str):
        super().__init__(
            f"Failed to create sandbox: {reason}",
            code="SANDBOX_CREATION_FAILED"
        )


# ============================================
# Helper function for API responses
# ============================================

def error_response(error: SandboxPoolError) -> Dict[str, Any]:
    """Convert exception to API error response format"""
    return {
        "success": False,
        "error": error.to_dict()
    }
