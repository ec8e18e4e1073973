from app.services.identifiers import normalize_id, normalize_path, build_project_path
from app.services.error_classifier import ErrorClassifier, ErrorKind, error_classifier
from app.services.sandbox_provider import (
    CreateSandboxParams,
    SandboxHandle,
    SandboxProvider,
    DaytonaProvider,
    get_sandbox_provider,
)
from app.services.sandbox_connection import (
    SandboxConnectionGuard,
    sandbox_connection_guard,
    ensure_sandbox_running,
)
from app.services.sandbox_pool import SandboxPoolAllocator
from app.services.port_allocator import PortAllocator
from app.services.project_service import ProjectService
from app.services.webhook_registry import WebhookRegistry, HeliusWebhookClient, webhook_registry

__all__ = [
    # Identifiers
    "normalize_id",
    "normalize_path",
    "build_project_path",
    # Provider
    "ErrorClassifier",
    "ErrorKind",
    "error_classifier",
    "CreateSandboxParams",
    "SandboxHandle",
    "SandboxProvider",
    "DaytonaProvider",
    "get_sandbox_provider",
    # Sandbox lifecycle
    "SandboxConnectionGuard",
    "sandbox_connection_guard",
    "ensure_sandbox_running",
    "SandboxPoolAllocator",
    "PortAllocator",
    "ProjectService",
    # Webhooks
    "WebhookRegistry",
    "HeliusWebhookClient",
    "webhook_registry",
]
