from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Any


def parse_transaction_types(v: Any) -> List[str]:
    """Parse webhook transaction types from string or list"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        return [t.strip() for t in v.split(',') if t.strip()]
    return []


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "Sandbox Pool"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    ADMIN_API_KEY: str = ""  # Guards /admin endpoints; empty disables them

    # ==========================================
    # Database
    # ==========================================
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800  # 30 minutes
    DB_ECHO: bool = False

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # ==========================================
    # Daytona (sandbox provider)
    # ==========================================
    DAYTONA_API_KEY: str = ""
    DAYTONA_API_URL: str = "https://app.daytona.io/api"
    DAYTONA_TARGET: str = "us"

    # ==========================================
    # Sandbox Pool
    # ==========================================
    SANDBOX_CAPACITY: int = 5  # Users sharing one sandbox
    SANDBOX_IMAGE: str = "node:20"
    SANDBOX_PUBLIC: bool = True
    PROJECTS_ROOT: str = "/root/projects"

    # Connection guard
    SANDBOX_LOCK_TIMEOUT_SECONDS: float = 30.0
    SANDBOX_ENSURE_MAX_ATTEMPTS: int = 2
    SANDBOX_RETRY_BASE_DELAY: float = 2.0  # seconds, multiplied by attempt
    SANDBOX_START_SETTLE_SECONDS: float = 3.0

    # Provider call timeouts (seconds)
    SANDBOX_LIST_TIMEOUT: float = 30.0
    SANDBOX_PROBE_TIMEOUT: float = 30.0
    SANDBOX_START_TIMEOUT: float = 120.0
    SANDBOX_CREATE_TIMEOUT: float = 180.0

    # ==========================================
    # Dev server ports
    # ==========================================
    DEV_PORT_RANGE_START: int = 3000
    DEV_PORT_PROBE_END: int = 3199
    DEV_PORT_FALLBACK_START: int = 3200
    DEV_PORT_RANGE_END: int = 3999
    DEV_PORT_PROBE_LIMIT: int = 200
    PORT_ALLOCATION_MAX_RETRIES: int = 10
    PORT_ALLOCATION_RETRY_DELAY: float = 0.1  # seconds, multiplied by retry

    # ==========================================
    # Helius (address webhook registry)
    # ==========================================
    HELIUS_API_KEY: str = ""
    HELIUS_API_URL: str = "https://api.helius.xyz/v0"
    HELIUS_WEBHOOK_ID: str = ""
    HELIUS_WEBHOOK_URL: str = ""
    HELIUS_TRANSACTION_TYPES: str = "ACCOUNT_UPDATE"
    HELIUS_REQUEST_TIMEOUT: float = 15.0

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return (v or "INFO").upper()

    @property
    def helius_transaction_types(self) -> List[str]:
        """Get default webhook transaction types as list"""
        return parse_transaction_types(self.HELIUS_TRANSACTION_TYPES) or ["ACCOUNT_UPDATE"]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


# Create settings instance
settings = Settings()
