"""
Sandbox Models - shared execution sandboxes and user assignments
Used for: pool allocation, self-healing migration, dev port scoping
"""

from sqlalchemy import Column, String, DateTime, Integer, Index

from app.core.config import settings
from app.core.database import Base
from app.core.types import GUID, generate_uuid, utcnow


class Sandbox(Base):
    """
    A remote sandbox known to the pool.

    ``sandbox_id`` is the provider's opaque identifier. ``active_users`` counts
    assignments pointing here; ``capacity`` is the soft cap the allocator
    respects when picking a sandbox for a new user.
    """
    __tablename__ = "sandboxes"

    __table_args__ = (
        Index('ix_sandboxes_active_users', 'active_users'),
    )

    sandbox_id = Column(String(255), primary_key=True)
    capacity = Column(Integer, nullable=False, default=lambda: settings.SANDBOX_CAPACITY)
    active_users = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    last_assigned_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Sandbox {self.sandbox_id} ({self.active_users}/{self.capacity})>"


class UserSandbox(Base):
    """One row per user: the sandbox that user's projects live in"""
    __tablename__ = "user_sandboxes"

    __table_args__ = (
        Index('ix_user_sandboxes_sandbox_id', 'sandbox_id'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    user_id = Column(String(255), unique=True, nullable=False)
    sandbox_id = Column(String(255), nullable=False)
    assigned_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<UserSandbox {self.user_id} -> {self.sandbox_id}>"
