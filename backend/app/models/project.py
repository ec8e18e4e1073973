from sqlalchemy import Column, String, DateTime, Enum as SQLEnum, Integer, Text, Index, UniqueConstraint
import enum

from app.core.database import Base
from app.core.types import GUID, generate_uuid, utcnow


class ProjectStatus(str, enum.Enum):
    """Dev server lifecycle of a generated project"""
    CREATED = "created"
    INSTALLING = "installing"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class Project(Base):
    """Generated application living inside a shared sandbox"""
    __tablename__ = "projects"

    __table_args__ = (
        # Two projects in one sandbox must never listen on the same port.
        # NULL ports (not yet allocated) never collide.
        UniqueConstraint('sandbox_id', 'dev_port', name='uq_projects_sandbox_port'),
        UniqueConstraint('user_id', 'name', name='uq_projects_user_name'),
        Index('ix_projects_user_id', 'user_id'),
        Index('ix_projects_sandbox_id', 'sandbox_id'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    user_id = Column(String(255), nullable=False)
    sandbox_id = Column(String(255), nullable=True)

    name = Column(String(255), nullable=False)
    prompt = Column(Text, nullable=True)
    preview_url = Column(Text, nullable=True)

    # Allocation inside the sandbox
    project_path = Column(String(1000), nullable=True)  # <root>/<user>/<sandbox>/<project>
    dev_port = Column(Integer, nullable=True)

    status = Column(SQLEnum(ProjectStatus), default=ProjectStatus.CREATED, nullable=False)
    last_run_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_allocated(self) -> bool:
        return bool(self.project_path) and self.dev_port is not None

    def __repr__(self):
        return f"<Project {self.name} port={self.dev_port}>"
