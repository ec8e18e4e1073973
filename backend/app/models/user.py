from sqlalchemy import Column, String, DateTime

from app.core.database import Base
from app.core.types import GUID, generate_uuid, utcnow


class AppUser(Base):
    """
    Application-level user record.

    Only the deposit wallet address matters to this service: it is the set of
    addresses pushed to the webhook registry on a full sync.
    """
    __tablename__ = "app_users"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    auth_user_id = Column(String(255), unique=True, index=True, nullable=False)
    deposit_wallet_address = Column(String(255), unique=True, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<AppUser {self.auth_user_id}>"
