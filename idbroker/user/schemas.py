"""
ORM and transport models for federated users (identities).
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Boolean, Column, DateTime, String, UniqueConstraint, func

from idbroker.database import Base, generate_uuid


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("project_id", "email", name="uq_user_project_email"),
        UniqueConstraint("project_id", "phone", name="uq_user_project_phone"),
    )

    user_id = Column(String, primary_key=True, default=generate_uuid)
    project_id = Column(String, nullable=True, index=True)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True, index=True)
    phone = Column(String, nullable=True)
    profile_pic = Column(String, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)
    expiry = Column(DateTime(timezone=True), nullable=True)
    auth_provider_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    created_by = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    updated_by = Column(String, nullable=True)


class Identity(BaseModel):
    """
    The resolved user attached to authenticated requests.
    """

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    project_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    profile_pic: Optional[str] = None
    enabled: bool = True
    expiry: Optional[datetime] = None
    auth_provider_id: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expiry is None:
            return False
        now = now or datetime.now(timezone.utc)
        expiry = self.expiry
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return expiry <= now

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return self.enabled and not self.is_expired(now)


class FederatedIdentity(BaseModel):
    """
    What an external provider tells us about the authenticated person.
    """

    subject: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None
    profile_pic: Optional[str] = None
