"""
ORM and transport models for client applications.
"""

import secrets
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text, func

from idbroker.database import Base, generate_uuid


class Client(Base):
    __tablename__ = "clients"

    client_id = Column(String, primary_key=True, default=generate_uuid)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    # Ciphertext produced by SecretCipher, never the plain secret.
    secret = Column(String, nullable=False)
    redirect_urls = Column(JSON, nullable=False, default=list)
    scopes = Column(JSON, nullable=False, default=list)
    project_id = Column(String, nullable=True, index=True)
    default_auth_provider_id = Column(String, nullable=True)
    is_bootstrap = Column(Boolean, nullable=False, default=False)
    enabled = Column(Boolean, nullable=False, default=True)
    linked_user_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    created_by = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    updated_by = Column(String, nullable=True)

    @staticmethod
    def generate_secret() -> str:
        return secrets.token_urlsafe(32)


class ClientRecord(BaseModel):
    """
    Detached view of a client, as cached and as carried on domain events.
    The secret field holds ciphertext.
    """

    model_config = ConfigDict(from_attributes=True)

    client_id: str
    name: str
    description: Optional[str] = None
    secret: str
    redirect_urls: List[str] = []
    scopes: List[str] = []
    project_id: Optional[str] = None
    default_auth_provider_id: Optional[str] = None
    is_bootstrap: bool = False
    enabled: bool = True
    linked_user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def allows_redirect(self, redirect_url: str) -> bool:
        return redirect_url in self.redirect_urls


class ClientArgs(BaseModel):
    name: str
    description: Optional[str] = None
    redirect_urls: List[str] = []
    scopes: List[str] = []
    project_id: Optional[str] = None
    default_auth_provider_id: Optional[str] = None
    is_bootstrap: bool = False
    linked_user_id: Optional[str] = None


class ClientUpdateArgs(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    redirect_urls: Optional[List[str]] = None
    scopes: Optional[List[str]] = None
    default_auth_provider_id: Optional[str] = None
    enabled: Optional[bool] = None
    linked_user_id: Optional[str] = None
