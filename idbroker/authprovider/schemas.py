"""
ORM and transport models for external identity providers.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import JSON, Boolean, Column, DateTime, String, func

from idbroker.database import Base, generate_uuid


class ProviderType(str, Enum):
    OAUTH2 = "OAUTH2"
    OIDC = "OIDC"


class AuthProvider(Base):
    __tablename__ = "auth_providers"

    provider_id = Column(String, primary_key=True, default=generate_uuid)
    name = Column(String, nullable=False)
    provider_type = Column(String, nullable=False, default=ProviderType.OAUTH2.value)
    # AuthProviderParams as JSON; client_secret is ciphertext.
    params = Column(JSON, nullable=False, default=dict)
    project_id = Column(String, nullable=True, index=True)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    created_by = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    updated_by = Column(String, nullable=True)


class AuthProviderParams(BaseModel):
    authorization_url: str
    token_url: str
    userinfo_url: str
    client_id: str
    client_secret: str
    redirect_url: str
    scopes: List[str] = ["openid", "email", "profile"]


class AuthProviderRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider_id: str
    name: str
    provider_type: ProviderType = ProviderType.OAUTH2
    params: AuthProviderParams
    project_id: Optional[str] = None
    enabled: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AuthProviderArgs(BaseModel):
    name: str
    provider_type: ProviderType = ProviderType.OAUTH2
    params: AuthProviderParams
    project_id: Optional[str] = None
