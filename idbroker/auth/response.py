"""
Response models for the broker endpoints.
"""

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    message: str = ""
    data: Optional[T] = None


class LoginData(BaseModel):
    login_url: str


class CallbackResponse(BaseModel):
    redirect_url: str


class TokenData(BaseModel):
    """OAuth2 token response following RFC 6749."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
