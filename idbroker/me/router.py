"""
Endpoints about the authenticated caller.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from idbroker.auth.identity import get_current_identity, get_project_ids
from idbroker.auth.response import Envelope
from idbroker.exceptions import AuthError
from idbroker.user.schemas import Identity

router = APIRouter()


@router.get("/v1")
async def me(
    identity: Optional[Identity] = Depends(get_current_identity),
    project_ids: list[str] = Depends(get_project_ids),
):
    if identity is None:
        raise AuthError("No authenticated identity (authentication is not enforced yet)")
    return Envelope[dict](
        message="User fetched",
        data={**identity.model_dump(mode="json"), "project_ids": project_ids},
    )
