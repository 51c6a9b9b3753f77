"""
Broker endpoints: provider login, provider callback and code verification.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from idbroker.auth.credentials import classify_credentials
from idbroker.auth.response import CallbackResponse, Envelope, LoginData, TokenData
from idbroker.auth.schemas import ClientCredentialsArgs
from idbroker.auth.service import OAuthBroker

router = APIRouter()


def get_broker(request: Request) -> OAuthBroker:
    return request.app.state.broker


@router.get("/login")
async def login(
    client_id: Optional[str] = Query(None),
    auth_provider: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    redirect_url: Optional[str] = Query(None),
    code_challenge: Optional[str] = Query(None),
    code_challenge_method: Optional[str] = Query(None),
    postback: bool = Query(False),
    broker: OAuthBroker = Depends(get_broker),
):
    """
    Start a login: redirect to the identity provider, or hand the URL back
    as JSON when postback=true.
    """
    login_url = await broker.login(
        client_id,
        state,
        redirect_url,
        auth_provider_id=auth_provider,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
    )
    if postback:
        body = Envelope[LoginData](message="Login url generated", data=LoginData(login_url=login_url))
        return JSONResponse(content=body.model_dump())
    return RedirectResponse(url=login_url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@router.get("/authp-callback")
async def provider_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    client_id: Optional[str] = Query(None),
    postback: bool = Query(False),
    broker: OAuthBroker = Depends(get_broker),
):
    """
    Identity provider redirect target.
    """
    target = await broker.redirect(code, state, client_id)
    if postback:
        return JSONResponse(content=CallbackResponse(redirect_url=target).model_dump())
    return RedirectResponse(url=target, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@router.get("/verify")
async def verify(
    code: Optional[str] = Query(None),
    client_id: Optional[str] = Query(None),
    code_verifier: Optional[str] = Query(None),
    code_challenge: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
    broker: OAuthBroker = Depends(get_broker),
):
    """
    Exchange an authorization code for an access token, authenticating with
    basic client credentials or a PKCE verifier.
    """
    # code_challenge is the legacy name for the verifier on this endpoint.
    credentials = classify_credentials(authorization, client_id, code_verifier or code_challenge)
    issued = await broker.verify(code, credentials)
    body = Envelope[TokenData](
        message="Token issued",
        data=TokenData(
            access_token=issued.access_token,
            token_type=issued.token_type,
            expires_in=issued.expires_in,
        ),
    )
    return JSONResponse(content=body.model_dump())


@router.post("/client-credentials")
async def client_credentials(
    args: ClientCredentialsArgs,
    broker: OAuthBroker = Depends(get_broker),
):
    issued = await broker.client_credentials(args.client_id, args.client_secret)
    body = Envelope[TokenData](
        message="Token issued",
        data=TokenData(
            access_token=issued.access_token,
            token_type=issued.token_type,
            expires_in=issued.expires_in,
        ),
    )
    return JSONResponse(content=body.model_dump())
