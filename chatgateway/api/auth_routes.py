"""
auth_routes.py

This module consists of FastAPI Routes for Authentication: password accounts,
federated OAuth sign-in, the current user and logout
"""

from fastapi import APIRouter, Depends, Request, Response, status
from sqlmodel import Session

from chatgateway.api.api_models import CredentialsRequest, Principal, SessionExchangeRequest, UserResponse
from chatgateway.api.auth_service import AuthService, IssuedSession
from chatgateway.api.context import GatewayContext, get_context
from chatgateway.api.db import get_session
from chatgateway.api.identity import get_current_user


router = APIRouter(tags=["authentication"])


def set_session_cookie(response: Response, request: Request, context: GatewayContext, issued: IssuedSession):
    """Set the session cookie. Lifetime is fixed at issue time, not sliding."""
    if issued.hosted:
        # Cross-site cookie issued for the hosted users service.
        response.set_cookie(
            issued.cookie_name,
            issued.token,
            max_age=context.settings.session_ttl_seconds,
            path="/",
            httponly=True,
            samesite="none",
            secure=True,
        )
        return
    response.set_cookie(
        issued.cookie_name,
        issued.token,
        max_age=context.settings.session_ttl_seconds,
        path="/",
        httponly=True,
        samesite="lax",
        secure=request.url.scheme == "https",
    )


@router.post("/auth/register", status_code=status.HTTP_201_CREATED, response_model=UserResponse)
def register(
    body: CredentialsRequest,
    request: Request,
    response: Response,
    context: GatewayContext = Depends(get_context),
    session: Session = Depends(get_session),
):
    """Register a password account and start a session for it.

    Args:
        body (CredentialsRequest): Email and password.

    Returns:
        UserResponse: The new user.

    Raises:
        InvalidInput: 400 on a missing field or a password shorter than 6 characters.
        Conflict: 409 if the email is already registered.
    """
    issued = AuthService(context, session).register(body.email, body.password)
    set_session_cookie(response, request, context, issued)
    return UserResponse(user=issued.principal)


@router.post("/auth/login", response_model=UserResponse)
def login(
    body: CredentialsRequest,
    request: Request,
    response: Response,
    context: GatewayContext = Depends(get_context),
    session: Session = Depends(get_session),
):
    """Log in with email and password.

    Raises:
        InvalidCredential: 401 for an unknown email or a wrong password, indistinguishably.
    """
    issued = AuthService(context, session).login(body.email, body.password)
    set_session_cookie(response, request, context, issued)
    return UserResponse(user=issued.principal)


@router.get("/oauth/redirect_url")
async def oauth_redirect_url(
    request: Request,
    context: GatewayContext = Depends(get_context),
    session: Session = Depends(get_session),
):
    """Return the URL the client should send the user to for Google sign-in."""
    redirect_url = await AuthService(context, session).redirect_url(request)
    return {"redirectUrl": redirect_url}


@router.get("/oauth/redirect_uri_debug")
async def oauth_redirect_uri_debug(
    request: Request,
    context: GatewayContext = Depends(get_context),
    session: Session = Depends(get_session),
):
    """Report the redirect URI that must be registered with Google."""
    return {
        "redirectUri": AuthService(context, session).google_redirect_uri(request),
        "message": "Add this exact URL to the authorized redirect URIs of the OAuth client",
    }


@router.post("/sessions")
async def exchange_session(
    body: SessionExchangeRequest,
    request: Request,
    response: Response,
    context: GatewayContext = Depends(get_context),
    session: Session = Depends(get_session),
):
    """Exchange an OAuth authorization code for a session cookie.

    Raises:
        InvalidInput: 400 if no code was sent.
        MissingEmail: 400 if the provider returned no email.
        ProviderError: 401 if the provider rejected the code.
        NotConfigured: 503 if no federated provider is configured.
    """
    issued = await AuthService(context, session).exchange_code(request, body.code)
    set_session_cookie(response, request, context, issued)
    return {"success": True}


@router.get("/me", response_model=Principal)
async def get_me(current_user: Principal = Depends(get_current_user)):
    """Return the authenticated user."""
    return current_user


@router.get("/logout")
async def logout(
    request: Request,
    response: Response,
    context: GatewayContext = Depends(get_context),
    session: Session = Depends(get_session),
):
    """End the local and hosted sessions and clear both cookies. Always succeeds."""
    await AuthService(context, session).logout(request)
    response.delete_cookie(context.settings.session_cookie_name, path="/")
    response.delete_cookie(context.settings.hosted_session_cookie_name, path="/")
    return {"success": True}
