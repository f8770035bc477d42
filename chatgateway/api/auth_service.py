"""
auth_service.py

This module implements registration, login, federated OAuth exchange and logout
on top of the credential store and the identity providers.
"""

import logging
from typing import Optional
from urllib.parse import urlsplit

from fastapi import Request
from sqlmodel import Session

from chatgateway.api.api_models import Principal
from chatgateway.api.context import GatewayContext
from chatgateway.api.credential_store import CredentialStore
from chatgateway.api.errors import InvalidCredential, InvalidInput, NotConfigured


logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class IssuedSession:
    """A principal together with the cookie that must be set for it.

    Attributes:
        principal (Optional[Principal]): The signed-in user, when known locally.
        cookie_name (str): Cookie to set.
        token (str): Cookie value.
        hosted (bool): True for a hosted users service session.
    """

    def __init__(self, principal: Optional[Principal], cookie_name: str, token: str, hosted: bool = False):
        self.principal = principal
        self.cookie_name = cookie_name
        self.token = token
        self.hosted = hosted


def _require_credentials(email: Optional[str], password: Optional[str]):
    if not email or not password:
        raise InvalidInput("Email and password required")
    return email, password


class AuthService:
    def __init__(self, context: GatewayContext, db: Session):
        self.context = context
        self.settings = context.settings
        self.store = CredentialStore(db, context.pwd_context)

    def _issue_local(self, user) -> IssuedSession:
        auth_session = self.store.create_session(user.id, self.settings.session_ttl_seconds)
        return IssuedSession(
            Principal(id=user.id, email=user.email),
            self.settings.session_cookie_name,
            auth_session.token,
        )

    def register(self, email: Optional[str], password: Optional[str]) -> IssuedSession:
        """Create a password account and sign it in.

        Raises:
            InvalidInput: If a field is missing or the password is shorter than 6 characters.
            Conflict: If the email is already registered.
        """
        email, password = _require_credentials(email, password)
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidInput(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        user = self.store.create_user(email, password)
        logger.info(f"Registered user {user.id}")
        return self._issue_local(user)

    def login(self, email: Optional[str], password: Optional[str]) -> IssuedSession:
        """Verify a password and sign the user in.

        Raises:
            InvalidInput: If a field is missing.
            InvalidCredential: If the email is unknown or the password does not match.
        """
        email, password = _require_credentials(email, password)
        user = self.store.get_by_email(email)
        if user is None or not self.store.verify_password(user, password):
            logger.info("Login rejected")
            raise InvalidCredential()

        logger.info(f"User {user.id} logged in")
        return self._issue_local(user)

    def google_redirect_uri(self, request: Request) -> str:
        """The redirect URI that must match the one registered with Google."""
        if self.settings.google_redirect_uri:
            uri = self.settings.google_redirect_uri.strip().rstrip("/")
            return uri if "/auth/callback" in uri else f"{uri}/auth/callback"
        if self.settings.client_url:
            return f"{self.settings.client_url.rstrip('/')}/auth/callback"
        parts = urlsplit(str(request.url))
        return f"{parts.scheme}://{parts.netloc}/auth/callback"

    async def redirect_url(self, request: Request) -> str:
        if self.context.google_oauth is not None:
            return self.context.google_oauth.authorization_url(self.google_redirect_uri(request))
        if self.context.hosted_users is not None:
            return await self.context.hosted_users.get_redirect_url("google")
        raise NotConfigured(
            "Google sign-in not configured. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET"
        )

    async def exchange_code(self, request: Request, code: Optional[str]) -> IssuedSession:
        """Turn an OAuth authorization code into a session.

        With direct Google OAuth a local account is found or created for the email and
        a local session is issued, so later requests take the local-session path.

        Raises:
            InvalidInput: If no code is given.
            ProviderError: If an upstream call fails.
            MissingEmail: If the provider returns no email.
            NotConfigured: If no federated provider is configured.
        """
        if not code:
            raise InvalidInput("No authorization code provided")

        if self.context.google_oauth is not None:
            email = await self.context.google_oauth.fetch_email(code, self.google_redirect_uri(request))
            user = self.store.get_or_create_oauth_user(email)
            logger.info(f"Google sign-in for user {user.id}")
            return self._issue_local(user)

        if self.context.hosted_users is not None:
            token = await self.context.hosted_users.exchange_code(code)
            return IssuedSession(None, self.settings.hosted_session_cookie_name, token, hosted=True)

        raise NotConfigured("Google sign-in not configured")

    async def logout(self, request: Request) -> None:
        """End the caller's sessions. Missing or unknown sessions are not an error."""
        local_token = request.cookies.get(self.settings.session_cookie_name)
        if local_token:
            self.store.delete_session(local_token)

        hosted_token = request.cookies.get(self.settings.hosted_session_cookie_name)
        if hosted_token and self.context.hosted_users is not None:
            try:
                await self.context.hosted_users.delete_session(hosted_token)
            except Exception as e:
                logger.warning(f"Hosted session could not be deleted: {str(e)}")
