"""
oauth.py

This module consists of the HTTP requests made to the federated identity providers:
direct Google OAuth and the hosted users service
"""

import logging
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import status

from chatgateway.api.api_models import Principal
from chatgateway.api.errors import MissingEmail, ProviderError


logger = logging.getLogger(__name__)

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


class GoogleOAuthClient:
    """Authorization-code flow against Google.

    Attributes:
        client_id (str): OAuth client ID.
        client_secret (str): OAuth client secret.
        transport (Optional[httpx.AsyncBaseTransport]): Transport override, used by tests.
    """

    def __init__(self, client_id: str, client_secret: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.transport = transport

    def authorization_url(self, redirect_uri: str) -> str:
        query = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": redirect_uri,
                "response_type": "code",
                "scope": "openid email profile",
                "access_type": "offline",
                "prompt": "consent",
            }
        )
        return f"{GOOGLE_AUTHORIZE_URL}?{query}"

    async def fetch_email(self, code: str, redirect_uri: str) -> str:
        """Exchange an authorization code and return the account's lowercased email.

        Args:
            code (str): Authorization code from the OAuth callback.
            redirect_uri (str): The redirect URI used to obtain the code.

        Returns:
            str: The normalized email of the Google account.

        Raises:
            ProviderError: If either upstream call fails (401).
            MissingEmail: If the profile carries no email.
        """
        async with httpx.AsyncClient(transport=self.transport, timeout=10.0) as client:
            try:
                token_response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "code": code,
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "redirect_uri": redirect_uri,
                        "grant_type": "authorization_code",
                    },
                )
            except httpx.HTTPError as e:
                logger.error(f"Google token request failed: {str(e)}")
                raise ProviderError("Google authentication failed", status.HTTP_401_UNAUTHORIZED)

            if token_response.is_error:
                logger.error(f"Google token error {token_response.status_code}: {token_response.text}")
                raise ProviderError("Google authentication failed", status.HTTP_401_UNAUTHORIZED)

            access_token = token_response.json().get("access_token")
            if not access_token:
                raise ProviderError("Google authentication failed", status.HTTP_401_UNAUTHORIZED)

            try:
                profile_response = await client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
            except httpx.HTTPError as e:
                logger.error(f"Google userinfo request failed: {str(e)}")
                raise ProviderError("Failed to get user info", status.HTTP_401_UNAUTHORIZED)

            if profile_response.is_error:
                logger.error(f"Google userinfo error {profile_response.status_code}")
                raise ProviderError("Failed to get user info", status.HTTP_401_UNAUTHORIZED)

        email = (profile_response.json().get("email") or "").strip().lower()
        if not email:
            raise MissingEmail("No email from Google")
        return email


class HostedUsersClient:
    """Client of the hosted users service, the second identity provider.

    The service owns its own sessions; the gateway only forwards codes and tokens.
    """

    def __init__(self, api_url: str, api_key: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers={"x-api-key": self.api_key},
            transport=self.transport,
            timeout=10.0,
        )

    async def get_redirect_url(self, provider: str = "google") -> str:
        async with self._client() as client:
            try:
                response = await client.get(f"/oauth/{provider}/redirect_url")
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(f"Hosted users service redirect_url failed: {str(e)}")
                raise ProviderError("Sign-in service unavailable")
        return response.json()["redirect_url"]

    async def exchange_code(self, code: str) -> str:
        """Trade an authorization code for a hosted session token."""
        async with self._client() as client:
            try:
                response = await client.post("/sessions", json={"code": code})
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(f"Hosted users service code exchange failed: {str(e)}")
                raise ProviderError("Authentication failed", status.HTTP_401_UNAUTHORIZED)

        token = response.json().get("session_token")
        if not token:
            raise ProviderError("Authentication failed", status.HTTP_401_UNAUTHORIZED)
        return token

    async def get_user(self, session_token: str) -> Optional[Principal]:
        """Return the principal behind a hosted session, or None if the session is not valid.

        Raises:
            ProviderError: If the service itself is failing.
        """
        async with self._client() as client:
            try:
                response = await client.get(
                    "/users/me", headers={"Authorization": f"Bearer {session_token}"}
                )
            except httpx.HTTPError as e:
                logger.error(f"Hosted users service lookup failed: {str(e)}")
                raise ProviderError("Sign-in service unavailable")

        if response.status_code in (
            status.HTTP_401_UNAUTHORIZED,
            status.HTTP_403_FORBIDDEN,
            status.HTTP_404_NOT_FOUND,
        ):
            return None
        if response.is_error:
            logger.error(f"Hosted users service lookup error {response.status_code}")
            raise ProviderError("Sign-in service unavailable")

        body = response.json()
        return Principal(id=str(body["id"]), email=body["email"])

    async def delete_session(self, session_token: str) -> None:
        async with self._client() as client:
            response = await client.delete(
                "/sessions/current", headers={"Authorization": f"Bearer {session_token}"}
            )
        if response.is_error and response.status_code != status.HTTP_404_NOT_FOUND:
            response.raise_for_status()
