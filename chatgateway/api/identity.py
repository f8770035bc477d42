"""
identity.py

This module resolves the authenticated principal of an inbound request by trying
the configured identity providers in a fixed priority order.
"""

import logging
from typing import List, Optional

from fastapi import Request
from sqlalchemy.engine import Engine
from sqlmodel import Session

from chatgateway.api.api_models import Principal
from chatgateway.api.credential_store import CredentialStore
from chatgateway.api.errors import Unauthenticated
from chatgateway.providers.oauth import HostedUsersClient


logger = logging.getLogger(__name__)


class LocalSessionResolver:
    """Resolves the opaque local session token carried in the session cookie.

    Attributes:
        engine (Engine): Engine of the credential store.
        cookie_name (str): Cookie holding the session token.
    """

    name = "local"

    def __init__(self, engine: Engine, cookie_name: str):
        self.engine = engine
        self.cookie_name = cookie_name

    async def resolve(self, request: Request) -> Optional[Principal]:
        token = request.cookies.get(self.cookie_name)
        if not token:
            return None
        with Session(self.engine) as db:
            return CredentialStore(db).resolve_session(token)


class HostedSessionResolver:
    """Resolves a session issued by the hosted users service."""

    name = "hosted"

    def __init__(self, client: HostedUsersClient, cookie_name: str):
        self.client = client
        self.cookie_name = cookie_name

    async def resolve(self, request: Request) -> Optional[Principal]:
        token = request.cookies.get(self.cookie_name)
        if not token:
            return None
        return await self.client.get_user(token)


class IdentityResolver:
    """Priority chain of identity strategies.

    Each strategy returns a Principal or None ("not applicable"). The first hit wins
    and short-circuits the rest; only the chain as a whole fails, with Unauthenticated.
    """

    def __init__(self, resolvers: List):
        self.resolvers = resolvers

    async def resolve(self, request: Request) -> Principal:
        for resolver in self.resolvers:
            principal = await resolver.resolve(request)
            if principal is not None:
                logger.debug(f"Request authenticated by {resolver.name} session")
                return principal
        raise Unauthenticated()


async def get_current_user(request: Request) -> Principal:
    """FastAPI dependency returning the caller's principal.

    Raises:
        Unauthenticated: If no identity provider recognises the request.
    """
    principal = await request.app.state.context.identity.resolve(request)
    request.state.principal = principal
    return principal
