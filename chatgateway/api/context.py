"""
context.py

This module holds the explicit per-application context handed to every request handler
"""

import logging
from typing import Optional

from fastapi import Request
from sqlalchemy.engine import Engine

from chatgateway.api.credential_store import build_password_context
from chatgateway.api.identity import HostedSessionResolver, IdentityResolver, LocalSessionResolver
from chatgateway.api.relay_service import StreamRelay, ThreadLockRegistry
from chatgateway.config import Settings
from chatgateway.providers.oauth import GoogleOAuthClient, HostedUsersClient


logger = logging.getLogger(__name__)


class GatewayContext:
    """Everything a request handler needs, built once per application.

    Attributes:
        settings (Settings): The gateway configuration.
        engine (Engine): Engine of the conversation and credential store.
        chat_provider: Streams replies from the generation model.
        image_provider: One-shot image generation.
        pwd_context (CryptContext): Password hashing policy.
        google_oauth (Optional[GoogleOAuthClient]): Present when Google OAuth is configured.
        hosted_users (Optional[HostedUsersClient]): Present when the hosted users service is configured.
        identity (IdentityResolver): Resolver chain, local session first.
        thread_locks (ThreadLockRegistry): Per-thread serialization of message sends.
        relay (StreamRelay): The Stream Relay bound to this context.
    """

    def __init__(
        self,
        settings: Settings,
        engine: Engine,
        chat_provider,
        image_provider,
        google_oauth: Optional[GoogleOAuthClient] = None,
        hosted_users: Optional[HostedUsersClient] = None,
    ):
        self.settings = settings
        self.engine = engine
        self.chat_provider = chat_provider
        self.image_provider = image_provider
        self.pwd_context = build_password_context(settings.password_hash_rounds)

        if google_oauth is None and settings.google_oauth_configured:
            google_oauth = GoogleOAuthClient(settings.google_client_id, settings.google_client_secret)
        if hosted_users is None and settings.hosted_users_configured:
            hosted_users = HostedUsersClient(settings.hosted_users_api_url, settings.hosted_users_api_key)
        self.google_oauth = google_oauth
        self.hosted_users = hosted_users

        resolvers = [LocalSessionResolver(engine, settings.session_cookie_name)]
        if hosted_users is not None:
            resolvers.append(HostedSessionResolver(hosted_users, settings.hosted_session_cookie_name))
        self.identity = IdentityResolver(resolvers)

        self.thread_locks = ThreadLockRegistry()
        self.relay = StreamRelay(engine, chat_provider, self.thread_locks)

        logger.info(
            f"Identity providers: {', '.join(resolver.name for resolver in resolvers)}; "
            f"Google OAuth {'enabled' if google_oauth else 'disabled'}"
        )


def get_context(request: Request) -> GatewayContext:
    return request.app.state.context
