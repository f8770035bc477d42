"""
config.py

This module loads the gateway settings from the environment (and an optional .env file)
"""

import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict


GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


class Settings(BaseModel):
    """Runtime configuration for the gateway.

    Attributes:
        database_url (str): SQLAlchemy URL of the conversation/credential store.
        session_cookie_name (str): Name of the cookie carrying the local session token.
        session_ttl_days (int): Lifetime of a local session and its cookie.
        password_hash_rounds (int): bcrypt cost factor used for new password hashes.
        google_client_id (Optional[str]): Client ID for direct Google OAuth.
        google_client_secret (Optional[str]): Client secret for direct Google OAuth.
        google_redirect_uri (Optional[str]): Redirect URI registered with Google.
        client_url (Optional[str]): Public URL of the web client, used to derive the redirect URI.
        hosted_users_api_url (Optional[str]): Base URL of the hosted users service.
        hosted_users_api_key (Optional[str]): API key for the hosted users service.
        hosted_session_cookie_name (str): Cookie carrying the hosted users service session.
        gemini_api_key (Optional[str]): API key for the generation provider.
        chat_model (str): Chat completion model name.
        chat_base_url (str): OpenAI-compatible endpoint serving the chat model.
        chat_max_tokens (int): Upper bound on generated tokens per reply.
        image_model (str): Image generation model name.
        image_base_url (str): OpenAI-compatible endpoint serving the image model.
        image_api_key (Optional[str]): API key for image generation, defaults to gemini_api_key.
        cors_origins (List[str]): Origins allowed to call the API with credentials.
        app_host (str): Bind host for uvicorn.
        app_port (int): Bind port for uvicorn.
        log_level (str): Root logging level.
    """

    model_config = ConfigDict(frozen=True)

    database_url: str = "sqlite:///./data/chatgateway.db"

    session_cookie_name: str = "chatgateway_session"
    session_ttl_days: int = 60
    password_hash_rounds: int = 10

    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_redirect_uri: Optional[str] = None
    client_url: Optional[str] = None

    hosted_users_api_url: Optional[str] = None
    hosted_users_api_key: Optional[str] = None
    hosted_session_cookie_name: str = "hosted_session_token"

    gemini_api_key: Optional[str] = None
    chat_model: str = "gemini-2.5-flash"
    chat_base_url: str = GEMINI_OPENAI_BASE_URL
    chat_max_tokens: int = 2048

    image_model: str = "imagen-3.0-generate-002"
    image_base_url: str = GEMINI_OPENAI_BASE_URL
    image_api_key: Optional[str] = None

    cors_origins: List[str] = ["http://localhost:5173"]
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"

    @property
    def session_ttl_seconds(self) -> int:
        return self.session_ttl_days * 24 * 60 * 60

    @property
    def google_oauth_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def hosted_users_configured(self) -> bool:
        return bool(self.hosted_users_api_url and self.hosted_users_api_key)


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def load_settings(dotenv_path: Optional[str] = None) -> Settings:
    """Build a Settings object from environment variables.

    Variables already present in the environment win over the ones in the .env file.

    Args:
        dotenv_path (Optional[str]): Explicit path of the .env file. Defaults to python-dotenv's lookup.

    Returns:
        Settings: The immutable settings object handed to create_app.
    """
    load_dotenv(dotenv_path)

    values = {}
    for field_name in Settings.model_fields:
        raw = os.getenv(field_name.upper())
        if raw is None or raw == "":
            continue
        if field_name == "cors_origins":
            values[field_name] = _split(raw)
        else:
            values[field_name] = raw

    database_url = values.get("database_url")
    if database_url and database_url.startswith("postgres://"):
        values["database_url"] = database_url.replace("postgres://", "postgresql://", 1)

    return Settings(**values)
