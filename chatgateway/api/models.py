"""
models.py

This module contains Data Models created for the Database
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlmodel import Field, Relationship, SQLModel


OAUTH_PASSWORD_SENTINEL = "oauth-google"


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp. SQLModel's UTC datetime columns reject naive values."""
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """User model holding the credential of a local account.

    Attributes:
        id (str): Opaque identifier, prefixed by the way the account was created.
        email (str): Lowercased email address. Indexed and unique.
        password_hash (str): bcrypt hash, or the OAuth sentinel for accounts created
            through Google sign-in (those can never log in by password).
        created_at (datetime): When the account was created.
        sessions (List[AuthSession]): Local sessions issued to the user.
    """

    __tablename__ = "users"

    id: str = Field(primary_key=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow)

    sessions: List["AuthSession"] = Relationship(
        back_populates="user", sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )


class AuthSession(SQLModel, table=True):
    """An opaque session token issued at login, registration or OAuth exchange.

    Attributes:
        token (str): Unguessable token carried in the session cookie.
        user_id (str): Owner of the session.
        expires_at (int): Expiry as epoch seconds. Rows past expiry are ignored, not deleted.
        created_at (datetime): When the session was issued.
    """

    __tablename__ = "auth_sessions"

    token: str = Field(primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    expires_at: int
    created_at: datetime = Field(default_factory=utcnow)

    user: Optional[User] = Relationship(back_populates="sessions")


class Chat(SQLModel, table=True):
    """A conversation thread owned by one user.

    Attributes:
        id (Optional[int]): The unique identifier for the thread.
        user_id (str): The owner. Every read and write filters on it.
        title (str): Set from the first user message, or given at creation.
        created_at (datetime): When the thread was created.
        updated_at (datetime): Bumped on every new message.
        messages (List[Message]): Messages of the thread, deleted with it.
    """

    __tablename__ = "chats"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    title: str = Field(default="New Chat")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    messages: List["Message"] = Relationship(
        back_populates="chat", sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )


class Message(SQLModel, table=True):
    """An immutable message in a thread.

    Attributes:
        id (Optional[int]): Autoincrement key; breaks ties between equal timestamps.
        chat_id (int): The thread the message belongs to.
        role (str): "user" or "assistant".
        content (str): The message text.
        created_at (datetime): When the message was written.
    """

    __tablename__ = "messages"

    id: Optional[int] = Field(default=None, primary_key=True)
    chat_id: int = Field(foreign_key="chats.id", index=True)
    role: str
    content: str
    created_at: datetime = Field(default_factory=utcnow)

    chat: Optional[Chat] = Relationship(back_populates="messages")


class GeneratedImage(SQLModel, table=True):
    """An image produced by the image provider, embedded as a data URI."""

    __tablename__ = "generated_images"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    prompt: str
    image_url: str
    aspect_ratio: str = Field(default="1:1")
    created_at: datetime = Field(default_factory=utcnow)
