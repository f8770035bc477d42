"""
credential_store.py

This module persists password credentials and opaque session tokens
"""

import logging
import secrets
import time
import uuid
from typing import Optional

from passlib.context import CryptContext
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from chatgateway.api.api_models import Principal
from chatgateway.api.errors import Conflict, PersistenceError
from chatgateway.api.models import OAUTH_PASSWORD_SENTINEL, AuthSession, User


logger = logging.getLogger(__name__)


def build_password_context(rounds: int = 10) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


def normalize_email(email: str) -> str:
    return str(email).strip().lower()


class CredentialStore:
    """Handles credential and session database operations.

    Attributes:
        db (Session): The database session the store works in.
        pwd_context (Optional[CryptContext]): Hashing policy for passwords. Only needed to create
            accounts or verify passwords; session lookups work without it.
    """

    def __init__(self, db: Session, pwd_context: Optional[CryptContext] = None):
        self.db = db
        self.pwd_context = pwd_context

    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.exec(select(User).where(User.email == normalize_email(email))).first()

    def create_user(self, email: str, password: str) -> User:
        """Create a password account.

        Raises:
            Conflict: If the email is already registered (case-insensitive).
            PersistenceError: If the insert fails for another reason.
        """
        email = normalize_email(email)
        if self.get_by_email(email):
            raise Conflict()

        user = User(
            id=f"ep-{uuid.uuid4()}",
            email=email,
            password_hash=self.pwd_context.hash(password),
        )
        return self._insert_user(user)

    def get_or_create_oauth_user(self, email: str) -> User:
        """Return the account for a federated email, creating one with the sentinel hash."""
        email = normalize_email(email)
        user = self.get_by_email(email)
        if user:
            return user

        user = User(
            id=f"google-{uuid.uuid4()}",
            email=email,
            password_hash=OAUTH_PASSWORD_SENTINEL,
        )
        try:
            return self._insert_user(user)
        except Conflict:
            # Lost a race with a concurrent first sign-in for the same email.
            existing = self.get_by_email(email)
            if existing is None:
                raise PersistenceError("Failed to create account")
            return existing

    def _insert_user(self, user: User) -> User:
        try:
            self.db.add(user)
            self.db.commit()
            self.db.refresh(user)
            return user
        except IntegrityError:
            self.db.rollback()
            raise Conflict()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create user: {str(e)}")
            raise PersistenceError("Failed to create account")

    def verify_password(self, user: User, password: str) -> bool:
        if user.password_hash == OAUTH_PASSWORD_SENTINEL:
            return False
        if self.pwd_context.identify(user.password_hash) is None:
            return False
        return self.pwd_context.verify(password, user.password_hash)

    def create_session(self, user_id: str, ttl_seconds: int) -> AuthSession:
        """Issue a new session for the user.

        Args:
            user_id (str): The owner of the session.
            ttl_seconds (int): Lifetime of the session from now.

        Returns:
            AuthSession: The stored session, carrying the token to put in the cookie.
        """
        auth_session = AuthSession(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            expires_at=int(time.time()) + ttl_seconds,
        )
        try:
            self.db.add(auth_session)
            self.db.commit()
            self.db.refresh(auth_session)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create session for {user_id}: {str(e)}")
            raise PersistenceError("Failed to create session")
        return auth_session

    def resolve_session(self, token: str, now: Optional[int] = None) -> Optional[Principal]:
        """Return the principal of a non-expired session, or None."""
        if not token:
            return None
        now = int(time.time()) if now is None else now
        row = self.db.exec(
            select(AuthSession.user_id, User.email)
            .join(User, User.id == AuthSession.user_id)
            .where(AuthSession.token == token, AuthSession.expires_at > now)
        ).first()
        if row is None:
            return None
        user_id, email = row
        return Principal(id=user_id, email=email)

    def delete_session(self, token: str) -> None:
        """Delete a session. Deleting an unknown token is not an error."""
        if not token:
            return
        try:
            self.db.exec(delete(AuthSession).where(AuthSession.token == token))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to delete session: {str(e)}")
            raise PersistenceError("Failed to end session")
