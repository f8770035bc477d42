"""
conversation_store.py

This module persists conversation threads and their messages
"""

import logging
from typing import List, Optional

from sqlalchemy import delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from chatgateway.api.errors import PersistenceError
from chatgateway.api.models import Chat, Message, utcnow


logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 50


class ConversationStore:
    """Handles Thread and Message database operations.

    Every lookup by thread id also filters by owner, so a thread owned by someone
    else looks exactly like a thread that does not exist.
    """

    def __init__(self, db: Session):
        self.db = db

    def list_chats(self, user_id: str) -> List[Chat]:
        """Threads of the user, most recently updated first."""
        return self.db.exec(
            select(Chat)
            .where(Chat.user_id == user_id)
            .order_by(Chat.updated_at.desc(), Chat.id.desc())
        ).all()

    def create_chat(self, user_id: str, title: Optional[str] = None) -> Chat:
        chat = Chat(user_id=user_id, title=title or "New Chat")
        try:
            self.db.add(chat)
            self.db.commit()
            self.db.refresh(chat)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create chat for {user_id}: {str(e)}")
            raise PersistenceError("Failed to create chat")
        return chat

    def get_owned_chat(self, chat_id: int, user_id: str) -> Optional[Chat]:
        return self.db.exec(
            select(Chat).where(Chat.id == chat_id, Chat.user_id == user_id)
        ).first()

    def delete_chat(self, chat: Chat) -> None:
        """Delete a thread and all of its messages in one transaction."""
        try:
            # Messages go first so no orphan can survive a partial failure.
            self.db.exec(delete(Message).where(Message.chat_id == chat.id))
            self.db.delete(chat)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to delete chat {chat.id}: {str(e)}")
            raise PersistenceError("Failed to delete chat")

    def list_messages(
        self, chat_id: int, before_message_id: Optional[int] = None
    ) -> List[Message]:
        """Messages of a thread in creation order.

        Args:
            chat_id (int): The thread to read.
            before_message_id (Optional[int]): When given, only messages written before this one.

        Returns:
            List[Message]: Messages ordered by creation time, then insertion order.
        """
        statement = select(Message).where(Message.chat_id == chat_id)
        if before_message_id is not None:
            statement = statement.where(Message.id < before_message_id)
        return self.db.exec(
            statement.order_by(Message.created_at.asc(), Message.id.asc())
        ).all()

    def count_messages(self, chat_id: int) -> int:
        return self.db.exec(
            select(func.count()).select_from(Message).where(Message.chat_id == chat_id)
        ).one()

    def add_message(self, chat_id: int, role: str, content: str) -> Message:
        """Append a message to a thread and commit it.

        Raises:
            PersistenceError: If the write fails. The transaction is rolled back.
        """
        message = Message(chat_id=chat_id, role=role, content=content)
        try:
            self.db.add(message)
            self.db.commit()
            self.db.refresh(message)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to save {role} message in chat {chat_id}: {str(e)}")
            raise PersistenceError("Failed to save message")
        return message

    def set_title_from(self, chat: Chat, content: str) -> None:
        self._update(chat, title=content[:TITLE_MAX_CHARS])

    def touch(self, chat: Chat) -> None:
        self._update(chat)

    def _update(self, chat: Chat, **fields) -> None:
        for name, value in fields.items():
            setattr(chat, name, value)
        chat.updated_at = utcnow()
        try:
            self.db.add(chat)
            self.db.commit()
            self.db.refresh(chat)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update chat {chat.id}: {str(e)}")
            raise PersistenceError("Failed to update chat")
