"""
transcript.py

This module assembles the prior messages of a thread into provider-ready history
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from chatgateway.api.api_models import Principal
from chatgateway.api.conversation_store import ConversationStore
from chatgateway.api.errors import NotFound


# The generation provider calls the assistant side of a conversation "model".
PROVIDER_ROLES = {"assistant": "model", "user": "user"}


class TranscriptTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str
    content: str


class TranscriptBuilder:
    """Builds the ordered role/content history submitted to the generation provider."""

    def __init__(self, store: ConversationStore):
        self.store = store

    def build_history(
        self,
        chat_id: int,
        principal: Principal,
        before_message_id: Optional[int] = None,
    ) -> List[TranscriptTurn]:
        """Return the thread's messages as provider turns, oldest first.

        Args:
            chat_id (int): The thread to read.
            principal (Principal): The caller. Must own the thread.
            before_message_id (Optional[int]): Exclude this message and everything after it.

        Returns:
            List[TranscriptTurn]: The transcript with assistant turns mapped to "model".

        Raises:
            NotFound: If the thread does not exist or belongs to someone else.
        """
        chat = self.store.get_owned_chat(chat_id, principal.id)
        if chat is None:
            raise NotFound("Chat not found")

        return [
            TranscriptTurn(role=PROVIDER_ROLES.get(message.role, message.role), content=message.content)
            for message in self.store.list_messages(chat_id, before_message_id=before_message_id)
        ]
