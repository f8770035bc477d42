"""
conversation_routes.py

This module contains FastAPI Routes for Chats (conversation threads) and their messages
"""

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from chatgateway.api.api_models import (
    ChatListResponse,
    ChatResponse,
    CreateChatRequest,
    MessageListResponse,
    Principal,
)
from chatgateway.api.context import GatewayContext, get_context
from chatgateway.api.conversation_store import ConversationStore
from chatgateway.api.db import get_session
from chatgateway.api.errors import NotFound
from chatgateway.api.identity import get_current_user


router = APIRouter(prefix="/chats", tags=["conversations"])


@router.get("", response_model=ChatListResponse)
async def get_chats(
    current_user: Principal = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Retrieve chats for the current user, most recently updated first.

    Args:
        current_user (Principal, optional): The caller. Defaults to the result of the `get_current_user` dependency.
        session (Session, optional): The database session to use for the query.
            Defaults to the result of the `get_session` dependency.

    Returns:
        dict: A dictionary containing a list of chats under the key "chats".
    """
    chats = ConversationStore(session).list_chats(current_user.id)
    return {"chats": chats}


@router.post("", response_model=ChatResponse, status_code=status.HTTP_201_CREATED)
async def create_chat(
    body: CreateChatRequest,
    current_user: Principal = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Create an empty chat, titled "New Chat" unless a title is given."""
    chat = ConversationStore(session).create_chat(current_user.id, body.title)
    return {"chat": chat}


@router.delete("/{chat_id}")
async def delete_chat(
    chat_id: int,
    current_user: Principal = Depends(get_current_user),
    context: GatewayContext = Depends(get_context),
    session: Session = Depends(get_session),
):
    """Deletes a chat and its associated messages from the database.

    This asynchronous function verifies that the chat belongs to the caller and deletes it along with all of its messages in one transaction. A chat owned by someone else is reported exactly like a missing one.

    Args:
        chat_id (int): The ID of the chat to be deleted.
        current_user (Principal, optional): The user requesting the deletion.
        context (GatewayContext, optional): Holds the per-chat locks; a reply still streaming into the chat finishes first.
        session (Session, optional): The database session to use for the operation.

    Raises:
        NotFound: If the chat is not found, a 404 error is raised.

    Returns:
        dict: A success flag.
    """
    # Waits for a reply that is still streaming into this chat.
    async with context.thread_locks.get(chat_id):
        store = ConversationStore(session)
        chat = store.get_owned_chat(chat_id, current_user.id)
        if not chat:
            raise NotFound("Chat not found")

        store.delete_chat(chat)
    return {"success": True}


@router.get("/{chat_id}/messages", response_model=MessageListResponse)
async def get_messages(
    chat_id: int,
    current_user: Principal = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Retrieve the messages of a chat in creation order.

    Raises:
        NotFound: If the chat does not exist or is not owned by the caller.
    """
    store = ConversationStore(session)
    if not store.get_owned_chat(chat_id, current_user.id):
        raise NotFound("Chat not found")

    return {"messages": store.list_messages(chat_id)}
