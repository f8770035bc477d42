"""
chat_routes.py

This module contains the FastAPI Route that sends a message and streams the reply
"""

import logging

from fastapi import APIRouter, Depends, Request
from starlette.background import BackgroundTask

from chatgateway.api.api_models import Principal, SendMessageRequest
from chatgateway.api.context import GatewayContext, get_context
from chatgateway.api.errors import InvalidInput
from chatgateway.api.identity import get_current_user
from chatgateway.api.streamer import SSEStreamer

logger = logging.getLogger(__name__)
router = APIRouter(tags=["chat"])


@router.post("/chats/{chat_id}/messages")
async def send_message(
    chat_id: int,
    request_body: SendMessageRequest,
    request: Request,
    current_user: Principal = Depends(get_current_user),
    context: GatewayContext = Depends(get_context),
):
    """
    Add a message to a chat and stream the model's reply as Server-Sent Events.

    Ownership and the user's message are settled before the stream opens, so those
    failures are ordinary 404/500 responses. Everything after that is reported in-stream.
    """
    content = request_body.content
    if not content or not content.strip():
        raise InvalidInput("Message content is required")

    turn = await context.relay.begin(chat_id, current_user, content)
    logger.info(f"Chat {chat_id}: streaming reply to user {current_user.id}")

    return SSEStreamer(
        turn.events(is_disconnected=request.is_disconnected),
        background=BackgroundTask(turn.close),
    ).stream()
