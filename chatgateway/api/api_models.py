"""
api_models.py

This module consists of Pydantic Data Models used by the Routes
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class Principal(BaseModel):
    """The authenticated identity attached to a request.

    Attributes:
        id (str): Opaque user identifier.
        email (str): The user's email address.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    email: str


class CredentialsRequest(BaseModel):
    """Body of the register and login endpoints. Presence is checked by the service."""

    email: Optional[str] = None
    password: Optional[str] = None


class SessionExchangeRequest(BaseModel):
    code: Optional[str] = None


class CreateChatRequest(BaseModel):
    title: Optional[str] = None


class SendMessageRequest(BaseModel):
    content: Optional[str] = None


class ImageRequest(BaseModel):
    prompt: Optional[str] = None
    aspectRatio: str = "1:1"


class UserResponse(BaseModel):
    success: bool = True
    user: Principal


class ChatRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    title: str
    created_at: datetime
    updated_at: datetime


class MessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    chat_id: int
    role: str
    content: str
    created_at: datetime


class ImageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    prompt: str
    image_url: str
    aspect_ratio: str
    created_at: datetime


class ChatListResponse(BaseModel):
    chats: List[ChatRead]


class ChatResponse(BaseModel):
    chat: ChatRead


class MessageListResponse(BaseModel):
    messages: List[MessageRead]


class ImageResponse(BaseModel):
    image: ImageRead


class ImageListResponse(BaseModel):
    images: List[ImageRead]
