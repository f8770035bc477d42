"""
streamer.py

This module contains the implementation of SSE and the Pydantic Models used by it
"""

import logging
from enum import Enum
from typing import AsyncIterator, Optional

from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from starlette.background import BackgroundTask


logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class StreamEventType(str, Enum):
    """Enum class representing the different types of stream events.

    Attributes:
        CONTENT (str): A fragment of the assistant's reply.
        DONE (str): The reply was received in full and persisted.
        ERROR (str): The stream ended in failure.
    """

    CONTENT = "content"
    DONE = "done"
    ERROR = "error"


class StreamEvent(BaseModel):
    """One event of the reply stream. Exactly one of content, done or error is set.

    Attributes:
        content (str, optional): A text fragment.
        done (bool, optional): True on the terminal success event.
        error (str, optional): Caller-safe failure message on the terminal error event.
        code (str, optional): Machine-readable error code accompanying error.
    """

    content: Optional[str] = None
    done: Optional[bool] = None
    error: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def chunk(cls, fragment: str) -> "StreamEvent":
        return cls(content=fragment)

    @classmethod
    def completed(cls) -> "StreamEvent":
        return cls(done=True)

    @classmethod
    def failure(cls, message: str, code: str) -> "StreamEvent":
        return cls(error=message, code=code)

    @property
    def event_type(self) -> StreamEventType:
        if self.error is not None:
            return StreamEventType.ERROR
        if self.done:
            return StreamEventType.DONE
        return StreamEventType.CONTENT

    @property
    def is_terminal(self) -> bool:
        return self.event_type != StreamEventType.CONTENT

    def to_sse(self) -> str:
        return f"data: {self.model_dump_json(exclude_none=True)}\n\n"


class SSEStreamer:
    """Server-Sent Events streamer for the reply relay."""

    def __init__(self, events: AsyncIterator[StreamEvent], background: Optional[BackgroundTask] = None):
        """
        Initialize the SSE streamer.

        Args:
            events: The async iterator producing stream events
            background: Task run once the response has finished, sent or not
        """
        self.events = events
        self.background = background

    def stream(self) -> StreamingResponse:
        """
        Create a streaming response for real-time communication.

        Returns:
            StreamingResponse: FastAPI streaming response for SSE
        """

        async def event_generator():
            """
            Internal generator that frames events and guarantees a terminal event.

            Yields:
                str: Server-sent event formatted data
            """
            terminated = False
            try:
                async for event in self.events:
                    terminated = event.is_terminal
                    yield event.to_sse()
            except Exception:
                logger.exception("Error while streaming response")
                if not terminated:
                    yield StreamEvent.failure(
                        "Failed to generate response", "provider_error"
                    ).to_sse()

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
            background=self.background,
        )
