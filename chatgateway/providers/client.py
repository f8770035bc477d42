"""
client.py

This module creates and configures the chat completion client used by the Stream Relay
to interact with the remote generation model.
"""

import logging
from typing import AsyncGenerator, Optional, Sequence

from autogen_core import CancellationToken
from autogen_core.models import AssistantMessage, CreateResult, LLMMessage, UserMessage
from autogen_ext.models.openai import OpenAIChatCompletionClient

from chatgateway.api.errors import ProviderError
from chatgateway.api.transcript import TranscriptTurn


logger = logging.getLogger(__name__)


class ChatClientFactory:
    """ChatClientFactory is a factory class for creating an OpenAI-compatible chat client.

    This class initializes with the necessary parameters to connect to the chat model and provides a method to retrieve the client instance.

    Attributes:
        model (str): The model to be used for generation.
        base_url (str): The OpenAI-compatible endpoint serving the model.
        api_key (str): The API key for authenticating with the endpoint.
        max_completion_tokens (int): The maximum number of tokens for completion (default is 2048).
        _client (OpenAIChatCompletionClient or None): The client instance, initialized lazily.

    Methods:
        get_client(): Returns the client instance, creating it if it does not already exist.
    """

    def __init__(self, *, model, base_url, api_key, max_completion_tokens=2048):
        self.model = model
        self.base_url = base_url
        self.api_key = api_key
        self.max_completion_tokens = max_completion_tokens
        self._client = None

    def get_client(self):
        if self._client is None:
            self._client = OpenAIChatCompletionClient(
                model=self.model,
                base_url=self.base_url,
                api_key=self.api_key,
                max_tokens=self.max_completion_tokens,
                model_info={
                    "vision": False,
                    "function_calling": False,
                    "json_output": False,
                    "structured_output": False,
                    "family": "unknown",
                },
            )
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.close()
            self._client = None


def to_llm_message(turn: TranscriptTurn) -> LLMMessage:
    if turn.role == "model":
        return AssistantMessage(content=turn.content, source="model")
    return UserMessage(content=turn.content, source="user")


class ChatProvider:
    """Streams a reply from the generation model for a transcript plus one new user turn."""

    def __init__(self, factory: ChatClientFactory):
        self.factory = factory

    async def stream_reply(
        self,
        history: Sequence[TranscriptTurn],
        message: str,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> AsyncGenerator[str, None]:
        """Yield text fragments of the model's reply as they arrive.

        Completion is signalled by the client's final CreateResult; if the underlying
        stream ends without one, the stream is treated as malformed.

        Args:
            history (Sequence[TranscriptTurn]): Prior turns, oldest first.
            message (str): The new user turn.
            cancellation_token (Optional[CancellationToken]): Cancels the upstream request.

        Yields:
            str: Non-empty text fragments in arrival order.

        Raises:
            ProviderError: If the stream ends without a completion result.
        """
        messages = [to_llm_message(turn) for turn in history]
        messages.append(UserMessage(content=message, source="user"))

        client = self.factory.get_client()
        streamed_any = False
        completed = False

        async for item in client.create_stream(messages, cancellation_token=cancellation_token):
            if isinstance(item, CreateResult):
                completed = True
                # Some endpoints answer in one piece instead of streaming.
                if not streamed_any and isinstance(item.content, str) and item.content:
                    yield item.content
                logger.debug(f"Provider finished with reason: {item.finish_reason}")
                continue
            if item:
                streamed_any = True
                yield item

        if not completed:
            raise ProviderError("Provider stream ended before completion")

    async def close(self):
        await self.factory.close()
