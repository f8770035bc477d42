import asyncio
import json

import httpx
import pytest
from autogen_core.models import AssistantMessage, CreateResult, RequestUsage, UserMessage

from chatgateway.api.errors import ProviderError
from chatgateway.api.transcript import TranscriptTurn
from chatgateway.providers.client import ChatProvider, to_llm_message
from chatgateway.providers.images import ImagePayload, ImageProvider


def create_result(content):
    return CreateResult(
        finish_reason="stop",
        content=content,
        usage=RequestUsage(prompt_tokens=3, completion_tokens=2),
        cached=False,
    )


class StubChatClient:
    """Replays create_stream items and records the submitted messages."""

    def __init__(self, items):
        self.items = items
        self.messages = None

    async def create_stream(self, messages, cancellation_token=None):
        self.messages = list(messages)
        for item in self.items:
            yield item


class StubFactory:
    def __init__(self, client):
        self.client = client
        self.closed = False

    def get_client(self):
        return self.client

    async def close(self):
        self.closed = True


def run_stream(items, history=(), message="next"):
    client = StubChatClient(items)
    provider = ChatProvider(StubFactory(client))
    fragments = []

    async def consume():
        async for fragment in provider.stream_reply(list(history), message):
            fragments.append(fragment)

    return client, fragments, consume


def test_streamed_fragments_are_not_repeated_by_final_result():
    _, fragments, consume = run_stream(["Hel", "", "lo", create_result("Hello")])
    asyncio.run(consume())
    assert fragments == ["Hel", "lo"]


def test_one_piece_result_is_yielded_once():
    _, fragments, consume = run_stream([create_result("Whole reply")])
    asyncio.run(consume())
    assert fragments == ["Whole reply"]


def test_stream_without_final_result_is_malformed():
    _, fragments, consume = run_stream(["Hel", "lo"])
    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(consume())
    assert fragments == ["Hel", "lo"]
    assert excinfo.value.code == "provider_error"


def test_history_is_submitted_as_autogen_messages():
    history = [TranscriptTurn(role="user", content="q"), TranscriptTurn(role="model", content="a")]
    client, _, consume = run_stream([create_result("ok")], history=history, message="follow-up")
    asyncio.run(consume())

    assert [type(m) for m in client.messages] == [UserMessage, AssistantMessage, UserMessage]
    assert [m.content for m in client.messages] == ["q", "a", "follow-up"]


def test_to_llm_message_maps_model_role_to_assistant():
    assert isinstance(to_llm_message(TranscriptTurn(role="model", content="a")), AssistantMessage)
    assert isinstance(to_llm_message(TranscriptTurn(role="user", content="q")), UserMessage)


def test_chat_provider_close_closes_factory():
    factory = StubFactory(StubChatClient([]))
    asyncio.run(ChatProvider(factory).close())
    assert factory.closed is True


def image_provider_for(body, requests):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=body)

    return ImageProvider(
        model="imagen-test",
        base_url="https://images.example.com/v1/",
        api_key="test-key",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def test_image_provider_returns_first_inline_payload():
    requests = []
    provider = image_provider_for(
        {"created": 0, "data": [{"url": "https://cdn.example.com/x.png"}, {"b64_json": "Zmlyc3Q="}, {"b64_json": "c2Vjb25k"}]},
        requests,
    )

    payload = asyncio.run(provider.generate("a lighthouse", "16:9"))

    assert payload == ImagePayload(data="Zmlyc3Q=", mime_type="image/png")
    assert requests[0].url.path == "/v1/images/generations"
    sent = json.loads(requests[0].content)
    assert sent["model"] == "imagen-test"
    assert sent["size"] == "1792x1024"
    assert sent["response_format"] == "b64_json"


def test_image_provider_uses_reported_output_format():
    provider = image_provider_for({"created": 0, "output_format": "webp", "data": [{"b64_json": "d2VicA=="}]}, [])
    payload = asyncio.run(provider.generate("a lighthouse", "1:1"))
    assert payload.mime_type == "image/webp"


@pytest.mark.parametrize("data", [[], [{"url": "https://cdn.example.com/x.png"}]])
def test_image_provider_without_inline_payload_returns_none(data):
    provider = image_provider_for({"created": 0, "data": data}, [])
    assert asyncio.run(provider.generate("a lighthouse", "1:1")) is None
