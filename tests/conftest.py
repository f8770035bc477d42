import pytest
from fastapi.testclient import TestClient

from chatgateway.config import Settings
from chatgateway.main import create_app
from chatgateway.providers.images import ImagePayload


class FakeChatProvider:
    """Replays scripted fragments; optionally fails after a number of them."""

    def __init__(self, fragments=None, fail_after=None, error=None):
        self.fragments = ["Hi", " there", "!"] if fragments is None else fragments
        self.fail_after = fail_after
        self.error = error or RuntimeError("upstream exploded")
        self.calls = []
        self.closed = False

    async def stream_reply(self, history, message, cancellation_token=None):
        self.calls.append({"history": list(history), "message": message})
        for index, fragment in enumerate(self.fragments):
            if self.fail_after is not None and index == self.fail_after:
                raise self.error
            yield fragment
        if self.fail_after is not None and self.fail_after >= len(self.fragments):
            raise self.error

    async def close(self):
        self.closed = True


class FakeImageProvider:
    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error
        self.calls = []

    async def generate(self, prompt, aspect_ratio):
        self.calls.append((prompt, aspect_ratio))
        if self.error is not None:
            raise self.error
        return self.payload


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        password_hash_rounds=4,
        gemini_api_key="test-key",
        cors_origins=["http://localhost:5173"],
    )


@pytest.fixture
def chat_provider():
    return FakeChatProvider()


@pytest.fixture
def image_provider():
    return FakeImageProvider(payload=ImagePayload(data="aGVsbG8=", mime_type="image/png"))


@pytest.fixture
def app(settings, chat_provider, image_provider):
    return create_app(settings, chat_provider=chat_provider, image_provider=image_provider)


@pytest.fixture
def context(app):
    return app.state.context


@pytest.fixture
def client(app):
    return TestClient(app)


def register(client, email="ada@example.com", password="secret123"):
    response = client.post("/auth/register", json={"email": email, "password": password})
    assert response.status_code == 201, response.text
    return response.json()["user"]


@pytest.fixture
def user(client):
    return register(client)


@pytest.fixture
def other_client(app):
    other = TestClient(app)
    register(other, email="grace@example.com")
    return other
