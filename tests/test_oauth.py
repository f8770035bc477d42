import asyncio
import json
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from fastapi.testclient import TestClient

from chatgateway.api.errors import MissingEmail, ProviderError
from chatgateway.config import Settings
from chatgateway.main import create_app
from chatgateway.providers.oauth import GoogleOAuthClient, HostedUsersClient
from conftest import FakeChatProvider, FakeImageProvider, register


def google_transport(email="Fed@Example.com", token_status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "oauth2.googleapis.com":
            if token_status != 200:
                return httpx.Response(token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "google-access"})
        if request.url.host == "www.googleapis.com":
            assert request.headers["Authorization"] == "Bearer google-access"
            return httpx.Response(200, json={"email": email})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def hosted_transport(users=None, seen=None):
    users = users or {"hosted-token": {"id": "hosted-user-1", "email": "hosted@example.com"}}
    seen = seen if seen is not None else []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        assert request.headers["x-api-key"] == "service-key"
        path = request.url.path
        if path == "/oauth/google/redirect_url":
            return httpx.Response(200, json={"redirect_url": "https://hosted.example.com/login"})
        if path == "/sessions" and request.method == "POST":
            body = json.loads(request.content)
            if body.get("code") != "good-code":
                return httpx.Response(400, json={"error": "bad code"})
            return httpx.Response(200, json={"session_token": "hosted-token"})
        if path == "/users/me":
            token = request.headers.get("Authorization", "").removeprefix("Bearer ")
            if token not in users:
                return httpx.Response(401)
            return httpx.Response(200, json=users[token])
        if path == "/sessions/current" and request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def make_app(**overrides):
    settings = Settings(database_url="sqlite://", password_hash_rounds=4, **overrides)
    return create_app(settings, chat_provider=FakeChatProvider(), image_provider=FakeImageProvider())


@pytest.fixture
def google_app():
    app = make_app(
        google_client_id="client-id",
        google_client_secret="client-secret",
        client_url="https://chat.example.com/",
    )
    app.state.context.google_oauth.transport = google_transport()
    return app


@pytest.fixture
def hosted_app():
    app = make_app(hosted_users_api_url="https://users.example.com/", hosted_users_api_key="service-key")
    app.state.context.hosted_users.transport = hosted_transport()
    return app


def test_fetch_email_is_lowercased():
    client = GoogleOAuthClient("id", "secret", transport=google_transport(email="  Fed@Example.COM "))
    assert asyncio.run(client.fetch_email("code", "https://x/auth/callback")) == "fed@example.com"


def test_fetch_email_without_email_is_missing_email():
    client = GoogleOAuthClient("id", "secret", transport=google_transport(email=""))
    with pytest.raises(MissingEmail):
        asyncio.run(client.fetch_email("code", "https://x/auth/callback"))


def test_fetch_email_rejected_code_is_provider_error():
    client = GoogleOAuthClient("id", "secret", transport=google_transport(token_status=400))
    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(client.fetch_email("code", "https://x/auth/callback"))
    assert excinfo.value.status_code == 401


def test_redirect_url_not_configured(client):
    response = client.get("/oauth/redirect_url")
    assert response.status_code == 503
    assert response.json()["code"] == "not_configured"


def test_sessions_not_configured(client):
    response = client.post("/sessions", json={"code": "abc"})
    assert response.status_code == 503


def test_google_redirect_url_uses_client_url(google_app):
    response = TestClient(google_app).get("/oauth/redirect_url")
    assert response.status_code == 200
    url = urlsplit(response.json()["redirectUrl"])
    query = parse_qs(url.query)
    assert url.netloc == "accounts.google.com"
    assert query["client_id"] == ["client-id"]
    assert query["redirect_uri"] == ["https://chat.example.com/auth/callback"]


def test_redirect_uri_debug(google_app):
    response = TestClient(google_app).get("/oauth/redirect_uri_debug")
    assert response.json()["redirectUri"] == "https://chat.example.com/auth/callback"


def test_google_exchange_creates_account_and_local_session(google_app):
    client = TestClient(google_app)
    assert client.post("/sessions", json={}).status_code == 400

    response = client.post("/sessions", json={"code": "auth-code"})
    assert response.status_code == 200
    assert response.json() == {"success": True}

    me = client.get("/me").json()
    assert me["email"] == "fed@example.com"
    assert me["id"].startswith("google-")

    # A second sign-in reuses the account.
    again = TestClient(google_app)
    again.post("/sessions", json={"code": "auth-code"})
    assert again.get("/me").json() == me


def test_google_exchange_links_existing_password_account(google_app):
    client = TestClient(google_app)
    registered = register(client, email="fed@example.com")

    federated = TestClient(google_app)
    federated.post("/sessions", json={"code": "auth-code"})
    assert federated.get("/me").json() == registered


def test_google_exchange_missing_email(google_app):
    google_app.state.context.google_oauth.transport = google_transport(email="")
    response = TestClient(google_app).post("/sessions", json={"code": "auth-code"})
    assert response.status_code == 400
    assert response.json()["code"] == "missing_email"


def test_hosted_redirect_url(hosted_app):
    response = TestClient(hosted_app).get("/oauth/redirect_url")
    assert response.json() == {"redirectUrl": "https://hosted.example.com/login"}


def test_hosted_exchange_sets_cross_site_cookie(hosted_app):
    response = TestClient(hosted_app).post("/sessions", json={"code": "good-code"})
    assert response.status_code == 200
    cookie = response.headers["set-cookie"]
    assert cookie.startswith("hosted_session_token=hosted-token")
    assert "secure" in cookie.lower()
    assert "samesite=none" in cookie.lower()


def test_hosted_exchange_rejected_code(hosted_app):
    response = TestClient(hosted_app).post("/sessions", json={"code": "bad-code"})
    assert response.status_code == 401
    assert response.json()["code"] == "provider_error"


def test_hosted_session_resolves_when_local_session_absent(hosted_app):
    client = TestClient(hosted_app)
    client.cookies.set("hosted_session_token", "hosted-token")
    assert client.get("/me").json() == {"id": "hosted-user-1", "email": "hosted@example.com"}


def test_local_session_wins_over_hosted_session(hosted_app):
    client = TestClient(hosted_app)
    registered = register(client)
    seen = []
    hosted_app.state.context.hosted_users.transport = hosted_transport(seen=seen)
    client.cookies.set("hosted_session_token", "hosted-token")

    assert client.get("/me").json() == registered
    assert seen == []


def test_invalid_hosted_session_is_unauthenticated(hosted_app):
    client = TestClient(hosted_app)
    client.cookies.set("hosted_session_token", "stale")
    assert client.get("/me").status_code == 401


def test_logout_ends_hosted_session(hosted_app):
    seen = []
    hosted_app.state.context.hosted_users.transport = hosted_transport(seen=seen)
    client = TestClient(hosted_app)
    client.cookies.set("hosted_session_token", "hosted-token")

    assert client.get("/logout").json() == {"success": True}
    assert [(r.method, r.url.path) for r in seen] == [("DELETE", "/sessions/current")]


def test_hosted_client_get_user_treats_rejected_token_as_no_session():
    client = HostedUsersClient("https://users.example.com", "service-key", transport=hosted_transport())
    assert asyncio.run(client.get_user("unknown")) is None
