import asyncio
import json

import httpx

from integrations.credentials import EnvCredentialProvider, InMemoryCredentialProvider
from integrations.email_transport import HttpEmailTransport
from shared.workflow_contracts import IntegrationCredential


def test_email_dry_run_skips_network(monkeypatch) -> None:
    monkeypatch.setenv("EMAIL_DRY_RUN", "yes")
    monkeypatch.delenv("EMAIL_API_URL", raising=False)

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    transport = HttpEmailTransport(transport=httpx.MockTransport(handler))
    result = asyncio.run(transport.send(to="a@b.c", subject="s", body="b"))
    assert result == {"success": True, "dry_run": True, "to": "a@b.c", "subject": "s"}


def test_email_posts_json_payload(monkeypatch) -> None:
    monkeypatch.setenv("EMAIL_DRY_RUN", "false")
    monkeypatch.setenv("EMAIL_API_URL", "https://mail.example.com/send")
    monkeypatch.setenv("EMAIL_API_KEY", "mk")
    monkeypatch.setenv("EMAIL_FROM", "bot@example.com")
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(202, json={"id": "msg-1"})

    transport = HttpEmailTransport(transport=httpx.MockTransport(handler))
    result = asyncio.run(transport.send(to=" ana@example.com ", subject="Hi", body="Hello"))

    assert result == {"success": True, "dry_run": False, "to": "ana@example.com", "message_id": "msg-1"}
    assert seen["auth"] == "Bearer mk"
    assert seen["body"] == {"from": "bot@example.com", "to": "ana@example.com", "subject": "Hi", "text": "Hello"}


def test_email_failures_are_reported_not_raised(monkeypatch) -> None:
    monkeypatch.setenv("EMAIL_DRY_RUN", "false")
    monkeypatch.setenv("EMAIL_API_URL", "https://mail.example.com/send")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    transport = HttpEmailTransport(transport=httpx.MockTransport(handler))
    failed = asyncio.run(transport.send(to="a@b.c", subject="s", body="b"))
    assert failed["success"] is False
    assert failed["error"] == "email_http_error 500: boom"

    no_recipient = asyncio.run(transport.send(to="  ", subject="s", body="b"))
    assert no_recipient["success"] is False

    monkeypatch.delenv("EMAIL_API_URL")
    unconfigured = asyncio.run(HttpEmailTransport().send(to="a@b.c", subject="s", body="b"))
    assert unconfigured == {"success": False, "error": "EMAIL_API_URL is not configured."}


def test_in_memory_credentials_are_per_user() -> None:
    provider = InMemoryCredentialProvider({"alice": [IntegrationCredential(integration_id="crm", api_key="k")]})
    assert provider.get("alice", "crm").api_key == "k"
    assert provider.get("bob", "crm") is None
    assert provider.connections_for("bob") == {}


def test_env_credentials_support_wildcard_and_skip_invalid_entries() -> None:
    raw = json.dumps(
        {
            "*": [{"integration_id": "sms", "accessToken": "shared"}],
            "alice": [{"integration_id": "sms", "accessToken": "mine"}, {"provider": "missing-id"}],
        }
    )
    provider = EnvCredentialProvider(raw)

    assert provider.get("alice", "sms").access_token == "mine"
    assert provider.get("bob", "sms").access_token == "shared"
    assert set(provider.connections_for("bob")) == {"sms"}
    assert provider.connections_for("alice")["sms"].access_token == "mine"


def test_env_credentials_ignore_malformed_json(monkeypatch) -> None:
    monkeypatch.setenv("INTEGRATION_CREDENTIALS_JSON", "{not json")
    assert EnvCredentialProvider().connections_for("alice") == {}
