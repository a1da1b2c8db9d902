import json

import httpx
import pytest

from app.clients.resend import OutboundEmail, ResendClient
from app.core.errors import EmailDeliveryError


def _email() -> OutboundEmail:
    return OutboundEmail(
        from_address="Tutor <noreply@example.com>",
        to_addresses=["ops@example.com"],
        subject="Hello",
        html="<p>Hi</p>",
        text="Hi",
        headers={"X-Feedback-Reference": "FB-1"},
    )


@pytest.mark.asyncio
async def test_send_posts_payload_and_returns_id():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "email_abc"})

    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.resend.test"
    )
    client = ResendClient("re_key", http_client=http_client)

    email_id = await client.send(_email())

    assert email_id == "email_abc"
    assert seen["path"] == "/emails"
    assert seen["auth"] == "Bearer re_key"
    assert seen["body"]["to"] == ["ops@example.com"]
    assert seen["body"]["headers"] == {"X-Feedback-Reference": "FB-1"}
    await http_client.aclose()


@pytest.mark.asyncio
async def test_send_raises_with_provider_details():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"message": "Invalid `to` field"})

    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.resend.test"
    )
    client = ResendClient("re_key", http_client=http_client)

    with pytest.raises(EmailDeliveryError) as excinfo:
        await client.send(_email())

    assert excinfo.value.code == "E_EMAIL_REJECTED"
    assert excinfo.value.status_code == 500
    assert excinfo.value.details == {"message": "Invalid `to` field"}
    assert "Invalid `to` field" in str(excinfo.value)
    await http_client.aclose()


def test_client_requires_api_key():
    with pytest.raises(ValueError):
        ResendClient("")
