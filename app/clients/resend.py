"""Client for the Resend transactional email API."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from app.core.errors import EmailDeliveryError


@dataclass(frozen=True)
class OutboundEmail:
    from_address: str
    to_addresses: list[str]
    subject: str
    html: str
    text: str
    headers: dict[str, str] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "from": self.from_address,
            "to": self.to_addresses,
            "subject": self.subject,
            "html": self.html,
            "text": self.text,
        }
        if self.headers:
            payload["headers"] = self.headers
        return payload


class ResendClient:
    """Minimal async Resend client."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.resend.com",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("RESEND_API_KEY is required to create a ResendClient.")
        self._api_key = api_key
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def send(self, email: OutboundEmail) -> str | None:
        """Send one email and return the provider message id."""
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            response = await self._http.post("/emails", json=email.to_payload(), headers=headers)
        except httpx.TimeoutException as exc:  # pragma: no cover - network failures
            raise EmailDeliveryError("Resend request timed out", code="E_EMAIL_TIMEOUT") from exc
        except httpx.HTTPError as exc:  # pragma: no cover - network failures
            raise EmailDeliveryError(f"HTTP error calling Resend: {exc}") from exc

        if response.status_code >= 400:
            detail: Any = None
            try:
                detail = response.json()
            except ValueError:
                detail = response.text[:200]
            message = f"Resend request failed: {response.status_code}"
            if isinstance(detail, dict) and detail.get("message"):
                message = f"{message} - {detail['message']}"
            raise EmailDeliveryError(message, code="E_EMAIL_REJECTED", details=detail)

        try:
            data = response.json()
        except ValueError as exc:
            raise EmailDeliveryError("Failed to decode Resend response JSON.") from exc
        return data.get("id") if isinstance(data, dict) else None

    async def __aenter__(self) -> "ResendClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
