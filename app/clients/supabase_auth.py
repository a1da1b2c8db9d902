"""Client for the Supabase Auth admin API (the identity service)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from app.core.errors import IdentityServiceError

USERS_PAGE_SIZE = 200


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str | None


class SupabaseAuthClient:
    """Minimal async client for the Auth admin endpoints, authenticated with the service role."""

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        *,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url or not service_role_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required.")
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/auth/v1", timeout=timeout
        )
        self._headers = {
            "apikey": service_role_key,
            "Authorization": f"Bearer {service_role_key}",
        }

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def get_user(self, user_id: str) -> AuthUser | None:
        """Return the user or ``None`` when the identity service does not know it."""
        response = await self._request("GET", f"/admin/users/{user_id}")
        if response.status_code == 404:
            return None
        payload = self._decode(response)
        user = payload.get("user", payload)
        if not isinstance(user, dict) or not user.get("id"):
            return None
        return AuthUser(id=str(user["id"]), email=user.get("email"))

    async def find_user_by_email(self, email: str) -> AuthUser | None:
        """Page through the admin user listing until a case-insensitive email match."""
        target = email.strip().lower()
        page = 1
        while True:
            response = await self._request(
                "GET", "/admin/users", params={"page": page, "per_page": USERS_PAGE_SIZE}
            )
            users = self._decode(response).get("users") or []
            for user in users:
                if (user.get("email") or "").lower() == target:
                    return AuthUser(id=str(user["id"]), email=user.get("email"))
            if len(users) < USERS_PAGE_SIZE:
                return None
            page += 1

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, path, headers=self._headers, **kwargs)
        except httpx.TimeoutException as exc:  # pragma: no cover - network failures
            raise IdentityServiceError("Identity service timed out", code="E_IDENTITY_TIMEOUT") from exc
        except httpx.HTTPError as exc:  # pragma: no cover - network failures
            raise IdentityServiceError(f"HTTP error calling identity service: {exc}") from exc
        if response.status_code >= 400 and response.status_code != 404:
            raise IdentityServiceError(
                f"Identity service request failed: {response.status_code} - {response.text[:200]}"
            )
        return response

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise IdentityServiceError("Failed to decode identity service response.") from exc
        if not isinstance(data, dict):
            raise IdentityServiceError("Unexpected identity service response schema.")
        return data

    async def __aenter__(self) -> "SupabaseAuthClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
