import abc
import logging
from typing import Any, Dict, Optional

import httpx

from .errors import NetworkError, NotConfiguredError
from .models import Identity
from .observability import log_event
from .settings import Settings


class IdentityProvider(abc.ABC):
    """Resolves the signed-in user for a request."""

    provider_name: str = "unknown"

    @abc.abstractmethod
    async def resolve(self, user_id: Optional[str]) -> Optional[Identity]:
        ...


class StaticIdentityProvider(IdentityProvider):
    """Trusts the caller-supplied user id; for local runs and tests."""

    provider_name: str = "static"

    async def resolve(self, user_id: Optional[str]) -> Optional[Identity]:
        uid = (user_id or "").strip()
        if not uid:
            return None
        return Identity(id=uid, display_name=uid)


def _identity_from_clerk(data: Dict[str, Any]) -> Identity:
    first = (data.get("first_name") or "").strip()
    last = (data.get("last_name") or "").strip()
    name = " ".join(p for p in (first, last) if p)
    if not name:
        name = data.get("username") or ""
    if not name:
        emails = data.get("email_addresses") or []
        if emails and isinstance(emails[0], dict):
            name = emails[0].get("email_address") or ""
    return Identity(id=str(data.get("id")), display_name=name, avatar_url=data.get("image_url"))


class ClerkIdentityProvider(IdentityProvider):
    provider_name: str = "clerk"

    def __init__(self, secret_key: str, api_url: str = "https://api.clerk.com/v1", timeout: float = 10.0):
        if not secret_key:
            raise NotConfiguredError("CLERK_SECRET_KEY is required for the Clerk identity provider")
        self._secret_key = secret_key
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout

    async def resolve(self, user_id: Optional[str]) -> Optional[Identity]:
        uid = (user_id or "").strip()
        if not uid:
            return None
        headers = {"Authorization": f"Bearer {self._secret_key}", "Accept": "application/json"}
        # Use a short-lived AsyncClient per request to ensure proper cleanup
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(f"{self._api_url}/users/{uid}", headers=headers)
        except httpx.HTTPError as e:
            raise NetworkError(f"Identity lookup failed: {e}") from e
        if resp.status_code in (401, 403, 404):
            log_event("identity_rejected", level=logging.WARNING, userId=uid, status=resp.status_code)
            return None
        if resp.status_code >= 400:
            raise NetworkError(f"Identity lookup failed with status {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise NetworkError("Identity lookup returned invalid JSON") from e
        return _identity_from_clerk(data if isinstance(data, dict) else {})


def get_identity_provider(settings: Settings) -> IdentityProvider:
    """Build the configured identity provider.

    A Clerk provider without a secret key is a hard startup failure.
    """
    prov = (settings.identity_provider or "static").lower()
    if prov == "clerk":
        return ClerkIdentityProvider(
            settings.clerk_secret_key,
            api_url=settings.clerk_api_url,
            timeout=settings.clerk_timeout_seconds,
        )
    return StaticIdentityProvider()
