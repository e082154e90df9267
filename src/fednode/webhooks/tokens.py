"""Bearer tokens for webhook callbacks.

Tokens are acquired from the subscriber's token endpoint with an RS256 signed
client assertion and cached per endpoint until their ``exp`` claim passes.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any

import httpx
import jwt

from fednode.config import get_settings
from fednode.errors import TokenError
from fednode.webhooks.store import WebhookRegistration

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AccessToken:
    token: str
    refresh_token: str | None = None


def decode_claims(token: str) -> dict[str, Any] | None:
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None


def is_token_expired(token: str, now: float | None = None) -> bool:
    """A token without a readable ``exp`` claim counts as expired."""
    claims = decode_claims(token)
    if claims is None:
        return True
    exp = claims.get("exp")
    if not isinstance(exp, int | float):
        return True
    return (now if now is not None else time.time()) > float(exp)


def create_client_assertion(client_id: str, audience: str, private_key: str) -> str:
    now = int(time.time())
    claims = {
        "iss": client_id,
        "sub": str(uuid.uuid4()),
        "aud": audience,
        "iat": now,
    }
    return jwt.encode(claims, private_key, algorithm="RS256", headers={"typ": "JWT"})


def _parse_token(payload: Any, previous: AccessToken | None = None) -> AccessToken:
    if not isinstance(payload, dict):
        raise TokenError("token endpoint returned an unexpected body")
    token = payload.get("token") or payload.get("access_token")
    if not isinstance(token, str) or not token:
        raise TokenError("token endpoint response has no token")
    refresh = payload.get("refreshToken") or payload.get("refresh_token")
    if not isinstance(refresh, str):
        refresh = previous.refresh_token if previous is not None else None
    return AccessToken(token=token, refresh_token=refresh)


class TokenProvider:
    def __init__(
        self,
        private_key: str | None = None,
        timeout_seconds: float | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.private_key = (
            private_key if private_key is not None else settings.webhook_private_key
        )
        self.timeout_seconds = float(timeout_seconds or settings.webhook_timeout_seconds)
        self._transport = transport
        self._cache: dict[str, AccessToken] = {}
        self._lock = asyncio.Lock()

    def cached(self, token_url: str) -> AccessToken | None:
        return self._cache.get(token_url)

    async def bearer_token(self, registration: WebhookRegistration) -> str:
        """Return a valid token for the registration's token endpoint."""
        token_url = registration.token_url
        if not token_url:
            raise TokenError(f"webhook {registration.client_id} has no token endpoint")
        async with self._lock:
            token = self._cache.get(token_url)
            if token is None:
                token = await self.acquire(registration)
            elif is_token_expired(token.token):
                token = await self.refresh(registration, token)
            self._cache[token_url] = token
            return token.token

    async def acquire(self, registration: WebhookRegistration) -> AccessToken:
        if not self.private_key:
            raise TokenError("no webhook private key configured", retryable=False)
        assertion = create_client_assertion(
            registration.client_id, registration.aud or "", self.private_key
        )
        payload = await self._post(
            str(registration.token_url),
            headers={
                "clientid": registration.client_id,
                "Authorization": f"Bearer {assertion}",
            },
        )
        logger.info("Acquired access token for webhook client %s", registration.client_id)
        return _parse_token(payload)

    async def refresh(self, registration: WebhookRegistration, token: AccessToken) -> AccessToken:
        if not registration.refresh_url or not token.refresh_token:
            return await self.acquire(registration)
        payload = await self._post(
            registration.refresh_url,
            headers={
                "clientid": registration.client_id,
                "Authorization": f"Bearer {token.token}",
            },
            json={"refreshToken": token.refresh_token, "grantType": "refreshToken"},
        )
        logger.info("Refreshed access token for webhook client %s", registration.client_id)
        return _parse_token(payload, previous=token)

    async def _post(self, url: str, **kwargs: Any) -> Any:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(url, **kwargs)
        except httpx.HTTPError as exc:
            raise TokenError(f"token endpoint unreachable: {exc}") from exc
        if response.status_code >= 400:
            raise TokenError(
                f"token endpoint returned {response.status_code}",
                retryable=response.status_code >= 500,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise TokenError("token endpoint returned a non-JSON body") from exc
