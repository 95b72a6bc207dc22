"""
Thin Neynar v2 HTTP client (httpx).

Only the bulk user lookup is needed:

    GET {base}/v2/farcaster/user/bulk?fids=1,2,3   (header: x-api-key)

Responses are classified into the observer error taxonomy:
- 429, or an error body that says "rate limit"  -> RateLimited (Retry-After kept)
- 404                                          -> no users (callers map to IdentityNotFound)
- transport error, timeout, other HTTP errors,
  unreadable JSON, missing API key             -> UpstreamUnavailable
"""

from __future__ import annotations

from typing import Any, Sequence

import httpx

from neynar_history.config.settings import DEFAULT_NEYNAR_BASE_URL, DEFAULT_REQUEST_TIMEOUT_SEC, Settings
from neynar_history.core.exceptions import RateLimited, UpstreamUnavailable
from neynar_history.history_logging import get_logger

logger = get_logger(__name__)

BULK_USERS_PATH = "/v2/farcaster/user/bulk"
MAX_BULK_FIDS = 100


def _retry_after(response: httpx.Response) -> float | None:
    raw = (response.headers.get("retry-after") or "").strip()
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code >= 400:
        return "rate limit" in response.text.lower()
    return False


def _users_from_payload(data: Any) -> list[dict[str, Any]]:
    if not isinstance(data, dict):
        raise UpstreamUnavailable("Unexpected Neynar payload: not a JSON object")
    users = data.get("users")
    if users is None and isinstance(data.get("result"), dict):
        users = data["result"].get("users")
    if users is None:
        return []
    if not isinstance(users, list):
        raise UpstreamUnavailable("Unexpected Neynar payload: users is not a list")
    return [u for u in users if isinstance(u, dict)]


class NeynarClient:
    """Synchronous Neynar client. Pass client= to inject an httpx.Client (tests use MockTransport)."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_NEYNAR_BASE_URL,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SEC,
        client: httpx.Client | None = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings, *, client: httpx.Client | None = None) -> "NeynarClient":
        return cls(
            settings.neynar_api_key,
            base_url=settings.neynar_base_url,
            timeout=settings.request_timeout_sec,
            client=client,
        )

    def fetch_users(self, fids: Sequence[int]) -> dict[int, dict[str, Any]]:
        """
        Look up up to MAX_BULK_FIDS users in one request.
        Returns {fid: user object} for the users Neynar knows; unknown fids are absent.
        """
        if not fids:
            return {}
        if len(fids) > MAX_BULK_FIDS:
            raise ValueError(f"At most {MAX_BULK_FIDS} fids per bulk request, got {len(fids)}")
        if not self._api_key:
            raise UpstreamUnavailable("NEYNAR_API_KEY is not configured")

        url = f"{self._base_url}{BULK_USERS_PATH}"
        try:
            response = self._client.get(
                url,
                params={"fids": ",".join(str(f) for f in fids)},
                headers={"x-api-key": self._api_key, "accept": "application/json"},
            )
        except httpx.TimeoutException as e:
            logger.warning("neynar_timeout", fids=len(fids), error=str(e))
            raise UpstreamUnavailable(f"Neynar request timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.warning("neynar_transport_error", fids=len(fids), error=str(e))
            raise UpstreamUnavailable(f"Neynar request failed: {e}") from e

        if _is_rate_limited(response):
            retry_after = _retry_after(response)
            logger.warning("neynar_rate_limited", status=response.status_code, retry_after=retry_after)
            raise RateLimited("Neynar rate limit exceeded", retry_after=retry_after)
        if response.status_code == 404:
            return {}
        if response.status_code >= 400:
            logger.warning("neynar_http_error", status=response.status_code, body=response.text[:200])
            raise UpstreamUnavailable(f"Neynar HTTP {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"Neynar returned invalid JSON: {e}") from e

        out: dict[int, dict[str, Any]] = {}
        for user in _users_from_payload(data):
            try:
                out[int(user.get("fid"))] = user
            except (TypeError, ValueError):
                continue
        return out

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
