"""Strava API v3 client (token-refresh credential strategy).

Every run exchanges the long-lived refresh token for a fresh bearer token;
the access token is never cached between runs.

API base: https://www.strava.com/api/v3

Endpoints used:
    /oauth/token              — refresh-token exchange
    /athlete/activities       — list activities for the current athlete
    /activities/{id}          — full activity detail
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from activities.errors import ActivityNotFoundError, AuthError, SourceFetchError

logger = logging.getLogger("activities.strava.api")

STRAVA_API_BASE = "https://www.strava.com/api/v3"
STRAVA_TOKEN_URL = "https://www.strava.com/api/v3/oauth/token"

_NOT_FOUND_MESSAGE = "Record Not Found"
_DEFAULT_TIMEOUT = httpx.Timeout(20.0, connect=10.0)


@dataclass
class StravaToken:
    """Result of a refresh-token exchange.

    Attributes:
        access_token:  Bearer token for API calls.
        refresh_token: Refresh token returned by Strava (may be rotated).
        expires_at:    UTC datetime when the access token expires.
        token_type:    Token type, typically "Bearer".
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"

    def __repr__(self) -> str:
        return f"StravaToken(token_type={self.token_type!r}, expires_at={self.expires_at!r})"


class StravaClient:
    """Minimal async Strava API client.

    Usage::

        client = StravaClient(client_id, client_secret, refresh_token)
        token = await client.refresh_access_token()
        activities = await client.list_activities(token.access_token)
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        http_client: httpx.AsyncClient | None = None,
        api_base: str = STRAVA_API_BASE,
        token_url: str = STRAVA_TOKEN_URL,
    ) -> None:
        """Initialize the client.

        Args:
            client_id:     OAuth2 client ID.
            client_secret: OAuth2 client secret.
            refresh_token: Long-lived refresh token.
            http_client:   Optional pre-configured httpx client (for testing).
            api_base:      API base URL.
            token_url:     Token exchange URL.
        """
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._http_client = http_client
        self._api_base = api_base.rstrip("/")
        self._token_url = token_url

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def refresh_access_token(self) -> StravaToken:
        """Exchange the refresh token for a short-lived access token.

        Returns:
            StravaToken with a fresh access token.

        Raises:
            AuthError: On a non-2xx response or a malformed body.
        """
        logger.info("Strava: refreshing access token")
        data = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "grant_type": "refresh_token",
            "refresh_token": self._refresh_token,
        }

        try:
            response = await self._request("POST", self._token_url, data=data)
        except httpx.HTTPError as exc:
            raise AuthError(f"token exchange request failed: {exc}") from exc

        if not response.is_success:
            raise AuthError(f"token exchange failed with status code {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            raise AuthError("token exchange returned a non-JSON body") from exc

        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not access_token:
            raise AuthError("token exchange response has no access_token")

        expires_at = None
        if body.get("expires_at"):
            try:
                expires_at = datetime.fromtimestamp(int(body["expires_at"]), tz=timezone.utc)
            except (TypeError, ValueError, OverflowError):
                logger.warning("Strava: ignoring malformed expires_at %r", body["expires_at"])

        return StravaToken(
            access_token=access_token,
            refresh_token=body.get("refresh_token", self._refresh_token),
            expires_at=expires_at,
            token_type=body.get("token_type", "Bearer"),
        )

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    async def list_activities(
        self, access_token: str, per_page: int = 30, page: int = 1
    ) -> list[dict]:
        """List one page of the current athlete's activities.

        Raises:
            SourceFetchError: On a non-2xx response.
        """
        body = await self._get(
            f"{self._api_base}/athlete/activities",
            params={"per_page": per_page, "page": page},
            access_token=access_token,
        )
        if not isinstance(body, list):
            raise SourceFetchError("activity listing did not return a JSON array")
        return body

    async def get_activity(self, access_token: str, activity_id: int) -> dict:
        """Fetch the full detail for one activity.

        Raises:
            ActivityNotFoundError: If Strava reports the record as not found.
            SourceFetchError:      On any other non-2xx response.
        """
        try:
            body = await self._get(
                f"{self._api_base}/activities/{activity_id}",
                params={},
                access_token=access_token,
            )
        except SourceFetchError as exc:
            if exc.status_code == 404:
                raise ActivityNotFoundError(activity_id) from exc
            raise

        if not isinstance(body, dict):
            raise SourceFetchError(f"activity {activity_id} did not return a JSON object")
        if body.get("message") == _NOT_FOUND_MESSAGE and "id" not in body:
            raise ActivityNotFoundError(activity_id)
        return body

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _build_headers(self, access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._http_client:
            return await self._http_client.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=_DEFAULT_TIMEOUT) as client:
            return await client.request(method, url, **kwargs)

    async def _get(self, url: str, params: dict, access_token: str):
        """Make an authenticated GET request and decode the JSON body.

        Raises:
            SourceFetchError: On transport errors, non-2xx responses or a
                non-JSON body.
        """
        try:
            response = await self._request(
                "GET", url, params=params, headers=self._build_headers(access_token)
            )
        except httpx.HTTPError as exc:
            raise SourceFetchError(f"GET {url} failed: {exc}") from exc

        if not response.is_success:
            raise SourceFetchError(
                f"GET {url} failed with status code {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise SourceFetchError(f"GET {url} returned a non-JSON body") from exc
