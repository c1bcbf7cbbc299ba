"""Emulated browser session against the Strava website.

The API does not expose original activity files, so the original-payload
job logs in through the web form and downloads
``/activities/{id}/export_original`` with the session cookie.

Login sequence:
    1. GET  /login    — read the ``authenticity_token`` hidden input, keep the cookie
    2. POST /session  — credentials + token; must redirect to /dashboard
    3. every later request carries the cookies set by both responses

Redirects are never followed automatically: a redirect from /session is how
success is detected, and a redirect from export_original means the activity
has no original file.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import httpx
from bs4 import BeautifulSoup

from activities.errors import AuthError, SourceFetchError
from activities.sync.models import OriginalFormat

logger = logging.getLogger("activities.strava.session")

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (X11; Fedora; Linux x86_64; rv:88.0) Gecko/20100101 Firefox/88.0"
    ),
    "Upgrade-Insecure-Requests": "1",
    "DNT": "1",
    "Accept-Language": "en-GB,en;q=0.7,en-US;q=0.3",
}

_FILENAME_RE = re.compile(r"""filename\*?=(?:UTF-8'')?["']?([^"';]+)""", re.IGNORECASE)
_DEFAULT_TIMEOUT = httpx.Timeout(60.0, connect=10.0)


@dataclass(frozen=True)
class OriginalExport:
    """An original activity file downloaded from the website.

    Attributes:
        activity_id: External activity ID.
        format:      Format classified from Content-Disposition.
        content:     Raw (uncompressed) file bytes.
        filename:    File name from Content-Disposition, if present.
    """

    activity_id: int
    format: OriginalFormat
    content: bytes
    filename: str | None = None


def extract_authenticity_token(html: str) -> str | None:
    """Return the anti-forgery token from the login form, if present."""
    soup = BeautifulSoup(html, "html.parser")
    field = soup.select_one('form input[name="authenticity_token"]')
    if field is None:
        return None
    value = field.get("value")
    return value or None


def format_from_content_disposition(header: str | None) -> tuple[OriginalFormat, str | None]:
    """Classify an export by the file name in its Content-Disposition header.

    Returns:
        (format, filename).  ``UNKNOWN`` if no recognised extension is present.
    """
    if not header:
        return OriginalFormat.UNKNOWN, None
    match = _FILENAME_RE.search(header)
    filename = match.group(1).strip() if match else None
    return OriginalFormat.from_filename(filename or ""), filename


class StravaSession:
    """Cookie-authenticated session against the Strava website.

    Usage::

        async with StravaSession(host, email, password) as session:
            await session.login()
            export = await session.export_original(1234567890)
    """

    def __init__(
        self,
        host: str,
        email: str,
        password: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            host:        Website host, e.g. ``www.strava.com``.
            email:       Account email.
            password:    Account password.
            http_client: Optional pre-configured httpx client (for testing).
                         Its cookie jar holds the session.
        """
        self._host = host
        self._email = email
        self._password = password
        self._client = http_client
        self._owns_client = http_client is None
        self._authenticated = False

    async def __aenter__(self) -> "StravaSession":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=_DEFAULT_TIMEOUT)
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self._authenticated = False
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def base_url(self) -> str:
        return f"https://{self._host}"

    @property
    def authenticated(self) -> bool:
        return self._authenticated

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=_DEFAULT_TIMEOUT)
            self._owns_client = True
        return self._client

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self) -> None:
        """Establish an authenticated session.  Not retried on failure.

        Raises:
            AuthError: If the login page has no token, the POST does not
                redirect to the dashboard, or any request fails.
        """
        self._authenticated = False
        client = self._get_client()
        login_url = f"{self.base_url}/login"
        session_url = f"{self.base_url}/session"
        dashboard_url = f"{self.base_url}/dashboard"

        try:
            page = await client.get(login_url, headers=BROWSER_HEADERS, follow_redirects=False)
        except httpx.HTTPError as exc:
            raise AuthError(f"failed to load login page: {exc}") from exc
        if page.status_code != 200:
            raise AuthError(f"login page returned status code {page.status_code}")

        token = extract_authenticity_token(page.text)
        if not token:
            raise AuthError("authenticity token not found on login page")

        form = {
            "utf8": "✓",
            "authenticity_token": token,
            "plan": "",
            "email": self._email,
            "password": self._password,
            "remember_me": "on",
        }
        try:
            response = await client.post(
                session_url,
                data=form,
                headers=BROWSER_HEADERS,
                follow_redirects=False,
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"login request failed: {exc}") from exc

        if response.status_code != 302:
            raise AuthError(f"login attempt failed with status code {response.status_code}")

        location = response.headers.get("Location", "")
        target = str(response.url.join(location)) if location else ""
        if target != dashboard_url:
            raise AuthError(
                f"login attempt was not correctly redirected to dashboard ({location!r})"
            )

        self._authenticated = True
        logger.info("Strava: web session established for %s", self._host)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    async def export_original(self, activity_id: int) -> OriginalExport | None:
        """Download the original file for one activity.

        Returns:
            The export, or None when Strava redirects instead (no original
            exists for this activity).

        Raises:
            AuthError:        If called before a successful login.
            SourceFetchError: On transport errors or any other non-200 status.
        """
        if not self._authenticated:
            raise AuthError("export requested before the web session was established")

        url = f"{self.base_url}/activities/{activity_id}/export_original"
        try:
            response = await self._get_client().get(url, follow_redirects=False)
        except httpx.HTTPError as exc:
            raise SourceFetchError(f"GET {url} failed: {exc}") from exc

        if 300 <= response.status_code < 400:
            logger.info("Activity %s has no original (status %d)", activity_id, response.status_code)
            return None
        if response.status_code != 200:
            raise SourceFetchError(
                f"failed to get activity {activity_id} with status code {response.status_code}",
                status_code=response.status_code,
            )

        fmt, filename = format_from_content_disposition(
            response.headers.get("Content-Disposition")
        )
        return OriginalExport(
            activity_id=activity_id,
            format=fmt,
            content=response.content,
            filename=filename,
        )
