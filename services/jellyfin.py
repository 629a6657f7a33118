"""
Jellyfin client that resolves its connection from persisted settings and
performs authenticated requests to the Jellyfin REST API.

The four bulk reads never raise: when the client is unconfigured or a call
fails, they log the problem and return fixed mock fixtures so the dashboard
always has something to show. check_connection() is the exception and
reports failures as they are.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode, urlparse
from urllib.request import Request, urlopen

from services.settings_store import SettingsService

logger = logging.getLogger(__name__)

MOCK_ID_PREFIX = "user"
REQUEST_TIMEOUT = 10.0


class JellyfinRequestError(Exception):
    """A Jellyfin request failed or returned something unusable."""


def normalize_base_url(url: Optional[str]) -> Optional[str]:
    """
    Return url without a trailing slash if it is an http(s) URL with a
    host, else None.
    """
    raw = (url or "").strip()
    if not raw:
        return None
    try:
        parsed = urlparse(raw)
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return raw.rstrip("/")


class JellyfinClient:
    def __init__(
        self,
        settings: Optional[SettingsService] = None,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self._settings = settings
        self.timeout = timeout
        self._base_url: Optional[str] = None
        self._api_key: Optional[str] = None
        self.update_configuration(base_url, api_key)

    def update_configuration(
        self,
        url: Optional[str],
        api_key: Optional[str]
    ) -> None:
        """
        Point the client at an explicit server.
        """
        self._base_url = normalize_base_url(url)
        self._api_key = (api_key or "").strip() or None

        if not self.is_configured():
            if url and not self._base_url:
                logger.warning("Jellyfin URL %r is malformed, using mock data", url)
            else:
                logger.warning("Jellyfin configuration incomplete, using mock data")

    def reload(self) -> None:
        """
        Re-resolve url and api key from the settings store.

        Values are only replaced when both are present.
        """
        if self._settings is None:
            return

        try:
            config = self._settings.get_jellyfin_config()
        except Exception as exc:
            logger.warning(
                "Failed to load Jellyfin configuration from settings: %s", exc
            )
            return

        if config.url and config.api_key:
            self.update_configuration(config.url, config.api_key)

    def is_configured(self) -> bool:
        return bool(self._base_url and self._api_key)

    def _build_url(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None
    ) -> str:
        if not path.startswith("/"):
            path = f"/{path}"
        url = f"{self._base_url}{path}"
        if params:
            url = f"{url}?{urlencode(params, safe=',')}"
        return url

    def _get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Perform a GET request and return the decoded JSON body.

        :raises JellyfinRequestError: on any transport or decoding failure
        """
        if not self.is_configured():
            raise JellyfinRequestError("Jellyfin is not configured")

        req = Request(self._build_url(path, params), method="GET")
        req.add_header("X-Emby-Token", self._api_key)
        req.add_header("Accept", "application/json")

        try:
            with urlopen(req, timeout=self.timeout) as resp:
                body = resp.read()
        except HTTPError as he:
            raise JellyfinRequestError(
                f"HTTP error from Jellyfin ({he.code}): {he.reason or 'Unknown'}"
            ) from he
        except URLError as ue:
            reason = getattr(ue, "reason", "Unknown")
            raise JellyfinRequestError(f"Network error: {reason}") from ue
        except (OSError, ValueError) as exc:
            raise JellyfinRequestError(f"Unexpected error: {exc}") from exc

        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise JellyfinRequestError("Jellyfin returned a non-JSON body") from exc

    def _get_items(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        data = self._get(path, params)
        items = data.get("Items") if isinstance(data, dict) else None
        if items is None:
            return []
        if not isinstance(items, list):
            raise JellyfinRequestError(f"Unexpected response shape from {path}")
        return items

    def _fetch_or_mock(
        self,
        what: str,
        fetch: Callable[[], List[Dict[str, Any]]],
        mock: Callable[[], List[Dict[str, Any]]],
    ) -> List[Dict[str, Any]]:
        if not self.is_configured():
            return mock()
        try:
            data = fetch()
            if not isinstance(data, list):
                raise JellyfinRequestError(f"Unexpected response shape for {what}")
            if not all(isinstance(entry, dict) for entry in data):
                raise JellyfinRequestError(f"Non-object entry in {what} response")
            return data
        except Exception as exc:
            logger.error("Error fetching %s from Jellyfin: %s", what, exc)
            return mock()

    def users(self) -> List[Dict[str, Any]]:
        """
        Returns list of users.
        """
        return self._fetch_or_mock(
            "users", lambda: self._get("/Users"), mock_users
        )

    def sessions(self) -> List[Dict[str, Any]]:
        """
        Returns the server's current sessions.
        """
        return self._fetch_or_mock(
            "sessions", lambda: self._get("/Sessions"), mock_sessions
        )

    def activities(
        self,
        start_index: int = 0,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        """
        Returns one page of activity log entries that have a user.

        :param start_index: Zero-based offset
        :param limit: Max number of entries to return
        """
        params = {
            "startIndex": start_index,
            "limit": limit,
            "hasUserId": "true",
        }
        return self._fetch_or_mock(
            "activities",
            lambda: self._get_items("/System/ActivityLog/Entries", params),
            mock_activities,
        )

    def library_items(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Returns playable library items with play counts.

        :param user_id: Optional user to scope play counts to
        """
        params: Dict[str, Any] = {}
        if user_id:
            params["userId"] = user_id
        params.update({
            "recursive": "true",
            "includeItemTypes": "Movie,Episode,Audio",
            "fields": "PlayCount,DateLastContentAdded",
        })
        return self._fetch_or_mock(
            "library items",
            lambda: self._get_items("/Items", params),
            mock_library_items,
        )


def create_client(
    settings_service: Optional[SettingsService],
    base_url: Optional[str] = None,
    api_key: Optional[str] = None,
) -> JellyfinClient:
    """
    Build a client from environment bootstrap values, then let persisted
    settings override them.

    :param settings_service: Settings provider containing config
    :returns JellyfinClient: Initialized Jellyfin client instance
    """
    client = JellyfinClient(settings_service, base_url=base_url, api_key=api_key)
    client.reload()
    return client


@dataclass
class ConnectionTestResult:
    success: bool
    connected: bool
    message: str
    user_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "connected": self.connected,
            "message": self.message,
            "userCount": self.user_count,
        }


def check_connection(url: Optional[str], api_key: Optional[str]) -> ConnectionTestResult:
    """
    Try one /Users call against an explicit url/api key pair.

    Unlike the bulk reads this never substitutes mock data: transport
    failures come back as success=False.
    """
    if not url or not api_key:
        return ConnectionTestResult(
            success=False,
            connected=False,
            message="URL and API key are required",
        )

    client = JellyfinClient(base_url=url, api_key=api_key)
    if not client.is_configured():
        return ConnectionTestResult(
            success=False,
            connected=False,
            message=f"Invalid Jellyfin URL: {url}",
        )

    try:
        users = client._get("/Users")
    except JellyfinRequestError as exc:
        logger.error("Jellyfin connection test failed: %s", exc)
        return ConnectionTestResult(
            success=False,
            connected=False,
            message=str(exc),
        )

    if not isinstance(users, list):
        return ConnectionTestResult(
            success=False,
            connected=False,
            message="Unexpected response from Jellyfin /Users",
        )

    is_mock = any(
        str(u.get("Id") or "").startswith(MOCK_ID_PREFIX)
        for u in users
        if isinstance(u, dict)
    )
    connected = not is_mock
    return ConnectionTestResult(
        success=True,
        connected=connected,
        message=(
            "Successfully connected to Jellyfin"
            if connected
            else "Connected, but using mock data (check configuration)"
        ),
        user_count=len(users),
    )


# -------------------------
# Mock fixtures
# -------------------------

def _ago(**delta: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(**delta)).isoformat().replace("+00:00", "Z")


def mock_users() -> List[Dict[str, Any]]:
    return [
        {"Id": "user1", "Name": "John Doe", "LastActivityDate": _ago(hours=1)},
        {"Id": "user2", "Name": "Jane Smith", "LastActivityDate": _ago(hours=2)},
        {"Id": "user3", "Name": "Bob Wilson", "LastActivityDate": _ago(days=1)},
    ]


def mock_sessions() -> List[Dict[str, Any]]:
    return [
        {
            "Id": "session1",
            "UserId": "user1",
            "UserName": "John Doe",
            "DeviceName": "Chrome Browser",
            "Client": "Jellyfin Web",
            "PlayState": {
                "PositionTicks": 18000000000,
                "CanSeek": True,
                "IsPaused": False,
            },
            "NowPlayingItem": {
                "Id": "movie1",
                "Name": "The Matrix",
                "Type": "Movie",
                "RunTimeTicks": 81840000000,
            },
        },
        {
            "Id": "session2",
            "UserId": "user2",
            "UserName": "Jane Smith",
            "DeviceName": "Android Phone",
            "Client": "Jellyfin Mobile",
            "PlayState": {
                "PositionTicks": 12000000000,
                "CanSeek": True,
                "IsPaused": True,
            },
            "NowPlayingItem": {
                "Id": "episode1",
                "Name": "Breaking Bad S01E01",
                "Type": "Episode",
                "RunTimeTicks": 28800000000,
            },
        },
    ]


def mock_activities() -> List[Dict[str, Any]]:
    return [
        {
            "Id": "activity1",
            "Name": "John Doe played The Matrix",
            "Type": "VideoPlayback",
            "ItemId": "movie1",
            "Date": _ago(hours=1),
            "UserId": "user1",
            "UserName": "John Doe",
            "Severity": "Info",
        },
        {
            "Id": "activity2",
            "Name": "Jane Smith played Breaking Bad S01E01",
            "Type": "VideoPlayback",
            "ItemId": "episode1",
            "Date": _ago(hours=2),
            "UserId": "user2",
            "UserName": "Jane Smith",
            "Severity": "Info",
        },
    ]


def mock_library_items() -> List[Dict[str, Any]]:
    return [
        {
            "Id": "movie1",
            "Name": "The Matrix",
            "Type": "Movie",
            "PlayCount": 15,
            "RunTimeTicks": 81840000000,
        },
        {
            "Id": "movie2",
            "Name": "Inception",
            "Type": "Movie",
            "PlayCount": 12,
            "RunTimeTicks": 88800000000,
        },
        {
            "Id": "episode1",
            "Name": "Breaking Bad S01E01",
            "Type": "Episode",
            "PlayCount": 8,
            "RunTimeTicks": 28800000000,
        },
    ]
