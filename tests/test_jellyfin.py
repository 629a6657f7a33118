"""
Tests for the Jellyfin client: mock fallback on the bulk reads and the
honest connectivity check.
"""

import json
from urllib.error import HTTPError, URLError

import pytest

from services import jellyfin as jellyfin_module
from services.jellyfin import (
    JellyfinClient,
    check_connection,
    create_client,
    mock_users,
    mock_sessions,
    mock_activities,
    mock_library_items,
)
from services.settings_store import SettingsService


class FakeResponse:
    def __init__(self, payload, raw: bytes = None):
        self._body = raw if raw is not None else json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture()
def captured(monkeypatch):
    """
    Route urlopen through a queue of canned responses and record requests.
    """
    state = {"requests": [], "responses": []}

    def fake_urlopen(req, timeout=None):
        state["requests"].append((req, timeout))
        response = state["responses"].pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(jellyfin_module, "urlopen", fake_urlopen)
    return state


def _ids(records):
    return [r["Id"] for r in records]


def test_unconfigured_client_returns_mock_fixtures(captured) -> None:
    client = JellyfinClient()

    assert client.is_configured() is False
    assert _ids(client.users()) == _ids(mock_users())
    assert _ids(client.sessions()) == _ids(mock_sessions())
    assert _ids(client.activities()) == _ids(mock_activities())
    assert _ids(client.library_items()) == _ids(mock_library_items())
    assert captured["requests"] == []


def test_malformed_url_is_treated_as_unconfigured() -> None:
    client = JellyfinClient(base_url="not a url", api_key="k")
    assert client.is_configured() is False
    assert _ids(client.users()) == ["user1", "user2", "user3"]


def test_network_failure_falls_back_to_mock(captured) -> None:
    captured["responses"] = [
        URLError("connection refused"),
        HTTPError("http://jf/Sessions", 401, "Unauthorized", None, None),
        FakeResponse(None, raw=b"<html>"),
        FakeResponse({"Items": "nope"}),
    ]
    client = JellyfinClient(base_url="http://jf:8096", api_key="k")

    assert _ids(client.users()) == _ids(mock_users())
    assert _ids(client.sessions()) == _ids(mock_sessions())
    assert _ids(client.activities()) == _ids(mock_activities())
    assert _ids(client.library_items()) == _ids(mock_library_items())


def test_successful_calls_send_token_and_query(captured) -> None:
    captured["responses"] = [
        FakeResponse([{"Id": "abc", "Name": "Alice"}]),
        FakeResponse({"Items": [{"Id": "1", "Type": "VideoPlayback"}]}),
        FakeResponse({"Items": [{"Id": "m", "PlayCount": 1}]}),
    ]
    client = JellyfinClient(base_url="http://jf:8096/", api_key="secret")

    assert _ids(client.users()) == ["abc"]
    assert _ids(client.activities(start_index=5, limit=20)) == ["1"]
    assert _ids(client.library_items()) == ["m"]

    users_req, timeout = captured["requests"][0]
    assert users_req.full_url == "http://jf:8096/Users"
    assert users_req.get_header("X-emby-token") == "secret"
    assert timeout == 10.0

    activity_url = captured["requests"][1][0].full_url
    assert activity_url.startswith("http://jf:8096/System/ActivityLog/Entries?")
    assert "startIndex=5" in activity_url
    assert "limit=20" in activity_url
    assert "hasUserId=true" in activity_url

    items_url = captured["requests"][2][0].full_url
    assert "includeItemTypes=Movie,Episode,Audio" in items_url
    assert "recursive=true" in items_url


def test_check_connection_requires_url_and_key(captured) -> None:
    result = check_connection("", "")
    assert result.success is False
    assert result.connected is False
    assert captured["requests"] == []


def test_check_connection_reports_transport_failure(captured) -> None:
    captured["responses"] = [URLError("timed out")]

    result = check_connection("http://jf:8096", "k")

    assert result.success is False
    assert result.connected is False
    assert "timed out" in result.message


def test_check_connection_real_users(captured) -> None:
    captured["responses"] = [FakeResponse([{"Id": "f00d"}, {"Id": "beef"}])]

    result = check_connection("http://jf:8096", "k")

    assert result.to_dict() == {
        "success": True,
        "connected": True,
        "message": "Successfully connected to Jellyfin",
        "userCount": 2,
    }


def test_check_connection_flags_mock_ids(captured) -> None:
    captured["responses"] = [FakeResponse([{"Id": "f00d"}, {"Id": "user9"}])]

    result = check_connection("http://jf:8096", "k")

    assert result.success is True
    assert result.connected is False


def test_reload_picks_up_settings_only_when_complete() -> None:
    svc = SettingsService(database_url="sqlite:///:memory:", encryption_key="test-key")
    client = create_client(svc, base_url="http://env-host:8096", api_key="env-key")

    # Default url but no api key stored yet: env bootstrap stays in place
    assert client.is_configured() is True
    assert client._base_url == "http://env-host:8096"

    svc.set_setting("jellyfin.url", "http://settings-host:8096")
    svc.set_setting("jellyfin.apiKey", "stored-key")
    assert client._base_url == "http://env-host:8096"

    client.reload()
    assert client._base_url == "http://settings-host:8096"
    assert client._api_key == "stored-key"


def test_non_object_entries_fall_back_to_mock(captured) -> None:
    captured["responses"] = [
        FakeResponse([{"Id": "abc", "Name": "Alice"}, "stray"]),
        FakeResponse({"Items": [None]}),
    ]
    client = JellyfinClient(base_url="http://jf:8096", api_key="k")

    assert _ids(client.users()) == _ids(mock_users())
    assert _ids(client.activities()) == _ids(mock_activities())


def test_numeric_user_id_syncs_cleanly(monkeypatch) -> None:
    from services.repository import Repository
    from services.sync_service import SyncService

    routes = {
        "/Users": [{"Id": 12345, "Name": "numeric id"}],
        "/Sessions": [],
        "/System/ActivityLog/Entries": {"Items": []},
        "/Items": {"Items": []},
    }

    def fake_urlopen(req, timeout=None):
        path = req.full_url.split("http://jf:8096", 1)[1].split("?", 1)[0]
        return FakeResponse(routes[path])

    monkeypatch.setattr(jellyfin_module, "urlopen", fake_urlopen)
    client = JellyfinClient(base_url="http://jf:8096", api_key="k")
    repo = Repository(database_url="sqlite:///:memory:")

    result = SyncService(jellyfin_client=client, repository=repo).sync_from_source()

    assert result.success is True
    assert result.users_synced == 1
    assert repo.get_user("12345")["name"] == "numeric id"
    assert repo.get_latest_sync_task()["result"] == "SUCCESS"
