import json
from datetime import datetime, timezone

from services.analytics import AnalyticsService, MAX_TIMELINE_DAYS
from services.repository import Repository
from services.sync_service import SyncService
from services.jellyfin import JellyfinClient

TODAY = datetime(2024, 3, 10, 15, 30, tzinfo=timezone.utc)


def _ts(day: int, hour: int = 12) -> int:
    return int(datetime(2024, 3, day, hour, tzinfo=timezone.utc).timestamp())


def _analytics(repo: Repository) -> AnalyticsService:
    jf = JellyfinClient()
    return AnalyticsService(
        repository=repo,
        jellyfin_client=jf,
        sync_service=SyncService(jellyfin_client=jf, repository=repo),
    )


def _add_activity(repo: Repository, activity_id: str, ts: int, data) -> None:
    repo.insert_activity({
        "id": activity_id,
        "user_id": "u1",
        "item_id": "movie1",
        "timestamp": ts,
        "data": data,
    })


def test_timeline_is_dense_when_empty() -> None:
    repo = Repository(database_url="sqlite:///:memory:")

    timeline = _analytics(repo).get_activity_timeline(5, today=TODAY)

    assert timeline == [
        {"date": "2024-03-06", "count": 0, "totalRuntime": 0},
        {"date": "2024-03-07", "count": 0, "totalRuntime": 0},
        {"date": "2024-03-08", "count": 0, "totalRuntime": 0},
        {"date": "2024-03-09", "count": 0, "totalRuntime": 0},
        {"date": "2024-03-10", "count": 0, "totalRuntime": 0},
    ]


def test_timeline_buckets_counts_and_runtime() -> None:
    repo = Repository(database_url="sqlite:///:memory:")
    repo.upsert_users([{"id": "u1", "name": "Alice"}])

    _add_activity(repo, "old", _ts(1), json.dumps({"runtime": 999}))
    _add_activity(repo, "a1", _ts(8, 1), json.dumps({"runtime": 100}))
    _add_activity(repo, "a2", _ts(8, 23), json.dumps({"runtime": 50}))
    _add_activity(repo, "a3", _ts(10), "{not json")
    _add_activity(repo, "a4", _ts(10), None)

    timeline = _analytics(repo).get_activity_timeline(3, today=TODAY)

    assert timeline == [
        {"date": "2024-03-08", "count": 2, "totalRuntime": 150},
        {"date": "2024-03-09", "count": 0, "totalRuntime": 0},
        {"date": "2024-03-10", "count": 2, "totalRuntime": 0},
    ]


def test_timeline_non_positive_days_defaults_to_week() -> None:
    repo = Repository(database_url="sqlite:///:memory:")
    assert len(_analytics(repo).get_activity_timeline(0, today=TODAY)) == 7


def test_total_watch_time_rounds_to_hours() -> None:
    repo = Repository(database_url="sqlite:///:memory:")
    repo.upsert_users([{"id": "u1", "name": "Alice"}])
    repo.insert_activity({"id": "a1", "user_id": "u1", "timestamp": _ts(8), "runtime": 5400})

    assert repo.get_total_watch_time_hours() == 2


def test_user_and_content_stats_are_ordered_and_limited() -> None:
    repo = Repository(database_url="sqlite:///:memory:")
    repo.upsert_content_stats([
        {"item_id": f"item{i}", "item_name": f"Item {i}", "item_type": "Movie", "play_count": i, "total_runtime": 60}
        for i in range(1, 26)
    ])
    repo.upsert_users([{"id": f"u{i}", "name": f"User {i}"} for i in range(3)])

    analytics = _analytics(repo)
    content = analytics.get_content_stats()["mostWatchedContent"]
    users = analytics.get_user_stats()["mostActiveUsers"]

    assert len(content) == 20
    assert content[0]["id"] == "item25"
    assert [c["playCount"] for c in content] == sorted((c["playCount"] for c in content), reverse=True)
    assert len(users) == 3
    assert set(users[0]) == {"id", "name", "playCount", "totalRuntime", "lastActivity"}


def test_overview_syncs_mock_data_first() -> None:
    repo = Repository(database_url="sqlite:///:memory:")

    overview = _analytics(repo).get_dashboard_overview()

    assert overview["totalUsers"] == 3
    assert overview["totalContent"] == 3
    assert overview["activeSessions"] == 2
    # 8184s + 2880s from the two mock plays
    assert overview["totalWatchTime"] == 3
    assert overview["topContent"][0] == {
        "id": "movie1", "name": "The Matrix", "type": "Movie", "playCount": 15
    }
    assert len(overview["topUsers"]) == 3
    assert overview["topUsers"][0]["playCount"] == 1


def test_timeline_days_are_capped() -> None:
    repo = Repository(database_url="sqlite:///:memory:")
    timeline = _analytics(repo).get_activity_timeline(1000000, today=TODAY)

    assert len(timeline) == MAX_TIMELINE_DAYS
    assert timeline[-1]["date"] == "2024-03-10"
