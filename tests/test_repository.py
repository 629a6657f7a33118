import json

from services.data_models import Activity
from services.repository import Repository


def _activity(activity_id: str, user_id: str = "u1", runtime: int = 0, ts: int = 1700000000) -> dict:
    return {
        "id": activity_id,
        "user_id": user_id,
        "item_id": "movie1",
        "item_name": "Alice played The Matrix",
        "item_type": "Video",
        "activity_type": "play",
        "timestamp": ts,
        "data": json.dumps({"deviceName": "Unknown", "clientName": "Unknown", "runtime": runtime}),
        "runtime": runtime,
    }


def test_task_log_lifecycle() -> None:
    repo = Repository(database_url="sqlite:///:memory:")

    task_id = repo.create_task_log(
        name="Test Sync Task",
        task_type="sync",
        execution_type="manual"
    )
    assert isinstance(task_id, int) and task_id > 0

    latest = repo.get_latest_sync_task()
    assert latest is not None
    assert latest["id"] == task_id
    assert latest["result"] == "RUNNING"

    payload = {"users_synced": 10}
    repo.complete_task_log(task_id=task_id, result="SUCCESS", log_data=payload)

    completed = repo.get_latest_sync_task()
    assert completed["result"] == "SUCCESS"
    assert isinstance(completed["finished_at"], int)
    assert isinstance(completed["duration_ms"], int)
    assert completed["log"] == payload


def test_upsert_users_refreshes_name_but_keeps_counters() -> None:
    repo = Repository(database_url="sqlite:///:memory:")
    repo.upsert_users([{"id": "u1", "name": "Alice", "last_activity_at": 100}])
    assert repo.insert_activity(_activity("a1", runtime=60)) is True

    repo.upsert_users([{"id": "u1", "name": "Alice B", "last_activity_at": 200}])

    user = repo.get_user("u1")
    assert user["name"] == "Alice B"
    assert user["playCount"] == 1
    assert user["totalRuntime"] == 60


def test_insert_activity_is_deduplicated_by_id() -> None:
    repo = Repository(database_url="sqlite:///:memory:")
    repo.upsert_users([{"id": "u1", "name": "Alice", "last_activity_at": None}])

    assert repo.insert_activity(_activity("a1")) is True
    assert repo.insert_activity(_activity("a1")) is False
    assert repo.insert_activities([_activity("a1"), _activity("a2")]) == 1

    assert repo.count_activities() == 2
    assert repo.get_user("u1")["playCount"] == 2


def test_insert_activity_losing_the_race_credits_nothing(monkeypatch) -> None:
    repo = Repository(database_url="sqlite:///:memory:")
    repo.upsert_users([{"id": "u1", "name": "Alice", "last_activity_at": None}])
    assert repo.insert_activity(_activity("a1", runtime=60)) is True

    # Hide the existing row from the lookup, as a concurrent sync would
    # see it before the other transaction committed.
    make_session = repo.SessionLocal

    def session_missing_activities():
        session = make_session()
        real_get = session.get

        def get(entity, ident, **kwargs):
            if entity is Activity:
                return None
            return real_get(entity, ident, **kwargs)

        session.get = get
        return session

    monkeypatch.setattr(repo, "SessionLocal", session_missing_activities)
    assert repo.insert_activity(_activity("a1", runtime=60)) is False
    monkeypatch.undo()

    user = repo.get_user("u1")
    assert user["playCount"] == 1
    assert user["totalRuntime"] == 60
    assert repo.count_activities() == 1

    assert repo.insert_activity(_activity("a2", runtime=30)) is True
    assert repo.get_user("u1")["playCount"] == 2


def test_insert_activity_for_unknown_user_is_skipped() -> None:
    repo = Repository(database_url="sqlite:///:memory:")

    assert repo.insert_activity(_activity("a1", user_id="ghost")) is False
    assert repo.count_activities() == 0


def test_upsert_content_stats_sets_unique_users_once() -> None:
    repo = Repository(database_url="sqlite:///:memory:")
    row = {
        "item_id": "movie1",
        "item_name": "The Matrix",
        "item_type": "Movie",
        "play_count": 3,
        "total_runtime": 8184,
    }
    assert repo.upsert_content_stats([row], now=100) == 1

    repo.upsert_content_stats([dict(row, play_count=7)], now=200)

    content = repo.get_content("movie1")
    assert content["playCount"] == 7
    assert content["uniqueUsers"] == 1
    assert repo.count_content() == 1


def test_session_deactivate_then_reactivate() -> None:
    repo = Repository(database_url="sqlite:///:memory:")
    row = {"id": "s1", "user_id": "u1", "item_id": "movie1", "playback_position_ticks": 5}
    repo.upsert_active_sessions([row], now=100)

    assert repo.deactivate_active_sessions(now=200) == 1
    ended = repo.get_session("s1")
    assert ended["isActive"] is False
    assert ended["endTime"] is not None

    repo.upsert_active_sessions([dict(row, playback_position_ticks=50)], now=300)
    resumed = repo.get_session("s1")
    assert resumed["isActive"] is True
    assert resumed["endTime"] is None
    assert resumed["playbackPositionTicks"] == 50
    assert len(repo.list_active_sessions()) == 1
