from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Dict, Any, Optional
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from services.data_models import (
    Base,
    User,
    ContentStats,
    Activity,
    Session,
    TaskLog
)

logger = logging.getLogger(__name__)


@dataclass
class Repository:
    """
    Data access layer for the analytics aggregate entities.
    """

    database_url: str = "sqlite:///jellyfin_analytics_data.db"

    def __post_init__(self) -> None:
        self.engine = create_engine(self.database_url, future=True)
        self.SessionLocal = sessionmaker(
            bind=self.engine, expire_on_commit=False
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self):
        """Context manager for database sessions with auto-commit."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()

    # Users

    def upsert_users(self, user_dicts: List[Dict[str, Any]]) -> int:
        """
        Upsert users by id. Refreshes name and last activity only;
        play counters are left alone.
        """
        if not user_dicts:
            return 0

        count = 0
        now = int(time.time())

        with self._session() as session:
            for data in user_dicts:
                user_id = data.get("id")
                if not user_id:
                    continue

                user = session.get(User, user_id)

                if user:
                    user.name = data.get("name", user.name)
                    user.last_activity_at = data.get("last_activity_at")
                    user.updated_at = now
                else:
                    session.add(User(
                        id=user_id,
                        name=data.get("name", "Unknown"),
                        play_count=0,
                        total_runtime=0,
                        last_activity_at=data.get("last_activity_at"),
                        created_at=now,
                        updated_at=now,
                    ))
                count += 1

        return count

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._session() as session:
            user = session.get(User, user_id)
            return user.to_dict() if user else None

    def count_users(self) -> int:
        with self._session() as session:
            return session.query(User).count()

    # Sessions

    def deactivate_active_sessions(self, now: Optional[int] = None) -> int:
        """
        Mark every active session inactive, stamping its end time.
        """
        ended_at = int(now if now is not None else time.time())
        with self._session() as session:
            return (
                session.query(Session)
                .filter(Session.is_active == True)
                .update(
                    {"is_active": False, "end_time": ended_at},
                    synchronize_session=False
                )
            )

    def upsert_active_sessions(
        self,
        session_dicts: List[Dict[str, Any]],
        now: Optional[int] = None
    ) -> int:
        """
        Upsert currently playing sessions and flag them active.
        """
        if not session_dicts:
            return 0

        count = 0
        now = int(now if now is not None else time.time())

        with self._session() as session:
            for data in session_dicts:
                row = session.get(Session, data["id"])
                if row:
                    row.is_active = True
                    row.end_time = None
                    row.device_name = data.get("device_name")
                    row.client_name = data.get("client_name")
                    row.playback_position_ticks = data.get(
                        "playback_position_ticks", 0
                    )
                    row.updated_at = now
                else:
                    session.add(Session(
                        id=data["id"],
                        user_id=data["user_id"],
                        item_id=data.get("item_id"),
                        item_name=data.get("item_name"),
                        item_type=data.get("item_type"),
                        device_name=data.get("device_name"),
                        client_name=data.get("client_name"),
                        play_method=data.get("play_method"),
                        start_time=now,
                        playback_position_ticks=data.get(
                            "playback_position_ticks", 0
                        ),
                        runtime_ticks=data.get("runtime_ticks", 0),
                        is_active=True,
                        updated_at=now,
                    ))
                count += 1

        return count

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._session() as session:
            row = session.get(Session, session_id)
            return row.to_dict() if row else None

    def list_active_sessions(self) -> List[Dict[str, Any]]:
        with self._session() as session:
            rows = session.query(Session).filter(Session.is_active == True)
            return [r.to_dict() for r in rows.all()]

    # Activities

    def insert_activity(self, event: Dict[str, Any]) -> bool:
        """
        Insert one activity and credit its user, in a single transaction.

        The primary key makes the insert conditional: a concurrent sync
        that lost the race gets an IntegrityError and credits nothing.
        Returns True only when this call inserted the row.
        """
        activity_id = event.get("id")
        user_id = event.get("user_id")
        if not activity_id or not user_id:
            return False

        with self._session() as session:
            if session.get(Activity, activity_id) is not None:
                return False

            if session.get(User, user_id) is None:
                logger.warning(
                    "Skipping activity %s for unknown user %s",
                    activity_id, user_id
                )
                return False

            session.add(Activity(
                id=activity_id,
                user_id=user_id,
                item_id=event.get("item_id"),
                item_name=event.get("item_name"),
                item_type=event.get("item_type"),
                activity_type=event.get("activity_type", "play"),
                timestamp=event["timestamp"],
                data=event.get("data"),
            ))
            try:
                session.flush()
            except IntegrityError:
                session.rollback()
                return False

            runtime = int(event.get("runtime") or 0)
            session.query(User).filter(User.id == user_id).update(
                {
                    User.play_count: User.play_count + 1,
                    User.total_runtime: User.total_runtime + runtime,
                },
                synchronize_session=False
            )

        return True

    def insert_activities(self, event_dicts: List[Dict[str, Any]]) -> int:
        """
        Insert activities not seen before. Returns the number inserted.
        """
        count = 0
        for event in event_dicts or []:
            if self.insert_activity(event):
                count += 1
        return count

    def count_activities(self) -> int:
        with self._session() as session:
            return session.query(Activity).count()

    # Content

    def upsert_content_stats(
        self,
        item_dicts: List[Dict[str, Any]],
        now: Optional[int] = None
    ) -> int:
        """
        Upsert content statistics by item id.

        unique_users is only set when the row is created.
        """
        if not item_dicts:
            return 0

        count = 0
        now = int(now if now is not None else time.time())

        with self._session() as session:
            for data in item_dicts:
                item_id = data.get("item_id")
                if not item_id:
                    continue

                row = session.get(ContentStats, item_id)
                if row:
                    row.item_name = data.get("item_name", row.item_name)
                    row.item_type = data.get("item_type", row.item_type)
                    row.play_count = data.get("play_count", 0)
                    row.total_runtime = data.get("total_runtime", 0)
                    row.last_played_at = now
                    row.updated_at = now
                else:
                    session.add(ContentStats(
                        item_id=item_id,
                        item_name=data.get("item_name", "Unknown"),
                        item_type=data.get("item_type"),
                        play_count=data.get("play_count", 0),
                        total_runtime=data.get("total_runtime", 0),
                        unique_users=1,
                        last_played_at=now,
                        created_at=now,
                        updated_at=now,
                    ))
                count += 1

        return count

    def get_content(self, item_id: str) -> Optional[Dict[str, Any]]:
        with self._session() as session:
            row = session.get(ContentStats, item_id)
            return row.to_dict() if row else None

    def count_content(self) -> int:
        with self._session() as session:
            return session.query(ContentStats).count()

    # Read models

    def get_top_users_by_plays(
        self,
        limit: int = 10
    ) -> List[Dict[str, Any]]:
        """
        Retrieve the most active users by play count.
        """
        from services.stats_aggregator import StatsAggregator

        with self._session() as session:
            return StatsAggregator.get_top_users_by_plays(
                session,
                limit=limit
            )

    def get_top_content_by_plays(
        self,
        limit: int = 10
    ) -> List[Dict[str, Any]]:
        """
        Retrieve the most watched content items.
        """
        from services.stats_aggregator import StatsAggregator

        with self._session() as session:
            return StatsAggregator.get_top_content_by_plays(
                session,
                limit=limit
            )

    def get_total_watch_time_hours(self) -> int:
        from services.stats_aggregator import StatsAggregator

        with self._session() as session:
            return StatsAggregator.get_total_watch_time_hours(session)

    def get_activity_timeline(
        self,
        start_ts: int,
        day_keys: List[str]
    ) -> List[Dict[str, Any]]:
        """
        Bucket activities at or after start_ts into the given UTC days.
        """
        from services.stats_aggregator import StatsAggregator

        with self._session() as session:
            return StatsAggregator.get_activity_timeline(
                session,
                start_ts=start_ts,
                day_keys=day_keys
            )

    # Sample data

    def clear_analytics(self) -> None:
        """
        Delete all activities, sessions, content stats and users.

        Task logs are kept.
        """
        with self._session() as session:
            for model in (Activity, Session, ContentStats, User):
                session.query(model).delete(synchronize_session=False)

    def has_users(self) -> bool:
        with self._session() as session:
            return session.query(User.id).first() is not None

    def add_sample_rows(
        self,
        users: List[User],
        content: List[ContentStats],
        activities: List[Activity]
    ) -> None:
        """
        Insert prebuilt rows in one transaction.
        """
        with self._session() as session:
            session.add_all(users)
            session.flush()
            session.add_all(content)
            session.add_all(activities)

    # Task Logging

    def get_latest_sync_task(
        self
    ) -> Optional[Dict[str, Any]]:
        """
        Retrieve the most recent sync task log entry.
        """
        with self._session() as session:
            task = (
                session.query(TaskLog)
                .filter(TaskLog.type == "sync")
                .order_by(TaskLog.started_at.desc(), TaskLog.id.desc())
                .first()
            )
            return task.to_dict() if task else None

    def create_task_log(
        self, name: str, task_type: str, execution_type: str
    ) -> int:
        """
        Create a new task log entry with RUNNING status.
        """
        now = int(time.time())
        with self._session() as session:
            task = TaskLog(
                name=name,
                type=task_type,
                execution_type=execution_type,
                started_at=now,
                result="RUNNING",
                duration_ms=0,
            )
            session.add(task)
            session.flush()
            return task.id

    def complete_task_log(
        self,
        task_id: int,
        result: str,
        log_data: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        """
        Mark a task log as complete with result.
        """
        import json

        now = int(time.time())
        with self._session() as session:
            task = session.get(TaskLog, task_id)
            if not task:
                return

            task.finished_at = now
            if duration_ms is None:
                duration_ms = (now - task.started_at) * 1000
            task.duration_ms = int(duration_ms)
            task.result = result

            if log_data:
                task.log_json = json.dumps(log_data)
