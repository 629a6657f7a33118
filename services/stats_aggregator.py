"""
Read-side aggregation over the persisted analytics entities.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Dict, Any, List
from sqlalchemy.orm import Session
from sqlalchemy import func

from services.data_models import (
    User,
    ContentStats,
    Activity,
)


def _payload_runtime(raw: Any) -> int:
    """
    Pull the numeric runtime out of an activity payload, 0 if absent.
    """
    if not raw:
        return 0
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return 0
    if not isinstance(data, dict):
        return 0
    value = data.get("runtime")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


class StatsAggregator:
    @staticmethod
    def get_top_users_by_plays(
        session: Session,
        limit: int = 10
    ) -> List[Dict[str, Any]]:
        """
        Retrieve the most active users by play count.
        """
        q = session.query(User).order_by(User.play_count.desc()).limit(limit).all()
        return [u.to_dict() for u in q]

    @staticmethod
    def get_top_content_by_plays(
        session: Session,
        limit: int = 10
    ) -> List[Dict[str, Any]]:
        """
        Retrieve the most watched content by play count.
        """
        q = (
            session.query(ContentStats)
            .order_by(ContentStats.play_count.desc())
            .limit(limit)
            .all()
        )
        return [c.to_dict() for c in q]

    @staticmethod
    def get_total_watch_time_hours(session: Session) -> int:
        """
        Sum of every user's runtime, in hours rounded half up.
        """
        total = session.query(
            func.coalesce(func.sum(User.total_runtime), 0)
        ).scalar()
        return int((int(total or 0) + 1800) // 3600)

    @staticmethod
    def get_activity_timeline(
        session: Session,
        start_ts: int,
        day_keys: List[str]
    ) -> List[Dict[str, Any]]:
        """
        Count activities and sum payload runtime per UTC day.

        Every key in day_keys gets a bucket, empty or not.
        """
        buckets: Dict[str, Dict[str, int]] = {
            key: {"count": 0, "totalRuntime": 0} for key in day_keys
        }

        rows = (
            session.query(Activity.timestamp, Activity.data)
            .filter(Activity.timestamp >= start_ts)
            .order_by(Activity.timestamp.asc())
            .all()
        )
        for ts, raw in rows:
            key = datetime.fromtimestamp(int(ts), tz=timezone.utc).strftime("%Y-%m-%d")
            bucket = buckets.get(key)
            if bucket is None:
                continue
            bucket["count"] += 1
            bucket["totalRuntime"] += _payload_runtime(raw)

        return [
            {"date": key, **buckets[key]}
            for key in sorted(buckets)
        ]
