"""
Dashboard read models built on top of the persisted aggregates.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from services.jellyfin import JellyfinClient
from services.repository import Repository
from services.sync_service import SyncService

DEFAULT_TIMELINE_DAYS = 7
MAX_TIMELINE_DAYS = 3650
TOP_OVERVIEW_LIMIT = 5
TOP_STATS_LIMIT = 20


@dataclass
class AnalyticsService:
    repository: Repository
    jellyfin_client: JellyfinClient
    sync_service: SyncService

    def get_dashboard_overview(self) -> Dict[str, Any]:
        """
        Sync from Jellyfin, then summarize.
        """
        self.sync_service.sync_from_source()

        top_users = [
            {
                "id": u["id"],
                "name": u["name"],
                "playCount": u["playCount"],
                "totalRuntime": u["totalRuntime"],
            }
            for u in self.repository.get_top_users_by_plays(TOP_OVERVIEW_LIMIT)
        ]
        top_content = [
            {
                "id": c["id"],
                "name": c["name"],
                "type": c["type"],
                "playCount": c["playCount"],
            }
            for c in self.repository.get_top_content_by_plays(TOP_OVERVIEW_LIMIT)
        ]

        return {
            "totalUsers": self.repository.count_users(),
            "totalContent": self.repository.count_content(),
            "activeSessions": self._active_sessions_count(),
            "totalWatchTime": self.repository.get_total_watch_time_hours(),
            "topUsers": top_users,
            "topContent": top_content,
        }

    def get_user_stats(self) -> Dict[str, Any]:
        return {
            "mostActiveUsers": self.repository.get_top_users_by_plays(
                TOP_STATS_LIMIT
            ),
        }

    def get_content_stats(self) -> Dict[str, Any]:
        return {
            "mostWatchedContent": self.repository.get_top_content_by_plays(
                TOP_STATS_LIMIT
            ),
        }

    def get_activity_timeline(
        self,
        days: int = DEFAULT_TIMELINE_DAYS,
        today: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """
        One bucket per UTC day from today-days+1 through today, ascending.

        :param days: Number of days; values below 1 fall back to 7 and
            values above MAX_TIMELINE_DAYS are clamped to it
        :param today: Reference moment, defaults to now
        """
        if not isinstance(days, int) or days < 1:
            days = DEFAULT_TIMELINE_DAYS
        days = min(days, MAX_TIMELINE_DAYS)

        now = today or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        today_date = now.astimezone(timezone.utc).date()
        first_day = today_date - timedelta(days=days - 1)

        day_keys = [
            (first_day + timedelta(days=i)).isoformat()
            for i in range(days)
        ]
        start_ts = int(
            datetime(
                first_day.year, first_day.month, first_day.day,
                tzinfo=timezone.utc
            ).timestamp()
        )
        return self.repository.get_activity_timeline(start_ts, day_keys)

    def get_active_sessions(self) -> List[Dict[str, Any]]:
        """
        Live sessions straight from Jellyfin, not the persisted rows.
        """
        return self.jellyfin_client.sessions()

    def _active_sessions_count(self) -> int:
        return sum(
            1 for s in self.jellyfin_client.sessions()
            if s.get("NowPlayingItem")
        )
