from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Any, List

from services.jellyfin import JellyfinClient
from services.repository import Repository
from services.mappers import (
    map_users,
    map_sessions,
    map_activities,
    map_content_items,
    build_session_lookup,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """
    Structured result from a sync operation.
    """
    success: bool
    duration_ms: int
    users_synced: int = 0
    sessions_synced: int = 0
    sessions_ended: int = 0
    activities_synced: int = 0
    content_synced: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "duration_ms": self.duration_ms,
            "users_synced": self.users_synced,
            "sessions_synced": self.sessions_synced,
            "sessions_ended": self.sessions_ended,
            "activities_synced": self.activities_synced,
            "content_synced": self.content_synced,
            "errors": self.errors,
        }


@dataclass
class SyncService:
    jellyfin_client: JellyfinClient
    repository: Repository
    activity_page_size: int = 100

    def _fetch_all(self) -> Dict[str, List[Dict[str, Any]]]:
        """
        Issue the four Jellyfin reads in parallel.
        """
        jf = self.jellyfin_client
        with ThreadPoolExecutor(max_workers=4) as ex:
            futures = {
                "users": ex.submit(jf.users),
                "sessions": ex.submit(jf.sessions),
                "activities": ex.submit(
                    jf.activities, 0, self.activity_page_size
                ),
                "items": ex.submit(jf.library_items),
            }
            return {name: fut.result() for name, fut in futures.items()}

    def sync_from_source(self) -> SyncResult:
        """
        Pull users, sessions, activities and library items from Jellyfin
        and fold them into the local aggregates.

        Folds commit one after another; if one raises, the rest are
        skipped, the earlier ones stay committed and the error propagates.
        """
        start_time = time.time()
        result = SyncResult(success=False, duration_ms=0)

        task_id = self.repository.create_task_log(
            name="Jellyfin Sync",
            task_type="sync",
            execution_type="manual"
        )

        try:
            fetched = self._fetch_all()
            now = int(time.time())

            # Phase 1: users
            result.users_synced = self.repository.upsert_users(
                map_users(fetched["users"])
            )

            # Phase 2: sessions, expire everything then re-activate what is playing
            session_rows = map_sessions(fetched["sessions"])
            result.sessions_ended = self.repository.deactivate_active_sessions(now)
            result.sessions_synced = self.repository.upsert_active_sessions(
                session_rows, now
            )

            # Phase 3: playback activities
            events = map_activities(
                fetched["activities"],
                session_lookup=build_session_lookup(session_rows)
            )
            result.activities_synced = self.repository.insert_activities(events)

            # Phase 4: content statistics
            result.content_synced = self.repository.upsert_content_stats(
                map_content_items(fetched["items"]), now
            )

        except Exception as exc:
            result.duration_ms = int((time.time() - start_time) * 1000)
            result.errors.append(f"Unexpected error: {str(exc)}")
            logger.exception("Error syncing data from Jellyfin")
            try:
                self.repository.complete_task_log(
                    task_id=task_id,
                    result="FAILED",
                    log_data=result.to_dict(),
                    duration_ms=result.duration_ms,
                )
            except Exception:
                logger.error("Failed to record sync failure for task %s", task_id)
            raise

        result.success = True
        result.duration_ms = int((time.time() - start_time) * 1000)
        self.repository.complete_task_log(
            task_id=task_id,
            result="SUCCESS",
            log_data=result.to_dict(),
            duration_ms=result.duration_ms,
        )
        logger.info(
            "Data sync from Jellyfin completed: %s users, %s sessions, "
            "%s new activities, %s content items in %sms",
            result.users_synced,
            result.sessions_synced,
            result.activities_synced,
            result.content_synced,
            result.duration_ms,
        )
        return result
