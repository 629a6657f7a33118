"""
Jellyfin analytics aggregate data.
"""

from __future__ import annotations
from typing import Dict, Any

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    BigInteger,
    Text,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _iso(ts):
    if ts is None:
        return None
    from datetime import datetime, timezone
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).isoformat()


class User(Base):
    """
    Jellyfin account with denormalized play counters.
    """
    __tablename__ = "users"

    id = Column(String(128), primary_key=True)
    name = Column(String(255), nullable=False)
    play_count = Column(Integer, nullable=False, default=0)
    total_runtime = Column(BigInteger, nullable=False, default=0)
    last_activity_at = Column(BigInteger, nullable=True)
    created_at = Column(BigInteger, nullable=True)
    updated_at = Column(BigInteger, nullable=True)

    __table_args__ = (
        Index("idx_user_play_count", "play_count"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "playCount": int(self.play_count or 0),
            "totalRuntime": int(self.total_runtime or 0),
            "lastActivity": _iso(self.last_activity_at),
        }


class ContentStats(Base):
    """
    Watch statistics for a single movie, episode or track.
    """
    __tablename__ = "content_stats"

    item_id = Column(String(128), primary_key=True)
    item_name = Column(String(512), nullable=False)
    item_type = Column(String(64), nullable=True)
    play_count = Column(Integer, nullable=False, default=0)
    total_runtime = Column(BigInteger, nullable=False, default=0)
    unique_users = Column(Integer, nullable=False, default=0)
    last_played_at = Column(BigInteger, nullable=True)
    created_at = Column(BigInteger, nullable=True)
    updated_at = Column(BigInteger, nullable=True)

    __table_args__ = (
        Index("idx_content_play_count", "play_count"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.item_id,
            "name": self.item_name,
            "type": self.item_type,
            "playCount": int(self.play_count or 0),
            "totalRuntime": int(self.total_runtime or 0),
            "uniqueUsers": int(self.unique_users or 0),
        }


class Activity(Base):
    """
    Append-only playback event taken from the Jellyfin activity log.
    """
    __tablename__ = "activities"

    id = Column(String(128), primary_key=True)
    user_id = Column(
        String(128),
        ForeignKey("users.id"),
        nullable=False
    )
    item_id = Column(String(128), nullable=True)
    item_name = Column(String(512), nullable=True)
    item_type = Column(String(64), nullable=True)
    activity_type = Column(String(16), nullable=False, default="play")
    timestamp = Column(BigInteger, nullable=False)
    data = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_activity_user_id", "user_id"),
        Index("idx_activity_timestamp", "timestamp"),
    )

    def to_dict(self) -> Dict[str, Any]:
        import json
        payload = None
        if self.data:
            try:
                payload = json.loads(self.data)
            except Exception:
                payload = self.data

        return {
            "id": self.id,
            "userId": self.user_id,
            "itemId": self.item_id,
            "itemName": self.item_name,
            "itemType": self.item_type,
            "activityType": self.activity_type,
            "timestamp": _iso(self.timestamp),
            "data": payload,
        }


class Session(Base):
    """
    Playback session as last observed on the server.
    """
    __tablename__ = "sessions"

    id = Column(String(128), primary_key=True)
    user_id = Column(String(128), nullable=False)
    item_id = Column(String(128), nullable=True)
    item_name = Column(String(512), nullable=True)
    item_type = Column(String(64), nullable=True)
    device_name = Column(String(255), nullable=True)
    client_name = Column(String(255), nullable=True)
    play_method = Column(String(32), nullable=True)
    start_time = Column(BigInteger, nullable=False)
    end_time = Column(BigInteger, nullable=True)
    playback_position_ticks = Column(BigInteger, default=0)
    runtime_ticks = Column(BigInteger, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(BigInteger, nullable=True)

    __table_args__ = (
        Index("idx_session_is_active", "is_active"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "itemId": self.item_id,
            "itemName": self.item_name,
            "itemType": self.item_type,
            "deviceName": self.device_name,
            "clientName": self.client_name,
            "playMethod": self.play_method,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "playbackPositionTicks": int(self.playback_position_ticks or 0),
            "runtimeTicks": int(self.runtime_ticks or 0),
            "isActive": bool(self.is_active),
        }


class TaskLog(Base):
    """
    Records sync operations.
    """
    __tablename__ = "task_logging"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    type = Column(String(64), nullable=False)
    execution_type = Column(String(32), nullable=False)
    duration_ms = Column(Integer, default=0)
    started_at = Column(BigInteger, nullable=False)
    finished_at = Column(BigInteger, nullable=True)
    result = Column(String(32), nullable=False)
    log_json = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_task_started_at", "started_at"),
        Index("idx_task_result", "result"),
    )

    def to_dict(self) -> Dict[str, Any]:
        import json
        log_data = None
        if self.log_json:
            try:
                log_data = json.loads(self.log_json)
            except Exception:
                log_data = self.log_json

        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "execution_type": self.execution_type,
            "duration_ms": self.duration_ms,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "result": self.result,
            "log": log_data,
        }
