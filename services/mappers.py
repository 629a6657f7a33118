from __future__ import annotations

import json
import re
from typing import Dict, Any, List, Optional, Tuple

TICKS_PER_SECOND = 10_000_000

PLAYBACK_ACTIVITY_TYPE = "VideoPlayback"

_FRACTION_RE = re.compile(r"\.(\d+)")


def ticks_to_seconds(ticks: Any) -> int:
    """
    Convert Jellyfin/.NET ticks (100ns) to whole seconds, truncating.
    """
    try:
        value = int(ticks or 0)
    except (TypeError, ValueError):
        return 0
    if value <= 0:
        return 0
    return value // TICKS_PER_SECOND


def parse_jellyfin_date(value: Any) -> Optional[int]:
    """
    Parse a Jellyfin ISO-8601 date into epoch seconds.

    Jellyfin emits up to seven fractional digits, which fromisoformat
    does not accept on every interpreter, so the fraction is cut to
    microseconds first.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        ts = int(value)
        if ts > 10**12:
            ts = int(ts / 1000)
        return ts

    from datetime import datetime, timezone
    s = str(value).strip().replace("Z", "+00:00")
    s = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), s, count=1)
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def _text(value: Any) -> str:
    return str(value or "").strip()


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def map_user(jf_user: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Transform a Jellyfin user object into a User row dict.
    """
    jf_id = _text(jf_user.get("Id"))
    name = _text(jf_user.get("Name"))

    if not jf_id or not name:
        return None

    return {
        "id": jf_id,
        "name": name,
        "last_activity_at": parse_jellyfin_date(
            jf_user.get("LastActivityDate")
        ),
    }


def map_users(jf_users: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Transform a list of Jellyfin users into User row dicts.
    """
    results = []
    for user in jf_users:
        mapped = map_user(user)
        if mapped:
            results.append(mapped)
    return results


def map_session(jf_session: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Transform a Jellyfin session into a Session row dict.

    Sessions that are not playing anything map to None.
    """
    now_playing = jf_session.get("NowPlayingItem")
    if not isinstance(now_playing, dict):
        return None

    session_id = _text(jf_session.get("Id"))
    user_id = _text(jf_session.get("UserId"))
    if not session_id or not user_id:
        return None

    play_state = jf_session.get("PlayState")
    if not isinstance(play_state, dict):
        play_state = {}

    return {
        "id": session_id,
        "user_id": user_id,
        "item_id": _text(now_playing.get("Id")) or None,
        "item_name": now_playing.get("Name"),
        "item_type": now_playing.get("Type"),
        "device_name": jf_session.get("DeviceName"),
        "client_name": jf_session.get("Client"),
        "play_method": play_state.get("PlayMethod") or "DirectPlay",
        "playback_position_ticks": _int(play_state.get("PositionTicks")),
        "runtime_ticks": _int(now_playing.get("RunTimeTicks")),
    }


def map_sessions(jf_sessions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Transform a list of Jellyfin sessions into Session row dicts.
    """
    results = []
    for session in jf_sessions:
        mapped = map_session(session)
        if mapped:
            results.append(mapped)
    return results


def build_session_lookup(
    session_rows: List[Dict[str, Any]]
) -> Dict[Tuple[str, str], Dict[str, Any]]:
    """
    Index mapped sessions by (user id, item id) for activity payloads.
    """
    lookup: Dict[Tuple[str, str], Dict[str, Any]] = {}
    for row in session_rows:
        if not row.get("item_id"):
            continue
        lookup[(row["user_id"], row["item_id"])] = {
            "deviceName": row.get("device_name") or "Unknown",
            "clientName": row.get("client_name") or "Unknown",
            "runtime": ticks_to_seconds(row.get("runtime_ticks")),
        }
    return lookup


def map_activity(
    jf_event: Dict[str, Any],
    session_lookup: Optional[Dict[Tuple[str, str], Dict[str, Any]]] = None
) -> Optional[Dict[str, Any]]:
    """
    Transform a Jellyfin activity-log entry into an Activity row dict.

    Only video playback entries with a user are kept.
    """
    if jf_event.get("Type") != PLAYBACK_ACTIVITY_TYPE:
        return None

    user_id = _text(jf_event.get("UserId"))
    activity_id = _text(jf_event.get("Id"))
    if not user_id or not activity_id:
        return None

    item_id = _text(jf_event.get("ItemId")) or None

    payload = {"deviceName": "Unknown", "clientName": "Unknown", "runtime": 0}
    if session_lookup and item_id:
        payload.update(session_lookup.get((user_id, item_id), {}))

    timestamp = parse_jellyfin_date(jf_event.get("Date"))
    if timestamp is None:
        import time
        timestamp = int(time.time())

    return {
        "id": activity_id,
        "user_id": user_id,
        "item_id": item_id,
        "item_name": jf_event.get("Name"),
        "item_type": "Video",
        "activity_type": "play",
        "timestamp": timestamp,
        "data": json.dumps(payload),
        "runtime": int(payload.get("runtime") or 0),
    }


def map_activities(
    jf_events: List[Dict[str, Any]],
    session_lookup: Optional[Dict[Tuple[str, str], Dict[str, Any]]] = None
) -> List[Dict[str, Any]]:
    """
    Transform a list of activity-log entries into Activity row dicts.
    """
    results: List[Dict[str, Any]] = []
    for event in jf_events:
        mapped = map_activity(event, session_lookup)
        if mapped:
            results.append(mapped)
    return results


def map_content_item(jf_item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Transform a Jellyfin library item into a ContentStats row dict.

    Items never played map to None.
    """
    jf_id = _text(jf_item.get("Id"))
    if not jf_id:
        return None

    play_count = jf_item.get("PlayCount")
    if play_count is None:
        user_data = jf_item.get("UserData")
        if isinstance(user_data, dict):
            play_count = user_data.get("PlayCount")
    play_count = _int(play_count)
    if play_count <= 0:
        return None

    return {
        "item_id": jf_id,
        "item_name": _text(jf_item.get("Name")) or "Unknown",
        "item_type": jf_item.get("Type"),
        "play_count": play_count,
        "total_runtime": ticks_to_seconds(jf_item.get("RunTimeTicks")),
    }


def map_content_items(
    jf_items: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """
    Transform a list of library items into ContentStats row dicts.
    """
    results: List[Dict[str, Any]] = []
    for it in jf_items or []:
        mapped = map_content_item(it)
        if mapped:
            results.append(mapped)
    return results
