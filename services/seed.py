"""
Demo data for a fresh install, so the dashboard has something to chart
before the first real sync.

Run `python -m services.seed --reset` to wipe the analytics tables and
reload the demo rows.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import random
import time
import uuid
from typing import List, Optional

from dotenv import load_dotenv

from services.data_models import User, ContentStats, Activity
from services.repository import Repository

logger = logging.getLogger(__name__)

SAMPLE_ACTIVITY_COUNT = 50
ACTIVITY_TYPES = ("play", "pause", "stop")


def seed_sample_data(
    repository: Repository,
    rng: Optional[random.Random] = None,
    reset: bool = False
) -> bool:
    """
    Fill an empty store with demo users, content and activities.

    :param reset: Clear existing analytics rows first
    :returns bool: False when users already exist and nothing was written
    """
    if reset:
        repository.clear_analytics()
        logger.info("Cleared existing analytics data")
    elif repository.has_users():
        return False

    rng = rng or random.Random()
    now = int(time.time())

    users = [
        User(id="sample-user-1", name="Demo User 1", play_count=25,
             total_runtime=86400, last_activity_at=now - 3600,
             created_at=now, updated_at=now),
        User(id="sample-user-2", name="Demo User 2", play_count=18,
             total_runtime=64800, last_activity_at=now - 7200,
             created_at=now, updated_at=now),
        User(id="sample-user-3", name="Demo User 3", play_count=12,
             total_runtime=43200, last_activity_at=now - 86400,
             created_at=now, updated_at=now),
    ]

    content = [
        ContentStats(item_id="movie-1", item_name="The Matrix", item_type="Movie",
                     play_count=15, total_runtime=8184, unique_users=3,
                     last_played_at=now - 3600, created_at=now, updated_at=now),
        ContentStats(item_id="movie-2", item_name="Inception", item_type="Movie",
                     play_count=12, total_runtime=8880, unique_users=2,
                     last_played_at=now - 7200, created_at=now, updated_at=now),
        ContentStats(item_id="episode-1", item_name="Breaking Bad S01E01",
                     item_type="Episode", play_count=8, total_runtime=2880,
                     unique_users=2, last_played_at=now - 86400,
                     created_at=now, updated_at=now),
        ContentStats(item_id="episode-2", item_name="Game of Thrones S01E01",
                     item_type="Episode", play_count=10, total_runtime=3720,
                     unique_users=3, last_played_at=now - 172800,
                     created_at=now, updated_at=now),
    ]

    activities = []
    for _ in range(SAMPLE_ACTIVITY_COUNT):
        user = rng.choice(users)
        item = rng.choice(content)
        activities.append(Activity(
            id=f"sample-{uuid.UUID(int=rng.getrandbits(128))}",
            user_id=user.id,
            item_id=item.item_id,
            item_name=f"Sample Item {item.item_id}",
            item_type=item.item_type,
            activity_type=rng.choice(ACTIVITY_TYPES),
            timestamp=now - int(rng.random() * 7 * 24 * 3600),
            data=json.dumps({
                "deviceName": "Sample Device",
                "clientName": "Jellyfin Web",
            }),
        ))

    repository.add_sample_rows(users, content, activities)
    logger.info(
        "Seeded %d users, %d content items, %d activities",
        len(users), len(content), len(activities)
    )
    return True


def main(argv: Optional[List[str]] = None) -> None:
    """
    Seed the data store named by DATA_DATABASE_URL from the command line.
    """
    parser = argparse.ArgumentParser(
        description="Load demo analytics data into the data store."
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete existing users, sessions, content and activities first",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Data store URL (defaults to $DATA_DATABASE_URL)",
    )
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    database_url = args.database_url or os.getenv(
        "DATA_DATABASE_URL", "sqlite:///jellyfin_analytics_data.db"
    )
    repository = Repository(database_url=database_url)
    try:
        if not seed_sample_data(repository, reset=args.reset):
            logger.info("Data store already has users, nothing seeded (use --reset)")
    finally:
        repository.dispose()


if __name__ == "__main__":
    main()
