import logging
import os
from datetime import datetime, timezone
from typing import Callable, Optional, Set

import sqlite_utils

from feedpush.errors import StoreError

logger = logging.getLogger(__name__)

LINKS_TABLE = "seen_links"
META_TABLE = "meta"
LAST_CLEANUP_KEY = "last_cleanup"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DedupStore:
    def __init__(
        self,
        db_path: str = "data/cache.db",
        enabled: bool = True,
        now_provider: Callable[[], datetime] = utc_now,
    ):
        """
        Persistent set of links that have already been processed.

        Args:
            db_path: Path to SQLite database file
            enabled: If False, state lives in memory for this process only
            now_provider: Clock used for cleanup decisions
        """
        self.db_path = db_path
        self.enabled = enabled
        self.now_provider = now_provider
        self.links: Set[str] = set()
        self.last_cleanup: datetime = now_provider()
        self.db: Optional[sqlite_utils.Database] = None

    def load(self):
        """
        Read persisted state. Missing or unreadable state starts empty;
        this never raises.
        """
        self.links = set()
        self.last_cleanup = self.now_provider()

        if not self.enabled:
            logger.info("Database disabled - using in-memory deduplication for this run only")
            return

        if not os.path.exists(self.db_path):
            logger.info(f"No dedup state at {self.db_path}, starting empty")
            return

        try:
            self._load_from_db()
            logger.info(f"Loaded {len(self.links)} seen link(s) from {self.db_path}")
        except StoreError as e:
            logger.warning(f"Dedup state unusable, starting empty: {e}")
            self.links = set()
            self.last_cleanup = self.now_provider()
            self._quarantine()

    def _load_from_db(self):
        try:
            db = sqlite_utils.Database(self.db_path)
            if LINKS_TABLE in db.table_names():
                self.links = {row["link"] for row in db[LINKS_TABLE].rows}
            if META_TABLE in db.table_names():
                for row in db[META_TABLE].rows_where("key = ?", [LAST_CLEANUP_KEY]):
                    self.last_cleanup = _parse_timestamp(row["value"])
            db.close()
        except Exception as e:
            raise StoreError(f"cannot read {self.db_path}: {e}") from e

    def _quarantine(self):
        """Move a corrupt state file aside so the next save can recreate it."""
        target = self.db_path + ".corrupt"
        try:
            os.replace(self.db_path, target)
            logger.warning(f"Moved unreadable dedup state to {target}")
        except OSError as e:
            logger.error(f"Could not move unreadable dedup state aside: {e}")

    def has(self, link: str) -> bool:
        return link in self.links

    def add(self, link: str):
        self.links.add(link)

    def save(self):
        """
        Persist the full state. Failures are logged, not raised: the cost is
        possible re-delivery on the next run.
        """
        if not self.enabled:
            return

        try:
            self._save_to_db()
            logger.debug(f"Saved {len(self.links)} seen link(s) to {self.db_path}")
        except StoreError as e:
            logger.error(f"Failed to save dedup state: {e}")

    def _save_to_db(self):
        try:
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            db = sqlite_utils.Database(self.db_path)
            with db.conn:
                db[LINKS_TABLE].create({"link": str}, pk="link", if_not_exists=True)
                db[META_TABLE].create({"key": str, "value": str}, pk="key", if_not_exists=True)
                db.execute(f"DELETE FROM [{LINKS_TABLE}]")
                db.conn.executemany(
                    f"INSERT INTO [{LINKS_TABLE}] (link) VALUES (?)",
                    [(link,) for link in sorted(self.links)],
                )
                db.execute(
                    f"INSERT OR REPLACE INTO [{META_TABLE}] (key, value) VALUES (?, ?)",
                    [LAST_CLEANUP_KEY, self.last_cleanup.isoformat()],
                )
            db.close()
        except Exception as e:
            raise StoreError(f"cannot write {self.db_path}: {e}") from e

    def cleanup(self, retention_days: int) -> bool:
        """
        Clear every link once ``retention_days`` have passed since the last
        cleanup. Links carry no insertion time, so this is all-or-nothing.

        Returns True if the set was cleared.
        """
        now = self.now_provider()
        elapsed_days = (now - self.last_cleanup).total_seconds() / 86400
        if elapsed_days < retention_days:
            return False

        logger.info(f"Cleaning dedup state: dropping {len(self.links)} link(s)")
        self.links.clear()
        self.last_cleanup = now
        self.save()
        return True

    def __len__(self):
        return len(self.links)


def _parse_timestamp(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
