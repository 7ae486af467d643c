import sqlite3
import json
import logging
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

class SQLiteCache:
    """
    Key-value cache of JSON payloads backed by SQLite.
    Schema: cache(key TEXT PRIMARY KEY, data TEXT, created_at REAL)

    Entries never expire on their own; readers pass `max_age` (seconds) to
    ignore anything older. Every failure is logged and reads as a miss.
    """
    def __init__(self, db_path: str = "pulseboard_cache.db", clock: Callable[[], float] = time.time):
        self.db_path = db_path
        self.clock = clock
        self._init_db()

    def _init_db(self):
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS cache (
                        key TEXT PRIMARY KEY,
                        data TEXT,
                        created_at REAL
                    )
                """)
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to init cache at {self.db_path}: {e}")

    def get(self, key: str, max_age: Optional[float] = None) -> Optional[Any]:
        """Parsed JSON for `key`, or None if missing or older than max_age."""
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.execute("SELECT data, created_at FROM cache WHERE key = ?", (key,))
                row = cursor.fetchone()
        except sqlite3.Error as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return None

        if not row:
            return None
        data, created_at = row
        if max_age is not None and (created_at is None or self.clock() - created_at > max_age):
            logger.debug(f"Cache entry {key} is stale")
            return None
        try:
            return json.loads(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Cache entry {key} is corrupt: {e}")
            return None

    def put(self, key: str, value: Any):
        """Store data as JSON string."""
        try:
            json_str = json.dumps(value, ensure_ascii=False)
            with sqlite3.connect(self.db_path) as conn:
                conn.execute("""
                    INSERT OR REPLACE INTO cache (key, data, created_at)
                    VALUES (?, ?, ?)
                """, (key, json_str, self.clock()))
                conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"Cache put failed for {key}: {e}")
