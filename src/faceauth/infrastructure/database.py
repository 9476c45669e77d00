import logging
import os
import sqlite3
import threading
import time
from typing import Any, Optional

log = logging.getLogger(__name__)


class FaceAuthDatabase:
    DB_RETRY_ATTEMPTS = 3
    DB_RETRY_DELAY = 0.1

    def __init__(self, db_path: str):
        self.db_path = os.path.normpath(db_path)
        self._lock = threading.Lock()
        self._local = threading.local()  # per-thread connection cache

        self._ensure_parent_dir(self.db_path)
        self._ensure_schema()

        log.info("FaceAuthDatabase initialized: %s", self.db_path)

    def _ensure_parent_dir(self, path: str) -> None:
        parent = os.path.dirname(path)
        if not parent:
            # e.g. "faceauth.db" in cwd
            return
        os.makedirs(parent, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        # One connection per thread; default check_same_thread=True is fine in that case.
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    def _get_conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn
        return conn

    def _reset_conn(self) -> None:
        conn = getattr(self._local, "conn", None)
        self._local.conn = None
        if conn is not None:
            try:
                conn.close()
            except sqlite3.Error as e:
                log.debug("Ignoring close error on stale connection: %s", e)

    def _ensure_schema(self) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS face_profile (
                        profile_id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        profile_type TEXT NOT NULL DEFAULT 'NORMAL',
                        embedding BLOB NOT NULL,
                        embedding_dim INTEGER NOT NULL,
                        quality_score REAL DEFAULT 0.0,
                        created_at REAL NOT NULL,
                        model_version TEXT,
                        is_active INTEGER NOT NULL DEFAULT 1
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_profile_user ON face_profile(user_id)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_profile_active ON face_profile(is_active)")

                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS auth_audit (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        ts REAL NOT NULL,
                        result TEXT NOT NULL,
                        matched_user TEXT,
                        match_score REAL,
                        debug_json TEXT
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_ts ON auth_audit(ts)")
        finally:
            conn.close()

    def execute(self, query: str, params: tuple = (), fetch: bool = False) -> Optional[Any]:
        """Execute query with retry logic. Returns rows (fetch=True) else lastrowid."""
        last_err: Optional[Exception] = None

        for attempt in range(self.DB_RETRY_ATTEMPTS):
            try:
                with self._lock:
                    conn = self._get_conn()
                    cur = conn.execute(query, params)
                    if fetch:
                        return cur.fetchall()
                    conn.commit()
                    return cur.lastrowid
            except sqlite3.OperationalError as e:
                last_err = e

                # If connection got into a bad state, recreate it for this thread
                if "closed" in str(e).lower():
                    self._reset_conn()

                if attempt < self.DB_RETRY_ATTEMPTS - 1:
                    log.warning("DB locked/operational error, retry %d/%d: %s", attempt + 1, self.DB_RETRY_ATTEMPTS, e)
                    time.sleep(self.DB_RETRY_DELAY * (attempt + 1))
                    continue

                log.error("DB operation failed: %s", e)
                raise

        if last_err:
            raise last_err
        return None

    def close(self) -> None:
        # Close current thread's connection (if any)
        self._reset_conn()
