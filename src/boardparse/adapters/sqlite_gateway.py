"""SQLite-backed storage gateway for posts, threads and backlinks."""

import logging
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator

from ..core.errors import StorageUnavailable
from ..core.model import PostId, ResolvedReference, ThreadId
from ..core.ports import BacklinkWriter, StorageGateway

log = logging.getLogger(__name__)

SCHEMA_VERSION = "1"


class _SQLiteWriter(BacklinkWriter):
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def upsert_backlinks(
        self,
        target_post_id: PostId,
        add: Iterable[ResolvedReference],
        remove: Iterable[ResolvedReference],
    ) -> int:
        changed = 0
        for ref in remove:
            cur = self.conn.execute(
                "DELETE FROM backlinks WHERE target = ? AND source = ? AND target_thread = ?",
                (target_post_id, ref.source, ref.thread),
            )
            changed += cur.rowcount
        for ref in add:
            if ref.target != target_post_id:
                raise ValueError(f"Reference to {ref.target} filed under {target_post_id}")
            cur = self.conn.execute("""
                INSERT INTO backlinks (target, source, target_thread)
                VALUES (?, ?, ?)
                ON CONFLICT(target, source) DO UPDATE SET
                    target_thread = excluded.target_thread
                WHERE target_thread != excluded.target_thread
            """, (target_post_id, ref.source, ref.thread))
            changed += cur.rowcount
        return changed


@dataclass
class SQLiteGateway(StorageGateway):
    """
    SQLite store keyed by integer post and thread IDs.

    Every sqlite3 error is reported as StorageUnavailable so callers only
    deal with the core's error types.
    """

    db_path: Path
    busy_timeout_ms: int = 3000
    _ready: bool = field(default=False, init=False, repr=False)

    def _conn(self) -> sqlite3.Connection:
        """Get a connection to the SQLite database."""
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
        return conn

    def _init_schema(self) -> None:
        """Create tables if they don't exist."""
        conn = self._conn()
        try:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS threads (
                    id INTEGER PRIMARY KEY,
                    board TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS posts (
                    id INTEGER PRIMARY KEY,
                    thread_id INTEGER NOT NULL,
                    deleted INTEGER NOT NULL DEFAULT 0,
                    FOREIGN KEY (thread_id) REFERENCES threads(id)
                );

                -- Targets may be deleted later, so no foreign key on target
                CREATE TABLE IF NOT EXISTS backlinks (
                    target INTEGER NOT NULL,
                    source INTEGER NOT NULL,
                    target_thread INTEGER NOT NULL,
                    PRIMARY KEY (target, source)
                );

                CREATE INDEX IF NOT EXISTS backlinks_source_idx ON backlinks(source);
                CREATE INDEX IF NOT EXISTS posts_thread_idx ON posts(thread_id);
            """)
            conn.execute("""
                INSERT INTO meta(key, value) VALUES('schema_version', ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value
            """, (SCHEMA_VERSION,))
            conn.commit()
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        """Ensure DB exists and schema is initialized."""
        if self._ready:
            return
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            if self.db_path.exists():
                try:
                    conn = self._conn()
                    try:
                        conn.execute("SELECT 1").fetchone()
                    finally:
                        conn.close()
                except sqlite3.DatabaseError:
                    # DB is corrupt, back it up and start over
                    timestamp = int(time.time())
                    backup_path = self.db_path.with_suffix(f".bad-{timestamp}.sqlite")
                    self.db_path.rename(backup_path)
                    log.warning("Corrupt DB backed up to %s", backup_path)

            self._init_schema()
        except (sqlite3.Error, OSError) as e:
            raise StorageUnavailable(f"Cannot open {self.db_path}: {e}") from e
        self._ready = True

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        self._ensure_schema()
        try:
            conn = self._conn()
        except sqlite3.Error as e:
            raise StorageUnavailable(str(e)) from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise StorageUnavailable(str(e)) from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[BacklinkWriter]:
        """BEGIN IMMEDIATE ... COMMIT; any error rolls the whole block back."""
        self._ensure_schema()
        try:
            conn = self._conn()
        except sqlite3.Error as e:
            raise StorageUnavailable(str(e)) from e
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield _SQLiteWriter(conn)
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Transaction aborted: {e}") from e
        finally:
            conn.close()

    def post_exists(self, post_id: PostId) -> tuple[bool, ThreadId | None]:
        with self._reading() as conn:
            row = conn.execute(
                "SELECT thread_id FROM posts WHERE id = ? AND deleted = 0",
                (post_id,),
            ).fetchone()
        if row is None:
            return False, None
        return True, row[0]

    def backlinks(self, post_id: PostId) -> list[ResolvedReference]:
        """Get all references pointing at a post."""
        with self._reading() as conn:
            rows = conn.execute("""
                SELECT source, target, target_thread
                FROM backlinks
                WHERE target = ?
                ORDER BY source
            """, (post_id,)).fetchall()
        return [ResolvedReference(*row) for row in rows]

    def outgoing(self, post_id: PostId) -> list[ResolvedReference]:
        """Get all references made by a post."""
        with self._reading() as conn:
            rows = conn.execute("""
                SELECT source, target, target_thread
                FROM backlinks
                WHERE source = ?
                ORDER BY target
            """, (post_id,)).fetchall()
        return [ResolvedReference(*row) for row in rows]

    def register_thread(self, thread_id: ThreadId, board: str) -> None:
        with self._reading() as conn:
            conn.execute("""
                INSERT INTO threads (id, board) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET board = excluded.board
            """, (thread_id, board))
            conn.commit()

    def register_post(self, post_id: PostId, thread_id: ThreadId) -> None:
        """Record a post as live in a thread (the thread must be registered)."""
        with self._reading() as conn:
            row = conn.execute("SELECT 1 FROM threads WHERE id = ?", (thread_id,)).fetchone()
            if row is None:
                raise KeyError(f"Thread {thread_id} is not registered")
            conn.execute("""
                INSERT INTO posts (id, thread_id, deleted) VALUES (?, ?, 0)
                ON CONFLICT(id) DO UPDATE SET
                    thread_id = excluded.thread_id,
                    deleted = 0
            """, (post_id, thread_id))
            conn.commit()

    def mark_deleted(self, post_id: PostId) -> bool:
        with self._reading() as conn:
            cur = conn.execute("UPDATE posts SET deleted = 1 WHERE id = ?", (post_id,))
            conn.commit()
            return cur.rowcount > 0

    def thread_board(self, thread_id: ThreadId) -> str | None:
        with self._reading() as conn:
            row = conn.execute("SELECT board FROM threads WHERE id = ?", (thread_id,)).fetchone()
        return row[0] if row else None

    def schema_version(self) -> str | None:
        with self._reading() as conn:
            row = conn.execute(
                "SELECT value FROM meta WHERE key = 'schema_version'"
            ).fetchone()
        return row[0] if row else None
