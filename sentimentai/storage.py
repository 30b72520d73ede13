"""Storage backends for API quotas and video file records."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Iterator, List, Optional, Protocol
import sqlite3

from sentimentai.errors import StorageError
from sentimentai.models import ApiQuota, VideoFile


class StorageBackend(Protocol):
    """Storage backend interface.

    ``consume_request``, ``claim_analysis`` and ``mark_analyzed`` must each be
    a single atomic conditional update; callers never read-then-write.
    """

    def create_quota(self, quota: ApiQuota) -> ApiQuota:
        ...

    def get_quota(self, user_id: str) -> Optional[ApiQuota]:
        ...

    def get_quota_by_key(self, secret_key: str) -> Optional[ApiQuota]:
        ...

    def consume_request(
        self,
        user_id: str,
        now: datetime,
        reset_cutoff: datetime,
        deduct: bool = True,
    ) -> bool:
        ...

    def create_file(self, video: VideoFile) -> VideoFile:
        ...

    def get_file(self, key: str) -> Optional[VideoFile]:
        ...

    def delete_file(self, key: str) -> None:
        ...

    def claim_analysis(self, key: str) -> bool:
        ...

    def release_analysis(self, key: str) -> None:
        ...

    def mark_analyzed(self, key: str) -> bool:
        ...


def _ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # Fixed width so that string comparison in SQL orders correctly.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class InMemoryStorage:
    """In-memory storage backend (default for tests and local runs)."""

    def __init__(self):
        self._quotas: Dict[str, ApiQuota] = {}
        self._keys: Dict[str, str] = {}
        self._files: Dict[str, VideoFile] = {}
        self._lock = Lock()

    def create_quota(self, quota: ApiQuota) -> ApiQuota:
        with self._lock:
            if quota.user_id in self._quotas:
                raise StorageError(f"Quota already exists for user '{quota.user_id}'")
            if quota.secret_key in self._keys:
                raise StorageError("Secret key already in use")
            self._quotas[quota.user_id] = replace(quota)
            self._keys[quota.secret_key] = quota.user_id
        return quota

    def get_quota(self, user_id: str) -> Optional[ApiQuota]:
        with self._lock:
            quota = self._quotas.get(user_id)
            return replace(quota) if quota else None

    def get_quota_by_key(self, secret_key: str) -> Optional[ApiQuota]:
        with self._lock:
            user_id = self._keys.get(secret_key)
            if user_id is None:
                return None
            return replace(self._quotas[user_id])

    def consume_request(
        self,
        user_id: str,
        now: datetime,
        reset_cutoff: datetime,
        deduct: bool = True,
    ) -> bool:
        with self._lock:
            quota = self._quotas.get(user_id)
            if quota is None:
                raise StorageError(f"No quota for user '{user_id}'")

            if quota.last_reset_date <= reset_cutoff:
                if deduct:
                    quota.requests_used = 1
                    quota.last_reset_date = now
                return True

            if quota.requests_used >= quota.max_requests:
                return False
            if deduct:
                quota.requests_used += 1
            return True

    def create_file(self, video: VideoFile) -> VideoFile:
        with self._lock:
            if video.key in self._files:
                raise StorageError(f"File record already exists for key '{video.key}'")
            self._files[video.key] = replace(video)
        return video

    def get_file(self, key: str) -> Optional[VideoFile]:
        with self._lock:
            video = self._files.get(key)
            return replace(video) if video else None

    def delete_file(self, key: str) -> None:
        with self._lock:
            self._files.pop(key, None)

    def claim_analysis(self, key: str) -> bool:
        with self._lock:
            video = self._files.get(key)
            if video is None or video.analyzed or video.analyzing:
                return False
            video.analyzing = True
            return True

    def release_analysis(self, key: str) -> None:
        with self._lock:
            video = self._files.get(key)
            if video is not None:
                video.analyzing = False

    def mark_analyzed(self, key: str) -> bool:
        with self._lock:
            video = self._files.get(key)
            if video is None or video.analyzed:
                return False
            video.analyzed = True
            video.analyzing = False
            return True

    def list_files(self, user_id: str) -> List[VideoFile]:
        with self._lock:
            return [replace(v) for v in self._files.values() if v.user_id == user_id]


class SQLiteStorage:
    """SQLite-backed storage backend."""

    def __init__(self, db_path: str = "sentimentai.db"):
        # Autocommit mode; writes open their own BEGIN IMMEDIATE transaction.
        self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._lock = Lock()
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._conn.execute("PRAGMA busy_timeout=5000;")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS api_quotas (
                    user_id TEXT PRIMARY KEY,
                    secret_key TEXT NOT NULL UNIQUE,
                    requests_used INTEGER NOT NULL DEFAULT 0 CHECK (requests_used >= 0),
                    max_requests INTEGER NOT NULL CHECK (max_requests > 0),
                    last_reset_date TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS video_files (
                    key TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL REFERENCES api_quotas(user_id),
                    analyzed INTEGER NOT NULL DEFAULT 0,
                    analyzing INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_video_files_user ON video_files(user_id)")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")

    def _row_to_quota(self, row: sqlite3.Row) -> ApiQuota:
        return ApiQuota(
            user_id=row["user_id"],
            secret_key=row["secret_key"],
            requests_used=row["requests_used"],
            max_requests=row["max_requests"],
            last_reset_date=_parse_ts(row["last_reset_date"]),
        )

    def _row_to_file(self, row: sqlite3.Row) -> VideoFile:
        return VideoFile(
            key=row["key"],
            user_id=row["user_id"],
            analyzed=bool(row["analyzed"]),
            analyzing=bool(row["analyzing"]),
            created_at=_parse_ts(row["created_at"]),
        )

    def create_quota(self, quota: ApiQuota) -> ApiQuota:
        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO api_quotas (user_id, secret_key, requests_used, max_requests, last_reset_date)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        quota.user_id,
                        quota.secret_key,
                        quota.requests_used,
                        quota.max_requests,
                        _ts(quota.last_reset_date),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise StorageError(f"Could not create quota for user '{quota.user_id}'") from exc
        return quota

    def get_quota(self, user_id: str) -> Optional[ApiQuota]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM api_quotas WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return self._row_to_quota(row) if row else None

    def get_quota_by_key(self, secret_key: str) -> Optional[ApiQuota]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM api_quotas WHERE secret_key = ?",
                (secret_key,),
            ).fetchone()
        return self._row_to_quota(row) if row else None

    def consume_request(
        self,
        user_id: str,
        now: datetime,
        reset_cutoff: datetime,
        deduct: bool = True,
    ) -> bool:
        with self._transaction() as conn:
            if not deduct:
                row = conn.execute(
                    """
                    SELECT last_reset_date <= ? AS due, requests_used < max_requests AS available
                    FROM api_quotas WHERE user_id = ?
                    """,
                    (_ts(reset_cutoff), user_id),
                ).fetchone()
                if row is None:
                    raise StorageError(f"No quota for user '{user_id}'")
                return bool(row["due"] or row["available"])

            cur = conn.execute(
                """
                UPDATE api_quotas SET requests_used = 1, last_reset_date = ?
                WHERE user_id = ? AND last_reset_date <= ?
                """,
                (_ts(now), user_id, _ts(reset_cutoff)),
            )
            if cur.rowcount > 0:
                return True

            cur = conn.execute(
                """
                UPDATE api_quotas SET requests_used = requests_used + 1
                WHERE user_id = ? AND requests_used < max_requests
                """,
                (user_id,),
            )
            if cur.rowcount > 0:
                return True

            exists = conn.execute(
                "SELECT 1 FROM api_quotas WHERE user_id = ?",
                (user_id,),
            ).fetchone()
            if exists is None:
                raise StorageError(f"No quota for user '{user_id}'")
            return False

    def create_file(self, video: VideoFile) -> VideoFile:
        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO video_files (key, user_id, analyzed, analyzing, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        video.key,
                        video.user_id,
                        1 if video.analyzed else 0,
                        1 if video.analyzing else 0,
                        _ts(video.created_at),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise StorageError(f"Could not create file record for key '{video.key}'") from exc
        return video

    def get_file(self, key: str) -> Optional[VideoFile]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM video_files WHERE key = ?",
                (key,),
            ).fetchone()
        return self._row_to_file(row) if row else None

    def delete_file(self, key: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM video_files WHERE key = ?", (key,))

    def claim_analysis(self, key: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                """
                UPDATE video_files SET analyzing = 1
                WHERE key = ? AND analyzed = 0 AND analyzing = 0
                """,
                (key,),
            )
            return cur.rowcount > 0

    def release_analysis(self, key: str) -> None:
        with self._transaction() as conn:
            conn.execute("UPDATE video_files SET analyzing = 0 WHERE key = ?", (key,))

    def mark_analyzed(self, key: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE video_files SET analyzed = 1, analyzing = 0 WHERE key = ? AND analyzed = 0",
                (key,),
            )
            return cur.rowcount > 0

    def list_files(self, user_id: str) -> List[VideoFile]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM video_files WHERE user_id = ? ORDER BY created_at ASC",
                (user_id,),
            ).fetchall()
        return [self._row_to_file(row) for row in rows]

    def close(self) -> None:
        self._conn.close()
