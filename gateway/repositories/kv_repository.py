"""Key-value repository backing the metadata store."""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from common.logging_config import get_logger
from gateway.database import get_db_connection

logger = get_logger(__name__)


@dataclass
class KVEntry:
    key: str
    value: Optional[bytes]
    metadata: Dict[str, Any] = field(default_factory=dict)
    expires_at: Optional[float] = None


class KVRepository:
    """
    SQLite-backed key-value map with per-key JSON metadata and optional TTL.

    Expired rows are invisible to reads immediately and are hard-deleted by
    ``purge_expired``.
    """

    def __init__(self, database_path: str):
        self.database_path = database_path

    def get(self, key: str) -> Optional[KVEntry]:
        with get_db_connection(self.database_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT key, value, metadata, expires_at
                FROM kv_entries
                WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)
                """,
                (key, time.time())
            )
            row = cursor.fetchone()

            if row is None:
                return None

            return KVEntry(
                key=row["key"],
                value=row["value"],
                metadata=json.loads(row["metadata"]) if row["metadata"] else {},
                expires_at=row["expires_at"],
            )

    def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self.get(key)
        if entry is None or entry.value is None:
            return None
        try:
            return json.loads(entry.value)
        except (ValueError, UnicodeDecodeError):
            logger.warning(f"Stored value is not JSON [key={key}]")
            return None

    def put(
        self,
        key: str,
        value: Union[bytes, str, None] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ttl_seconds: Optional[int] = None
    ) -> None:
        if isinstance(value, str):
            value = value.encode("utf-8")
        expires_at = time.time() + ttl_seconds if ttl_seconds else None

        with get_db_connection(self.database_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO kv_entries (key, value, metadata, expires_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    metadata = excluded.metadata,
                    expires_at = excluded.expires_at
                """,
                (key, value, json.dumps(metadata) if metadata is not None else None, expires_at)
            )
            conn.commit()

        logger.debug(f"Stored entry [key={key}, ttl={ttl_seconds}]")

    def put_json(self, key: str, value: Dict[str, Any], ttl_seconds: Optional[int] = None) -> None:
        self.put(key, json.dumps(value), ttl_seconds=ttl_seconds)

    def delete(self, key: str) -> bool:
        with get_db_connection(self.database_path) as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
            conn.commit()
            deleted = cursor.rowcount > 0

        logger.debug(f"Deleted entry [key={key}, existed={deleted}]")
        return deleted

    def purge_expired(self, now: Optional[float] = None) -> int:
        """
        Hard-delete every row whose TTL has elapsed.

        Returns:
            Number of rows removed
        """
        cutoff = time.time() if now is None else now
        with get_db_connection(self.database_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM kv_entries WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (cutoff,)
            )
            conn.commit()
            return cursor.rowcount
