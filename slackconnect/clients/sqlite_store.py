"""SQLite-backed durable store for Slack credentials and scheduled messages."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from slackconnect.models import MessageStatus, ScheduledMessage, SlackCredential

_TOKEN_FIELDS = ("access_token", "bot_token", "refresh_token")


class TokenCipher(Protocol):
    def encrypt(self, plaintext: str) -> str: ...

    def decrypt(self, ciphertext: str) -> str: ...


class SQLiteStore:
    """Document-per-row store with indexed lookup columns and versioned writes.

    Every mutation of an existing record is a compare-and-swap on its
    ``version`` column, so two writers racing on the same row cannot silently
    overwrite each other. The loser gets ``False`` back and should re-read.
    """

    def __init__(self, db_path: str, token_cipher: Optional[TokenCipher] = None) -> None:
        self._db_path = Path(db_path)
        self._cipher = token_cipher
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS credentials (
                    user_id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS scheduled_messages (
                    message_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    scheduled_ts REAL NOT NULL,
                    data TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_scheduled_messages_due
                ON scheduled_messages (status, scheduled_ts)
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_scheduled_messages_owner
                ON scheduled_messages (user_id, scheduled_ts)
                """
            )

    # Credentials

    def _encode_credential(self, credential: SlackCredential) -> str:
        payload: Dict[str, Any] = credential.model_dump(mode="json", exclude={"version"})
        if self._cipher is not None:
            for name in _TOKEN_FIELDS:
                if payload.get(name):
                    payload[name] = self._cipher.encrypt(payload[name])
        return json.dumps(payload)

    def _decode_credential(self, row: sqlite3.Row) -> SlackCredential:
        payload = json.loads(row["data"])
        if self._cipher is not None:
            for name in _TOKEN_FIELDS:
                if payload.get(name):
                    payload[name] = self._cipher.decrypt(payload[name])
        payload["version"] = row["version"]
        return SlackCredential.model_validate(payload)

    def get_credential(self, user_id: str) -> Optional[SlackCredential]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data, version FROM credentials WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if not row:
            return None
        return self._decode_credential(row)

    def save_credential(self, credential: SlackCredential) -> SlackCredential:
        """Insert or overwrite a credential unconditionally (OAuth connect path)."""
        existing = self.get_credential(credential.user_id)
        if existing is not None:
            credential.created_at = existing.created_at
        credential.updated_at = _now()
        data_json = self._encode_credential(credential)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO credentials (user_id, data, version)
                VALUES (?, ?, 0)
                ON CONFLICT(user_id) DO UPDATE SET
                    data = excluded.data,
                    version = credentials.version + 1
                """,
                (credential.user_id, data_json),
            )
            row = conn.execute(
                "SELECT version FROM credentials WHERE user_id = ?",
                (credential.user_id,),
            ).fetchone()
        credential.version = row["version"]
        return credential

    def update_credential(self, credential: SlackCredential) -> bool:
        """Persist ``credential`` only if nobody wrote it since it was read."""
        credential.updated_at = _now()
        data_json = self._encode_credential(credential)
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE credentials SET data = ?, version = version + 1
                WHERE user_id = ? AND version = ?
                """,
                (data_json, credential.user_id, credential.version),
            )
        if cursor.rowcount != 1:
            return False
        credential.version += 1
        return True

    # Scheduled messages

    @staticmethod
    def _decode_message(row: sqlite3.Row) -> ScheduledMessage:
        payload = json.loads(row["data"])
        payload["version"] = row["version"]
        return ScheduledMessage.model_validate(payload)

    def create_message(self, message: ScheduledMessage) -> ScheduledMessage:
        now = _now()
        message.created_at = now
        message.updated_at = now
        message.version = 0
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO scheduled_messages
                    (message_id, user_id, status, scheduled_ts, data, version)
                VALUES (?, ?, ?, ?, ?, 0)
                """,
                (
                    message.message_id,
                    message.user_id,
                    message.status.value,
                    message.scheduled_time.timestamp(),
                    message.model_dump_json(exclude={"version"}),
                ),
            )
        return message

    def get_message(self, message_id: str) -> Optional[ScheduledMessage]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data, version FROM scheduled_messages WHERE message_id = ?",
                (message_id,),
            ).fetchone()
        if not row:
            return None
        return self._decode_message(row)

    def list_due_messages(self, *, now: datetime, limit: int) -> list[ScheduledMessage]:
        """Pending messages whose scheduled time is at or before ``now``."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT data, version FROM scheduled_messages
                WHERE status = ? AND scheduled_ts <= ?
                ORDER BY scheduled_ts
                LIMIT ?
                """,
                (MessageStatus.PENDING.value, now.timestamp(), limit),
            ).fetchall()
        return [self._decode_message(row) for row in rows]

    def list_messages(
        self,
        *,
        user_id: str,
        status: Optional[MessageStatus] = None,
        limit: int = 50,
    ) -> list[ScheduledMessage]:
        """A user's messages, latest scheduled time first."""
        query = "SELECT data, version FROM scheduled_messages WHERE user_id = ?"
        params: list[Any] = [user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY scheduled_ts DESC LIMIT ?"
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._decode_message(row) for row in rows]

    def update_message(
        self,
        message: ScheduledMessage,
        *,
        expected_status: MessageStatus = MessageStatus.PENDING,
    ) -> bool:
        """Compare-and-swap write keyed on the version and status that were read."""
        message.updated_at = _now()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE scheduled_messages
                SET status = ?, scheduled_ts = ?, data = ?, version = version + 1
                WHERE message_id = ? AND version = ? AND status = ?
                """,
                (
                    message.status.value,
                    message.scheduled_time.timestamp(),
                    message.model_dump_json(exclude={"version"}),
                    message.message_id,
                    message.version,
                    expected_status.value,
                ),
            )
        if cursor.rowcount != 1:
            return False
        message.version += 1
        return True


def _now() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["SQLiteStore", "TokenCipher"]
