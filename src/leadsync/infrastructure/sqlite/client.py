"""SQLite client for the local message feed, tenant configuration and credentials."""

from __future__ import annotations

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, Iterable, Mapping

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from leadsync.domain.entities.credential import EncryptedToken, OAuthCredential
from leadsync.domain.entities.inbound_message import FeedRecord
from leadsync.domain.errors import CredentialMissingError
from leadsync.domain.models import DestinationConfig, TenantProfile, ThreadState


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_destinations(raw: Iterable[Mapping[str, Any]], tenant_id: str) -> list[DestinationConfig]:
    """Validate loosely-typed destination configs, dropping the ones that do not validate."""
    destinations: list[DestinationConfig] = []
    for position, entry in enumerate(raw or []):
        try:
            destinations.append(DestinationConfig.model_validate(entry))
        except PydanticValidationError as e:
            logger.warning(
                f"Ignoring invalid destination config #{position} for tenant {tenant_id}: "
                f"{e.error_count()} error(s)"
            )
    return destinations


class SQLiteClient:
    """SQLite store implementing the message feed source, tenant config and credential ports."""

    def __init__(self, db_path: str | Path = "/app/data/leadsync.db"):
        self.db_path = Path(db_path)
        self._ensure_db()

    def _ensure_db(self) -> None:
        """Create database and tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connection() as conn:
            conn.executescript("""
                PRAGMA journal_mode=WAL;

                CREATE TABLE IF NOT EXISTS messages (
                    ref TEXT PRIMARY KEY,
                    address TEXT NOT NULL UNIQUE,
                    text TEXT NOT NULL DEFAULT '',
                    sender TEXT,
                    is_test INTEGER NOT NULL DEFAULT 0,
                    processed INTEGER NOT NULL DEFAULT 0,
                    status_json TEXT,
                    processed_at TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_messages_unprocessed
                    ON messages(processed, created_at);

                CREATE TABLE IF NOT EXISTS tenants (
                    tenant_id TEXT PRIMARY KEY,
                    display_name TEXT,
                    contact_name TEXT,
                    global_agent_disabled INTEGER NOT NULL DEFAULT 0,
                    destinations_json TEXT NOT NULL DEFAULT '[]',
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS threads (
                    tenant_id TEXT NOT NULL,
                    thread_key TEXT NOT NULL,
                    agent_status TEXT,
                    human_agent INTEGER NOT NULL DEFAULT 0,
                    contact_name TEXT,
                    updated_at TEXT NOT NULL,

                    PRIMARY KEY(tenant_id, thread_key)
                );

                CREATE TABLE IF NOT EXISTS credentials (
                    tenant_id TEXT PRIMARY KEY,
                    access_token_json TEXT,
                    refresh_token_json TEXT,
                    expires_at TEXT,
                    updated_at TEXT NOT NULL
                );
            """)
            logger.info(f"SQLite database initialized at {self.db_path}")

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # =========================================================================
    # Messages
    # =========================================================================

    def add_message(
        self,
        address: str,
        text: str,
        sender: str | None = "user",
        is_test: bool = False,
        created_at: datetime | None = None,
    ) -> FeedRecord:
        """Store an inbound message, unprocessed."""
        ref = str(uuid.uuid4())
        created = created_at or datetime.now(timezone.utc)

        with self._connection() as conn:
            conn.execute(
                """INSERT INTO messages (ref, address, text, sender, is_test, processed, created_at)
                   VALUES (?, ?, ?, ?, ?, 0, ?)""",
                (ref, address, text, sender, int(is_test), created.isoformat()),
            )

        logger.debug(f"Added message {address}: {text[:50]}...")
        return FeedRecord(
            ref=ref,
            address=address,
            text=text,
            sender=sender,
            is_test=is_test,
            processed=False,
            created_at=created,
        )

    def fetch_unprocessed(self, limit: int = 100) -> list[FeedRecord]:
        """Unprocessed messages, oldest first."""
        with self._connection() as conn:
            rows = conn.execute(
                """SELECT * FROM messages
                   WHERE processed = 0
                   ORDER BY created_at ASC
                   LIMIT ?""",
                (limit,),
            ).fetchall()

        return [self._record_from_row(row) for row in rows]

    def fetch_pending(self, after: int = 0, limit: int = 100) -> list[tuple[int, FeedRecord]]:
        """Unprocessed, non-test messages inserted after the ``after`` cursor.

        Returns ``(cursor, record)`` pairs in insertion order. Pass the last
        cursor back to read the next page.
        """
        with self._connection() as conn:
            rows = conn.execute(
                """SELECT rowid AS cursor, * FROM messages
                   WHERE processed = 0 AND is_test = 0 AND rowid > ?
                   ORDER BY rowid ASC
                   LIMIT ?""",
                (after, limit),
            ).fetchall()

        return [(row["cursor"], self._record_from_row(row)) for row in rows]

    def get_message_status(self, ref: str) -> dict[str, Any] | None:
        """Stored status payload, or None while unprocessed."""
        with self._connection() as conn:
            row = conn.execute("SELECT status_json FROM messages WHERE ref = ?", (ref,)).fetchone()
        if row is None or row["status_json"] is None:
            return None
        return json.loads(row["status_json"])

    def write_status(self, ref: str, status: dict[str, Any], processed_at: datetime) -> None:
        """Set the processed flag and overwrite the stored status."""
        with self._connection() as conn:
            cursor = conn.execute(
                """UPDATE messages
                   SET processed = 1, status_json = ?, processed_at = ?
                   WHERE ref = ?""",
                (json.dumps(status), processed_at.isoformat(), ref),
            )
            if cursor.rowcount == 0:
                raise KeyError(f"Message {ref} not found")

    @staticmethod
    def _record_from_row(row: sqlite3.Row) -> FeedRecord:
        return FeedRecord(
            ref=row["ref"],
            address=row["address"],
            text=row["text"],
            sender=row["sender"],
            is_test=bool(row["is_test"]),
            processed=bool(row["processed"]),
            created_at=_parse_dt(row["created_at"]),
        )

    # =========================================================================
    # Tenants and threads
    # =========================================================================

    def upsert_tenant(
        self,
        tenant_id: str,
        destinations: list[Mapping[str, Any]] | None = None,
        display_name: str | None = None,
        contact_name: str | None = None,
        global_agent_disabled: bool = False,
    ) -> None:
        """Store a tenant with its destination configs as loose JSON."""
        now = datetime.now(timezone.utc).isoformat()
        with self._connection() as conn:
            conn.execute(
                """INSERT INTO tenants
                   (tenant_id, display_name, contact_name, global_agent_disabled, destinations_json, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(tenant_id) DO UPDATE SET
                       display_name = excluded.display_name,
                       contact_name = excluded.contact_name,
                       global_agent_disabled = excluded.global_agent_disabled,
                       destinations_json = excluded.destinations_json,
                       updated_at = excluded.updated_at""",
                (
                    tenant_id,
                    display_name,
                    contact_name,
                    int(global_agent_disabled),
                    json.dumps(list(destinations or [])),
                    now,
                ),
            )

    def get_tenant(self, tenant_id: str) -> TenantProfile | None:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM tenants WHERE tenant_id = ?", (tenant_id,)).fetchone()
        if row is None:
            return None

        try:
            raw = json.loads(row["destinations_json"] or "[]")
        except json.JSONDecodeError:
            logger.warning(f"Destination configs for tenant {tenant_id} are not valid JSON")
            raw = []

        return TenantProfile(
            tenant_id=row["tenant_id"],
            display_name=row["display_name"],
            contact_name=row["contact_name"],
            global_agent_disabled=bool(row["global_agent_disabled"]),
            destinations=parse_destinations(raw if isinstance(raw, list) else [], tenant_id),
        )

    def upsert_thread(
        self,
        tenant_id: str,
        thread_key: str,
        agent_status: str | None = None,
        human_agent: bool = False,
        contact_name: str | None = None,
    ) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._connection() as conn:
            conn.execute(
                """INSERT INTO threads (tenant_id, thread_key, agent_status, human_agent, contact_name, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(tenant_id, thread_key) DO UPDATE SET
                       agent_status = excluded.agent_status,
                       human_agent = excluded.human_agent,
                       contact_name = excluded.contact_name,
                       updated_at = excluded.updated_at""",
                (tenant_id, thread_key, agent_status, int(human_agent), contact_name, now),
            )

    def get_thread(self, tenant_id: str, thread_key: str) -> ThreadState | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM threads WHERE tenant_id = ? AND thread_key = ?",
                (tenant_id, thread_key),
            ).fetchone()
        if row is None:
            return None
        return ThreadState(
            tenant_id=row["tenant_id"],
            thread_key=row["thread_key"],
            agent_status=row["agent_status"],
            human_agent=bool(row["human_agent"]),
            contact_name=row["contact_name"],
        )

    # =========================================================================
    # Credentials
    # =========================================================================

    def load(self, tenant_id: str) -> OAuthCredential | None:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM credentials WHERE tenant_id = ?", (tenant_id,)).fetchone()
        if row is None:
            return None
        return OAuthCredential(
            tenant_id=row["tenant_id"],
            access_token=EncryptedToken.from_dict(_json_or_none(row["access_token_json"])),
            refresh_token=EncryptedToken.from_dict(_json_or_none(row["refresh_token_json"])),
            expires_at=_parse_dt(row["expires_at"]),
            updated_at=_parse_dt(row["updated_at"]),
        )

    def save(self, credential: OAuthCredential) -> None:
        updated = credential.updated_at or datetime.now(timezone.utc)
        with self._connection() as conn:
            conn.execute(
                """INSERT INTO credentials (tenant_id, access_token_json, refresh_token_json, expires_at, updated_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(tenant_id) DO UPDATE SET
                       access_token_json = excluded.access_token_json,
                       refresh_token_json = excluded.refresh_token_json,
                       expires_at = excluded.expires_at,
                       updated_at = excluded.updated_at""",
                (
                    credential.tenant_id,
                    _token_json(credential.access_token),
                    _token_json(credential.refresh_token),
                    _iso(credential.expires_at),
                    updated.isoformat(),
                ),
            )

    def save_access_token(self, tenant_id: str, access_token: EncryptedToken, expires_at: datetime) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._connection() as conn:
            cursor = conn.execute(
                """UPDATE credentials
                   SET access_token_json = ?, expires_at = ?, updated_at = ?
                   WHERE tenant_id = ?""",
                (json.dumps(access_token.to_dict()), expires_at.isoformat(), now, tenant_id),
            )
            if cursor.rowcount == 0:
                raise CredentialMissingError(tenant_id)
        logger.debug(f"Updated access token for tenant {tenant_id}, expires at {expires_at.isoformat()}")


def _token_json(token: EncryptedToken | None) -> str | None:
    return json.dumps(token.to_dict()) if token else None


def _json_or_none(value: str | None) -> dict | None:
    return json.loads(value) if value else None


# Singleton instance
_client: SQLiteClient | None = None


def get_sqlite_client(db_path: str | None = None) -> SQLiteClient:
    """Get or create SQLite client singleton."""
    global _client
    if _client is None:
        from leadsync.infrastructure.settings import get_settings

        path = db_path or get_settings().sqlite_db_path
        _client = SQLiteClient(db_path=path)
    return _client
