"""
SQLite store for the local contact set and reconciliation state.

Provides transactional storage for integrations, local contacts, integration
links, import jobs, sync cursors and pending conflicts.

All writes go through a unit of work (one SQLite transaction). Inside a unit
of work, savepoints isolate individual records so one failing record can be
rolled back without losing the rest of its batch.
"""

import json
import logging
import sqlite3
import threading
from collections.abc import Generator
from contextlib import contextmanager, nullcontext
from datetime import datetime
from typing import Any, Optional

from contact_reconciler.sync.conflict import Conflict, ConflictStatus
from contact_reconciler.sync.jobs import (
    MAX_JOB_ERRORS,
    ImportJob,
    JobKind,
    JobStatus,
    error_ring,
)
from contact_reconciler.sync.records import (
    Integration,
    IntegrationLink,
    LocalContact,
    SyncCursor,
    format_timestamp,
    parse_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

# SQL schema. Timestamps are ISO-8601 UTC text.
SCHEMA = """
CREATE TABLE IF NOT EXISTS integrations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    provider TEXT NOT NULL,
    name TEXT NOT NULL DEFAULT '',
    conflict_strategy TEXT NOT NULL,
    write_back INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_integrations_user ON integrations(user_id);

CREATE TABLE IF NOT EXISTS local_contacts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    first_name TEXT NOT NULL DEFAULT '',
    last_name TEXT,
    email TEXT,
    phone TEXT,
    company TEXT,
    position TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    metadata TEXT NOT NULL DEFAULT '{}',
    source TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_local_contacts_user ON local_contacts(user_id);

CREATE TABLE IF NOT EXISTS integration_links (
    id INTEGER PRIMARY KEY,
    integration_id TEXT NOT NULL,
    contact_id TEXT NOT NULL,
    external_id TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    last_synced_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(integration_id, external_id)
);

CREATE INDEX IF NOT EXISTS idx_links_contact ON integration_links(contact_id);

CREATE TABLE IF NOT EXISTS import_jobs (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    integration_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    status TEXT NOT NULL,
    total_count INTEGER NOT NULL DEFAULT 0,
    processed_count INTEGER NOT NULL DEFAULT 0,
    imported_count INTEGER NOT NULL DEFAULT 0,
    updated_count INTEGER NOT NULL DEFAULT 0,
    skipped_count INTEGER NOT NULL DEFAULT 0,
    failed_count INTEGER NOT NULL DEFAULT 0,
    deleted_count INTEGER NOT NULL DEFAULT 0,
    errors TEXT NOT NULL DEFAULT '[]',
    error_message TEXT,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_jobs_owner ON import_jobs(user_id, integration_id);

CREATE TABLE IF NOT EXISTS sync_cursors (
    integration_id TEXT PRIMARY KEY,
    cursor TEXT,
    last_sync_at TEXT
);

CREATE TABLE IF NOT EXISTS conflicts (
    id INTEGER PRIMARY KEY,
    integration_id TEXT,
    contact_id TEXT NOT NULL,
    field TEXT NOT NULL,
    local_value TEXT,
    remote_value TEXT,
    local_modified_at TEXT,
    remote_modified_at TEXT,
    status TEXT NOT NULL,
    resolution TEXT,
    resolved_value TEXT,
    created_at TEXT NOT NULL,
    resolved_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_conflicts_integration ON conflicts(integration_id, status);
"""

_CONTACT_COLUMNS = (
    "id, user_id, first_name, last_name, email, phone, company, position, "
    "tags, metadata, source, created_at, updated_at, deleted_at"
)


class StoreError(Exception):
    """Raised for store usage errors (unknown rows, bad arguments)."""

    pass


def _row_to_integration(row: sqlite3.Row) -> Integration:
    return Integration(
        id=row["id"],
        user_id=row["user_id"],
        provider=row["provider"],
        name=row["name"],
        conflict_strategy=row["conflict_strategy"],
        write_back=bool(row["write_back"]),
        is_active=bool(row["is_active"]),
        created_at=parse_timestamp(row["created_at"]),
    )


def _row_to_contact(row: sqlite3.Row) -> LocalContact:
    return LocalContact(
        id=row["id"],
        user_id=row["user_id"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        email=row["email"],
        phone=row["phone"],
        company=row["company"],
        position=row["position"],
        tags=json.loads(row["tags"]),
        metadata=json.loads(row["metadata"]),
        source=row["source"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
        deleted_at=parse_timestamp(row["deleted_at"]),
    )


def _row_to_link(row: sqlite3.Row) -> IntegrationLink:
    return IntegrationLink(
        id=row["id"],
        integration_id=row["integration_id"],
        contact_id=row["contact_id"],
        external_id=row["external_id"],
        metadata=json.loads(row["metadata"]),
        last_synced_at=parse_timestamp(row["last_synced_at"]),
    )


def _row_to_job(row: sqlite3.Row) -> ImportJob:
    job = ImportJob(
        id=row["id"],
        user_id=row["user_id"],
        integration_id=row["integration_id"],
        kind=JobKind(row["kind"]),
        status=JobStatus(row["status"]),
        total_count=row["total_count"],
        processed_count=row["processed_count"],
        imported_count=row["imported_count"],
        updated_count=row["updated_count"],
        skipped_count=row["skipped_count"],
        failed_count=row["failed_count"],
        deleted_count=row["deleted_count"],
        error_message=row["error_message"],
        created_at=parse_timestamp(row["created_at"]) or utc_now(),
        started_at=parse_timestamp(row["started_at"]),
        completed_at=parse_timestamp(row["completed_at"]),
    )
    entries = json.loads(row["errors"])
    job.errors = error_ring(max(MAX_JOB_ERRORS, len(entries)))
    for entry in entries:
        job.record_error(entry["externalId"], entry["message"])
    return job


def _encode_value(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value)


def _decode_value(value: Optional[str]) -> Any:
    return None if value is None else json.loads(value)


def _row_to_conflict(row: sqlite3.Row) -> Conflict:
    return Conflict(
        id=row["id"],
        integration_id=row["integration_id"],
        contact_id=row["contact_id"],
        field=row["field"],
        local_value=_decode_value(row["local_value"]),
        remote_value=_decode_value(row["remote_value"]),
        local_modified_at=parse_timestamp(row["local_modified_at"]),
        remote_modified_at=parse_timestamp(row["remote_modified_at"]),
        status=ConflictStatus(row["status"]),
        resolution=row["resolution"],
    )


class UnitOfWork:
    """
    Transaction-scoped access to the store.

    Obtained from ContactStore.unit_of_work(); everything done through one
    instance commits or rolls back together.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._savepoint_seq = 0

    @contextmanager
    def savepoint(self) -> Generator[None, None, None]:
        """
        Nested rollback scope inside the transaction.

        Changes made in the block are undone if it raises; the exception
        still propagates.
        """
        self._savepoint_seq += 1
        name = f"sp_{self._savepoint_seq}"
        self.conn.execute(f"SAVEPOINT {name}")
        try:
            yield
        except BaseException:
            self.conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            self.conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        else:
            self.conn.execute(f"RELEASE SAVEPOINT {name}")

    # =========================================================================
    # Integrations
    # =========================================================================

    def insert_integration(self, integration: Integration) -> None:
        self.conn.execute(
            """
            INSERT INTO integrations
                (id, user_id, provider, name, conflict_strategy, write_back,
                 is_active, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                integration.id,
                integration.user_id,
                integration.provider,
                integration.name,
                integration.conflict_strategy,
                int(integration.write_back),
                int(integration.is_active),
                format_timestamp(integration.created_at or utc_now()),
            ),
        )

    def update_integration(self, integration: Integration) -> None:
        self.conn.execute(
            """
            UPDATE integrations
            SET name = ?, conflict_strategy = ?, write_back = ?, is_active = ?
            WHERE id = ?
            """,
            (
                integration.name,
                integration.conflict_strategy,
                int(integration.write_back),
                int(integration.is_active),
                integration.id,
            ),
        )

    def get_integration(self, integration_id: str) -> Optional[Integration]:
        row = self.conn.execute(
            "SELECT * FROM integrations WHERE id = ?", (integration_id,)
        ).fetchone()
        return _row_to_integration(row) if row else None

    def list_integrations(self, user_id: Optional[str] = None) -> list[Integration]:
        if user_id is None:
            rows = self.conn.execute(
                "SELECT * FROM integrations ORDER BY created_at"
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM integrations WHERE user_id = ? ORDER BY created_at",
                (user_id,),
            ).fetchall()
        return [_row_to_integration(r) for r in rows]

    # =========================================================================
    # Local contacts
    # =========================================================================

    def insert_contact(self, contact: LocalContact) -> None:
        now = utc_now()
        if contact.created_at is None:
            contact.created_at = now
        if contact.updated_at is None:
            contact.updated_at = contact.created_at
        self.conn.execute(
            f"INSERT INTO local_contacts ({_CONTACT_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                contact.id,
                contact.user_id,
                contact.first_name or "",
                contact.last_name,
                contact.email,
                contact.phone,
                contact.company,
                contact.position,
                json.dumps(contact.tags),
                json.dumps(contact.metadata),
                contact.source,
                format_timestamp(contact.created_at),
                format_timestamp(contact.updated_at),
                format_timestamp(contact.deleted_at),
            ),
        )

    def update_contact(self, contact: LocalContact) -> None:
        """
        Persist every field of an existing contact.

        Raises:
            StoreError: If the contact does not exist
        """
        if contact.updated_at is None:
            contact.updated_at = utc_now()
        cursor = self.conn.execute(
            """
            UPDATE local_contacts
            SET first_name = ?, last_name = ?, email = ?, phone = ?, company = ?,
                position = ?, tags = ?, metadata = ?, source = ?, updated_at = ?,
                deleted_at = ?
            WHERE id = ?
            """,
            (
                contact.first_name or "",
                contact.last_name,
                contact.email,
                contact.phone,
                contact.company,
                contact.position,
                json.dumps(contact.tags),
                json.dumps(contact.metadata),
                contact.source,
                format_timestamp(contact.updated_at),
                format_timestamp(contact.deleted_at),
                contact.id,
            ),
        )
        if cursor.rowcount == 0:
            raise StoreError(f"Contact {contact.id} does not exist")

    def get_contact(self, contact_id: str) -> Optional[LocalContact]:
        row = self.conn.execute(
            f"SELECT {_CONTACT_COLUMNS} FROM local_contacts WHERE id = ?",
            (contact_id,),
        ).fetchone()
        return _row_to_contact(row) if row else None

    def list_contacts(
        self, user_id: str, include_deleted: bool = False
    ) -> list[LocalContact]:
        query = f"SELECT {_CONTACT_COLUMNS} FROM local_contacts WHERE user_id = ?"
        if not include_deleted:
            query += " AND deleted_at IS NULL"
        query += " ORDER BY created_at, id"
        rows = self.conn.execute(query, (user_id,)).fetchall()
        return [_row_to_contact(r) for r in rows]

    def soft_delete_contact(self, contact_id: str, deleted_at: datetime) -> bool:
        """Mark a contact deleted. Returns False if already deleted or missing."""
        cursor = self.conn.execute(
            """
            UPDATE local_contacts SET deleted_at = ?, updated_at = ?
            WHERE id = ? AND deleted_at IS NULL
            """,
            (format_timestamp(deleted_at), format_timestamp(deleted_at), contact_id),
        )
        return cursor.rowcount > 0

    # =========================================================================
    # Integration links
    # =========================================================================

    def get_link(self, integration_id: str, external_id: str) -> Optional[IntegrationLink]:
        row = self.conn.execute(
            """
            SELECT * FROM integration_links
            WHERE integration_id = ? AND external_id = ?
            """,
            (integration_id, external_id),
        ).fetchone()
        return _row_to_link(row) if row else None

    def get_link_for_contact(
        self, integration_id: str, contact_id: str
    ) -> Optional[IntegrationLink]:
        row = self.conn.execute(
            """
            SELECT * FROM integration_links
            WHERE integration_id = ? AND contact_id = ?
            ORDER BY id LIMIT 1
            """,
            (integration_id, contact_id),
        ).fetchone()
        return _row_to_link(row) if row else None

    def list_links_for_contact(self, contact_id: str) -> list[IntegrationLink]:
        rows = self.conn.execute(
            "SELECT * FROM integration_links WHERE contact_id = ? ORDER BY id",
            (contact_id,),
        ).fetchall()
        return [_row_to_link(r) for r in rows]

    def insert_link(self, link: IntegrationLink) -> int:
        """
        Create a link. Raises sqlite3.IntegrityError if the external id is
        already linked for this integration.
        """
        now = format_timestamp(utc_now())
        cursor = self.conn.execute(
            """
            INSERT INTO integration_links
                (integration_id, contact_id, external_id, metadata,
                 last_synced_at, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                link.integration_id,
                link.contact_id,
                link.external_id,
                json.dumps(link.metadata),
                format_timestamp(link.last_synced_at),
                now,
                now,
            ),
        )
        link.id = cursor.lastrowid
        return link.id

    def upsert_link(self, link: IntegrationLink) -> None:
        """Insert or update a link keyed on (integration_id, external_id)."""
        now = format_timestamp(utc_now())
        self.conn.execute(
            """
            INSERT INTO integration_links
                (integration_id, contact_id, external_id, metadata,
                 last_synced_at, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(integration_id, external_id) DO UPDATE SET
                contact_id = excluded.contact_id,
                metadata = excluded.metadata,
                last_synced_at = excluded.last_synced_at,
                updated_at = excluded.updated_at
            """,
            (
                link.integration_id,
                link.contact_id,
                link.external_id,
                json.dumps(link.metadata),
                format_timestamp(link.last_synced_at),
                now,
                now,
            ),
        )

    def count_links(self, integration_id: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM integration_links WHERE integration_id = ?",
            (integration_id,),
        ).fetchone()
        return row[0]

    def delete_links(self, integration_id: str) -> int:
        """Delete every link of an integration. Returns the number deleted."""
        cursor = self.conn.execute(
            "DELETE FROM integration_links WHERE integration_id = ?",
            (integration_id,),
        )
        return cursor.rowcount

    # =========================================================================
    # Import jobs
    # =========================================================================

    def save_job(self, job: ImportJob) -> bool:
        """
        Insert or update a job row.

        A row already COMPLETED or FAILED is never overwritten.

        Returns:
            False if the stored job was terminal and kept as it was
        """
        cursor = self.conn.execute(
            """
            INSERT INTO import_jobs
                (id, user_id, integration_id, kind, status, total_count,
                 processed_count, imported_count, updated_count, skipped_count,
                 failed_count, deleted_count, errors, error_message, created_at,
                 started_at, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status,
                total_count = excluded.total_count,
                processed_count = excluded.processed_count,
                imported_count = excluded.imported_count,
                updated_count = excluded.updated_count,
                skipped_count = excluded.skipped_count,
                failed_count = excluded.failed_count,
                deleted_count = excluded.deleted_count,
                errors = excluded.errors,
                error_message = excluded.error_message,
                started_at = excluded.started_at,
                completed_at = excluded.completed_at
            WHERE import_jobs.status NOT IN (?, ?)
            """,
            (
                job.id,
                job.user_id,
                job.integration_id,
                job.kind.value,
                job.status.value,
                job.total_count,
                job.processed_count,
                job.imported_count,
                job.updated_count,
                job.skipped_count,
                job.failed_count,
                job.deleted_count,
                json.dumps([e.to_dict() for e in job.errors]),
                job.error_message,
                format_timestamp(job.created_at),
                format_timestamp(job.started_at),
                format_timestamp(job.completed_at),
                JobStatus.COMPLETED.value,
                JobStatus.FAILED.value,
            ),
        )
        return cursor.rowcount > 0

    def get_job(self, job_id: str) -> Optional[ImportJob]:
        row = self.conn.execute(
            "SELECT * FROM import_jobs WHERE id = ?", (job_id,)
        ).fetchone()
        return _row_to_job(row) if row else None

    def list_jobs(self, integration_id: str, limit: int = 20) -> list[ImportJob]:
        rows = self.conn.execute(
            """
            SELECT * FROM import_jobs WHERE integration_id = ?
            ORDER BY created_at DESC LIMIT ?
            """,
            (integration_id, limit),
        ).fetchall()
        return [_row_to_job(r) for r in rows]

    def find_active_job(self, user_id: str, integration_id: str) -> Optional[ImportJob]:
        row = self.conn.execute(
            """
            SELECT * FROM import_jobs
            WHERE user_id = ? AND integration_id = ? AND status IN (?, ?)
            ORDER BY created_at DESC LIMIT 1
            """,
            (user_id, integration_id, JobStatus.QUEUED.value, JobStatus.PROCESSING.value),
        ).fetchone()
        return _row_to_job(row) if row else None

    # =========================================================================
    # Sync cursors
    # =========================================================================

    def get_cursor(self, integration_id: str) -> Optional[SyncCursor]:
        row = self.conn.execute(
            "SELECT * FROM sync_cursors WHERE integration_id = ?", (integration_id,)
        ).fetchone()
        if row is None:
            return None
        return SyncCursor(
            integration_id=row["integration_id"],
            cursor=row["cursor"],
            last_sync_at=parse_timestamp(row["last_sync_at"]),
        )

    def save_cursor(self, cursor: SyncCursor) -> None:
        self.conn.execute(
            """
            INSERT INTO sync_cursors (integration_id, cursor, last_sync_at)
            VALUES (?, ?, ?)
            ON CONFLICT(integration_id) DO UPDATE SET
                cursor = excluded.cursor,
                last_sync_at = excluded.last_sync_at
            """,
            (
                cursor.integration_id,
                cursor.cursor,
                format_timestamp(cursor.last_sync_at),
            ),
        )

    def delete_cursor(self, integration_id: str) -> bool:
        cursor = self.conn.execute(
            "DELETE FROM sync_cursors WHERE integration_id = ?", (integration_id,)
        )
        return cursor.rowcount > 0

    # =========================================================================
    # Conflicts
    # =========================================================================

    def insert_conflict(self, conflict: Conflict) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO conflicts
                (integration_id, contact_id, field, local_value, remote_value,
                 local_modified_at, remote_modified_at, status, resolution,
                 created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                conflict.integration_id,
                conflict.contact_id,
                conflict.field,
                _encode_value(conflict.local_value),
                _encode_value(conflict.remote_value),
                format_timestamp(conflict.local_modified_at),
                format_timestamp(conflict.remote_modified_at),
                conflict.status.value,
                conflict.resolution,
                format_timestamp(utc_now()),
            ),
        )
        conflict.id = cursor.lastrowid
        return conflict.id

    def get_conflict(self, conflict_id: int) -> Optional[Conflict]:
        row = self.conn.execute(
            "SELECT * FROM conflicts WHERE id = ?", (conflict_id,)
        ).fetchone()
        return _row_to_conflict(row) if row else None

    def list_conflicts(
        self,
        integration_id: Optional[str] = None,
        status: Optional[ConflictStatus] = ConflictStatus.PENDING,
        contact_id: Optional[str] = None,
    ) -> list[Conflict]:
        clauses = []
        params: list[Any] = []
        if integration_id is not None:
            clauses.append("integration_id = ?")
            params.append(integration_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if contact_id is not None:
            clauses.append("contact_id = ?")
            params.append(contact_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"SELECT * FROM conflicts {where} ORDER BY id", params
        ).fetchall()
        return [_row_to_conflict(r) for r in rows]

    def mark_conflict_resolved(
        self, conflict_id: int, resolution: str, resolved_value: Any
    ) -> bool:
        cursor = self.conn.execute(
            """
            UPDATE conflicts
            SET status = ?, resolution = ?, resolved_value = ?, resolved_at = ?
            WHERE id = ? AND status = ?
            """,
            (
                ConflictStatus.RESOLVED.value,
                resolution,
                _encode_value(resolved_value),
                format_timestamp(utc_now()),
                conflict_id,
                ConflictStatus.PENDING.value,
            ),
        )
        return cursor.rowcount > 0


class ContactStore:
    """
    SQLite-backed store for contacts and reconciliation state.

    Usage:
        store = ContactStore('/path/to/reconciler.db')
        store.initialize()

        with store.unit_of_work() as uow:
            uow.insert_contact(contact)
            uow.insert_link(link)

        # Or use in-memory for testing:
        store = ContactStore(':memory:')
        store.initialize()

    The convenience methods below each run in their own unit of work.
    """

    def __init__(self, db_path: str = ":memory:", timeout: float = 30.0):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ':memory:'
            timeout: Seconds to wait for a locked database
        """
        self.db_path = db_path
        self.timeout = timeout
        self._shared_connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def is_memory(self) -> bool:
        return self.db_path == ":memory:"

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        In-memory databases share one connection (guarded by a lock) so the
        schema persists; file databases get a new connection per unit of work.
        Connections run in autocommit mode; transactions are explicit.
        """
        if self.is_memory:
            if self._shared_connection is None:
                self._shared_connection = sqlite3.connect(
                    ":memory:", isolation_level=None, check_same_thread=False
                )
                self._shared_connection.row_factory = sqlite3.Row
            return self._shared_connection

        conn = sqlite3.connect(
            self.db_path, timeout=self.timeout, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def unit_of_work(self, read_only: bool = False) -> Generator[UnitOfWork, None, None]:
        """
        Run a block in one transaction.

        Commits when the block exits normally and rolls back when it raises.
        Writers take the write lock up front (BEGIN IMMEDIATE). A read_only
        block uses a deferred transaction and never blocks other readers.
        """
        with self._lock if self.is_memory else nullcontext():
            conn = self._get_connection()
            try:
                conn.execute("BEGIN" if read_only else "BEGIN IMMEDIATE")
                try:
                    yield UnitOfWork(conn)
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
            finally:
                if not self.is_memory:
                    conn.close()

    def initialize(self) -> None:
        """Create the schema if it does not exist."""
        with self._lock:
            conn = self._get_connection()
            try:
                conn.executescript(SCHEMA)
            finally:
                if not self.is_memory:
                    conn.close()
        logger.debug(f"Store initialized at {self.db_path}")

    def close(self) -> None:
        if self._shared_connection is not None:
            self._shared_connection.close()
            self._shared_connection = None

    # =========================================================================
    # Convenience operations
    # =========================================================================

    def create_integration(self, integration: Integration) -> Integration:
        with self.unit_of_work() as uow:
            uow.insert_integration(integration)
        return integration

    def update_integration(self, integration: Integration) -> None:
        with self.unit_of_work() as uow:
            uow.update_integration(integration)

    def get_integration(self, integration_id: str) -> Optional[Integration]:
        with self.unit_of_work(read_only=True) as uow:
            return uow.get_integration(integration_id)

    def list_integrations(self, user_id: Optional[str] = None) -> list[Integration]:
        with self.unit_of_work(read_only=True) as uow:
            return uow.list_integrations(user_id)

    def create_contact(self, contact: LocalContact) -> LocalContact:
        with self.unit_of_work() as uow:
            uow.insert_contact(contact)
        return contact

    def update_contact(self, contact: LocalContact) -> None:
        with self.unit_of_work() as uow:
            uow.update_contact(contact)

    def get_contact(self, contact_id: str) -> Optional[LocalContact]:
        with self.unit_of_work(read_only=True) as uow:
            return uow.get_contact(contact_id)

    def list_contacts(
        self, user_id: str, include_deleted: bool = False
    ) -> list[LocalContact]:
        with self.unit_of_work(read_only=True) as uow:
            return uow.list_contacts(user_id, include_deleted)

    def get_link(self, integration_id: str, external_id: str) -> Optional[IntegrationLink]:
        with self.unit_of_work(read_only=True) as uow:
            return uow.get_link(integration_id, external_id)

    def count_links(self, integration_id: str) -> int:
        with self.unit_of_work(read_only=True) as uow:
            return uow.count_links(integration_id)

    def save_job(self, job: ImportJob) -> bool:
        with self.unit_of_work() as uow:
            return uow.save_job(job)

    def get_job(self, job_id: str) -> Optional[ImportJob]:
        with self.unit_of_work(read_only=True) as uow:
            return uow.get_job(job_id)

    def list_jobs(self, integration_id: str, limit: int = 20) -> list[ImportJob]:
        with self.unit_of_work(read_only=True) as uow:
            return uow.list_jobs(integration_id, limit)

    def get_cursor(self, integration_id: str) -> Optional[SyncCursor]:
        with self.unit_of_work(read_only=True) as uow:
            return uow.get_cursor(integration_id)

    def save_cursor(self, cursor: SyncCursor) -> None:
        with self.unit_of_work() as uow:
            uow.save_cursor(cursor)

    def delete_cursor(self, integration_id: str) -> bool:
        with self.unit_of_work() as uow:
            return uow.delete_cursor(integration_id)

    def list_conflicts(
        self,
        integration_id: Optional[str] = None,
        status: Optional[ConflictStatus] = ConflictStatus.PENDING,
        contact_id: Optional[str] = None,
    ) -> list[Conflict]:
        with self.unit_of_work(read_only=True) as uow:
            return uow.list_conflicts(integration_id, status, contact_id)

    def __repr__(self) -> str:
        return f"ContactStore(db_path={self.db_path!r})"


__all__ = [
    "ContactStore",
    "UnitOfWork",
    "StoreError",
    "SCHEMA",
]
