"""
Canonical SQLite store for the waste ledger.

This module manages the single SQLite database that stores:
- Ledger state (administrator, pause switch, entry-id allocator)
- Waste entries and their per-entry counters
- Version log, category index, collaborator registry
- Status tracker and compliance log

Every ledger call runs inside one session, which is one SQLite
transaction: either all of its writes commit or none do.

Invariants:
    - One SQLite file per ledger
    - Writes happen only inside session() (BEGIN IMMEDIATE ... COMMIT)
    - Any exception inside a session rolls the whole call back
    - Rows in entries, versions and notes are never deleted

How to change safely:
    - Schema migrations must be backward compatible
    - Bump SCHEMA_VERSION and add a migration step for new tables
    - Keep list columns as JSON arrays so order is preserved

Table schema:
    ledger_state:
        - id INTEGER (always 1)
        - admin TEXT
        - paused INTEGER (0/1)
        - entry_count INTEGER

    entries:
        - entry_id INTEGER PRIMARY KEY
        - digest BLOB
        - owner TEXT
        - created_at INTEGER
        - category_label, unit, description, location TEXT
        - quantity INTEGER

    entry_counters:
        - entry_id INTEGER PRIMARY KEY
        - version_count INTEGER
        - note_count INTEGER

    versions:     PRIMARY KEY (entry_id, version)
    categories:   PRIMARY KEY (entry_id), tags_json TEXT
    collaborators: PRIMARY KEY (entry_id, collaborator), permissions_json TEXT
    statuses:     PRIMARY KEY (entry_id)
    notes:        PRIMARY KEY (entry_id, note_id)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .models import (
    CategoryInfo,
    CollaboratorGrant,
    ComplianceNote,
    LedgerState,
    StatusInfo,
    VersionRecord,
    WasteEntry,
)

logger = logging.getLogger(__name__)


class StoreNotInitializedError(Exception):
    """Ledger database does not exist yet."""

    pass


def _row_to_entry(row: sqlite3.Row) -> WasteEntry:
    return WasteEntry(
        entry_id=row["entry_id"],
        digest=bytes(row["digest"]),
        owner=row["owner"],
        created_at=row["created_at"],
        category_label=row["category_label"],
        quantity=row["quantity"],
        unit=row["unit"],
        description=row["description"],
        location=row["location"],
    )


def _row_to_version(row: sqlite3.Row) -> VersionRecord:
    return VersionRecord(
        entry_id=row["entry_id"],
        version=row["version"],
        digest=bytes(row["digest"]),
        notes=row["notes"],
        created_at=row["created_at"],
    )


def _row_to_grant(row: sqlite3.Row) -> CollaboratorGrant:
    return CollaboratorGrant(
        entry_id=row["entry_id"],
        collaborator=row["collaborator"],
        role=row["role"],
        permissions=json.loads(row["permissions_json"]),
        joined_at=row["joined_at"],
    )


def _row_to_note(row: sqlite3.Row) -> ComplianceNote:
    return ComplianceNote(
        entry_id=row["entry_id"],
        note_id=row["note_id"],
        note=row["note"],
        author=row["author"],
        created_at=row["created_at"],
    )


class LedgerSession:
    """Typed access to the ledger tables over one open connection.

    A session never commits by itself; the owning CanonicalStore decides
    whether the surrounding transaction commits or rolls back.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    # -- ledger state -------------------------------------------------------

    def get_state(self) -> LedgerState:
        row = self.conn.execute(
            "SELECT admin, paused, entry_count FROM ledger_state WHERE id = 1"
        ).fetchone()
        if row is None:
            raise StoreNotInitializedError("Ledger state has not been initialized")
        return LedgerState(
            admin=row["admin"],
            paused=bool(row["paused"]),
            entry_count=row["entry_count"],
        )

    def set_paused(self, paused: bool) -> None:
        self.conn.execute(
            "UPDATE ledger_state SET paused = ? WHERE id = 1",
            (1 if paused else 0,),
        )

    def allocate_entry_id(self) -> int:
        """Advance the global allocator and return the new entry id."""
        entry_id = self.get_state().entry_count + 1
        self.conn.execute(
            "UPDATE ledger_state SET entry_count = ? WHERE id = 1",
            (entry_id,),
        )
        return entry_id

    # -- entries ------------------------------------------------------------

    def insert_entry(self, entry: WasteEntry) -> None:
        self.conn.execute(
            """
            INSERT INTO entries (entry_id, digest, owner, created_at, category_label,
                                 quantity, unit, description, location)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.entry_id,
                entry.digest,
                entry.owner,
                entry.created_at,
                entry.category_label,
                entry.quantity,
                entry.unit,
                entry.description,
                entry.location,
            ),
        )
        self.conn.execute(
            "INSERT INTO entry_counters (entry_id, version_count, note_count) VALUES (?, 0, 0)",
            (entry.entry_id,),
        )

    def get_entry(self, entry_id: int) -> WasteEntry | None:
        row = self.conn.execute(
            "SELECT * FROM entries WHERE entry_id = ?",
            (entry_id,),
        ).fetchone()
        return _row_to_entry(row) if row else None

    def update_owner(self, entry_id: int, owner: str) -> None:
        self.conn.execute(
            "UPDATE entries SET owner = ? WHERE entry_id = ?",
            (owner, entry_id),
        )

    # -- per-entry counters -------------------------------------------------

    def get_counters(self, entry_id: int) -> tuple[int, int]:
        """Get (version_count, note_count) for an entry."""
        row = self.conn.execute(
            "SELECT version_count, note_count FROM entry_counters WHERE entry_id = ?",
            (entry_id,),
        ).fetchone()
        if row is None:
            return 0, 0
        return row["version_count"], row["note_count"]

    # -- versions -----------------------------------------------------------

    def insert_version(self, record: VersionRecord) -> None:
        self.conn.execute(
            """
            INSERT INTO versions (entry_id, version, digest, notes, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (record.entry_id, record.version, record.digest, record.notes, record.created_at),
        )
        self.conn.execute(
            "UPDATE entry_counters SET version_count = ? WHERE entry_id = ?",
            (record.version, record.entry_id),
        )

    def get_version(self, entry_id: int, version: int) -> VersionRecord | None:
        row = self.conn.execute(
            "SELECT * FROM versions WHERE entry_id = ? AND version = ?",
            (entry_id, version),
        ).fetchone()
        return _row_to_version(row) if row else None

    def list_versions(self, entry_id: int) -> list[VersionRecord]:
        cursor = self.conn.execute(
            "SELECT * FROM versions WHERE entry_id = ? ORDER BY version",
            (entry_id,),
        )
        return [_row_to_version(row) for row in cursor.fetchall()]

    # -- categories ---------------------------------------------------------

    def put_category(self, info: CategoryInfo) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO categories (entry_id, label, tags_json) VALUES (?, ?, ?)",
            (info.entry_id, info.label, json.dumps(list(info.tags))),
        )

    def get_category(self, entry_id: int) -> CategoryInfo | None:
        row = self.conn.execute(
            "SELECT * FROM categories WHERE entry_id = ?",
            (entry_id,),
        ).fetchone()
        if not row:
            return None
        return CategoryInfo(
            entry_id=row["entry_id"],
            label=row["label"],
            tags=json.loads(row["tags_json"]),
        )

    # -- collaborators ------------------------------------------------------

    def put_collaborator(self, grant: CollaboratorGrant) -> None:
        # Upsert keeps the original row position, so a re-grant does not
        # move the collaborator to the end of the join order.
        self.conn.execute(
            """
            INSERT INTO collaborators (entry_id, collaborator, role, permissions_json, joined_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (entry_id, collaborator) DO UPDATE SET
                role = excluded.role,
                permissions_json = excluded.permissions_json,
                joined_at = excluded.joined_at
            """,
            (
                grant.entry_id,
                grant.collaborator,
                grant.role,
                json.dumps(list(grant.permissions)),
                grant.joined_at,
            ),
        )

    def get_collaborator(self, entry_id: int, collaborator: str) -> CollaboratorGrant | None:
        row = self.conn.execute(
            "SELECT * FROM collaborators WHERE entry_id = ? AND collaborator = ?",
            (entry_id, collaborator),
        ).fetchone()
        return _row_to_grant(row) if row else None

    def count_collaborators(self, entry_id: int) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM collaborators WHERE entry_id = ?",
            (entry_id,),
        ).fetchone()
        return row[0]

    def list_collaborators(self, entry_id: int) -> list[CollaboratorGrant]:
        cursor = self.conn.execute(
            "SELECT * FROM collaborators WHERE entry_id = ? ORDER BY rowid",
            (entry_id,),
        )
        return [_row_to_grant(row) for row in cursor.fetchall()]

    # -- status -------------------------------------------------------------

    def put_status(self, info: StatusInfo) -> None:
        self.conn.execute(
            """
            INSERT OR REPLACE INTO statuses (entry_id, status, visibility, updated_at)
            VALUES (?, ?, ?, ?)
            """,
            (info.entry_id, info.status, 1 if info.visibility else 0, info.updated_at),
        )

    def get_status(self, entry_id: int) -> StatusInfo | None:
        row = self.conn.execute(
            "SELECT * FROM statuses WHERE entry_id = ?",
            (entry_id,),
        ).fetchone()
        if not row:
            return None
        return StatusInfo(
            entry_id=row["entry_id"],
            status=row["status"],
            visibility=bool(row["visibility"]),
            updated_at=row["updated_at"],
        )

    # -- compliance notes ---------------------------------------------------

    def insert_note(self, note: ComplianceNote) -> None:
        self.conn.execute(
            """
            INSERT INTO notes (entry_id, note_id, note, author, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (note.entry_id, note.note_id, note.note, note.author, note.created_at),
        )
        self.conn.execute(
            "UPDATE entry_counters SET note_count = ? WHERE entry_id = ?",
            (note.note_id, note.entry_id),
        )

    def get_note(self, entry_id: int, note_id: int) -> ComplianceNote | None:
        row = self.conn.execute(
            "SELECT * FROM notes WHERE entry_id = ? AND note_id = ?",
            (entry_id, note_id),
        ).fetchone()
        return _row_to_note(row) if row else None

    def list_notes(self, entry_id: int) -> list[ComplianceNote]:
        cursor = self.conn.execute(
            "SELECT * FROM notes WHERE entry_id = ? ORDER BY note_id",
            (entry_id,),
        )
        return [_row_to_note(row) for row in cursor.fetchall()]


class CanonicalStore:
    """SQLite store for all ledger records.

    Thread safety:
        Each session opens its own connection. Writers are serialized by
        SQLite's write lock (BEGIN IMMEDIATE), which gives the ledger its
        single global apply order.

    Example:
        >>> store = CanonicalStore("/var/lib/wasteledger")
        >>> store.initialize(admin="deployer")
        >>> with store.session() as session:
        ...     session.get_state().paused
        False
    """

    # SQLite schema version for migrations
    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_name: str = "ledger.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the canonical store.

        Args:
            data_dir: Directory for the SQLite database file
            db_name: Database file name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.data_dir = Path(data_dir)
        self.db_name = db_name
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages

    def _get_db_path(self) -> Path:
        # Keep the file inside data_dir whatever name was configured
        safe_name = "".join(c for c in self.db_name if c.isalnum() or c in "-_.")
        return self.data_dir / safe_name

    @contextmanager
    def _get_connection(self, create: bool = False) -> Iterator[sqlite3.Connection]:
        """Get a database connection.

        Args:
            create: Whether to create the database if it does not exist

        Yields:
            SQLite connection

        Raises:
            StoreNotInitializedError: If database doesn't exist and create=False
        """
        db_path = self._get_db_path()

        if not create and not db_path.exists():
            raise StoreNotInitializedError(f"Ledger database not found: {db_path}")

        db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS ledger_state (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                admin TEXT NOT NULL,
                paused INTEGER NOT NULL DEFAULT 0,
                entry_count INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS entries (
                entry_id INTEGER PRIMARY KEY,
                digest BLOB NOT NULL,
                owner TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                category_label TEXT NOT NULL,
                quantity INTEGER NOT NULL,
                unit TEXT NOT NULL,
                description TEXT NOT NULL,
                location TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS entry_counters (
                entry_id INTEGER PRIMARY KEY REFERENCES entries(entry_id),
                version_count INTEGER NOT NULL DEFAULT 0,
                note_count INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS versions (
                entry_id INTEGER NOT NULL REFERENCES entries(entry_id),
                version INTEGER NOT NULL,
                digest BLOB NOT NULL,
                notes TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                PRIMARY KEY (entry_id, version)
            );

            CREATE TABLE IF NOT EXISTS categories (
                entry_id INTEGER PRIMARY KEY REFERENCES entries(entry_id),
                label TEXT NOT NULL,
                tags_json TEXT NOT NULL DEFAULT '[]'
            );

            CREATE TABLE IF NOT EXISTS collaborators (
                entry_id INTEGER NOT NULL REFERENCES entries(entry_id),
                collaborator TEXT NOT NULL,
                role TEXT NOT NULL,
                permissions_json TEXT NOT NULL DEFAULT '[]',
                joined_at INTEGER NOT NULL,
                PRIMARY KEY (entry_id, collaborator)
            );

            CREATE TABLE IF NOT EXISTS statuses (
                entry_id INTEGER PRIMARY KEY REFERENCES entries(entry_id),
                status TEXT NOT NULL,
                visibility INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS notes (
                entry_id INTEGER NOT NULL REFERENCES entries(entry_id),
                note_id INTEGER NOT NULL,
                note TEXT NOT NULL,
                author TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                PRIMARY KEY (entry_id, note_id)
            );

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    def initialize(self, admin: str) -> LedgerState:
        """Create the database and record the administrator.

        Safe to call on every start-up: existing state is kept.

        Args:
            admin: Administrator identity

        Returns:
            Current ledger state

        Raises:
            ValueError: If admin is empty or differs from the recorded one
        """
        if not admin:
            raise ValueError("Ledger administrator must not be empty")

        with self._get_connection(create=True) as conn:
            self._create_schema(conn)
            conn.execute("BEGIN IMMEDIATE")
            try:
                session = LedgerSession(conn)
                row = conn.execute("SELECT admin FROM ledger_state WHERE id = 1").fetchone()
                if row is None:
                    conn.execute(
                        "INSERT INTO ledger_state (id, admin, paused, entry_count) VALUES (1, ?, 0, 0)",
                        (admin,),
                    )
                    logger.info("Initialized ledger database", extra={"admin": admin})
                elif row["admin"] != admin:
                    raise ValueError(
                        f"Ledger administrator is fixed as '{row['admin']}', got '{admin}'"
                    )
                state = session.get_state()
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

        return state

    def exists(self) -> bool:
        """Check if the ledger database exists."""
        return self._get_db_path().exists()

    @contextmanager
    def session(self) -> Iterator[LedgerSession]:
        """Open a write session: one atomic transaction.

        Commits when the block exits normally; rolls back and re-raises on
        any exception, so a rejected call leaves no trace.

        Yields:
            LedgerSession bound to the open transaction
        """
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield LedgerSession(conn)
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    @contextmanager
    def reader(self) -> Iterator[LedgerSession]:
        """Open a read-only session outside any write transaction."""
        with self._get_connection() as conn:
            yield LedgerSession(conn)

    def get_db_path(self) -> Path:
        """Get the database file path."""
        return self._get_db_path()
