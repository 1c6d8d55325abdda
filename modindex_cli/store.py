"""Versioned store for module metadata.

Architecture:
- **SQLite** holds one ``modules`` row per (module path, version) key, the
  key's ``units`` rows and a ``version_states`` row recording the last
  ingestion attempt.
- Every write of a key happens in one ``BEGIN IMMEDIATE`` transaction, so
  readers see either the whole previous unit set or the whole new one.
- Writes to the same key are serialized by an in-process lock per key;
  different keys proceed in parallel on their own connections.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import weakref
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from . import versions
from .context import IngestContext, check
from .errors import StorageUnavailable, ValidationRejected
from .models import (
    Documentation,
    LicenseMetadata,
    LifecycleStatus,
    ModuleRecord,
    ModuleVersion,
    Readme,
    SourceInfo,
    UnitRecord,
    VersionState,
)

logger = logging.getLogger(__name__)


class VersionStore:
    """SQLite-backed store with validity-gated whole-key replace."""

    def __init__(self, db_path: Path, busy_timeout: float = 30.0) -> None:
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        # Entries vanish once no writer holds the lock
        self._locks: weakref.WeakValueDictionary[ModuleVersion, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailable(f"cannot create {self.db_path.parent}: {exc}") from exc
        with self._connect() as conn:
            self._init_schema(conn)

    # ------------------------------------------------------------------
    # Connections / locking
    # ------------------------------------------------------------------

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.busy_timeout, isolation_level=None)
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"cannot open {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StorageUnavailable(str(exc)) from exc
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    def _key_lock(self, key: ModuleVersion) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS modules (
                module_path        TEXT NOT NULL,
                version            TEXT NOT NULL,
                commit_time        TEXT NOT NULL,
                has_go_mod         INTEGER NOT NULL,
                source_file_count  INTEGER NOT NULL,
                deprecated         INTEGER NOT NULL,
                deprecation_reason TEXT NOT NULL,
                retracted          INTEGER NOT NULL,
                retraction_reason  TEXT NOT NULL,
                PRIMARY KEY (module_path, version)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS units (
                module_path     TEXT NOT NULL,
                version         TEXT NOT NULL,
                path            TEXT NOT NULL,
                name            TEXT NOT NULL,
                commit_time     TEXT NOT NULL,
                redistributable INTEGER NOT NULL,
                source_info     TEXT,
                licenses        TEXT NOT NULL,
                readme_path     TEXT,
                readme_contents TEXT,
                synopsis        TEXT,
                doc_html        TEXT,
                goos            TEXT,
                goarch          TEXT,
                PRIMARY KEY (module_path, version, path)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS version_states (
                module_path  TEXT NOT NULL,
                version      TEXT NOT NULL,
                status       TEXT NOT NULL,
                error        TEXT NOT NULL,
                unit_count   INTEGER NOT NULL,
                attempted_at TEXT NOT NULL,
                PRIMARY KEY (module_path, version)
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_units_path ON units(path, version)")

    # ------------------------------------------------------------------
    # Replace
    # ------------------------------------------------------------------

    def replace(self, record: ModuleRecord, ctx: Optional[IngestContext] = None) -> bool:
        """Atomically replace everything stored for ``record.key``.

        Returns True when a previous record was superseded, False on first
        insert.

        Raises:
            ValidationRejected: the candidate is degenerate; nothing changed.
            StorageUnavailable: the database failed; nothing changed.
            Cancelled: *ctx* expired before the write committed; nothing changed.
        """
        key = record.key
        with self._key_lock(key):
            check(ctx, "store", *key)
            with self._connect() as conn, self._transaction(conn):
                previous_units = self._unit_count(conn, key)
                existed = self._module_exists(conn, key)
                validate_candidate(record, previous_units)

                conn.execute("DELETE FROM units WHERE module_path = ? AND version = ?", key)
                conn.executemany(
                    """
                    INSERT INTO units (
                        module_path, version, path, name, commit_time, redistributable,
                        source_info, licenses, readme_path, readme_contents,
                        synopsis, doc_html, goos, goarch
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [_unit_row(key, unit) for unit in record.units],
                )
                lifecycle = record.lifecycle
                conn.execute(
                    """
                    INSERT OR REPLACE INTO modules (
                        module_path, version, commit_time, has_go_mod, source_file_count,
                        deprecated, deprecation_reason, retracted, retraction_reason
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.module_path,
                        record.version,
                        record.commit_time.isoformat(),
                        int(record.has_go_mod),
                        record.source_file_count,
                        int(lifecycle.deprecated),
                        lifecycle.deprecation_reason,
                        int(lifecycle.retracted),
                        lifecycle.retraction_reason,
                    ),
                )
                check(ctx, "commit", *key)
                conn.execute("COMMIT")

        logger.info(
            "%s %s with %d units (previously %d)",
            "Replaced" if existed else "Stored", key, len(record.units), previous_units,
        )
        return existed

    def delete_module(self, module_path: str, version: str) -> bool:
        """Remove a key and all of its units in one transaction."""
        key = ModuleVersion(module_path, version)
        with self._key_lock(key):
            with self._connect() as conn, self._transaction(conn):
                existed = self._module_exists(conn, key)
                conn.execute("DELETE FROM units WHERE module_path = ? AND version = ?", key)
                conn.execute("DELETE FROM modules WHERE module_path = ? AND version = ?", key)
                conn.execute("COMMIT")
        return existed

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_module(self, module_path: str, version: str) -> Optional[ModuleRecord]:
        """Load a key with all units, readmes and documentation."""
        key = ModuleVersion(module_path, version)
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM modules WHERE module_path = ? AND version = ?", key,
            ).fetchone()
            if row is None:
                return None
            unit_rows = conn.execute(
                "SELECT * FROM units WHERE module_path = ? AND version = ? ORDER BY path", key,
            ).fetchall()
        return ModuleRecord(
            module_path=row["module_path"],
            version=row["version"],
            commit_time=datetime.fromisoformat(row["commit_time"]),
            has_go_mod=bool(row["has_go_mod"]),
            source_file_count=row["source_file_count"],
            lifecycle=LifecycleStatus(
                deprecated=bool(row["deprecated"]),
                deprecation_reason=row["deprecation_reason"],
                retracted=bool(row["retracted"]),
                retraction_reason=row["retraction_reason"],
            ),
            units=[_unit_from_row(r, with_readme=True, with_documentation=True) for r in unit_rows],
        )

    def get_unit_meta(self, path: str, version: str, module_path: Optional[str] = None) -> Optional[UnitRecord]:
        """Unit metadata without readme or documentation.

        With no *module_path*, the longest stored module path containing
        *path* at *version* is used.
        """
        return self.get_unit(path, version, module_path, with_readme=False, with_documentation=False)

    def get_unit(
        self,
        path: str,
        version: str,
        module_path: Optional[str] = None,
        with_readme: bool = True,
        with_documentation: bool = True,
    ) -> Optional[UnitRecord]:
        with self._connect() as conn:
            if module_path is None:
                row = conn.execute(
                    """
                    SELECT * FROM units WHERE path = ? AND version = ?
                    ORDER BY length(module_path) DESC LIMIT 1
                    """,
                    (path, version),
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT * FROM units WHERE path = ? AND version = ? AND module_path = ?",
                    (path, version, module_path),
                ).fetchone()
        if row is None:
            return None
        return _unit_from_row(row, with_readme=with_readme, with_documentation=with_documentation)

    def list_unit_paths(self, module_path: str, version: str) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT path FROM units WHERE module_path = ? AND version = ? ORDER BY path",
                (module_path, version),
            ).fetchall()
        return [r["path"] for r in rows]

    def list_modules(self) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT m.module_path, m.version, m.commit_time, m.deprecated, m.retracted,
                       (SELECT COUNT(*) FROM units u
                        WHERE u.module_path = m.module_path AND u.version = m.version) AS unit_count
                FROM modules m
                """
            ).fetchall()
        payload = [dict(r) for r in rows]
        payload.sort(key=lambda r: (r["module_path"], _version_sort_key(r["version"])))
        return payload

    # ------------------------------------------------------------------
    # Version states
    # ------------------------------------------------------------------

    def upsert_version_state(self, state: VersionState) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO version_states (
                    module_path, version, status, error, unit_count, attempted_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    state.module_path,
                    state.version,
                    state.status,
                    state.error,
                    state.unit_count,
                    state.attempted_at.isoformat(),
                ),
            )

    def get_version_state(self, module_path: str, version: str) -> Optional[VersionState]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM version_states WHERE module_path = ? AND version = ?",
                (module_path, version),
            ).fetchone()
        if row is None:
            return None
        return VersionState(
            module_path=row["module_path"],
            version=row["version"],
            status=row["status"],
            error=row["error"],
            unit_count=row["unit_count"],
            attempted_at=datetime.fromisoformat(row["attempted_at"]),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _unit_count(conn: sqlite3.Connection, key: ModuleVersion) -> int:
        return conn.execute(
            "SELECT COUNT(*) FROM units WHERE module_path = ? AND version = ?", key,
        ).fetchone()[0]

    @staticmethod
    def _module_exists(conn: sqlite3.Connection, key: ModuleVersion) -> bool:
        return conn.execute(
            "SELECT 1 FROM modules WHERE module_path = ? AND version = ?", key,
        ).fetchone() is not None


# ===================================================================
# Validation
# ===================================================================

def validate_candidate(record: ModuleRecord, previous_unit_count: int = 0) -> None:
    """Reject candidates that would degrade what is stored.

    Raises:
        ValidationRejected: with the first problem found.
    """
    key = (record.module_path, record.version)

    def reject(message: str) -> ValidationRejected:
        return ValidationRejected(message, *key)

    if not record.module_path:
        raise reject("missing module path")
    if not record.version or not versions.is_valid(record.version):
        raise reject(f"invalid version {record.version!r}")
    if record.commit_time is None:
        raise reject("missing commit time")

    seen = set()
    for unit in record.units:
        if not unit.path or not unit.name:
            raise reject(f"unit {unit.path!r} is missing its path or name")
        if unit.commit_time is None:
            raise reject(f"unit {unit.path} is missing its commit time")
        if unit.path != record.module_path and not unit.path.startswith(record.module_path + "/"):
            raise reject(f"unit {unit.path} is outside the module")
        if unit.path in seen:
            raise reject(f"unit {unit.path} appears twice")
        seen.add(unit.path)

    if not record.units:
        if previous_unit_count > 0:
            raise reject(f"no units to replace the {previous_unit_count} stored")
        if record.source_file_count > 0:
            raise reject(f"no units extracted from {record.source_file_count} source files")


# ===================================================================
# Row mapping
# ===================================================================

def _unit_row(key: ModuleVersion, unit: UnitRecord) -> tuple:
    doc = unit.documentation
    return (
        key.module_path,
        key.version,
        unit.path,
        unit.name,
        unit.commit_time.isoformat(),
        int(unit.is_redistributable),
        json.dumps(_source_info_payload(unit.source_info)) if unit.source_info else None,
        json.dumps([{"types": lic.types, "file_path": lic.file_path} for lic in unit.licenses]),
        unit.readme.file_path if unit.readme else None,
        unit.readme.contents if unit.readme else None,
        doc.synopsis if doc else None,
        doc.html if doc else None,
        doc.goos if doc else None,
        doc.goarch if doc else None,
    )


def _source_info_payload(info: SourceInfo) -> Dict[str, str]:
    return {"repo_url": info.repo_url, "module_dir": info.module_dir, "commit": info.commit}


def _unit_from_row(row: sqlite3.Row, with_readme: bool, with_documentation: bool) -> UnitRecord:
    source = json.loads(row["source_info"]) if row["source_info"] else None
    unit = UnitRecord(
        path=row["path"],
        name=row["name"],
        commit_time=datetime.fromisoformat(row["commit_time"]),
        is_redistributable=bool(row["redistributable"]),
        source_info=SourceInfo(**source) if source else None,
        licenses=[LicenseMetadata(**lic) for lic in json.loads(row["licenses"])],
    )
    if with_readme and row["readme_path"] is not None:
        unit.readme = Readme(row["readme_path"], row["readme_contents"])
    if with_documentation and row["doc_html"] is not None:
        unit.documentation = Documentation(row["synopsis"], row["doc_html"], row["goos"], row["goarch"])
    return unit


def _version_sort_key(version: str):
    try:
        return (0, versions.parse(version), version)
    except ValueError:
        return (1, None, version)
