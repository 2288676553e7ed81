"""
Blueprint Protocol v0.1 - Replay-Protection Ledger

Per-blueprint-hash use counters with a destroy sentinel. The ledger is the
sole source of truth for whether a capability has been exhausted. It also
holds the controller self-signing registry, so both share one lifetime.

Invariants:
- A use count never decreases.
- The only way to reach the sentinel is destroy().
- A destroyed entry is never mutated again.
- Attestations are add-only.

Two stores are provided: an in-memory one and an SQLite one that enforces
the invariants with triggers, so a hand-written UPDATE cannot violate them.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Union

from .errors import CeilingReached
from .records import MAX_USES


class LedgerError(Exception):
    """Base exception for ledger storage failures."""
    pass


class AppendOnlyViolation(LedgerError):
    """Raised when a write would decrease a count or touch a destroyed entry."""
    pass


class ReplayLedger(ABC):
    """Store interface injected into the lifecycle controller."""

    @abstractmethod
    def use_count(self, blueprint_hash: str) -> int:
        """Current use count; MAX_USES once destroyed, 0 if never seen."""

    @abstractmethod
    def record_use(self, blueprint_hash: str) -> int:
        """Increment the use count by one and return the new count."""

    @abstractmethod
    def destroy(self, blueprint_hash: str) -> None:
        """Set the entry to the sentinel. Irreversible."""

    @abstractmethod
    def attest(self, signer: str, blueprint_hash: str) -> None:
        """Add a hash to the self-signing registry of ``signer``. Add-only."""

    @abstractmethod
    def is_attested(self, signer: str, blueprint_hash: str) -> bool:
        """Whether ``signer`` attested ``blueprint_hash``."""


    def is_destroyed(self, blueprint_hash: str) -> bool:
        return self.use_count(blueprint_hash) == MAX_USES

    def check_usable(self, blueprint_hash: str, use_ceiling: int) -> None:
        """
        Raise CeilingReached unless the use count is strictly below the
        ceiling. A ceiling of 0 is never usable.
        """
        count = self.use_count(blueprint_hash)
        if count < use_ceiling:
            return

        destroyed = count == MAX_USES
        if destroyed:
            message = "Blueprint has been destroyed"
        else:
            message = f"Use ceiling reached ({count}/{use_ceiling})"
        raise CeilingReached(message, blueprint_hash=blueprint_hash, destroyed=destroyed)


class InMemoryReplayLedger(ReplayLedger):
    """Process-local ledger; lives as long as the object."""

    def __init__(self):
        self._counts: dict[str, int] = {}
        self._attested: set[tuple[str, str]] = set()
        self._lock = threading.Lock()

    def use_count(self, blueprint_hash: str) -> int:
        return self._counts.get(blueprint_hash, 0)

    def record_use(self, blueprint_hash: str) -> int:
        with self._lock:
            count = self._counts.get(blueprint_hash, 0)
            if count == MAX_USES:
                raise AppendOnlyViolation(f"Blueprint {blueprint_hash} is destroyed")
            self._counts[blueprint_hash] = count + 1
            return count + 1

    def destroy(self, blueprint_hash: str) -> None:
        with self._lock:
            self._counts[blueprint_hash] = MAX_USES

    def attest(self, signer: str, blueprint_hash: str) -> None:
        with self._lock:
            self._attested.add((signer, blueprint_hash))

    def is_attested(self, signer: str, blueprint_hash: str) -> bool:
        return (signer, blueprint_hash) in self._attested


class SQLiteReplayLedger(ReplayLedger):
    """
    Replay ledger persisted in SQLite.

    The sentinel does not fit an SQLite INTEGER, so destruction is stored
    as a flag and reported as MAX_USES by use_count().
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        """Initialize the ledger with the given database path."""
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self):
        """Initialize the database schema with monotonicity constraints."""
        with self._lock, self._conn:
            self._conn.executescript("""
                CREATE TABLE IF NOT EXISTS replay_entries (
                    blueprint_hash TEXT PRIMARY KEY,
                    use_count INTEGER NOT NULL DEFAULT 0,
                    destroyed INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                );

                -- Destroyed entries are terminal
                CREATE TRIGGER IF NOT EXISTS prevent_destroyed_update
                BEFORE UPDATE ON replay_entries
                WHEN OLD.destroyed = 1
                BEGIN
                    SELECT RAISE(ABORT, 'destroyed blueprint entries are immutable');
                END;

                -- Use counts never decrease
                CREATE TRIGGER IF NOT EXISTS prevent_count_decrease
                BEFORE UPDATE ON replay_entries
                WHEN NEW.use_count < OLD.use_count
                BEGIN
                    SELECT RAISE(ABORT, 'use_count is monotonic');
                END;

                -- No DELETE
                CREATE TRIGGER IF NOT EXISTS prevent_entry_delete
                BEFORE DELETE ON replay_entries
                BEGIN
                    SELECT RAISE(ABORT, 'DELETE not permitted on replay ledger');
                END;

                CREATE TABLE IF NOT EXISTS attestations (
                    signer TEXT NOT NULL,
                    blueprint_hash TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (signer, blueprint_hash)
                );

                -- Attestations are never withdrawn
                CREATE TRIGGER IF NOT EXISTS prevent_attestation_update
                BEFORE UPDATE ON attestations
                BEGIN
                    SELECT RAISE(ABORT, 'attestations are immutable');
                END;

                CREATE TRIGGER IF NOT EXISTS prevent_attestation_delete
                BEFORE DELETE ON attestations
                BEGIN
                    SELECT RAISE(ABORT, 'DELETE not permitted on attestations');
                END;
            """)

    @contextmanager
    def _transaction(self):
        """Context manager for database transactions."""
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise AppendOnlyViolation(str(exc)) from exc
            except Exception:
                self._conn.rollback()
                raise

    def use_count(self, blueprint_hash: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT use_count, destroyed FROM replay_entries WHERE blueprint_hash = ?",
                (blueprint_hash,),
            ).fetchone()
        if row is None:
            return 0
        if row["destroyed"]:
            return MAX_USES
        return row["use_count"]

    def record_use(self, blueprint_hash: str) -> int:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO replay_entries (blueprint_hash, use_count)
                VALUES (?, 1)
                ON CONFLICT(blueprint_hash) DO UPDATE SET use_count = use_count + 1
                """,
                (blueprint_hash,),
            )
            row = conn.execute(
                "SELECT use_count FROM replay_entries WHERE blueprint_hash = ?",
                (blueprint_hash,),
            ).fetchone()
        return row["use_count"]

    def destroy(self, blueprint_hash: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO replay_entries (blueprint_hash, destroyed)
                VALUES (?, 1)
                ON CONFLICT(blueprint_hash) DO UPDATE SET destroyed = 1
                WHERE destroyed = 0
                """,
                (blueprint_hash,),
            )

    def attest(self, signer: str, blueprint_hash: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO attestations (signer, blueprint_hash)
                VALUES (?, ?)
                ON CONFLICT(signer, blueprint_hash) DO NOTHING
                """,
                (signer, blueprint_hash),
            )

    def is_attested(self, signer: str, blueprint_hash: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM attestations WHERE signer = ? AND blueprint_hash = ?",
                (signer, blueprint_hash),
            ).fetchone()
        return row is not None

    def close(self) -> None:
        with self._lock:
            self._conn.close()
