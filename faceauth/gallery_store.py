"""
Gallery Store Module

SQLite persistence for enrolled face embeddings (the "gallery") and for the
authentication attempt log.

Each owner's gallery is a set of StoredEmbeddingRecord rows, one per capture
type. Re-enrollment replaces the whole set inside a single transaction
(delete then insert), so a failure part-way never leaves an owner with an
empty or half-old/half-new gallery.

Tables:
- face_embeddings: owner_id, embedding (JSON array), capture_type, quality_score, created_at
- auth_logs: one row per authentication attempt

Usage:
    from faceauth.gallery_store import GalleryStore, StoredEmbeddingRecord

    store = GalleryStore(db_path="storage/faceauth.sqlite")
    store.replace_gallery("alice", records)
    for record in store.list_all_records():
        ...
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from faceauth.samples import CaptureType

# Setup logging
logger = logging.getLogger(__name__)


@dataclass(eq=False)
class StoredEmbeddingRecord:
    """
    One persisted embedding belonging to an owner's gallery.

    Attributes:
        owner_id: Identifier of the enrolled user.
        embedding: Identity vector, float64.
        capture_type: Challenge milestone the embedding came from.
        quality_score: Recomputed quality in [0, 1].
        created_at: ISO timestamp of insertion.
        record_id: Database row id (None until stored).
    """

    owner_id: str
    embedding: np.ndarray
    capture_type: CaptureType
    quality_score: float
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    record_id: Optional[int] = None

    def __post_init__(self):
        """Normalize field types after initialization."""
        self.embedding = np.asarray(self.embedding, dtype=np.float64).ravel()
        self.capture_type = CaptureType(self.capture_type)
        self.quality_score = float(self.quality_score)


class GalleryStore:
    """
    SQLite-backed gallery of enrolled embeddings.

    One connection is shared by all callers and guarded by a lock, so the
    store can be used from FastAPI worker threads.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str):
        """
        Initialize the store, creating the database and schema if needed.

        Args:
            db_path: Path to SQLite database file (":memory:" for a private in-memory db).
        """
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

        logger.info(f"GalleryStore initialized: db={self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get or create the SQLite connection.

        Returns:
            SQLite connection with Row factory for dict-like access.
        """
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_database(self) -> None:
        """
        Initialize the SQLite database schema.

        Creates tables if they don't exist:
        - face_embeddings: gallery records
        - auth_logs: authentication attempt history
        """
        capture_types = ", ".join(f"'{t.value}'" for t in CaptureType)

        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS face_embeddings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL,
                    embedding TEXT NOT NULL,
                    capture_type TEXT NOT NULL CHECK (capture_type IN ({capture_types})),
                    quality_score REAL NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_face_embeddings_owner
                ON face_embeddings (owner_id)
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS auth_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT,
                    timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    fused_similarity REAL,
                    confidence_tier TEXT,
                    is_match BOOLEAN,
                    failure_reason TEXT,
                    processing_time_ms INTEGER
                )
            """)

            conn.commit()
        logger.debug("Database schema initialized")

    # ------------------------------------------------------------------
    # Gallery operations
    # ------------------------------------------------------------------

    def delete_gallery(self, owner_id: str) -> int:
        """
        Delete every record owned by owner_id.

        Returns:
            Number of records deleted.
        """
        with self._lock:
            conn = self._get_connection()
            with conn:
                cursor = conn.execute(
                    "DELETE FROM face_embeddings WHERE owner_id = ?", (owner_id,)
                )
        deleted = cursor.rowcount
        logger.info(f"Deleted {deleted} record(s) for owner {owner_id}")
        return deleted

    def insert_record(self, record: StoredEmbeddingRecord) -> int:
        """
        Insert one record.

        Returns:
            The new row id (also set on record.record_id).
        """
        with self._lock:
            conn = self._get_connection()
            with conn:
                record_id = self._insert(conn, record)
        return record_id

    def replace_gallery(self, owner_id: str, records: Iterable[StoredEmbeddingRecord]) -> int:
        """
        Atomically replace an owner's gallery with new records.

        Deletion and insertion run in one transaction; on any error the
        transaction is rolled back and the previous gallery stays intact.

        Args:
            owner_id: Owner whose gallery is replaced.
            records: New records; each must belong to owner_id.

        Returns:
            Number of records inserted.

        Raises:
            ValueError: If a record belongs to a different owner.
        """
        records = list(records)
        for record in records:
            if record.owner_id != owner_id:
                raise ValueError(
                    f"Record owner {record.owner_id} does not match gallery owner {owner_id}"
                )

        with self._lock:
            conn = self._get_connection()
            with conn:
                conn.execute("DELETE FROM face_embeddings WHERE owner_id = ?", (owner_id,))
                for record in records:
                    self._insert(conn, record)

        logger.info(f"Replaced gallery for owner {owner_id}: {len(records)} record(s)")
        return len(records)

    def _insert(self, conn: sqlite3.Connection, record: StoredEmbeddingRecord) -> int:
        cursor = conn.execute(
            """
            INSERT INTO face_embeddings (owner_id, embedding, capture_type, quality_score, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                record.owner_id,
                json.dumps(record.embedding.tolist()),
                record.capture_type.value,
                record.quality_score,
                record.created_at,
            ),
        )
        record.record_id = cursor.lastrowid
        return record.record_id

    def list_all_records(self) -> List[StoredEmbeddingRecord]:
        """
        Load every record gallery-wide (for 1:N identification).

        Rows whose embedding cannot be decoded are skipped with a warning.
        """
        with self._lock:
            rows = self._get_connection().execute(
                "SELECT * FROM face_embeddings ORDER BY id"
            ).fetchall()
        return self._rows_to_records(rows)

    def list_records(self, owner_id: str) -> List[StoredEmbeddingRecord]:
        """Load one owner's gallery."""
        with self._lock:
            rows = self._get_connection().execute(
                "SELECT * FROM face_embeddings WHERE owner_id = ? ORDER BY id", (owner_id,)
            ).fetchall()
        return self._rows_to_records(rows)

    def _rows_to_records(self, rows) -> List[StoredEmbeddingRecord]:
        records = []
        for row in rows:
            try:
                embedding = json.loads(row["embedding"])
                records.append(
                    StoredEmbeddingRecord(
                        owner_id=row["owner_id"],
                        embedding=embedding,
                        capture_type=row["capture_type"],
                        quality_score=row["quality_score"],
                        created_at=row["created_at"],
                        record_id=row["id"],
                    )
                )
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable record {row['id']} (owner {row['owner_id']}): {e}")
        return records

    def owner_exists(self, owner_id: str) -> bool:
        """Check whether an owner has at least one enrolled record."""
        with self._lock:
            row = self._get_connection().execute(
                "SELECT 1 FROM face_embeddings WHERE owner_id = ? LIMIT 1", (owner_id,)
            ).fetchone()
        return row is not None

    def list_owners(self) -> List[Dict[str, Any]]:
        """
        Summarize every enrolled owner.

        Returns:
            List of dicts with owner_id, n_records, avg_quality, enrolled_at.
        """
        with self._lock:
            rows = self._get_connection().execute("""
                SELECT owner_id,
                       COUNT(*) AS n_records,
                       AVG(quality_score) AS avg_quality,
                       MIN(created_at) AS enrolled_at
                FROM face_embeddings
                GROUP BY owner_id
                ORDER BY enrolled_at DESC
            """).fetchall()

        return [
            {
                "owner_id": row["owner_id"],
                "n_records": row["n_records"],
                "avg_quality": float(row["avg_quality"] or 0.0),
                "enrolled_at": row["enrolled_at"],
            }
            for row in rows
        ]

    def get_gallery_summary(self, owner_id: str) -> Optional[Dict[str, Any]]:
        """
        Describe one owner's gallery without returning the vectors.

        Returns:
            Dict with owner_id, enrolled_at, avg_quality and per-record
            capture_type / quality_score / created_at, or None if not enrolled.
        """
        records = self.list_records(owner_id)
        if not records:
            return None

        return {
            "owner_id": owner_id,
            "enrolled_at": min(r.created_at for r in records),
            "avg_quality": float(np.mean([r.quality_score for r in records])),
            "records": [
                {
                    "capture_type": r.capture_type.value,
                    "quality_score": r.quality_score,
                    "created_at": r.created_at,
                }
                for r in records
            ],
        }

    # ------------------------------------------------------------------
    # Authentication log
    # ------------------------------------------------------------------

    def log_authentication(
        self,
        owner_id: Optional[str],
        fused_similarity: float,
        confidence_tier: str,
        is_match: bool,
        processing_time_ms: int,
        failure_reason: Optional[str] = None,
    ) -> int:
        """
        Record an authentication attempt.

        Args:
            owner_id: Matched (or claimed) owner, None for an unidentified probe.
            fused_similarity: Best fused similarity found.
            confidence_tier: "none", "medium" or "high".
            is_match: Whether the attempt was accepted.
            processing_time_ms: Time spent matching.
            failure_reason: Why the attempt was rejected, if it was.

        Returns:
            ID of the log entry.
        """
        with self._lock:
            conn = self._get_connection()
            with conn:
                cursor = conn.execute(
                    """
                    INSERT INTO auth_logs
                    (owner_id, fused_similarity, confidence_tier, is_match, failure_reason, processing_time_ms)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (owner_id, fused_similarity, confidence_tier, is_match, failure_reason, processing_time_ms),
                )
        log_id = cursor.lastrowid
        logger.debug(
            f"Logged authentication attempt: id={log_id}, owner={owner_id}, "
            f"similarity={fused_similarity:.3f}, match={is_match}"
        )
        return log_id

    def get_auth_logs(self, owner_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        """
        Get authentication attempt logs, newest first.

        Args:
            owner_id: Filter by owner (None for all).
            limit: Maximum number of logs to return.
        """
        with self._lock:
            conn = self._get_connection()
            if owner_id:
                rows = conn.execute(
                    "SELECT * FROM auth_logs WHERE owner_id = ? ORDER BY id DESC LIMIT ?",
                    (owner_id, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM auth_logs ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()

        return [
            {
                "id": row["id"],
                "owner_id": row["owner_id"],
                "timestamp": row["timestamp"],
                "fused_similarity": row["fused_similarity"],
                "confidence_tier": row["confidence_tier"],
                "is_match": bool(row["is_match"]),
                "failure_reason": row["failure_reason"],
                "processing_time_ms": row["processing_time_ms"],
            }
            for row in rows
        ]

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the store.

        Returns:
            Dictionary with total_owners, total_records, avg_quality,
            records_by_type, total_auth_attempts and successful_auths.
        """
        with self._lock:
            conn = self._get_connection()
            gallery = conn.execute("""
                SELECT COUNT(DISTINCT owner_id) AS owners,
                       COUNT(*) AS records,
                       AVG(quality_score) AS avg_quality
                FROM face_embeddings
            """).fetchone()
            by_type = conn.execute("""
                SELECT capture_type, COUNT(*) AS count
                FROM face_embeddings
                GROUP BY capture_type
            """).fetchall()
            auth = conn.execute(
                "SELECT COUNT(*) AS total, SUM(is_match) AS successes FROM auth_logs"
            ).fetchone()

        return {
            "total_owners": gallery["owners"] or 0,
            "total_records": gallery["records"] or 0,
            "avg_quality": float(gallery["avg_quality"] or 0.0),
            "records_by_type": {row["capture_type"]: row["count"] for row in by_type},
            "total_auth_attempts": auth["total"] or 0,
            "successful_auths": int(auth["successes"] or 0),
        }

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("Database connection closed")

    def __del__(self):
        """Clean up resources on deletion."""
        self.close()


# Singleton instance for the store
_store_instance: Optional[GalleryStore] = None


def get_gallery_store(db_path: Optional[str] = None) -> GalleryStore:
    """
    Get or create the singleton GalleryStore instance.

    Args:
        db_path: Path to SQLite database. If None, uses storage.db_path from
                 config, relative to the project root.

    Returns:
        The shared GalleryStore instance.
    """
    global _store_instance

    if _store_instance is None:
        if db_path is None:
            from faceauth.config import get_storage_config, get_project_root

            storage_config = get_storage_config()
            db_path = str(get_project_root() / storage_config["db_path"])

        _store_instance = GalleryStore(db_path)

    return _store_instance
