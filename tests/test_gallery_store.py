"""
Tests for the GalleryStore module.

This test suite verifies:
- StoredEmbeddingRecord type normalization
- Insert / list roundtrip through SQLite
- Atomic gallery replacement and rollback
- Owner listing, gallery summaries and deletion
- Authentication logging and statistics
- Skipping of unreadable rows

Run with: pytest tests/test_gallery_store.py -v
"""

import os
import sys
import tempfile
import shutil
import sqlite3
import pytest
import numpy as np

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from faceauth.gallery_store import GalleryStore, StoredEmbeddingRecord
from faceauth.samples import CaptureType


def make_record(owner_id, capture_type=CaptureType.NORMAL, seed=0, quality=0.8):
    rng = np.random.default_rng(seed)
    return StoredEmbeddingRecord(
        owner_id=owner_id,
        embedding=rng.normal(0.0, 0.1, 128),
        capture_type=capture_type,
        quality_score=quality,
    )


class TestStoredEmbeddingRecord:
    """Tests for the StoredEmbeddingRecord dataclass."""

    def test_type_conversion(self):
        record = StoredEmbeddingRecord(
            owner_id="alice",
            embedding=[0.1] * 128,
            capture_type="smile",
            quality_score=1,
        )
        assert record.embedding.dtype == np.float64
        assert record.capture_type is CaptureType.SMILE
        assert isinstance(record.quality_score, float)
        assert record.record_id is None

    def test_unknown_capture_type(self):
        with pytest.raises(ValueError):
            StoredEmbeddingRecord("alice", [0.1] * 128, "wink", 0.5)


class TestGalleryStore:
    """Tests for the GalleryStore class."""

    @pytest.fixture
    def temp_dir(self):
        temp = tempfile.mkdtemp()
        yield temp
        shutil.rmtree(temp)

    @pytest.fixture
    def store(self, temp_dir):
        db_path = os.path.join(temp_dir, "gallery.sqlite")
        store = GalleryStore(db_path)
        yield store
        store.close()

    def test_database_file_created(self, temp_dir, store):
        store.list_all_records()
        assert os.path.exists(os.path.join(temp_dir, "gallery.sqlite"))

    def test_insert_and_list_roundtrip(self, store):
        record = make_record("alice")
        record_id = store.insert_record(record)

        loaded = store.list_records("alice")
        assert len(loaded) == 1
        assert loaded[0].record_id == record_id == record.record_id
        assert loaded[0].capture_type is CaptureType.NORMAL
        np.testing.assert_allclose(loaded[0].embedding, record.embedding)

    def test_list_all_records_spans_owners(self, store):
        store.insert_record(make_record("alice", seed=1))
        store.insert_record(make_record("bob", seed=2))

        owners = {r.owner_id for r in store.list_all_records()}
        assert owners == {"alice", "bob"}

    def test_replace_gallery(self, store):
        store.insert_record(make_record("alice", CaptureType.NORMAL, seed=1))
        store.insert_record(make_record("alice", CaptureType.SMILE, seed=2))
        store.insert_record(make_record("bob", seed=3))

        inserted = store.replace_gallery("alice", [make_record("alice", CaptureType.NOD, seed=4)])

        assert inserted == 1
        alice = store.list_records("alice")
        assert [r.capture_type for r in alice] == [CaptureType.NOD]
        assert len(store.list_records("bob")) == 1

    def test_replace_gallery_rejects_foreign_records(self, store):
        store.insert_record(make_record("alice", seed=1))

        with pytest.raises(ValueError):
            store.replace_gallery("alice", [make_record("bob", seed=2)])

        assert len(store.list_records("alice")) == 1

    def test_replace_gallery_rolls_back_on_error(self, store):
        store.insert_record(make_record("alice", seed=1))

        bad = make_record("alice", seed=2)
        bad.quality_score = None  # violates NOT NULL on insert

        with pytest.raises(sqlite3.IntegrityError):
            store.replace_gallery("alice", [make_record("alice", CaptureType.SMILE, seed=3), bad])

        remaining = store.list_records("alice")
        assert len(remaining) == 1
        assert remaining[0].capture_type is CaptureType.NORMAL

    def test_delete_gallery(self, store):
        store.insert_record(make_record("alice", CaptureType.NORMAL, seed=1))
        store.insert_record(make_record("alice", CaptureType.SMILE, seed=2))

        assert store.delete_gallery("alice") == 2
        assert not store.owner_exists("alice")
        assert store.delete_gallery("alice") == 0

    def test_list_owners(self, store):
        store.insert_record(make_record("alice", CaptureType.NORMAL, quality=0.6))
        store.insert_record(make_record("alice", CaptureType.SMILE, quality=1.0))
        store.insert_record(make_record("bob"))

        owners = {o["owner_id"]: o for o in store.list_owners()}
        assert owners["alice"]["n_records"] == 2
        assert owners["alice"]["avg_quality"] == pytest.approx(0.8)
        assert owners["bob"]["n_records"] == 1

    def test_gallery_summary(self, store):
        store.insert_record(make_record("alice", CaptureType.NORMAL))
        store.insert_record(make_record("alice", CaptureType.HEAD_RAISE))

        summary = store.get_gallery_summary("alice")
        assert summary["owner_id"] == "alice"
        assert [r["capture_type"] for r in summary["records"]] == ["normal", "head_raise"]
        assert "embedding" not in summary["records"][0]

    def test_gallery_summary_unknown_owner(self, store):
        assert store.get_gallery_summary("nobody") is None

    def test_unreadable_row_is_skipped(self, store):
        store.insert_record(make_record("alice", seed=1))
        conn = store._get_connection()
        with conn:
            conn.execute(
                "INSERT INTO face_embeddings (owner_id, embedding, capture_type, quality_score, created_at) "
                "VALUES ('alice', 'not json', 'smile', 0.5, '2026-01-01T00:00:00')"
            )

        records = store.list_records("alice")
        assert len(records) == 1
        assert records[0].capture_type is CaptureType.NORMAL

    def test_auth_logging_and_stats(self, store):
        store.insert_record(make_record("alice", CaptureType.NORMAL))
        store.insert_record(make_record("alice", CaptureType.SMILE))

        store.log_authentication("alice", 0.91, "high", True, 12)
        store.log_authentication(None, 0.40, "none", False, 8, failure_reason="below threshold")

        logs = store.get_auth_logs()
        assert len(logs) == 2
        assert logs[0]["is_match"] is False
        assert logs[0]["failure_reason"] == "below threshold"
        assert len(store.get_auth_logs(owner_id="alice")) == 1

        stats = store.get_stats()
        assert stats["total_owners"] == 1
        assert stats["total_records"] == 2
        assert stats["records_by_type"] == {"normal": 1, "smile": 1}
        assert stats["total_auth_attempts"] == 2
        assert stats["successful_auths"] == 1

    def test_stats_empty_store(self, store):
        stats = store.get_stats()
        assert stats["total_owners"] == 0
        assert stats["total_records"] == 0
        assert stats["successful_auths"] == 0

    def test_in_memory_store(self):
        store = GalleryStore(":memory:")
        store.insert_record(make_record("alice"))
        assert store.owner_exists("alice")
        store.close()
