"""
Tests for local_store.py - DurableLocalStore.

These tests verify:
- Anchor cache save/load/replace/clear
- Corruption quarantine (backup file, original removed)
- Per-record skip inside a valid file
- Pending-upload queue lifecycle
- Serialized concurrent writers
"""

import json
import threading
from unittest.mock import patch

import pytest
from pc.adapters.local_store import DurableLocalStore
from pc.core.models import AnchorRecord, Status
from pc.domain.geohash import encode


def rec(rid, lat=52.52, lon=13.405, **kw):
    return AnchorRecord(latitude=lat, longitude=lon, id=rid, **kw)


@pytest.fixture
def store(tmp_path):
    return DurableLocalStore(tmp_path)


class TestAnchors:
    """Tests for the anchor cache file."""

    def test_missing_file_is_empty(self, store):
        assert store.load_anchors() == []
        assert store.anchor_count() == 0

    def test_save_and_load(self, store, tmp_path):
        store.save_anchor(rec("a", message_text="hello"))
        store.save_anchor(rec("b"))
        loaded = store.load_anchors()
        assert [r.id for r in loaded] == ["a", "b"]
        assert loaded[0].message_text == "hello"

        data = json.loads((tmp_path / "anchors.json").read_text(encoding="utf-8"))
        assert list(data) == ["anchors"]
        assert data["anchors"][0]["messageText"] == "hello"

    def test_geohash_recomputed_on_save(self, store):
        """A stale geohash on the incoming record is never persisted."""
        saved = store.save_anchor(rec("a", geohash="zzzzzzz"))
        assert saved.geohash == encode(52.52, 13.405)
        assert store.load_anchors()[0].geohash == encode(52.52, 13.405)

    def test_same_id_replaces(self, store):
        store.save_anchor(rec("a", message_text="v1"))
        store.save_anchor(rec("a", message_text="v2"))
        loaded = store.load_anchors()
        assert len(loaded) == 1
        assert loaded[0].message_text == "v2"

    def test_save_anchors_replaces_all(self, store):
        store.save_anchor(rec("old"))
        store.save_anchors([rec("x"), rec("y")])
        assert [r.id for r in store.load_anchors()] == ["x", "y"]

    def test_update_and_remove(self, store):
        store.save_anchor(rec("a"))
        updated = store.update_anchor("a", status=Status.RESOLVED, upvotes=4)
        assert updated.status is Status.RESOLVED
        assert store.load_anchors()[0].upvotes == 4
        assert store.update_anchor("missing", upvotes=1) is None

        assert store.remove_anchor("a") is True
        assert store.remove_anchor("a") is False
        assert store.anchor_count() == 0

    def test_clear(self, store, tmp_path):
        store.save_anchor(rec("a"))
        store.clear_all_anchors()
        assert not (tmp_path / "anchors.json").exists()
        assert store.load_anchors() == []
        store.clear_all_anchors()  # no file: no error


class TestCorruption:
    """Tests for the quarantine of unreadable files."""

    def test_corrupt_file_backed_up_and_removed(self, store, tmp_path):
        path = tmp_path / "anchors.json"
        path.write_text("{not json", encoding="utf-8")

        assert store.load_anchors() == []

        backups = list(tmp_path.glob("anchors_backup_*.json"))
        assert len(backups) == 1
        assert backups[0].read_text(encoding="utf-8") == "{not json"
        assert not path.exists()

    def test_wrong_shape_is_corrupt(self, store, tmp_path):
        (tmp_path / "anchors.json").write_text(json.dumps([1, 2, 3]), encoding="utf-8")
        assert store.load_anchors() == []
        assert len(list(tmp_path.glob("anchors_backup_*.json"))) == 1

    def test_non_list_anchors_is_corrupt(self, store, tmp_path):
        (tmp_path / "anchors.json").write_text(json.dumps({"anchors": "oops"}), encoding="utf-8")
        assert store.load_anchors() == []
        assert len(list(tmp_path.glob("anchors_backup_*.json"))) == 1

    @pytest.mark.parametrize("body", [{}, {"anchors": None}, {"other": 1}])
    def test_object_without_list_is_empty(self, store, tmp_path, body):
        path = tmp_path / "anchors.json"
        path.write_text(json.dumps(body), encoding="utf-8")
        assert store.load_anchors() == []
        assert path.exists()
        assert list(tmp_path.glob("anchors_backup_*.json")) == []

    def test_pending_file_quarantined_separately(self, store, tmp_path):
        (tmp_path / "pending_uploads.json").write_text("garbage", encoding="utf-8")
        assert store.load_pending_uploads() == []
        assert len(list(tmp_path.glob("pending_uploads_backup_*.json"))) == 1
        assert list(tmp_path.glob("anchors_backup_*.json")) == []

    def test_backup_failure_still_deletes(self, store, tmp_path):
        path = tmp_path / "anchors.json"
        path.write_text("{broken", encoding="utf-8")
        with patch("pc.adapters.local_store.shutil.copyfile", side_effect=OSError("disk full")):
            assert store.load_anchors() == []
        assert not path.exists()
        assert list(tmp_path.glob("anchors_backup_*.json")) == []

    def test_store_usable_after_quarantine(self, store, tmp_path):
        (tmp_path / "anchors.json").write_text("nope", encoding="utf-8")
        store.save_anchor(rec("fresh"))
        assert [r.id for r in store.load_anchors()] == ["fresh"]

    def test_bad_record_skipped_not_quarantined(self, store, tmp_path):
        path = tmp_path / "anchors.json"
        good = rec("good").with_geohash().to_dict()
        path.write_text(json.dumps({"anchors": [good, {"id": "bad", "latitude": "x"}]}), encoding="utf-8")
        assert [r.id for r in store.load_anchors()] == ["good"]
        assert path.exists()
        assert list(tmp_path.glob("anchors_backup_*.json")) == []


class TestReadErrors:
    """An unreadable file is never overwritten by a read-modify-write."""

    def test_load_reads_empty(self, store):
        store.save_anchor(rec("a0"))
        with patch("pc.adapters.local_store.read_json", side_effect=OSError("EIO")):
            assert store.load_anchors() == []
        assert [r.id for r in store.load_anchors()] == ["a0"]

    def test_save_anchor_keeps_cache(self, store, tmp_path):
        for i in range(3):
            store.save_anchor(rec(f"a{i}"))
        with patch("pc.adapters.local_store.read_json", side_effect=OSError("EIO")):
            with pytest.raises(OSError):
                store.save_anchor(rec("new"))
        assert [r.id for r in store.load_anchors()] == ["a0", "a1", "a2"]
        assert list(tmp_path.glob("anchors_backup_*.json")) == []

    def test_add_pending_keeps_queue(self, store):
        store.add_pending_upload(rec("p1"))
        store.add_pending_upload(rec("p2"))
        with patch("pc.adapters.local_store.read_json", side_effect=OSError("EIO")):
            with pytest.raises(OSError):
                store.add_pending_upload(rec("p3"))
            with pytest.raises(OSError):
                store.remove_pending_upload("p1")
        assert [r.id for r in store.load_pending_uploads()] == ["p1", "p2"]

    def test_update_and_increment_keep_cache(self, store):
        store.save_anchor(rec("a0", upvotes=1))
        with patch("pc.adapters.local_store.read_json", side_effect=OSError("EIO")):
            with pytest.raises(OSError):
                store.increment_upvotes("a0")
            with pytest.raises(OSError):
                store.update_anchor("a0", message_text="changed")
        cached = store.load_anchors()[0]
        assert (cached.upvotes, cached.message_text) == (1, "")


class TestPendingUploads:
    """Tests for the pending-upload queue."""

    def test_lifecycle(self, store):
        store.add_pending_upload(rec("p1"))
        store.add_pending_upload(rec("p2"))
        assert store.pending_upload_count() == 2

        assert store.remove_pending_upload("p1") is True
        assert [r.id for r in store.load_pending_uploads()] == ["p2"]

    def test_remove_unknown_is_noop(self, store, tmp_path):
        store.add_pending_upload(rec("p1"))
        before = (tmp_path / "pending_uploads.json").read_text(encoding="utf-8")
        assert store.remove_pending_upload("nope") is False
        assert (tmp_path / "pending_uploads.json").read_text(encoding="utf-8") == before

    def test_remove_on_missing_file(self, store, tmp_path):
        assert store.remove_pending_upload("nope") is False
        assert not (tmp_path / "pending_uploads.json").exists()

    def test_requeue_keeps_one_entry(self, store):
        store.add_pending_upload(rec("p1", message_text="first"))
        store.add_pending_upload(rec("p1", message_text="second"))
        pending = store.load_pending_uploads()
        assert len(pending) == 1
        assert pending[0].message_text == "second"

    def test_clear(self, store):
        store.add_pending_upload(rec("p1"))
        store.clear_pending_uploads()
        assert store.pending_upload_count() == 0

    def test_queue_independent_of_cache(self, store):
        store.save_anchor(rec("a"))
        store.add_pending_upload(rec("a"))
        store.remove_pending_upload("a")
        assert store.anchor_count() == 1


class TestConcurrency:
    def test_parallel_saves_all_kept(self, store):
        """Read-modify-write cycles never interleave, so no save is lost."""
        threads = [threading.Thread(target=store.save_anchor, args=(rec(f"t{i}"),)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.anchor_count() == 20

    def test_parallel_upvotes_all_counted(self, store):
        store.save_anchor(rec("x"))
        barrier = threading.Barrier(20)

        def bump():
            barrier.wait()
            store.increment_upvotes("x")

        threads = [threading.Thread(target=bump) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.load_anchors()[0].upvotes == 20

    def test_increment_unknown_is_none(self, store):
        assert store.increment_upvotes("ghost") is None
