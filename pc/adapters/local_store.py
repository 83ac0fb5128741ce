import shutil
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

from ..core.constants import ANCHORS_FILE, PENDING_UPLOADS_FILE, STORE_LIST_KEY
from ..core.models import AnchorRecord
from ..domain.normalize import anchor_from_dict, parse_batch
from ..utils.files import read_json, save_json
from ..utils.log import log_line
from ..utils.time import now_ms


class CorruptFileError(ValueError):
    """Backing file exists but is not a {"anchors": [...]} JSON document."""


class DurableLocalStore:
    """
    JSON-file persistence for the local anchor cache and the pending-upload queue.

    Both files share the shape {"anchors": [AnchorRecord, ...]}. Every operation
    on either file runs under one lock per store instance, so concurrent callers
    block instead of interleaving read-modify-write cycles. Writes replace the
    whole file.

    Loads never raise: a missing file or one without an "anchors" list is empty,
    a corrupt file is copied to <stem>_backup_<epoch_ms>.json, removed, and read
    as empty. Mutations raise OSError when the file cannot be read and leave it
    untouched.
    """

    def __init__(self, data_dir: Union[str, Path], anchors_file: str = ANCHORS_FILE, pending_file: str = PENDING_UPLOADS_FILE):
        self.data_dir = Path(data_dir)
        self.anchors_path = self.data_dir / anchors_file
        self.pending_path = self.data_dir / pending_file
        self._lock = threading.Lock()

    # =========================
    # FILE PRIMITIVES (caller holds the lock)
    # =========================

    def _read(self, path: Path, strict: bool = False) -> List[AnchorRecord]:
        """
        Load one backing file. With strict=True an I/O error is raised instead of
        read as empty; every read-modify-write uses it so that an unreadable file
        is never overwritten with a partial list.
        """
        if not path.exists():
            return []
        try:
            data = read_json(path)
            if not isinstance(data, dict):
                raise CorruptFileError(f"expected an object with an '{STORE_LIST_KEY}' list")
            items = data.get(STORE_LIST_KEY)
            if items is None:
                return []
            if not isinstance(items, list):
                raise CorruptFileError(f"'{STORE_LIST_KEY}' is not a list")
        except (ValueError, UnicodeDecodeError) as e:
            # JSONDecodeError and CorruptFileError are both ValueErrors
            log_line(f"STORE CORRUPT | file={path.name} | err={e} | backing up and resetting", "ERROR")
            self._quarantine(path)
            return []
        except OSError as e:
            log_line(f"STORE READ ERROR | file={path.name} | err={e!r}", "ERROR")
            if strict:
                raise
            return []
        return parse_batch(items, anchor_from_dict, source=path.name)

    def _write(self, path: Path, records: List[AnchorRecord]) -> None:
        try:
            save_json(path, {STORE_LIST_KEY: [r.to_dict() for r in records]})
        except Exception as e:
            log_line(f"STORE WRITE ERROR | file={path.name} | err={e!r}", "ERROR")
            raise

    def _quarantine(self, path: Path) -> Optional[Path]:
        """Copy a corrupt file aside, then delete it. Deletes without a copy if the backup fails."""
        backup = path.with_name(f"{path.stem}_backup_{now_ms()}{path.suffix or '.json'}")
        n = 1
        while backup.exists():
            backup = path.with_name(f"{path.stem}_backup_{now_ms()}_{n}{path.suffix or '.json'}")
            n += 1
        try:
            shutil.copyfile(path, backup)
            path.unlink()
            log_line(f"STORE BACKUP | corrupt file saved as {backup.name}", "WARN")
            return backup
        except OSError as e:
            log_line(f"STORE BACKUP FAILED | file={path.name} | err={e!r} | deleting", "ERROR")
            try:
                path.unlink(missing_ok=True)
            except OSError as de:
                log_line(f"STORE DELETE FAILED | file={path.name} | err={de!r}", "ERROR")
            return None

    def _mutate(self, path: Path, fn: Callable[[List[AnchorRecord]], Any]) -> Any:
        with self._lock:
            records = self._read(path, strict=True)
            result = fn(records)
            self._write(path, records)
            return result

    # =========================
    # ANCHOR CACHE
    # =========================

    def load_anchors(self) -> List[AnchorRecord]:
        with self._lock:
            return self._read(self.anchors_path)

    def save_anchor(self, record: AnchorRecord) -> AnchorRecord:
        """Append one record (replacing an existing entry with the same id). Geohash is recomputed first."""
        record = record.with_geohash()

        def _upsert(records: List[AnchorRecord]) -> None:
            for i, r in enumerate(records):
                if r.id == record.id:
                    records[i] = record
                    return
            records.append(record)

        self._mutate(self.anchors_path, _upsert)
        log_line(f"STORE SAVE | id={record.id} | lat={record.latitude} lon={record.longitude} | geohash={record.geohash}", "DEBUG")
        return record

    def save_anchors(self, records: List[AnchorRecord]) -> None:
        """Replace the whole cache."""
        fresh = [r.with_geohash() for r in records]
        with self._lock:
            self._write(self.anchors_path, fresh)
        log_line(f"STORE SAVE | replaced cache with {len(fresh)} anchors", "DEBUG")

    def update_anchor(self, record_id: str, **changes: Any) -> Optional[AnchorRecord]:
        """Apply field changes to one cached record. Returns the new record, or None if absent."""
        def _update(records: List[AnchorRecord]) -> Optional[AnchorRecord]:
            for i, r in enumerate(records):
                if r.id == record_id:
                    records[i] = replace(r, **changes).with_geohash()
                    return records[i]
            return None

        return self._mutate(self.anchors_path, _update)

    def increment_upvotes(self, record_id: str, by: int = 1) -> Optional[AnchorRecord]:
        """Add to a cached record's upvotes inside one critical section. None if absent."""
        def _increment(records: List[AnchorRecord]) -> Optional[AnchorRecord]:
            for i, r in enumerate(records):
                if r.id == record_id:
                    records[i] = replace(r, upvotes=r.upvotes + by)
                    return records[i]
            return None

        return self._mutate(self.anchors_path, _increment)

    def remove_anchor(self, record_id: str) -> bool:
        def _remove(records: List[AnchorRecord]) -> bool:
            before = len(records)
            records[:] = [r for r in records if r.id != record_id]
            return len(records) != before

        return self._mutate(self.anchors_path, _remove)

    def clear_all_anchors(self) -> None:
        with self._lock:
            try:
                self.anchors_path.unlink(missing_ok=True)
                log_line("STORE CLEAR | anchors")
            except OSError as e:
                log_line(f"STORE CLEAR FAILED | err={e!r}", "ERROR")

    def anchor_count(self) -> int:
        return len(self.load_anchors())

    # =========================
    # PENDING-UPLOAD QUEUE
    # =========================

    def load_pending_uploads(self) -> List[AnchorRecord]:
        with self._lock:
            return self._read(self.pending_path)

    def add_pending_upload(self, record: AnchorRecord) -> None:
        record = record.with_geohash()

        def _append(records: List[AnchorRecord]) -> None:
            # One entry per id; a re-queued record replaces the older copy
            records[:] = [r for r in records if r.id != record.id]
            records.append(record)

        self._mutate(self.pending_path, _append)
        log_line(f"PENDING ADD | id={record.id}")

    def remove_pending_upload(self, record_id: str) -> bool:
        """Drop the entry with this id. Unknown ids are a no-op (returns False)."""
        with self._lock:
            records = self._read(self.pending_path, strict=True)
            kept = [r for r in records if r.id != record_id]
            if len(kept) == len(records):
                return False
            self._write(self.pending_path, kept)
        log_line(f"PENDING REMOVE | id={record_id}")
        return True

    def pending_upload_count(self) -> int:
        return len(self.load_pending_uploads())

    def clear_pending_uploads(self) -> None:
        with self._lock:
            self._write(self.pending_path, [])
        log_line("PENDING CLEAR")
