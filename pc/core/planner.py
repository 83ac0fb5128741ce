from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..adapters.local_store import DurableLocalStore
from ..adapters.query import Query
from ..domain.geo import haversine_m, radius_km_for, within_radius
from ..domain.geohash import encode, neighbors, prefix_range
from ..domain.normalize import anchor_from_dict, parse_batch, surface_from_dict, surface_to_record
from ..utils.log import log_line
from ..utils.rate import rate_inc
from ..utils.tasks import OneShot, Subscription, run_one_shot
from ..utils.time import now_ms
from .constants import (
    ANONYMOUS_USER, DEFAULT_NEARBY_RADIUS_M, DEFAULT_PLANE_TYPE, DEFAULT_SURFACE_NORMAL, GEOHASH_PREFIX_LEN,
    ISSUES_COLLECTION, ISSUES_LIMIT, MAX_NEARBY_RESULTS, NEARBY_ISSUES_RADIUS_KM, SURFACE_ANCHORS_COLLECTION,
    USE_CASE_COUNT_RADIUS_M, WORKER_THREADS,
)
from .models import AnchorRecord, Severity, SortOption, Status, SurfaceAnchor, UseCase


def sort_records(
    records: Sequence[AnchorRecord],
    option: SortOption,
    lat: Optional[float] = None,
    lon: Optional[float] = None,
) -> List[AnchorRecord]:
    """
    Issue list ordering:
      RECENT  newest first
      POPULAR most upvotes, then newest
      URGENT  highest severity, then newest
      NEAREST closest to (lat, lon); needs a position
    """
    option = SortOption(option)
    if option is SortOption.RECENT:
        return sorted(records, key=lambda r: -r.timestamp)
    if option is SortOption.POPULAR:
        return sorted(records, key=lambda r: (-r.upvotes, -r.timestamp))
    if option is SortOption.URGENT:
        return sorted(records, key=lambda r: (Severity.parse(r.severity).priority, -r.timestamp))
    if lat is None or lon is None:
        raise ValueError("NEAREST sort needs a position")
    return sorted(records, key=lambda r: haversine_m(lat, lon, r.latitude, r.longitude))


class SpatialQueryPlanner:
    """
    Proximity queries and writes over a remote document backend, backed by the
    durable local cache.

    Reads: candidate geohash cells -> remote candidate set -> exact Haversine
    filter. When the remote call raises or returns nothing, the same filter runs
    over the local cache instead (first success wins, results are never merged).

    Writes: local save first, then a best-effort upload on the worker pool.
    Failed uploads go to the pending queue until retry_pending() is called.
    """

    def __init__(self, backend: Any, store: DurableLocalStore, executor: Optional[Executor] = None, workers: int = WORKER_THREADS):
        self.backend = backend
        self.store = store
        self._own_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(max_workers=max(1, int(workers)), thread_name_prefix="pc-planner")

    def close(self) -> None:
        if self._own_executor:
            self.executor.shutdown(wait=True)

    # =========================
    # READ PATH
    # =========================

    @staticmethod
    def candidate_cells(lat: float, lon: float, radius_m: float) -> List[str]:
        return neighbors(lat, lon, radius_km_for(radius_m))

    def _remote_issues(self, cells: List[str]) -> List[AnchorRecord]:
        docs = self.backend.where_in(ISSUES_COLLECTION, "geohash", cells)
        return parse_batch(docs, anchor_from_dict, source=ISSUES_COLLECTION)

    def _nearby(self, lat: float, lon: float, radius_m: float, limit: Optional[int]) -> List[AnchorRecord]:
        cells = self.candidate_cells(lat, lon, radius_m)
        try:
            candidates = self._remote_issues(cells)
        except Exception as e:
            log_line(f"NEARBY | remote failed, using local cache | err={e}", "WARN")
            candidates = []
        else:
            if candidates:
                return within_radius(candidates, lat, lon, radius_m, limit)
            log_line(f"NEARBY | remote returned nothing for {len(cells)} cells, using local cache", "DEBUG")

        rate_inc("fallback")
        return within_radius(self.store.load_anchors(), lat, lon, radius_m, limit)

    def query_nearby(self, lat: float, lon: float, radius_m: float = DEFAULT_NEARBY_RADIUS_M) -> List[AnchorRecord]:
        """Issues within radius_m, nearest first, at most 20."""
        return self._nearby(lat, lon, radius_m, MAX_NEARBY_RESULTS)

    def fetch_nearby_once(self, lat: float, lon: float, radius_m: float = DEFAULT_NEARBY_RADIUS_M) -> OneShot:
        """
        One-shot union of `issues` and `surface_anchors` over the same candidate cells.
        Each collection degrades to [] on its own failure. The handle resolves to a
        list (nearest first, at most 20); cancel() resolves it to [] at once.
        """
        cells = self.candidate_cells(lat, lon, radius_m)

        def _issues() -> List[AnchorRecord]:
            try:
                return self._remote_issues(cells)
            except Exception as e:
                log_line(f"NEARBY_ONCE | {ISSUES_COLLECTION} failed | err={e}", "WARN")
                return []

        def _surface() -> List[AnchorRecord]:
            try:
                docs = self.backend.where_in(SURFACE_ANCHORS_COLLECTION, "geohash", cells)
                return parse_batch(docs, surface_to_record, source=SURFACE_ANCHORS_COLLECTION)
            except Exception as e:
                log_line(f"NEARBY_ONCE | {SURFACE_ANCHORS_COLLECTION} failed | err={e}", "WARN")
                return []

        f_issues = self.executor.submit(_issues)
        f_surface = self.executor.submit(_surface)

        def _join(handle: OneShot) -> List[AnchorRecord]:
            wait([f_issues, f_surface])
            if handle.cancelled:
                return []
            merged = f_issues.result() + f_surface.result()
            return within_radius(merged, lat, lon, radius_m)

        return run_one_shot(self.executor, _join, default=[], name="fetch_nearby_once")

    def listen_nearby(
        self,
        lat: float,
        lon: float,
        radius_m: float,
        callback: Callable[[List[AnchorRecord]], None],
    ) -> Subscription:
        """
        Live surface-anchored reports around a point: range query over the
        5-char geohash prefix, each snapshot filtered to radius_m (nearest first, 20 max).
        """
        lo, hi = prefix_range(lat, lon, GEOHASH_PREFIX_LEN)

        def _on_docs(docs: List[Dict[str, Any]]) -> None:
            records = parse_batch(docs, surface_to_record, source=SURFACE_ANCHORS_COLLECTION)
            callback(within_radius(records, lat, lon, radius_m))

        log_line(f"LISTEN_NEARBY | prefix={lo} | radius={radius_m:g}m")
        return self.backend.listen(SURFACE_ANCHORS_COLLECTION, _on_docs, Query.range("geohash", lo, hi))

    def listen_nearby_issues(
        self,
        lat: float,
        lon: float,
        callback: Callable[[List[AnchorRecord]], None],
        radius_km: int = NEARBY_ISSUES_RADIUS_KM,
    ) -> Subscription:
        """
        Live `issues` in the candidate cells around a point (geohash in [...]).
        Each snapshot is delivered whole, nearest first; there is no distance cut.
        """
        cells = neighbors(lat, lon, radius_km)

        def _on_docs(docs: List[Dict[str, Any]]) -> None:
            records = parse_batch(docs, anchor_from_dict, source=ISSUES_COLLECTION)
            callback(sorted(records, key=lambda r: haversine_m(lat, lon, r.latitude, r.longitude)))

        log_line(f"LISTEN_ISSUES | cells={len(cells)} | center={cells[0]}")
        return self.backend.listen(ISSUES_COLLECTION, _on_docs, Query.where_in("geohash", cells))

    def load_nearby_surface(self, lat: float, lon: float, radius_m: float = DEFAULT_NEARBY_RADIUS_M) -> List[SurfaceAnchor]:
        """Surface anchors within radius_m with their placement fields, nearest first, at most 20. [] on failure."""
        cells = self.candidate_cells(lat, lon, radius_m)
        try:
            docs = self.backend.where_in(SURFACE_ANCHORS_COLLECTION, "geohash", cells)
        except Exception as e:
            log_line(f"SURFACE_NEARBY | remote failed | err={e}", "ERROR")
            return []
        anchors = within_radius(parse_batch(docs, surface_from_dict, source=SURFACE_ANCHORS_COLLECTION), lat, lon, radius_m)
        log_line(f"SURFACE_NEARBY | {len(anchors)} within {radius_m:g}m", "DEBUG")
        return anchors

    def fetch_all_issues(self, limit: int = ISSUES_LIMIT) -> List[AnchorRecord]:
        """Newest issues first; local cache when the remote fails or is empty."""
        try:
            records = parse_batch(self.backend.list_recent(ISSUES_COLLECTION, limit), anchor_from_dict, source=ISSUES_COLLECTION)
            if records:
                return sort_records(records, SortOption.RECENT)[:limit]
        except Exception as e:
            log_line(f"ALL_ISSUES | remote failed, using local cache | err={e}", "WARN")
        rate_inc("fallback")
        return sort_records(self.store.load_anchors(), SortOption.RECENT)[:limit]

    def count_nearby_for_use_case(self, lat: float, lon: float, use_case: Any) -> int:
        """Issues of one use case within 1 km. Unknown use cases count 0."""
        uc = UseCase.from_string(use_case)
        if uc is None:
            return 0
        try:
            nearby = self._nearby(lat, lon, USE_CASE_COUNT_RADIUS_M, None)
        except Exception as e:
            log_line(f"USE_CASE_COUNT | failed | err={e!r}", "ERROR")
            return 0
        return sum(1 for r in nearby if UseCase.from_string(r.use_case) is uc)

    # =========================
    # WRITE PATH
    # =========================

    def _put(self, record: AnchorRecord) -> AnchorRecord:
        stamped = replace(record.with_geohash(), timestamp=now_ms())
        self.backend.put(ISSUES_COLLECTION, stamped.id, stamped.to_dict())
        return stamped

    def upload(self, record: AnchorRecord) -> bool:
        """Upload one record. On failure it is queued for retry_pending(); returns the outcome."""
        try:
            stamped = self._put(record)
        except Exception as e:
            log_line(f"UPLOAD FAILED | id={record.id} | err={e} | queued for retry", "WARN")
            rate_inc("upload", ok=False)
            self.store.add_pending_upload(record)
            return False
        rate_inc("upload", ok=True)
        log_line(f"UPLOAD OK | id={stamped.id} | geohash={stamped.geohash}")
        return True

    def submit(self, record: AnchorRecord) -> "Future[bool]":
        """Save locally (synchronous, errors propagate), then upload in the background."""
        record = self.store.save_anchor(record)
        return self.executor.submit(self.upload, record)

    def create_anchor(
        self,
        latitude: float,
        longitude: float,
        message: str,
        category: str = "general",
        use_case: Any = "",
        altitude: float = 0.0,
        severity: Any = Severity.MEDIUM,
        location_name: str = "",
    ) -> Tuple[AnchorRecord, "Future[bool]"]:
        uc = UseCase.from_string(use_case)
        record = AnchorRecord(
            latitude=float(latitude),
            longitude=float(longitude),
            altitude=float(altitude),
            message_text=message,
            category=category or "general",
            use_case=uc.value if uc else "",
            severity=Severity.parse(severity),
            location_name=location_name,
        ).with_geohash()
        return record, self.submit(record)

    def save_surface_anchor(
        self,
        latitude: float,
        longitude: float,
        message: str,
        category: str = "general",
        offset: Sequence[float] = (0.0, 0.0, 0.0),
        plane_type: str = DEFAULT_PLANE_TYPE,
        surface_normal: Sequence[float] = DEFAULT_SURFACE_NORMAL,
        user_id: str = ANONYMOUS_USER,
        image_url: Optional[str] = None,
    ) -> Optional[SurfaceAnchor]:
        """
        Add a surface-anchored report to `surface_anchors`. Missing offset or
        normal components fall back to 0, 0, 0 and 0, 0, 1. Returns the stored
        anchor with its backend id, or None when the write failed.
        """
        ox, oy, oz = (list(offset) + [0.0, 0.0, 0.0])[:3]
        normal = list(surface_normal)
        nx, ny, nz = [float(normal[i]) if i < len(normal) else DEFAULT_SURFACE_NORMAL[i] for i in range(3)]
        anchor = SurfaceAnchor(
            latitude=float(latitude),
            longitude=float(longitude),
            message_text=message,
            category=category or "general",
            relative_offset_x=float(ox),
            relative_offset_y=float(oy),
            relative_offset_z=float(oz),
            plane_type=plane_type or DEFAULT_PLANE_TYPE,
            surface_normal_x=nx,
            surface_normal_y=ny,
            surface_normal_z=nz,
            user_id=user_id or ANONYMOUS_USER,
            image_url=image_url,
        ).with_geohash()
        try:
            doc_id = self.backend.add(SURFACE_ANCHORS_COLLECTION, anchor.to_dict())
        except Exception as e:
            log_line(f"SURFACE SAVE FAILED | lat={anchor.latitude} lon={anchor.longitude} | err={e}", "ERROR")
            return None
        log_line(f"SURFACE SAVE OK | id={doc_id} | geohash={anchor.geohash} | plane={anchor.plane_type}")
        return replace(anchor, id=doc_id)

    def retry_pending(self) -> Tuple[int, int]:
        """
        Try every queued upload once. An entry is removed only after its upload
        succeeded. Returns (uploaded, still_pending).
        """
        pending = self.store.load_pending_uploads()
        ok = failed = 0
        for record in pending:
            try:
                self._put(record)
            except Exception as e:
                failed += 1
                rate_inc("upload", ok=False)
                log_line(f"RETRY FAILED | id={record.id} | err={e}", "WARN")
                continue
            self.store.remove_pending_upload(record.id)
            rate_inc("upload", ok=True)
            ok += 1
        if pending:
            log_line(f"RETRY | uploaded={ok} | still_pending={failed}")
        return ok, failed

    def update_issue(self, issue_id: str, updates: Dict[str, Any]) -> bool:
        """
        Partial update of one issue. A client-supplied geohash is dropped; if the
        coordinates change, the geohash is recomputed from the resulting position.
        """
        updates = {k: v for k, v in dict(updates).items() if k != "geohash"}
        try:
            if "latitude" in updates or "longitude" in updates:
                current = self.backend.get(ISSUES_COLLECTION, issue_id) or {}
                lat = updates.get("latitude", current.get("latitude"))
                lon = updates.get("longitude", current.get("longitude"))
                updates["geohash"] = encode(float(lat), float(lon))
            self.backend.update(ISSUES_COLLECTION, issue_id, updates)
        except Exception as e:
            log_line(f"UPDATE FAILED | id={issue_id} | err={e}", "ERROR")
            return False
        log_line(f"UPDATE OK | id={issue_id} | fields={','.join(sorted(updates))}")
        return True

    def update_status(self, issue_id: str, status: Any) -> bool:
        """Raises ValueError for an unknown status."""
        new_status = status if isinstance(status, Status) else Status(str(status).strip().upper())
        if not self.update_issue(issue_id, {"status": new_status.value}):
            return False
        self.store.update_anchor(issue_id, status=new_status)
        return True

    def upvote_issue(self, issue_id: str) -> bool:
        try:
            self.backend.increment(ISSUES_COLLECTION, issue_id, "upvotes", 1)
        except Exception as e:
            log_line(f"UPVOTE FAILED | id={issue_id} | err={e}", "ERROR")
            return False
        self.store.increment_upvotes(issue_id)
        log_line(f"UPVOTE OK | id={issue_id}")
        return True

    def delete_issue(self, issue_id: str) -> bool:
        try:
            self.backend.delete(ISSUES_COLLECTION, issue_id)
        except Exception as e:
            log_line(f"DELETE FAILED | id={issue_id} | err={e}", "ERROR")
            return False
        self.store.remove_anchor(issue_id)
        log_line(f"DELETE OK | id={issue_id}")
        return True
