import copy
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..domain.normalize import timestamp_ms
from ..utils.log import log_line
from ..utils.tasks import Subscription
from .query import Query, run_query

Listener = Tuple[Callable[[List[Dict[str, Any]]], None], Optional[Query]]


class MemoryCollections:
    """
    In-process document collections with the same surface as RemoteCollections.

    Used for offline runs and tests. Listeners are push-based: each one gets
    the current result right away and again after every write to its collection,
    on the writer's thread.
    """

    def __init__(self, seed: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._docs: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._listeners: Dict[str, Dict[int, Listener]] = {}
        self._lock = threading.RLock()
        self._next_listener = 0
        for coll, docs in (seed or {}).items():
            for doc in docs:
                doc_id = str(doc.get("id") or uuid.uuid4())
                self._docs.setdefault(coll, {})[doc_id] = {**doc, "id": doc_id}

    def _all(self, collection: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(d) for d in self._docs.get(collection, {}).values()]

    # =========================
    # QUERIES
    # =========================

    def where_in(self, collection: str, field: str, values: List[str]) -> List[Dict[str, Any]]:
        wanted = set(values)
        return [d for d in self._all(collection) if d.get(field) in wanted]

    def range_query(self, collection: str, field: str, lo: str, hi: str) -> List[Dict[str, Any]]:
        out = []
        for d in self._all(collection):
            v = d.get(field)
            if isinstance(v, str) and lo <= v < hi:
                out.append(d)
        return out

    def list_recent(self, collection: str, limit: int = 0) -> List[Dict[str, Any]]:
        docs = sorted(self._all(collection), key=lambda d: timestamp_ms(d.get("timestamp")), reverse=True)
        return docs[:limit] if limit else docs

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._docs.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    # =========================
    # WRITES
    # =========================

    def put(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._docs.setdefault(collection, {})[doc_id] = {**copy.deepcopy(data), "id": doc_id}
        self._notify(collection)

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        self.put(collection, doc_id, data)
        return doc_id

    def update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> None:
        with self._lock:
            doc = self._docs.get(collection, {}).get(doc_id)
            if doc is None:
                raise KeyError(f"{collection}/{doc_id} not found")
            doc.update(copy.deepcopy(updates))
        self._notify(collection)

    def increment(self, collection: str, doc_id: str, field: str, by: int = 1) -> None:
        with self._lock:
            doc = self._docs.get(collection, {}).get(doc_id)
            if doc is None:
                raise KeyError(f"{collection}/{doc_id} not found")
            current = doc.get(field)
            doc[field] = (current if isinstance(current, (int, float)) and not isinstance(current, bool) else 0) + by
        self._notify(collection)

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            self._docs.get(collection, {}).pop(doc_id, None)
        self._notify(collection)

    # =========================
    # LISTENERS
    # =========================

    def listen(
        self,
        collection: str,
        callback: Callable[[List[Dict[str, Any]]], None],
        query: Optional[Query] = None,
    ) -> Subscription:
        with self._lock:
            key = self._next_listener
            self._next_listener += 1
            self._listeners.setdefault(collection, {})[key] = (callback, query)

        def _remove() -> None:
            with self._lock:
                self._listeners.get(collection, {}).pop(key, None)

        self._deliver(collection, callback, query)
        return Subscription(_remove, name=f"memory:{collection}:{key}")

    def _deliver(self, collection: str, callback: Callable, query: Optional[Query]) -> None:
        try:
            callback(run_query(self, collection, query))
        except Exception as e:
            log_line(f"LISTEN | callback failed | memory:{collection} | err={e!r}", "ERROR")

    def _notify(self, collection: str) -> None:
        with self._lock:
            listeners = list(self._listeners.get(collection, {}).values())
        for callback, query in listeners:
            self._deliver(collection, callback, query)
