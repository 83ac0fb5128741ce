import json
import threading
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import requests

from ..core.constants import HTTP_TIMEOUT_S, POLL_INTERVAL_S
from ..utils.log import log_line
from ..utils.tasks import Subscription
from .query import Query, run_query

DEFAULT_USER_AGENT = "phantomcrowd-core (+https://github.com/phantomcrowd)"


class RemoteError(Exception):
    """Remote collection call failed (transport error, non-2xx status or bad payload)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RemoteCollections:
    """
    Document-collection client over a small JSON HTTP API.

      GET    {base}/{coll}?where_in=<field>&values=a,b
      GET    {base}/{coll}?range=<field>&gte=<lo>&lt=<hi>
      GET    {base}/{coll}?order_by=timestamp&direction=desc[&limit=N]
      GET    {base}/{coll}/{id}            (404 -> None)
      PUT    {base}/{coll}/{id}
      PATCH  {base}/{coll}/{id}
      DELETE {base}/{coll}/{id}
      POST   {base}/{coll}                 -> {"id": ...}
      POST   {base}/{coll}/{id}:increment  {"field": f, "by": n}

    Every failure surfaces as RemoteError; callers decide whether to fall back.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_s: float = HTTP_TIMEOUT_S,
        poll_interval_s: float = POLL_INTERVAL_S,
        session: Optional[requests.Session] = None,
    ):
        if not base_url:
            raise ValueError("remote base_url is required")
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.poll_interval_s = poll_interval_s
        self.session = session or requests.Session()
        self.headers = {"User-Agent": user_agent, "Accept": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def _url(self, collection: str, doc_id: Optional[str] = None, suffix: str = "") -> str:
        url = f"{self.base_url}/{collection}"
        if doc_id is not None:
            url += f"/{quote(str(doc_id), safe='')}{suffix}"
        return url

    def _request(self, method: str, url: str, allow_404: bool = False, **kwargs) -> Optional[requests.Response]:
        try:
            r = self.session.request(method, url, headers=self.headers, timeout=self.timeout_s, **kwargs)
        except requests.RequestException as e:
            raise RemoteError(f"{method} {url} failed: {e!r}") from e
        if allow_404 and r.status_code == 404:
            return None
        if not (200 <= r.status_code < 300):
            raise RemoteError(f"{method} {url} -> HTTP {r.status_code}: {r.text[:200]}", status=r.status_code)
        return r

    @staticmethod
    def _json(r: requests.Response) -> Any:
        if r.status_code == 204 or not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            raise RemoteError(f"invalid JSON from {r.url}: {e}", status=r.status_code) from e

    def _documents(self, r: requests.Response) -> List[Dict[str, Any]]:
        data = self._json(r)
        if isinstance(data, dict):
            data = data.get("documents")
        if not isinstance(data, list):
            raise RemoteError(f"expected a list of documents from {r.url}", status=r.status_code)
        return data

    # =========================
    # QUERIES
    # =========================

    def where_in(self, collection: str, field: str, values: List[str]) -> List[Dict[str, Any]]:
        if not values:
            return []
        params = {"where_in": field, "values": ",".join(values)}
        return self._documents(self._request("GET", self._url(collection), params=params))

    def range_query(self, collection: str, field: str, lo: str, hi: str) -> List[Dict[str, Any]]:
        params = {"range": field, "gte": lo, "lt": hi}
        return self._documents(self._request("GET", self._url(collection), params=params))

    def list_recent(self, collection: str, limit: int = 0) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"order_by": "timestamp", "direction": "desc"}
        if limit:
            params["limit"] = int(limit)
        return self._documents(self._request("GET", self._url(collection), params=params))

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        r = self._request("GET", self._url(collection, doc_id), allow_404=True)
        if r is None:
            return None
        data = self._json(r)
        return data if isinstance(data, dict) else None

    # =========================
    # WRITES
    # =========================

    def put(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._request("PUT", self._url(collection, doc_id), json=data)

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        body = self._json(self._request("POST", self._url(collection), json=data))
        new_id = body.get("id") if isinstance(body, dict) else None
        if not isinstance(new_id, str) or not new_id:
            raise RemoteError(f"POST {collection} returned no id")
        return new_id

    def update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> None:
        self._request("PATCH", self._url(collection, doc_id), json=updates)

    def increment(self, collection: str, doc_id: str, field: str, by: int = 1) -> None:
        self._request("POST", self._url(collection, doc_id, ":increment"), json={"field": field, "by": by})

    def delete(self, collection: str, doc_id: str) -> None:
        self._request("DELETE", self._url(collection, doc_id))

    # =========================
    # LISTENERS
    # =========================

    def listen(
        self,
        collection: str,
        callback: Callable[[List[Dict[str, Any]]], None],
        query: Optional[Query] = None,
        interval_s: Optional[float] = None,
    ) -> Subscription:
        """
        Poll `query` on a daemon thread and deliver the document list to `callback`
        on the first successful poll and whenever the result changes.
        A failed poll is logged and retried on the next tick; the listener keeps running.
        """
        interval = self.poll_interval_s if interval_s is None else interval_s
        stop = threading.Event()
        name = f"{collection}:{query.describe() if query else 'all'}"

        def _loop() -> None:
            last: Optional[str] = None
            while not stop.is_set():
                try:
                    docs = run_query(self, collection, query)
                    fingerprint = json.dumps(docs, sort_keys=True, default=str)
                    if fingerprint != last and not stop.is_set():
                        last = fingerprint
                        callback(docs)
                except RemoteError as e:
                    log_line(f"LISTEN | poll failed | {name} | err={e}", "WARN")
                except Exception as e:
                    log_line(f"LISTEN | callback failed | {name} | err={e!r}", "ERROR")
                stop.wait(interval)

        t = threading.Thread(target=_loop, name=f"listen-{collection}", daemon=True)
        t.start()
        log_line(f"LISTEN | start | {name} | every {interval:g}s", "DEBUG")
        return Subscription(stop.set, name=name)
