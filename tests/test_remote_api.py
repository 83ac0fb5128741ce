"""
Tests for remote_api.py - RemoteCollections over HTTP (mocked session).

These tests verify:
- Request mapping (URLs, params, headers, bodies)
- Error mapping to RemoteError
- Polling listeners
"""

import threading
from unittest.mock import Mock

import pytest
import requests
from pc.adapters.query import Query
from pc.adapters.remote_api import RemoteCollections, RemoteError


def response(status=200, payload=None, content=b"x"):
    r = Mock()
    r.status_code = status
    r.content = content if payload is not None or status != 204 else b""
    r.text = "" if payload is None else str(payload)
    r.url = "https://api.example.org/x"
    r.json.return_value = payload
    return r


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def client(session):
    return RemoteCollections("https://api.example.org/v1/", token="secret", user_agent="pc-test", session=session)


class TestRequests:
    """Tests for request construction."""

    def test_where_in(self, client, session):
        session.request.return_value = response(payload=[{"id": "a"}])
        docs = client.where_in("issues", "geohash", ["u33dc0c", "u33dc0f"])
        assert docs == [{"id": "a"}]
        method, url = session.request.call_args[0]
        kwargs = session.request.call_args[1]
        assert method == "GET"
        assert url == "https://api.example.org/v1/issues"
        assert kwargs["params"] == {"where_in": "geohash", "values": "u33dc0c,u33dc0f"}
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert kwargs["headers"]["User-Agent"] == "pc-test"
        assert kwargs["timeout"] == 25

    def test_where_in_empty_skips_request(self, client, session):
        assert client.where_in("issues", "geohash", []) == []
        session.request.assert_not_called()

    def test_range_query(self, client, session):
        session.request.return_value = response(payload={"documents": [{"id": "s"}]})
        assert client.range_query("surface_anchors", "geohash", "u33dc", "u33dd") == [{"id": "s"}]
        assert session.request.call_args[1]["params"] == {"range": "geohash", "gte": "u33dc", "lt": "u33dd"}

    def test_list_recent(self, client, session):
        session.request.return_value = response(payload=[])
        client.list_recent("issues", 500)
        assert session.request.call_args[1]["params"] == {"order_by": "timestamp", "direction": "desc", "limit": 500}

    def test_put_quotes_id(self, client, session):
        session.request.return_value = response(status=204, payload=None, content=b"")
        client.put("issues", "a/b", {"x": 1})
        method, url = session.request.call_args[0]
        assert method == "PUT"
        assert url == "https://api.example.org/v1/issues/a%2Fb"
        assert session.request.call_args[1]["json"] == {"x": 1}

    def test_add_returns_id(self, client, session):
        session.request.return_value = response(payload={"id": "new1"})
        assert client.add("authority_actions", {"issueId": "i"}) == "new1"

    def test_increment(self, client, session):
        session.request.return_value = response(payload={})
        client.increment("issues", "i1", "upvotes", 1)
        method, url = session.request.call_args[0]
        assert method == "POST"
        assert url.endswith("/issues/i1:increment")
        assert session.request.call_args[1]["json"] == {"field": "upvotes", "by": 1}

    def test_get_404_is_none(self, client, session):
        session.request.return_value = response(status=404, payload=None)
        assert client.get("issues", "ghost") is None

    def test_no_token_no_auth_header(self, session):
        c = RemoteCollections("https://api.example.org", session=session)
        assert "Authorization" not in c.headers

    def test_base_url_required(self):
        with pytest.raises(ValueError):
            RemoteCollections("")


class TestErrors:
    """Tests for failure mapping."""

    def test_http_error(self, client, session):
        session.request.return_value = response(status=503, payload="unavailable")
        with pytest.raises(RemoteError) as exc:
            client.where_in("issues", "geohash", ["x"])
        assert exc.value.status == 503

    def test_transport_error(self, client, session):
        session.request.side_effect = requests.ConnectionError("no route")
        with pytest.raises(RemoteError):
            client.delete("issues", "i1")

    def test_invalid_json(self, client, session):
        r = response(payload=[])
        r.json.side_effect = ValueError("bad json")
        session.request.return_value = r
        with pytest.raises(RemoteError):
            client.list_recent("issues")

    def test_not_a_list(self, client, session):
        session.request.return_value = response(payload={"unexpected": True})
        with pytest.raises(RemoteError):
            client.list_recent("issues")

    def test_add_without_id(self, client, session):
        session.request.return_value = response(payload={})
        with pytest.raises(RemoteError):
            client.add("authority_actions", {})


class TestListen:
    """Tests for polling listeners."""

    def test_delivers_then_stops(self, client, session):
        session.request.return_value = response(payload=[{"id": "a"}])
        got = threading.Event()
        seen = []

        def on_docs(docs):
            seen.append(docs)
            got.set()

        sub = client.listen("issues", on_docs, Query.recent(10), interval_s=0.01)
        assert got.wait(2)
        assert seen[0] == [{"id": "a"}]
        assert sub.unsubscribe() is True
        assert not sub.active

    def test_unchanged_result_delivered_once(self, client, session):
        polled = threading.Event()
        calls = {"n": 0}

        def request(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] >= 3:
                polled.set()
            return response(payload=[{"id": "same"}])

        session.request.side_effect = request
        seen = []
        sub = client.listen("issues", seen.append, Query.recent(10), interval_s=0.01)
        assert polled.wait(2)
        sub.unsubscribe()
        assert seen == [[{"id": "same"}]]

    def test_poll_failure_keeps_running(self, client, session):
        ok = threading.Event()
        calls = {"n": 0}

        def request(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise requests.Timeout("slow")
            ok.set()
            return response(payload=[])

        session.request.side_effect = request
        seen = []
        sub = client.listen("issues", seen.append, interval_s=0.01)
        assert ok.wait(2)
        sub.unsubscribe()
        assert calls["n"] >= 2
