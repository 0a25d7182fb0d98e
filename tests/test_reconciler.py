import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import unquote

import pytest

from fastlysync.core.fastly_client import APIError, FastlyClient
from fastlysync.core.https_logging import (
    ConfigValidationError,
    HTTPSLoggingAPI,
    HTTPSLoggingEndpoint,
    ServiceVersionRef,
    flatten_https,
)
from fastlysync.core.reconciler import ConfigSet, HTTPSLoggingReconciler, plan

REF = ServiceVersionRef("SVC", 4)


def _ep(name, url=None, **kw):
    return HTTPSLoggingEndpoint(name, url or f"https://{name.lower()}.example.com/log", **kw)


A, B, C, D = _ep("A"), _ep("B"), _ep("C"), _ep("D")


class FakeAPI:
    """In-memory logging API recording every call in order."""

    def __init__(self, listing=None, delete_errors=None, create_errors=None):
        self.calls = []
        self.listing = listing or []
        self.delete_errors = delete_errors or {}
        self.create_errors = create_errors or {}

    def list(self, ref):
        self.calls.append(("list", ref.version))
        return list(self.listing)

    def create(self, ref, endpoint):
        self.calls.append(("create", endpoint.name, endpoint.url))
        if endpoint.name in self.create_errors:
            raise self.create_errors[endpoint.name]
        return endpoint

    def delete(self, ref, name):
        self.calls.append(("delete", name))
        if name in self.delete_errors:
            raise self.delete_errors[name]


def _names(calls):
    return [(c[0], c[1]) for c in calls]


# ---------- plan ----------

def test_plan_overlap():
    p = plan([A, B], [B, C])
    assert p.to_remove == [A]
    assert p.to_add == [C]
    assert p.unchanged == [B]


def test_plan_absent_sets_are_empty():
    assert plan(None, None).is_empty
    p = plan(None, [A])
    assert p.to_add == [A] and p.to_remove == []


def test_plan_field_change_is_remove_plus_add():
    changed = _ep("A", "https://elsewhere.example.com")
    p = plan([A], [changed])
    assert p.to_remove == [A]
    assert p.to_add == [changed]


def test_plan_is_sorted_by_name():
    p = plan([D, B], [C, A])
    assert [e.name for e in p.to_remove] == ["B", "D"]
    assert [e.name for e in p.to_add] == ["A", "C"]


def test_config_set_rejects_duplicate_names():
    with pytest.raises(ConfigValidationError):
        ConfigSet([A, _ep("A", "https://other.example.com")])


def test_config_set_accepts_raw_mappings():
    s = ConfigSet([{"name": "A", "url": "https://a.example.com/log"}])
    assert A in s
    assert len(s) == 1
    assert s.names() == ["A"]


# ---------- apply ----------

def test_apply_only_touches_the_difference():
    api = FakeAPI()
    result = HTTPSLoggingReconciler(api).apply(REF, [A, B], [B, C])
    assert _names(api.calls) == [("delete", "A"), ("create", "C")]
    assert result.counts == {"DELETED": 1, "CREATED": 1, "UNCHANGED": 1}


def test_apply_from_nothing_creates_only():
    api = FakeAPI()
    HTTPSLoggingReconciler(api).apply(REF, [], [A])
    assert _names(api.calls) == [("create", "A")]


def test_apply_field_change_deletes_then_recreates():
    api = FakeAPI()
    HTTPSLoggingReconciler(api).apply(REF, [A], [_ep("A", "https://new.example.com")])
    assert api.calls == [("delete", "A"), ("create", "A", "https://new.example.com")]


def test_apply_rename_is_delete_then_create():
    api = FakeAPI()
    renamed = HTTPSLoggingEndpoint("A2", A.url)
    HTTPSLoggingReconciler(api).apply(REF, [A], [renamed])
    assert _names(api.calls) == [("delete", "A"), ("create", "A2")]


def test_all_removals_precede_additions():
    api = FakeAPI()
    HTTPSLoggingReconciler(api).apply(REF, [A, C], [B, D])
    assert _names(api.calls) == [("delete", "A"), ("delete", "C"), ("create", "B"), ("create", "D")]


def test_delete_not_found_is_success():
    api = FakeAPI(delete_errors={"A": APIError(404, "http://x/A", "Record not found")})
    result = HTTPSLoggingReconciler(api).apply(REF, [A], [B])
    assert _names(api.calls) == [("delete", "A"), ("create", "B")]
    assert result.counts["ALREADY_ABSENT"] == 1


def test_delete_other_error_aborts_before_creates():
    api = FakeAPI(delete_errors={"A": APIError(500, "http://x/A", "boom")})
    with pytest.raises(APIError) as ei:
        HTTPSLoggingReconciler(api).apply(REF, [A, B], [C])
    assert ei.value.status == 500
    assert _names(api.calls) == [("delete", "A")]


def test_create_error_stops_remaining_creates():
    api = FakeAPI(create_errors={"B": APIError(400, "http://x", "invalid")})
    with pytest.raises(APIError):
        HTTPSLoggingReconciler(api).apply(REF, [D], [A, B, C])
    # D's delete stays applied; C is never attempted
    assert _names(api.calls) == [("delete", "D"), ("create", "A"), ("create", "B")]


def test_stored_state_matching_desired_is_a_no_op():
    stored = flatten_https([A, B])
    api = FakeAPI()
    result = HTTPSLoggingReconciler(api).apply(
        REF, stored, [{"name": "A", "url": A.url}, {"name": "B", "url": B.url}]
    )
    assert api.calls == []
    assert result.counts == {"UNCHANGED": 2}


def test_refresh_lists_and_flattens():
    api = FakeAPI(listing=[_ep("A", content_type="")])
    flat = HTTPSLoggingReconciler(api).refresh("SVC", 7)
    assert api.calls == [("list", 7)]
    assert flat == flatten_https([A])
    assert "content_type" not in flat[0]


# ---------- over HTTP ----------

class _StatusHandler(BaseHTTPRequestHandler):
    statuses = {}
    calls = []

    protocol_version = "HTTP/1.1"

    def _send_json(self, status: int, obj) -> None:
        raw = json.dumps(obj).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def do_DELETE(self):  # noqa: N802
        name = unquote(self.path.rsplit("/", 1)[-1])
        _StatusHandler.calls.append(("DELETE", name))
        status = _StatusHandler.statuses.get(name, 200)
        self._send_json(status, {"status": "ok"} if status == 200 else {"msg": "error"})

    def do_POST(self):  # noqa: N802
        length = int(self.headers.get("Content-Length", "0"))
        body = json.loads(self.rfile.read(length).decode("utf-8"))
        _StatusHandler.calls.append(("POST", body["name"]))
        self._send_json(200, body)

    def log_message(self, fmt, *args):
        return


@pytest.fixture()
def http_api():
    _StatusHandler.calls = []
    _StatusHandler.statuses = {"A": 404, "B": 503}
    server = ThreadingHTTPServer(("127.0.0.1", 0), _StatusHandler)
    host, port = server.server_address
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield HTTPSLoggingAPI(FastlyClient(f"http://{host}:{port}", "TEST", timeout_sec=2))
    server.shutdown()
    thread.join(timeout=1.0)


def test_http_delete_404_completes(http_api):
    result = HTTPSLoggingReconciler(http_api).apply(REF, [A], [C])
    assert _StatusHandler.calls == [("DELETE", "A"), ("POST", "C")]
    assert result.counts == {"ALREADY_ABSENT": 1, "CREATED": 1}


def test_http_delete_other_status_propagates(http_api):
    with pytest.raises(APIError) as ei:
        HTTPSLoggingReconciler(http_api).apply(REF, [B], [C])
    assert ei.value.status == 503
    assert _StatusHandler.calls == [("DELETE", "B")]
