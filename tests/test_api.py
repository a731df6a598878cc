import logging
import re
import runpy
from urllib.parse import quote

import uvicorn
from fastapi.testclient import TestClient

from uploader.core.config import settings as default_settings
from uploader.core.errors import StorageConfigError, StorageError
from uploader.main import create_app
from uploader.services.rate_limit import SlidingWindowRateLimiter
from uploader.services.storage import InMemoryObjectStore

FILE_KEY = re.compile(r"^uploads/\d+-[0-9a-f]{8}-[A-Za-z0-9-]*(\.[A-Za-z0-9]+)?$")
FIFTEEN_MINUTES = 15 * 60 * 1000


def upload(client, name="notes.txt", data=b"0123456789", mime="text/plain", **kwargs):
    return client.post("/api/upload", files={"file": (name, data, mime)}, **kwargs)


class FailingStore(InMemoryObjectStore):
    def __init__(self, exc):
        super().__init__()
        self.exc = exc

    def put(self, *args, **kwargs):
        raise self.exc

    def list(self, prefix, max_keys):
        raise self.exc


def test_health(client) -> None:
    res = client.get("/api/health")
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["message"] == "Server is running"
    assert body["timestamp"]


def test_upload_text_file(client, store) -> None:
    res = upload(client)
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert FILE_KEY.match(body["fileKey"]), body["fileKey"]
    assert body["fileKey"].endswith("-notes.txt")
    assert body["fileUrl"] == f"https://files.example.com/{body['fileKey']}"
    assert body["metadata"]["originalName"] == "notes.txt"
    assert body["metadata"]["mimeType"] == "text/plain"
    assert body["metadata"]["size"] == 10
    assert body["metadata"]["uploadedAt"]

    assert store.get_bytes(body["fileKey"]) == b"0123456789"
    info = store.head(body["fileKey"])
    assert info.content_type == "text/plain"
    assert info.metadata["uploadedby"] == "anonymous"


def test_upload_oversize_image(client, store) -> None:
    res = upload(client, name="huge.png", data=b"\x89PNG" + b"0" * (6 * 1024 * 1024), mime="image/png")
    assert res.status_code == 413
    body = res.json()
    assert body == {"success": False, "message": "File too large. Maximum size is 5MB", "reason": "oversize"}
    assert store.list("uploads/", 20) == []


def test_upload_disallowed_type(client, store) -> None:
    res = upload(client, name="bundle.zip", data=b"PK\x03\x04", mime="application/zip")
    assert res.status_code == 415
    assert res.json()["reason"] == "disallowed-type"
    assert res.json()["success"] is False
    assert store.list("uploads/", 20) == []


def test_eleventh_upload_in_window_is_rate_limited(client, clock) -> None:
    for i in range(10):
        assert upload(client, name=f"n{i}.txt").status_code == 200
        clock.advance(1000)

    res = upload(client)
    assert res.status_code == 429
    assert res.json()["reason"] == "rate-limited"

    clock.advance(FIFTEEN_MINUTES)
    assert upload(client).status_code == 200


def test_rejected_uploads_still_consume_admission(client) -> None:
    for _ in range(10):
        assert upload(client, mime="application/zip").status_code == 415
    assert upload(client).status_code == 429


def test_unknown_file_key(client) -> None:
    res = client.get("/api/file/unknown-key")
    assert res.status_code == 404
    assert res.json()["reason"] == "not-found"
    assert res.json()["message"] == "File not found"


def test_missing_file_part(client) -> None:
    res = client.post("/api/upload", data={"note": "no file here"})
    assert res.status_code == 400
    assert res.json()["reason"] == "missing-file"


def test_multiple_file_parts(client, make_multipart) -> None:
    ctype, body = make_multipart([
        ("file", "a.txt", "text/plain", b"a"),
        ("file", "b.txt", "text/plain", b"b"),
    ])
    res = client.post("/api/upload", content=body, headers={"Content-Type": ctype})
    assert res.status_code == 400
    assert res.json()["reason"] == "multiple-files"


def test_file_metadata_lookup(client) -> None:
    key = upload(client, name="résumé 2024.pdf", data=b"%PDF-1.4", mime="application/pdf").json()["fileKey"]

    res = client.get(f"/api/file/{key}")
    assert res.status_code == 200
    meta = res.json()["metadata"]
    assert meta["size"] == 8
    assert meta["type"] == "application/pdf"
    assert meta["originalName"] == "résumé 2024.pdf"
    assert meta["uploadedAt"]
    assert meta["lastModified"]

    # URL-encoded slash works too
    assert client.get(f"/api/file/{quote(key, safe='')}").status_code == 200


def test_list_files(client, settings) -> None:
    keys = {upload(client, name=f"f{i}.txt").json()["fileKey"] for i in range(3)}
    res = client.get("/api/files")
    assert res.status_code == 200
    files = res.json()["files"]
    assert {f["key"] for f in files} == keys
    for f in files:
        assert f["url"] == f"https://files.example.com/{f['key']}"
        assert f["size"] == 10


def test_list_files_is_capped(settings, store, limiter) -> None:
    settings.FILE_LIST_LIMIT = 2
    with TestClient(create_app(settings=settings, store=store, rate_limiter=limiter)) as client:
        for i in range(4):
            upload(client, name=f"f{i}.txt")
        assert len(client.get("/api/files").json()["files"]) == 2


def test_storage_config_error_is_generic(settings, limiter) -> None:
    store = FailingStore(StorageConfigError("NoSuchBucket: bucket test-bucket does not exist"))
    with TestClient(create_app(settings=settings, store=store, rate_limiter=limiter)) as client:
        res = upload(client)
    assert res.status_code == 500
    body = res.json()
    assert body["reason"] == "storage-config-error"
    assert body["message"] == "Storage configuration error. Please contact support."
    assert "error" not in body
    assert "test-bucket" not in res.text


def test_storage_failure_detail_only_in_development(settings, limiter) -> None:
    settings.ENVIRONMENT = "development"
    store = FailingStore(StorageError("storage_failed: SlowDown"))
    with TestClient(create_app(settings=settings, store=store, rate_limiter=limiter)) as client:
        res = upload(client)
        listing = client.get("/api/files")
    assert res.status_code == 500
    assert res.json()["reason"] == "internal-error"
    assert "SlowDown" in res.json()["error"]
    assert listing.status_code == 500
    assert listing.json()["message"] == "Failed to retrieve files"


def test_unhandled_error_is_internal_error(settings, limiter) -> None:
    store = FailingStore(ZeroDivisionError("boom"))
    app = create_app(settings=settings, store=store, rate_limiter=limiter)
    with TestClient(app, raise_server_exceptions=False) as client:
        res = upload(client, headers={"Origin": "http://localhost:3000"})
    assert res.status_code == 500
    assert res.json()["reason"] == "internal-error"
    assert "boom" not in res.text
    assert res.headers["x-content-type-options"] == "nosniff"
    assert res.headers["access-control-allow-origin"] == "http://localhost:3000"


def test_rejection_is_logged_with_stage(client, caplog) -> None:
    with caplog.at_level(logging.INFO, logger="uploader"):
        assert upload(client, name="bundle.zip", mime="application/zip").status_code == 415
    assert any(
        "disallowed-type" in r.getMessage() and "stage=parsed" in r.getMessage()
        for r in caplog.records
    )


def test_forwarded_for_identity_when_trusted(settings, store, clock) -> None:
    settings.TRUST_FORWARDED_FOR = True
    settings.RATE_LIMIT_MAX = 1
    limiter = SlidingWindowRateLimiter(limit=1, clock=clock)
    with TestClient(create_app(settings=settings, store=store, rate_limiter=limiter)) as client:
        assert upload(client, headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}).status_code == 200
        assert upload(client, headers={"X-Forwarded-For": "203.0.113.8"}).status_code == 200
        assert upload(client, headers={"X-Forwarded-For": "203.0.113.7"}).status_code == 429


def test_forwarded_for_ignored_by_default(settings, store, clock) -> None:
    settings.RATE_LIMIT_MAX = 1
    limiter = SlidingWindowRateLimiter(limit=1, clock=clock)
    with TestClient(create_app(settings=settings, store=store, rate_limiter=limiter)) as client:
        assert upload(client, headers={"X-Forwarded-For": "203.0.113.7"}).status_code == 200
        assert upload(client, headers={"X-Forwarded-For": "203.0.113.8"}).status_code == 429


def test_cors_preflight_allowed_origin(client) -> None:
    res = client.options(
        "/api/upload",
        headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "POST"},
    )
    assert res.status_code == 200
    assert res.headers["access-control-allow-origin"] == "http://localhost:3000"
    assert "POST" in res.headers["access-control-allow-methods"]


def test_cors_preflight_unknown_origin(client) -> None:
    res = client.options(
        "/api/upload",
        headers={"Origin": "https://evil.example", "Access-Control-Request-Method": "POST"},
    )
    assert res.status_code == 400
    assert "access-control-allow-origin" not in res.headers


def test_security_headers(client) -> None:
    res = client.get("/api/health")
    assert res.headers["x-content-type-options"] == "nosniff"
    assert res.headers["x-frame-options"] == "DENY"


def test_unknown_endpoint(client) -> None:
    res = client.get("/api/nope")
    assert res.status_code == 404
    assert res.json() == {"success": False, "message": "Endpoint not found", "reason": "not-found"}


def test_shutdown_clears_rate_limiter(app, limiter) -> None:
    with TestClient(app) as client:
        upload(client)
        assert limiter.tracked_clients() == 1
    assert limiter.tracked_clients() == 0


def test_module_entry_point_runs_uvicorn(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda *args, **kwargs: calls.append((args, kwargs)))
    runpy.run_module("uploader", run_name="__main__")
    assert len(calls) == 1
    args, kwargs = calls[0]
    assert args == ("uploader.main:app",)
    assert (kwargs["host"], kwargs["port"]) == (default_settings.HOST, default_settings.PORT)
