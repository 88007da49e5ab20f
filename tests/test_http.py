import base64
import json

import azure.functions as func
import pytest

from helpers import ENHANCED, FakeBackend, png_bytes
from src.function_blueprints import http_generate_post, http_trace_status


def _post(body) -> func.HttpRequest:
    raw = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
    return func.HttpRequest(method="POST", url="/api/generate_post", body=raw, headers={}, params={})


def _body(**overrides):
    body = {
        "images": [base64.b64encode(png_bytes()).decode("ascii")],
        "raw_text": "today I'm tired",
        "platform": "wechat_moments",
        "mood_user": "tired",
        "intent_user": "seek_empathy",
        "performance_mode": "fast",
    }
    body.update(overrides)
    return body


generate_post = http_generate_post.generate_post.build().get_user_function()
trace_status = http_trace_status.trace_status.build().get_user_function()


@pytest.fixture
def fake_backend(monkeypatch, happy_scripts):
    backend = FakeBackend(**happy_scripts)
    monkeypatch.setattr(http_generate_post, "get_backend", lambda: backend)
    monkeypatch.setattr(http_generate_post, "archive_run", lambda result, action: False)
    return backend


@pytest.mark.asyncio
async def test_generate_post_returns_encoded_images(fake_backend):
    resp = await generate_post(_post(_body()))

    assert resp.status_code == 200
    payload = json.loads(resp.get_body())
    assert payload["success"] is True
    assert payload["traceId"].startswith("trace_")
    image = payload["variants"][0]["images"][0]
    assert base64.b64decode(image["data"]) == ENHANCED
    assert payload["debugInfo"]["mode"] == "fast"


@pytest.mark.asyncio
async def test_generate_post_rejects_bad_json(fake_backend):
    resp = await generate_post(_post(b"{not json"))

    assert resp.status_code == 400
    assert fake_backend.calls == []


@pytest.mark.asyncio
async def test_generate_post_rejects_unknown_platform(fake_backend):
    resp = await generate_post(_post(_body(platform="myspace")))

    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_generate_post_rejects_undecodable_image(fake_backend):
    resp = await generate_post(_post(_body(images=[base64.b64encode(b"plain text").decode("ascii")])))

    assert resp.status_code == 400
    assert json.loads(resp.get_body())["errorCode"] == "INVALID_IMAGE"


@pytest.mark.asyncio
async def test_generate_post_refine_without_trace_id(fake_backend):
    resp = await generate_post(_post(_body(action="refine")))

    assert resp.status_code == 400
    assert json.loads(resp.get_body())["errorCode"] == "MISSING_TRACE_ID"
    assert fake_backend.calls == []


def test_trace_status_requires_trace_id():
    req = func.HttpRequest(method="GET", url="/api/trace_status", body=b"", params={})

    resp = trace_status(req)

    assert resp.status_code == 400


def test_trace_status_without_archive(monkeypatch):
    monkeypatch.setattr(http_trace_status, "get_trace_container", lambda: None)
    req = func.HttpRequest(method="GET", url="/api/trace_status", body=b"", params={"traceId": "trace_x"})

    resp = trace_status(req)

    assert resp.status_code == 503


def test_trace_status_lists_archived_runs(monkeypatch):
    doc = {
        "id": "trace_x:2026-01-01T00:00:00+00:00",
        "traceId": "trace_x",
        "action": "create",
        "mode": "fast",
        "archivedAtUtc": "2026-01-01T00:00:00+00:00",
        "attempts": 6,
        "failedAttempts": 0,
        "degradedStages": [],
        "records": [],
        "_etag": "ignored",
    }
    monkeypatch.setattr(http_trace_status, "get_trace_container", lambda: object())
    monkeypatch.setattr(http_trace_status, "load_runs", lambda container, trace_id: [doc])
    req = func.HttpRequest(method="GET", url="/api/trace_status", body=b"", params={"traceId": "trace_x"})

    resp = trace_status(req)

    assert resp.status_code == 200
    payload = json.loads(resp.get_body())
    assert payload["runs"][0]["attempts"] == 6
    assert payload["lastUpdateUtc"] == "2026-01-01T00:00:00+00:00"


def test_trace_status_not_found(monkeypatch):
    monkeypatch.setattr(http_trace_status, "get_trace_container", lambda: object())
    monkeypatch.setattr(http_trace_status, "load_runs", lambda container, trace_id: [])
    req = func.HttpRequest(method="GET", url="/api/trace_status", body=b"", params={"traceId": "trace_x"})

    assert trace_status(req).status_code == 404
