"""Tests for webhook delivery: WebhookReceiver and POST /api/webhooks/replicate.

Jobs are submitted through a real FluxImageAdapter against a mocked
Replicate API, then completed by signed webhook deliveries.

Tests cover:
  - signed delivery completes the job; redelivery is a no-op
  - bad signature → 401, nothing changes
  - malformed body → 422
  - unknown prediction → acknowledged as not_found
  - webhook after a poll already settled the job → ignored
"""

import base64
import hashlib
import hmac
import io
import json
import time
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vibephoto.deps import get_services
from vibephoto.errors import InvalidInput, WebhookVerificationError
from vibephoto.main import app
from vibephoto.models import Base
from vibephoto.models.job import ImageJob, JobKind, JobState
from vibephoto.models.user import User
from vibephoto.providers.base import JobSpec, StatusReport
from vibephoto.providers.clarity import ClarityUpscaleAdapter
from vibephoto.providers.flux import FluxImageAdapter
from vibephoto.providers.kling import KlingVideoAdapter
from vibephoto.services.credit_ledger import CreditLedger
from vibephoto.services.job_service import JobService
from vibephoto.services.migrator import StorageMigrator
from vibephoto.services.reconciler import JobReconciler, ReconcileOutcome
from vibephoto.services.status_mapper import ProviderState
from vibephoto.services.storage import LocalStorage
from vibephoto.services.sweeper import PollingSweeper
from vibephoto.services.webhooks import WebhookReceiver
from vibephoto.wiring import Services

SECRET_BYTES = b"webhook-test-secret"
WEBHOOK_SECRET = "whsec_" + base64.b64encode(SECRET_BYTES).decode()


def _png() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (16, 16), (10, 200, 10)).save(buf, format="PNG")
    return buf.getvalue()


PNG = _png()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_db():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)


def _add_user(SessionLocal, credits: int = 100) -> int:
    s = SessionLocal()
    user = User(email="hook@example.com", name="Hook", credits_balance=credits)
    s.add(user)
    s.commit()
    user_id = user.id
    s.close()
    return user_id


def _replicate_api() -> httpx.MockTransport:
    counter = iter(range(1, 1000))

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path.endswith("/predictions"):
            return httpx.Response(201, json={"id": f"pred-{next(counter)}", "status": "starting"})
        return httpx.Response(200, json={"status": "canceled"})

    return httpx.MockTransport(handler)


def _cdn() -> httpx.MockTransport:
    return httpx.MockTransport(
        lambda request: httpx.Response(200, content=PNG, headers={"content-type": "image/png"})
    )


def _sign(body: bytes, webhook_id: str = "msg_1") -> dict[str, str]:
    ts = str(int(time.time()))
    signed = f"{webhook_id}.{ts}.".encode() + body
    sig = base64.b64encode(hmac.new(SECRET_BYTES, signed, hashlib.sha256).digest()).decode()
    return {
        "webhook-id": webhook_id,
        "webhook-timestamp": ts,
        "webhook-signature": f"v1,{sig}",
    }


def _payload(prediction_id: str, status: str = "succeeded", **extra) -> bytes:
    data = {"id": prediction_id, "status": status, **extra}
    if status == "succeeded":
        data.setdefault("output", ["https://replicate.delivery/out-0.png"])
    return json.dumps(data).encode()


@pytest.fixture
def env(tmp_path):
    SessionLocal = _make_db()
    api = _replicate_api()
    common = {"webhook_secret": WEBHOOK_SECRET, "transport": api}
    adapters = {
        JobKind.IMAGE: FluxImageAdapter("tok", "black-forest-labs/flux-dev", **common),
        JobKind.UPSCALE: ClarityUpscaleAdapter("tok", "philz1337x/clarity-upscaler:v1", **common),
        JobKind.VIDEO: KlingVideoAdapter("tok", "kwaivgi/kling-v2.1-master", **common),
    }
    storage = LocalStorage(str(tmp_path), "http://testserver")
    ledger = CreditLedger()
    reconciler = JobReconciler(
        adapters,
        StorageMigrator(storage, backoff_seconds=0, transport=_cdn()),
        ledger,
        session_factory=SessionLocal,
    )
    receiver = WebhookReceiver(reconciler)
    services = Services(
        storage=storage,
        ledger=ledger,
        jobs=JobService(),
        reconciler=reconciler,
        sweeper=PollingSweeper(reconciler, session_factory=SessionLocal),
        webhooks=receiver,
        session_factory=SessionLocal,
    )
    user_id = _add_user(SessionLocal)
    return SimpleNamespace(
        db=SessionLocal, reconciler=reconciler, receiver=receiver, services=services, user_id=user_id
    )


@pytest.fixture
def client(env):
    app.dependency_overrides[get_services] = lambda: env.services
    yield TestClient(app)
    app.dependency_overrides.clear()


async def _create_image_job(env):
    return await env.reconciler.create(
        JobSpec(kind=JobKind.IMAGE, owner_id=env.user_id, prompt="a lighthouse")
    )


def _job(SessionLocal, job_id):
    s = SessionLocal()
    try:
        return s.get(ImageJob, job_id)
    finally:
        s.close()


# ---------------------------------------------------------------------------
# WebhookReceiver
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_signed_success_completes_job_once(env):
    job = await _create_image_job(env)
    body = _payload(job.external_job_id)

    first = await env.receiver.receive(body, _sign(body), kind_hint="image")
    second = await env.receiver.receive(body, _sign(body, "msg_2"), kind_hint="image")

    assert first.outcome is ReconcileOutcome.COMPLETED
    assert first.external_job_id == job.external_job_id
    assert second.outcome is ReconcileOutcome.IGNORED
    stored = _job(env.db, job.id)
    assert stored.state == JobState.COMPLETED.value
    assert len(stored.result_urls) == 1


@pytest.mark.asyncio
async def test_bad_signature_is_rejected_before_anything_changes(env):
    job = await _create_image_job(env)
    body = _payload(job.external_job_id)
    headers = _sign(b"something else")

    with pytest.raises(WebhookVerificationError):
        await env.receiver.receive(body, headers, kind_hint="image")

    assert _job(env.db, job.id).state == JobState.PROCESSING.value


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b'{"status": "succeeded"}'])
async def test_malformed_bodies_are_invalid_input(env, body):
    with pytest.raises(InvalidInput):
        await env.receiver.receive(body, _sign(body), kind_hint="image")


@pytest.mark.asyncio
async def test_unknown_prediction_is_not_found(env):
    body = _payload("pred-unknown")
    result = await env.receiver.receive(body, _sign(body))
    assert result.outcome is ReconcileOutcome.NOT_FOUND


@pytest.mark.asyncio
async def test_webhook_after_poll_settled_is_ignored(env):
    job = await _create_image_job(env)
    await env.reconciler.apply_status(
        job.external_job_id,
        StatusReport(state=ProviderState.FAILED, error_message="poll saw failure"),
    )
    body = _payload(job.external_job_id)

    result = await env.receiver.receive(body, _sign(body), kind_hint="image")

    assert result.outcome is ReconcileOutcome.IGNORED
    stored = _job(env.db, job.id)
    assert stored.state == JobState.FAILED.value
    assert stored.error_message == "poll saw failure"


@pytest.mark.asyncio
async def test_start_event_only_records_progress(env):
    job = await _create_image_job(env)
    body = _payload(job.external_job_id, status="processing")

    result = await env.receiver.receive(body, _sign(body), kind_hint="image")

    assert result.outcome is ReconcileOutcome.PROGRESS
    assert _job(env.db, job.id).state == JobState.PROCESSING.value


# ---------------------------------------------------------------------------
# POST /api/webhooks/replicate
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_endpoint_acknowledges_completion(env, client):
    job = await _create_image_job(env)
    body = _payload(job.external_job_id)

    resp = client.post(
        f"/api/webhooks/replicate?kind=image&job_id={job.id}",
        content=body,
        headers={**_sign(body), "Content-Type": "application/json"},
    )

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "outcome": "completed"}
    assert _job(env.db, job.id).state == JobState.COMPLETED.value


def test_endpoint_rejects_bad_signature(client):
    body = _payload("pred-1")
    resp = client.post(
        "/api/webhooks/replicate",
        content=body,
        headers={**_sign(b"{}"), "Content-Type": "application/json"},
    )
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "INVALID_SIGNATURE"


def test_endpoint_rejects_malformed_json(client):
    body = b"{not json"
    resp = client.post("/api/webhooks/replicate", content=body, headers=_sign(body))
    assert resp.status_code == 422


def test_endpoint_acknowledges_unknown_prediction(client):
    body = _payload("pred-nobody")
    resp = client.post(
        "/api/webhooks/replicate?kind=image&job_id=abc", content=body, headers=_sign(body)
    )
    assert resp.status_code == 200
    assert resp.json()["outcome"] == "not_found"
