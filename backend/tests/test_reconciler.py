"""Tests for the job reconciler: the job lifecycle state machine.

Tests cover:
  create      : debit + submit, insufficient credits, submission failures
  apply_status: success/migration, provider failure, cancellation, progress,
                 duplicate and out-of-order deliveries
  cancel      : ownership checks, refunds, race with a late webhook
  refresh     : on-demand poll through the same path

The provider is a fake adapter; result downloads go through the real
StorageMigrator with an httpx.MockTransport and local storage in tmp_path.
"""

import asyncio
import io
import json

import httpx
import pytest
from PIL import Image
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vibephoto.errors import (
    Forbidden,
    InsufficientCredits,
    InvalidInput,
    InvalidState,
    LedgerError,
    NotFound,
    RateLimited,
    WebhookVerificationError,
)
from vibephoto.models import Base
from vibephoto.models.credit_transaction import CreditTransaction
from vibephoto.models.job import ImageJob, JobKind, JobState, VideoJob
from vibephoto.models.user import User
from vibephoto.providers.base import JobSpec, ProviderAdapter, StatusReport, Submission
from vibephoto.services.credit_ledger import CreditLedger
from vibephoto.services.migrator import StorageMigrator
from vibephoto.services.reconciler import JobReconciler, ReconcileOutcome
from vibephoto.services.status_mapper import ProviderState
from vibephoto.services.storage import LocalStorage
from vibephoto.services.webhooks import WebhookReceiver


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeAdapter(ProviderAdapter):
    name = "fake"
    kind = JobKind.IMAGE

    def __init__(self, *, submission=None, submit_error=None, reports=None, cancel_result=True):
        self.submission = submission
        self.submit_error = submit_error
        self.reports = reports or {}
        self.cancel_result = cancel_result
        self.submitted: list[JobSpec] = []
        self.webhook_urls: list[str | None] = []
        self.polled: list[str] = []
        self.cancelled: list[str] = []

    async def submit(self, spec, webhook_url=None):
        self.submitted.append(spec)
        self.webhook_urls.append(webhook_url)
        if self.submit_error is not None:
            raise self.submit_error
        if self.submission is not None:
            return self.submission
        return Submission(
            external_job_id=f"ext-{len(self.submitted)}",
            state=ProviderState.STARTING,
        )

    async def poll_status(self, external_job_id):
        self.polled.append(external_job_id)
        return self.reports[external_job_id]

    async def cancel(self, external_job_id):
        self.cancelled.append(external_job_id)
        return self.cancel_result


def _png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (64, 48), (200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


PNG = _png_bytes()


class FetchRecorder:
    """MockTransport handler: serves a PNG, or 404 for URLs containing 'gone'."""

    def __init__(self):
        self.requests: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if "gone" in url:
            return httpx.Response(404)
        return httpx.Response(200, content=PNG, headers={"content-type": "image/png"})


# ---------------------------------------------------------------------------
# DB / fixture helpers
# ---------------------------------------------------------------------------


def _make_db():
    """Create an isolated in-memory SQLite DB and return session factory."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)


def _add_user(SessionLocal, credits: int = 100) -> int:
    s = SessionLocal()
    user = User(email="test@example.com", name="Test User", credits_balance=credits)
    s.add(user)
    s.commit()
    user_id = user.id
    s.close()
    return user_id


def _balance(SessionLocal, user_id: int) -> int:
    s = SessionLocal()
    try:
        return s.get(User, user_id).credits_balance
    finally:
        s.close()


def _transactions(SessionLocal, job_id: str) -> list[CreditTransaction]:
    s = SessionLocal()
    try:
        return list(
            s.scalars(
                select(CreditTransaction)
                .where(CreditTransaction.reference_job_id == job_id)
                .order_by(CreditTransaction.id)
            )
        )
    finally:
        s.close()


def _get_job(SessionLocal, job_id: str):
    s = SessionLocal()
    try:
        return s.get(ImageJob, job_id) or s.get(VideoJob, job_id)
    finally:
        s.close()


@pytest.fixture
def db():
    return _make_db()


@pytest.fixture
def fetches():
    return FetchRecorder()


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def reconciler(db, tmp_path, adapter, fetches):
    storage = LocalStorage(str(tmp_path), "http://media.test")
    migrator = StorageMigrator(
        storage, backoff_seconds=0, transport=httpx.MockTransport(fetches)
    )
    return JobReconciler(
        {kind: adapter for kind in JobKind},
        migrator,
        CreditLedger(),
        session_factory=db,
    )


def _upscale_spec(owner_id: int) -> JobSpec:
    # Upscales cost 5 credits
    return JobSpec(
        kind=JobKind.UPSCALE,
        owner_id=owner_id,
        source_image_url="https://cdn.example.com/in.png",
        scale_factor=2,
    )


def _video_spec(owner_id: int) -> JobSpec:
    return JobSpec(kind=JobKind.VIDEO, owner_id=owner_id, prompt="a fox running", duration=5)


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_debits_and_records_external_id(db, reconciler, adapter):
    user_id = _add_user(db)

    job = await reconciler.create(_upscale_spec(user_id))

    assert job.state == JobState.PROCESSING.value
    assert job.external_job_id == "ext-1"
    assert job.credits_reserved == 5
    assert job.estimated_completion_at is not None
    assert _balance(db, user_id) == 95
    txns = _transactions(db, job.id)
    assert [(t.type, t.amount, t.balance_after) for t in txns] == [("SPENT", -5, 95)]


@pytest.mark.asyncio
async def test_create_video_starts_in_starting_state(db, reconciler):
    user_id = _add_user(db)

    job = await reconciler.create(_video_spec(user_id))

    assert isinstance(job, VideoJob)
    assert job.state == JobState.STARTING.value
    assert job.credits_reserved == 20
    assert _balance(db, user_id) == 80


@pytest.mark.asyncio
async def test_create_without_enough_credits_creates_nothing(db, reconciler, adapter):
    user_id = _add_user(db, credits=3)

    with pytest.raises(InsufficientCredits) as exc_info:
        await reconciler.create(_upscale_spec(user_id))

    assert exc_info.value.required == 5
    assert exc_info.value.available == 3
    assert adapter.submitted == []
    s = db()
    assert s.query(ImageJob).count() == 0
    assert s.query(CreditTransaction).count() == 0
    s.close()


@pytest.mark.asyncio
async def test_create_rejects_invalid_spec_before_writing(db, reconciler, adapter):
    user_id = _add_user(db)
    spec = _upscale_spec(user_id)
    spec.scale_factor = 3

    with pytest.raises(InvalidInput):
        await reconciler.create(spec)

    assert adapter.submitted == []
    assert _balance(db, user_id) == 100


@pytest.mark.asyncio
async def test_submission_failure_refunds_and_fails_job(db, reconciler, adapter):
    user_id = _add_user(db)
    adapter.submit_error = RateLimited("slow down")

    job = await reconciler.create(_upscale_spec(user_id))

    assert job.state == JobState.FAILED.value
    assert job.error_code == "RATE_LIMIT"
    assert "busy" in job.error_message
    assert job.external_job_id is None
    assert job.completed_at is not None
    assert _balance(db, user_id) == 100
    txns = _transactions(db, job.id)
    assert [t.amount for t in txns] == [-5, 5]


@pytest.mark.asyncio
async def test_unexpected_submit_exception_still_fails_job(db, reconciler, adapter):
    user_id = _add_user(db)
    adapter.submit_error = RuntimeError("boom")

    job = await reconciler.create(_upscale_spec(user_id))

    assert job.state == JobState.FAILED.value
    assert job.error_code == "SUBMISSION_FAILED"
    assert _balance(db, user_id) == 100


@pytest.mark.asyncio
async def test_submission_that_already_succeeded_completes_immediately(db, reconciler, adapter):
    user_id = _add_user(db)
    adapter.submission = Submission(
        external_job_id="ext-fast",
        state=ProviderState.SUCCEEDED,
        outputs=["https://replicate.delivery/fast.png"],
    )

    job = await reconciler.create(_upscale_spec(user_id))

    assert job.state == JobState.COMPLETED.value
    assert len(job.result_urls) == 1
    assert _balance(db, user_id) == 95


@pytest.mark.asyncio
async def test_webhook_url_only_requested_for_https_base(db, tmp_path, adapter, fetches):
    user_id = _add_user(db)
    storage = LocalStorage(str(tmp_path), "http://media.test")
    reconciler = JobReconciler(
        {kind: adapter for kind in JobKind},
        StorageMigrator(storage, transport=httpx.MockTransport(fetches)),
        CreditLedger(),
        session_factory=db,
        webhook_base_url="https://api.vibephoto.test/",
    )

    job = await reconciler.create(_upscale_spec(user_id))

    assert adapter.webhook_urls == [
        f"https://api.vibephoto.test/api/webhooks/replicate?kind=upscale&job_id={job.id}"
    ]


# ---------------------------------------------------------------------------
# apply_status: terminal outcomes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_succeeded_with_two_outputs_completes_and_keeps_charge(db, reconciler, tmp_path):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))

    outcome = await reconciler.apply_status(
        job.external_job_id,
        StatusReport(
            state=ProviderState.SUCCEEDED,
            outputs=["https://replicate.delivery/a.png", "https://replicate.delivery/b.png"],
        ),
    )

    assert outcome is ReconcileOutcome.COMPLETED
    stored = _get_job(db, job.id)
    assert stored.state == JobState.COMPLETED.value
    assert stored.result_urls == [
        f"http://media.test/api/media/owner/{user_id}/job/{job.id}/0",
        f"http://media.test/api/media/owner/{user_id}/job/{job.id}/1",
    ]
    assert stored.thumbnail_urls == [
        f"http://media.test/api/media/owner/{user_id}/job/{job.id}/thumb/0",
        f"http://media.test/api/media/owner/{user_id}/job/{job.id}/thumb/1",
    ]
    assert stored.error_message is None
    assert stored.completed_at is not None
    assert (tmp_path / "owner" / str(user_id) / "job" / job.id / "1").read_bytes() == PNG
    assert _balance(db, user_id) == 95
    assert len(_transactions(db, job.id)) == 1


@pytest.mark.asyncio
async def test_failed_refunds_exactly_once(db, reconciler):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))

    outcome = await reconciler.apply_status(
        job.external_job_id,
        StatusReport(state=ProviderState.FAILED, error_message="NSFW content detected"),
    )

    assert outcome is ReconcileOutcome.FAILED
    stored = _get_job(db, job.id)
    assert stored.state == JobState.FAILED.value
    assert stored.error_message == "NSFW content detected"
    assert stored.result_urls is None
    assert _balance(db, user_id) == 100
    refunds = [t for t in _transactions(db, job.id) if t.type == "REFUNDED"]
    assert len(refunds) == 1
    assert refunds[0].amount == 5


@pytest.mark.asyncio
async def test_failed_without_message_uses_default(db, reconciler):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))

    await reconciler.apply_status(job.external_job_id, StatusReport(state=ProviderState.FAILED))

    assert _get_job(db, job.id).error_message == "Generation failed"


@pytest.mark.asyncio
async def test_provider_cancel_refunds_and_cancels(db, reconciler):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))

    outcome = await reconciler.apply_status(
        job.external_job_id, StatusReport(state=ProviderState.CANCELED)
    )

    assert outcome is ReconcileOutcome.CANCELLED
    stored = _get_job(db, job.id)
    assert stored.state == JobState.CANCELLED.value
    assert stored.error_message is None
    assert _balance(db, user_id) == 100


@pytest.mark.asyncio
async def test_partial_migration_completes_with_successful_outputs_only(db, reconciler):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))

    outcome = await reconciler.apply_status(
        job.external_job_id,
        StatusReport(
            state=ProviderState.SUCCEEDED,
            outputs=["https://replicate.delivery/gone.png", "https://replicate.delivery/ok.png"],
        ),
    )

    assert outcome is ReconcileOutcome.COMPLETED
    stored = _get_job(db, job.id)
    assert stored.result_urls == [
        f"http://media.test/api/media/owner/{user_id}/job/{job.id}/1"
    ]
    assert _balance(db, user_id) == 95


@pytest.mark.asyncio
async def test_total_migration_failure_fails_and_refunds(db, reconciler):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))

    outcome = await reconciler.apply_status(
        job.external_job_id,
        StatusReport(
            state=ProviderState.SUCCEEDED,
            outputs=["https://replicate.delivery/gone-1.png", "https://replicate.delivery/gone-2.png"],
        ),
    )

    assert outcome is ReconcileOutcome.FAILED
    stored = _get_job(db, job.id)
    assert stored.state == JobState.FAILED.value
    assert stored.error_code == "STORAGE_MIGRATION_FAILED"
    assert stored.error_message.startswith("StorageMigrationFailed")
    assert not stored.result_urls
    assert _balance(db, user_id) == 100


@pytest.mark.asyncio
async def test_success_without_outputs_fails_and_refunds(db, reconciler):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))

    outcome = await reconciler.apply_status(
        job.external_job_id, StatusReport(state=ProviderState.SUCCEEDED, outputs=[])
    )

    assert outcome is ReconcileOutcome.FAILED
    assert _balance(db, user_id) == 100


@pytest.mark.asyncio
async def test_unknown_external_id_is_not_found(reconciler):
    outcome = await reconciler.apply_status(
        "nope", StatusReport(state=ProviderState.SUCCEEDED, outputs=["https://x/y.png"])
    )
    assert outcome is ReconcileOutcome.NOT_FOUND


@pytest.mark.asyncio
async def test_refund_failure_is_fatal_and_leaves_job_in_flight(db, reconciler):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))
    s = db()
    s.delete(s.get(User, user_id))
    s.commit()
    s.close()

    with pytest.raises(LedgerError):
        await reconciler.apply_status(job.external_job_id, StatusReport(state=ProviderState.FAILED))

    assert _get_job(db, job.id).state == JobState.PROCESSING.value


# ---------------------------------------------------------------------------
# apply_status: idempotency
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_duplicate_success_is_ignored_and_not_remigrated(db, reconciler, fetches):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))
    report = StatusReport(
        state=ProviderState.SUCCEEDED,
        outputs=["https://replicate.delivery/a.png", "https://replicate.delivery/b.png"],
    )

    first = await reconciler.apply_status(job.external_job_id, report, source="webhook")
    urls_after_first = _get_job(db, job.id).result_urls
    second = await reconciler.apply_status(job.external_job_id, report, source="poll")

    assert first is ReconcileOutcome.COMPLETED
    assert second is ReconcileOutcome.IGNORED
    assert len(fetches.requests) == 2
    assert _get_job(db, job.id).result_urls == urls_after_first
    assert _balance(db, user_id) == 95
    assert [t.amount for t in _transactions(db, job.id)] == [-5]


@pytest.mark.asyncio
async def test_duplicate_failure_refunds_once(db, reconciler):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))
    report = StatusReport(state=ProviderState.FAILED, error_message="boom")

    await reconciler.apply_status(job.external_job_id, report)
    second = await reconciler.apply_status(job.external_job_id, report)

    assert second is ReconcileOutcome.IGNORED
    assert _balance(db, user_id) == 100
    assert [t.amount for t in _transactions(db, job.id)] == [-5, 5]


@pytest.mark.asyncio
async def test_late_success_after_failure_is_ignored(db, reconciler, fetches):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))

    await reconciler.apply_status(job.external_job_id, StatusReport(state=ProviderState.FAILED))
    outcome = await reconciler.apply_status(
        job.external_job_id,
        StatusReport(state=ProviderState.SUCCEEDED, outputs=["https://replicate.delivery/a.png"]),
    )

    assert outcome is ReconcileOutcome.IGNORED
    assert fetches.requests == []
    stored = _get_job(db, job.id)
    assert stored.state == JobState.FAILED.value
    assert stored.result_urls is None


@pytest.mark.asyncio
async def test_concurrent_success_deliveries_complete_once(db, reconciler):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))
    report = StatusReport(
        state=ProviderState.SUCCEEDED, outputs=["https://replicate.delivery/a.png"]
    )

    outcomes = await asyncio.gather(
        reconciler.apply_status(job.external_job_id, report, source="webhook"),
        reconciler.apply_status(job.external_job_id, report, source="poll"),
    )

    assert sorted(o.value for o in outcomes) == sorted(
        [ReconcileOutcome.COMPLETED.value, ReconcileOutcome.IGNORED.value]
    )
    stored = _get_job(db, job.id)
    assert stored.state == JobState.COMPLETED.value
    assert len(stored.result_urls) == 1
    assert _balance(db, user_id) == 95
    assert [t.amount for t in _transactions(db, job.id)] == [-5]


@pytest.mark.asyncio
async def test_concurrent_failure_deliveries_refund_once(db, reconciler):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))
    report = StatusReport(state=ProviderState.FAILED, error_message="boom")

    outcomes = await asyncio.gather(
        *(reconciler.apply_status(job.external_job_id, report) for _ in range(3))
    )

    assert outcomes.count(ReconcileOutcome.FAILED) == 1
    assert outcomes.count(ReconcileOutcome.IGNORED) == 2
    assert _get_job(db, job.id).state == JobState.FAILED.value
    assert _balance(db, user_id) == 100
    assert [t.amount for t in _transactions(db, job.id)] == [-5, 5]


# ---------------------------------------------------------------------------
# apply_status: in flight
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_progress_moves_forward_only(db, reconciler):
    user_id = _add_user(db)
    job = await reconciler.create(_video_spec(user_id))
    assert job.state == JobState.STARTING.value

    forward = await reconciler.apply_status(
        job.external_job_id, StatusReport(state=ProviderState.PROCESSING, progress=40)
    )
    assert _get_job(db, job.id).state == JobState.PROCESSING.value

    backward = await reconciler.apply_status(
        job.external_job_id, StatusReport(state=ProviderState.STARTING)
    )

    assert forward is ReconcileOutcome.PROGRESS
    assert backward is ReconcileOutcome.PROGRESS
    stored = _get_job(db, job.id)
    assert stored.state == JobState.PROCESSING.value
    assert stored.progress == 40
    assert stored.provider_status == "starting"
    assert stored.last_polled_at is not None
    assert stored.result_urls is None
    assert _balance(db, user_id) == 80


@pytest.mark.asyncio
async def test_unknown_provider_status_keeps_job_in_flight(db, reconciler):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))

    outcome = await reconciler.apply_status(
        job.external_job_id, StatusReport(state=ProviderState.parse("queued"))
    )

    assert outcome is ReconcileOutcome.PROGRESS
    assert _get_job(db, job.id).state == JobState.PROCESSING.value


# ---------------------------------------------------------------------------
# cancel
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancel_refunds_and_calls_provider(db, reconciler, adapter):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))

    cancelled = await reconciler.cancel(job.id, user_id)

    assert cancelled.state == JobState.CANCELLED.value
    assert cancelled.completed_at is not None
    assert adapter.cancelled == [job.external_job_id]
    assert _balance(db, user_id) == 100


@pytest.mark.asyncio
async def test_cancel_succeeds_even_if_provider_cancel_fails(db, reconciler, adapter):
    user_id = _add_user(db)
    adapter.cancel_result = False
    job = await reconciler.create(_upscale_spec(user_id))

    cancelled = await reconciler.cancel(job.id, user_id)

    assert cancelled.state == JobState.CANCELLED.value
    assert _balance(db, user_id) == 100


@pytest.mark.asyncio
async def test_cancel_checks_existence_ownership_and_state(db, reconciler):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))

    with pytest.raises(NotFound):
        await reconciler.cancel("missing", user_id)
    with pytest.raises(Forbidden):
        await reconciler.cancel(job.id, user_id + 1)

    await reconciler.apply_status(job.external_job_id, StatusReport(state=ProviderState.FAILED))
    with pytest.raises(InvalidState):
        await reconciler.cancel(job.id, user_id)
    assert _balance(db, user_id) == 100


@pytest.mark.asyncio
async def test_webhook_after_cancel_is_ignored(db, reconciler, fetches):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))
    await reconciler.cancel(job.id, user_id)

    outcome = await reconciler.apply_status(
        job.external_job_id,
        StatusReport(state=ProviderState.SUCCEEDED, outputs=["https://replicate.delivery/a.png"]),
        source="webhook",
    )

    assert outcome is ReconcileOutcome.IGNORED
    assert fetches.requests == []
    assert _get_job(db, job.id).state == JobState.CANCELLED.value
    assert _balance(db, user_id) == 100


# ---------------------------------------------------------------------------
# refresh / expire
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_refresh_polls_and_applies(db, reconciler, adapter):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))
    adapter.reports[job.external_job_id] = StatusReport(
        state=ProviderState.SUCCEEDED, outputs=["https://replicate.delivery/a.png"]
    )

    refreshed = await reconciler.refresh(job.id, user_id)

    assert adapter.polled == [job.external_job_id]
    assert refreshed.state == JobState.COMPLETED.value


@pytest.mark.asyncio
async def test_refresh_of_terminal_job_does_not_poll(db, reconciler, adapter):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))
    await reconciler.cancel(job.id, user_id)

    refreshed = await reconciler.refresh(job.id, user_id)

    assert adapter.polled == []
    assert refreshed.state == JobState.CANCELLED.value


@pytest.mark.asyncio
async def test_expire_fails_with_timeout_and_refunds(db, reconciler, adapter):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))

    outcome = await reconciler.expire(job, "No result after 4000s")

    assert outcome is ReconcileOutcome.FAILED
    stored = _get_job(db, job.id)
    assert stored.error_code == "TIMEOUT"
    assert stored.provider_status == "failed"
    assert adapter.cancelled == [job.external_job_id]
    assert _balance(db, user_id) == 100


@pytest.mark.asyncio
async def test_adapter_without_webhook_support_rejects_deliveries(db, reconciler, adapter):
    user_id = _add_user(db)
    job = await reconciler.create(_upscale_spec(user_id))
    body = json.dumps({"id": job.external_job_id, "status": "succeeded"}).encode()

    with pytest.raises(WebhookVerificationError):
        await WebhookReceiver(reconciler).receive(body, {}, kind_hint="upscale")

    assert _get_job(db, job.id).state == JobState.PROCESSING.value
    with pytest.raises(NotImplementedError):
        adapter.parse_webhook({"id": job.external_job_id})
