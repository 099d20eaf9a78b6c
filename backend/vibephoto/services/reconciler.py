"""Job reconciler: owns every state change of a generation job.

Lifecycle::

    create()        PENDING ──submit ok──▶ STARTING/PROCESSING
                       └──submit failed──▶ FAILED (refunded)

    apply_status()  in-flight ──succeeded──▶ migrate ──▶ COMPLETED
                                                    └──▶ FAILED (nothing migrated, refunded)
                    in-flight ──failed────▶ FAILED (refunded)
                    in-flight ──canceled──▶ CANCELLED (refunded)
                    in-flight ──progress──▶ cosmetic fields only

    cancel()        in-flight ──────────────▶ CANCELLED (refunded)

``apply_status`` is the single entry point for both delivery channels
(webhook push and sweeper poll).  Terminal writes are conditional on the row
still being in flight, so whichever channel lands first wins and every later
delivery becomes a no-op.  The refund is written in the same transaction as
the transition; if the transition loses the race the refund is rolled back
with it.

Slow side effects (provider calls, storage migration) always run outside an
open DB transaction.
"""

import logging
from datetime import timedelta
from enum import Enum
from typing import Callable, Mapping, Optional

from sqlalchemy.orm import Session

from vibephoto.database import get_db
from vibephoto.errors import (
    Forbidden,
    InvalidState,
    LedgerError,
    NotFound,
    ProviderUnavailable,
    StorageMigrationError,
    SubmissionError,
)
from vibephoto.logging_config import job_context
from vibephoto.models import utcnow
from vibephoto.models.job import (
    IN_FLIGHT_STATES,
    STATE_RANK,
    Job,
    JobKind,
    JobState,
)
from vibephoto.providers.base import JobSpec, ProviderAdapter, StatusReport, Submission
from vibephoto.services import pricing
from vibephoto.services.credit_ledger import CreditLedger
from vibephoto.services.job_service import JobService
from vibephoto.services.migrator import (
    OUTPUT_IMAGE,
    OUTPUT_VIDEO,
    MigrationSource,
    StorageMigrator,
)
from vibephoto.services.status_mapper import (
    ProviderState,
    is_terminal,
    map_provider_status,
    to_provider_status,
)

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Generation failed"
TIMEOUT_MESSAGE = "Generation timed out. Your credits have been refunded."


class ReconcileOutcome(str, Enum):
    NOT_FOUND = "not_found"
    IGNORED = "ignored"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_OUTCOME_FOR_STATE = {
    JobState.COMPLETED: ReconcileOutcome.COMPLETED,
    JobState.FAILED: ReconcileOutcome.FAILED,
    JobState.CANCELLED: ReconcileOutcome.CANCELLED,
}


def friendly_error_message(exc: Exception) -> str:
    """Convert a submission exception into a message safe to show users.

    The raw exception text is logged, never persisted.
    """
    logger.error("Raw submission error: %s", exc)
    code = getattr(exc, "code", "")
    if code == "INVALID_INPUT":
        return "The request was rejected by the model. Please adjust your inputs and try again."
    if code == "RATE_LIMIT":
        return "Generation service is temporarily busy. Please try again in a moment."
    if code == "QUOTA_EXCEEDED":
        return "Generation capacity is temporarily exhausted. Please try again later."
    if code == "AUTH_ERROR":
        return "Configuration error. Please contact support."
    if code == "PROVIDER_UNAVAILABLE":
        return "Generation service is unavailable. Please try again."
    return "Generation could not be started. Please try again."


class JobReconciler:
    def __init__(
        self,
        adapters: Mapping[JobKind, ProviderAdapter],
        migrator: StorageMigrator,
        ledger: CreditLedger,
        *,
        session_factory: Callable[[], Session] = get_db,
        jobs: Optional[JobService] = None,
        webhook_base_url: str = "",
        clock: Callable = utcnow,
    ) -> None:
        self._adapters = dict(adapters)
        self._migrator = migrator
        self._ledger = ledger
        self._session_factory = session_factory
        self._jobs = jobs or JobService()
        self._webhook_base_url = webhook_base_url.rstrip("/")
        self._clock = clock

    def adapter_for(self, kind: JobKind | str) -> ProviderAdapter:
        try:
            return self._adapters[JobKind(kind)]
        except KeyError:
            raise ProviderUnavailable(f"No provider configured for {kind} jobs") from None

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, job_id: str, owner_id: int) -> Job:
        """Fetch a job on behalf of its owner.

        Raises:
            NotFound: no job has this id.
            Forbidden: the job belongs to someone else.
        """
        job = self._load(lambda db: self._jobs.get_by_id(db, job_id))
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        if job.owner_id != owner_id:
            raise Forbidden("Not your job")
        return job

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, spec: JobSpec) -> Job:
        """Debit, persist and submit a new job.

        Raises:
            InvalidInput: the spec failed validation; nothing was written.
            InsufficientCredits: the owner cannot afford it; nothing was written.
        """
        quote = pricing.quote(spec)
        adapter = self.adapter_for(spec.kind)

        db = self._session_factory()
        try:
            job = self._jobs.new_job(spec, quote.credits)
            db.add(job)
            db.flush()
            self._ledger.debit(
                db,
                spec.owner_id,
                quote.credits,
                job.id,
                description=f"{JobKind(spec.kind).value} generation",
                commit=False,
            )
            db.commit()
            db.refresh(job)
            db.expunge(job)
        finally:
            db.close()

        with job_context(job.id):
            logger.info(
                "Created %s job",
                job.kind,
                extra={"owner_id": job.owner_id, "credits": quote.credits},
            )
            try:
                submission = await adapter.submit(spec, webhook_url=self._webhook_url(job))
            except Exception as exc:
                if not isinstance(exc, SubmissionError):
                    logger.exception("Unexpected error submitting job %s", job.id)
                self._settle(
                    job,
                    JobState.FAILED,
                    reason=f"Submission failed: {type(exc).__name__}",
                    error_message=friendly_error_message(exc),
                    error_code=getattr(exc, "code", SubmissionError.code),
                )
                return self._reload(job.id)

            await self._record_submission(job, adapter, submission, quote.estimated_seconds)
            return self._reload(job.id)

    async def _record_submission(
        self,
        job: Job,
        adapter: ProviderAdapter,
        submission: Submission,
        estimated_seconds: int,
    ) -> None:
        now = self._clock()
        mapped = map_provider_status(job.kind, submission.state)
        # A prediction that finished inside the create call is still recorded
        # as in flight first, then settled through apply_status.
        in_flight = mapped if mapped in IN_FLIGHT_STATES else JobState.PROCESSING
        seconds = submission.estimated_seconds or estimated_seconds

        db = self._session_factory()
        try:
            recorded = self._jobs.transition(
                db,
                job,
                (JobState.PENDING,),
                external_job_id=submission.external_job_id,
                state=in_flight.value,
                provider_status=submission.state.value,
                estimated_completion_at=now + timedelta(seconds=seconds),
                updated_at=now,
            )
            if recorded:
                db.commit()
            else:
                db.rollback()
        finally:
            db.close()

        if not recorded:
            # Cancelled while the submit call was in flight
            logger.warning(
                "Job %s left PENDING before submission was recorded; cancelling remote %s",
                job.id,
                submission.external_job_id,
            )
            await adapter.cancel(submission.external_job_id)
            return

        logger.info(
            "Job submitted",
            extra={"external_job_id": submission.external_job_id, "state": in_flight.value},
        )
        if is_terminal(submission.state):
            await self.apply_status(
                submission.external_job_id,
                StatusReport(
                    state=submission.state,
                    outputs=submission.outputs,
                    error_message=submission.error_message,
                ),
                source="submit",
            )

    # ------------------------------------------------------------------
    # Status delivery (webhook, poll, refresh)
    # ------------------------------------------------------------------

    async def apply_status(
        self, external_job_id: str, report: StatusReport, *, source: str = "poll"
    ) -> ReconcileOutcome:
        """Apply a provider status to the job with this external id.

        Idempotent: a job that is already terminal is left untouched.
        """
        job = self._load(lambda db: self._jobs.get_by_external_id(db, external_job_id))
        if job is None:
            logger.info(
                "No job for external id %s",
                external_job_id,
                extra={"source": source},
            )
            return ReconcileOutcome.NOT_FOUND

        with job_context(job.id):
            if job.is_terminal:
                logger.info(
                    "Ignoring %s status for terminal job",
                    report.state.value,
                    extra={"source": source, "state": job.state},
                )
                return ReconcileOutcome.IGNORED

            if report.state is ProviderState.SUCCEEDED:
                return await self._complete(job, report, source)
            if report.state is ProviderState.CANCELED:
                return self._settle(
                    job,
                    JobState.CANCELLED,
                    reason="Cancelled by provider",
                    provider_status=report.state.value,
                )
            if report.state is ProviderState.FAILED:
                return self._settle(
                    job,
                    JobState.FAILED,
                    reason="Generation failed",
                    error_message=report.error_message or DEFAULT_FAILURE_MESSAGE,
                    error_code="GENERATION_FAILED",
                    provider_status=report.state.value,
                )
            return self._record_progress(job, report)

    async def _complete(self, job: Job, report: StatusReport, source: str) -> ReconcileOutcome:
        if not report.outputs:
            return self._settle(
                job,
                JobState.FAILED,
                reason="Provider returned no outputs",
                error_message="StorageMigrationFailed: provider returned no outputs",
                error_code=StorageMigrationError.code,
                provider_status=report.state.value,
            )

        output_kind = OUTPUT_VIDEO if job.kind == JobKind.VIDEO.value else OUTPUT_IMAGE
        results = await self._migrator.migrate(
            job.id,
            job.owner_id,
            [MigrationSource(url, output_kind) for url in report.outputs],
        )
        migrated = [r for r in sorted(results, key=lambda r: r.index) if r.ok]

        if not migrated:
            first_error = next((r.error for r in results if r.error), "unknown error")
            return self._settle(
                job,
                JobState.FAILED,
                reason="Results could not be stored",
                error_message=f"StorageMigrationFailed: {first_error}",
                error_code=StorageMigrationError.code,
                provider_status=report.state.value,
            )

        now = self._clock()
        db = self._session_factory()
        try:
            completed = self._jobs.transition(
                db,
                job,
                IN_FLIGHT_STATES,
                state=JobState.COMPLETED.value,
                result_urls=[r.permanent_url for r in migrated],
                thumbnail_urls=[r.thumbnail_url or r.permanent_url for r in migrated],
                provider_status=report.state.value,
                progress=100,
                completed_at=now,
                updated_at=now,
            )
            if not completed:
                db.rollback()
                logger.info("Job finalised concurrently; discarding %s result", source)
                return ReconcileOutcome.IGNORED
            db.commit()
        finally:
            db.close()

        logger.info(
            "Job completed",
            extra={"source": source, "outputs": len(migrated), "reported": len(results)},
        )
        return ReconcileOutcome.COMPLETED

    def _record_progress(self, job: Job, report: StatusReport) -> ReconcileOutcome:
        current = job.job_state
        mapped = map_provider_status(job.kind, report.state)
        target = mapped if STATE_RANK[mapped] > STATE_RANK[current] else current
        now = self._clock()
        values = {
            "state": target.value,
            "provider_status": report.state.value,
            "last_polled_at": now,
            "updated_at": now,
        }
        if report.progress is not None and report.progress > (job.progress or 0):
            values["progress"] = min(report.progress, 99)

        db = self._session_factory()
        try:
            if not self._jobs.transition(db, job, (current,), **values):
                db.rollback()
                return ReconcileOutcome.IGNORED
            db.commit()
        finally:
            db.close()
        return ReconcileOutcome.PROGRESS

    # ------------------------------------------------------------------
    # Owner actions
    # ------------------------------------------------------------------

    async def cancel(self, job_id: str, owner_id: int) -> Job:
        """Cancel a job on behalf of its owner and refund it.

        The remote cancel is best effort; the job is cancelled locally either way.

        Raises:
            NotFound, Forbidden: ownership checks.
            InvalidState: the job is already terminal.
        """
        job = self.get(job_id, owner_id)
        if job.is_terminal:
            raise InvalidState(f"Job is already {job.state.lower()}")

        with job_context(job.id):
            if job.external_job_id:
                stopped = await self.adapter_for(job.kind).cancel(job.external_job_id)
                if not stopped:
                    logger.warning("Remote cancel failed; cancelling locally anyway")

            outcome = self._settle(job, JobState.CANCELLED, reason="Cancelled by user")
            if outcome is ReconcileOutcome.IGNORED:
                raise InvalidState("Job finished before it could be cancelled")
        return self._reload(job.id)

    async def refresh(self, job_id: str, owner_id: int) -> Job:
        """Poll the provider now instead of waiting for the next sweep.

        Raises:
            ProviderTransientError: the provider could not be reached.
        """
        job = self.get(job_id, owner_id)
        if job.is_terminal or not job.external_job_id:
            return job
        report = await self.adapter_for(job.kind).poll_status(job.external_job_id)
        await self.apply_status(job.external_job_id, report, source="refresh")
        return self._reload(job.id)

    async def expire(self, job: Job, reason: str) -> ReconcileOutcome:
        """Fail a job that has been in flight for too long, refunding it."""
        with job_context(job.id):
            if job.external_job_id:
                await self.adapter_for(job.kind).cancel(job.external_job_id)
            return self._settle(
                job,
                JobState.FAILED,
                reason=reason,
                error_message=TIMEOUT_MESSAGE,
                error_code="TIMEOUT",
            )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _settle(
        self,
        job: Job,
        target: JobState,
        *,
        reason: str,
        error_message: Optional[str] = None,
        error_code: Optional[str] = None,
        provider_status: Optional[str] = None,
    ) -> ReconcileOutcome:
        """Move ``job`` to FAILED/CANCELLED and refund it, atomically."""
        now = self._clock()
        values = {"state": target.value, "completed_at": now, "updated_at": now}
        if target is JobState.FAILED:
            values["error_message"] = error_message or DEFAULT_FAILURE_MESSAGE
            values["error_code"] = error_code
        values["provider_status"] = provider_status or to_provider_status(target).value

        db = self._session_factory()
        try:
            if not self._jobs.transition(db, job, IN_FLIGHT_STATES, **values):
                db.rollback()
                logger.info("Job finalised concurrently; %s not applied", target.value)
                return ReconcileOutcome.IGNORED
            try:
                refund = self._ledger.refund(
                    db, job.owner_id, job.credits_reserved, job.id, reason, commit=False
                )
            except LedgerError:
                db.rollback()
                logger.critical(
                    "Refund failed for job %s; job left in flight",
                    job.id,
                    extra={"owner_id": job.owner_id, "credits": job.credits_reserved},
                )
                raise
            db.commit()
        finally:
            db.close()

        logger.info(
            "Job %s",
            target.value.lower(),
            extra={"reason": reason, "refunded": refund.amount, "error_code": error_code},
        )
        return _OUTCOME_FOR_STATE[target]

    def _webhook_url(self, job: Job) -> Optional[str]:
        if not self._webhook_base_url.startswith("https://"):
            return None
        return (
            f"{self._webhook_base_url}/api/webhooks/replicate"
            f"?kind={job.kind}&job_id={job.id}"
        )

    def _load(self, finder: Callable[[Session], Optional[Job]]) -> Optional[Job]:
        db = self._session_factory()
        try:
            job = finder(db)
            if job is not None:
                db.expunge(job)
            return job
        finally:
            db.close()

    def _reload(self, job_id: str) -> Job:
        job = self._load(lambda db: self._jobs.get_by_id(db, job_id))
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        return job
