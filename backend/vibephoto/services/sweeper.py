"""Polling sweeper: the fallback delivery path when webhooks go missing.

Each run selects in-flight jobs that are old enough not to race a webhook
for a brand-new job, polls the provider for each one and hands the result to
``JobReconciler.apply_status``.  Safe to run repeatedly and concurrently with
itself: an overlapping run only produces extra no-op ``apply_status`` calls.

Usage::

    # From cron
    vibephoto sweep

    # Via the internal endpoint
    POST /api/internal/sweep   (X-Internal-Key: <internal_api_key>)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from vibephoto.database import get_db
from vibephoto.errors import LedgerError, ProviderTransientError
from vibephoto.logging_config import job_context
from vibephoto.models import utcnow
from vibephoto.models.job import Job, JobKind
from vibephoto.services.job_service import JobService
from vibephoto.services.reconciler import JobReconciler, ReconcileOutcome

logger = logging.getLogger(__name__)


@dataclass
class KindSummary:
    checked: int = 0
    completed: int = 0
    failed: int = 0
    still_processing: int = 0
    errored: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "checked": self.checked,
            "completed": self.completed,
            "failed": self.failed,
            "stillProcessing": self.still_processing,
            "errored": self.errored,
        }


@dataclass
class SweepSummary(KindSummary):
    by_kind: dict[str, KindSummary] = field(default_factory=dict)

    def record(self, kind: JobKind, outcome: Optional[ReconcileOutcome]) -> None:
        """Count one job; ``outcome`` None means the job errored."""
        per_kind = self.by_kind.setdefault(kind.value, KindSummary())
        for bucket in (self, per_kind):
            bucket.checked += 1
            if outcome is None:
                bucket.errored += 1
            elif outcome is ReconcileOutcome.COMPLETED:
                bucket.completed += 1
            elif outcome in (ReconcileOutcome.FAILED, ReconcileOutcome.CANCELLED):
                bucket.failed += 1
            elif outcome is ReconcileOutcome.PROGRESS:
                bucket.still_processing += 1

    def as_dict(self) -> dict:
        data: dict = super().as_dict()
        data["byKind"] = {kind: s.as_dict() for kind, s in self.by_kind.items()}
        return data


@dataclass
class SweepConfig:
    min_age_seconds: int = 60
    batch_sizes: dict[JobKind, int] = field(
        default_factory=lambda: {JobKind.IMAGE: 20, JobKind.UPSCALE: 20, JobKind.VIDEO: 10}
    )
    request_delay_seconds: float = 0.1
    poll_timeout_seconds: float = 45.0
    job_timeout_seconds: int = 3600


class PollingSweeper:
    def __init__(
        self,
        reconciler: JobReconciler,
        config: Optional[SweepConfig] = None,
        *,
        session_factory: Callable[[], Session] = get_db,
        jobs: Optional[JobService] = None,
        clock: Callable = utcnow,
    ) -> None:
        self._reconciler = reconciler
        self.config = config or SweepConfig()
        self._session_factory = session_factory
        self._jobs = jobs or JobService()
        self._clock = clock

    async def run(self) -> SweepSummary:
        """Run one sweep across every job kind and return the summary."""
        summary = SweepSummary()
        now = self._clock()
        batch = self._select(now)
        logger.info("Sweep started", extra={"selected": len(batch)})

        for position, job in enumerate(batch):
            if position and self.config.request_delay_seconds:
                await asyncio.sleep(self.config.request_delay_seconds)
            summary.record(job.job_kind, await self._sweep_one(job, now))

        logger.info("Sweep finished", extra=summary.as_dict())
        return summary

    def _select(self, now) -> list[Job]:
        older_than = now - timedelta(seconds=self.config.min_age_seconds)
        db = self._session_factory()
        try:
            batch: list[Job] = []
            for kind, limit in self.config.batch_sizes.items():
                if limit <= 0:
                    continue
                batch.extend(
                    self._jobs.select_stale_in_flight(
                        db, kind, older_than=older_than, limit=limit
                    )
                )
            for job in batch:
                db.expunge(job)
        finally:
            db.close()
        return batch

    async def _sweep_one(self, job: Job, now) -> Optional[ReconcileOutcome]:
        """Poll and reconcile a single job. Returns None when the job errored."""
        with job_context(job.id):
            try:
                age = (now - job.created_at).total_seconds()
                if age > self.config.job_timeout_seconds:
                    return await self._reconciler.expire(
                        job, f"No result after {int(age)}s"
                    )

                adapter = self._reconciler.adapter_for(job.kind)
                report = await asyncio.wait_for(
                    adapter.poll_status(job.external_job_id),
                    timeout=self.config.poll_timeout_seconds,
                )
                return await self._reconciler.apply_status(
                    job.external_job_id, report, source="poll"
                )
            except LedgerError:
                raise
            except (ProviderTransientError, asyncio.TimeoutError) as exc:
                logger.warning("Poll failed, will retry next sweep: %s", exc)
                return None
            except Exception:
                logger.exception("Sweep failed for job %s", job.id)
                return None
