"""Job service: creates, transitions and queries job rows.

Covers the three access patterns the engine needs (by id, by external id,
in-flight older than a threshold) plus owner listings.  Both job tables are
searched wherever the caller does not know the kind up front.

State changes go through ``transition()``, a conditional UPDATE that only
matches while the row is still in one of the expected states.  That guard
is what makes concurrent webhook/poll/cancel writers safe: the first writer
flips the row, every later writer matches zero rows.
"""

import logging
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import update
from sqlalchemy.orm import Session

from vibephoto.models.job import (
    IN_FLIGHT_STATES,
    JOB_MODELS,
    Job,
    JobKind,
    JobState,
    model_for,
)
from vibephoto.providers.base import JobSpec

logger = logging.getLogger(__name__)


class JobService:
    """Query and transition helpers for ImageJob/VideoJob rows."""

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def new_job(self, spec: JobSpec, credits: int) -> Job:
        """Build (but do not add) a PENDING job row for ``spec``."""
        kind = JobKind(spec.kind)
        common: dict[str, Any] = {
            "owner_id": spec.owner_id,
            "kind": kind.value,
            "state": JobState.PENDING.value,
            "prompt": spec.prompt,
            "params": dict(spec.params) or None,
            "source_image_url": spec.source_image_url,
            "credits_reserved": credits,
        }
        if kind is JobKind.VIDEO:
            return model_for(kind)(
                **common,
                duration=spec.duration or 5,
                aspect_ratio=spec.aspect_ratio or "16:9",
                quality=spec.quality or "standard",
                negative_prompt=spec.negative_prompt,
            )
        return model_for(kind)(
            **common,
            num_outputs=spec.num_outputs,
            aspect_ratio=spec.aspect_ratio or "1:1",
            scale_factor=spec.scale_factor,
        )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def transition(
        self,
        db: Session,
        job: Job,
        from_states: Iterable[JobState],
        **values: Any,
    ) -> bool:
        """Conditionally update ``job`` while it is still in ``from_states``.

        Does not commit.  Returns False when another writer got there first.
        """
        model = type(job)
        allowed = [JobState(s).value for s in from_states]
        result = db.execute(
            update(model)
            .where(model.id == job.id, model.state.in_(allowed))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_by_id(self, db: Session, job_id: str) -> Job | None:
        for model in JOB_MODELS:
            job = db.get(model, job_id)
            if job is not None:
                return job
        return None

    def get_by_external_id(self, db: Session, external_job_id: str) -> Job | None:
        for model in JOB_MODELS:
            job = (
                db.query(model)
                .filter(model.external_job_id == external_job_id)
                .first()
            )
            if job is not None:
                return job
        return None

    def select_stale_in_flight(
        self,
        db: Session,
        kind: JobKind,
        *,
        older_than: datetime,
        limit: int,
    ) -> list[Job]:
        """In-flight jobs of ``kind`` with a provider id, created before
        ``older_than``, oldest first."""
        model = model_for(kind)
        return (
            db.query(model)
            .filter(
                model.kind == kind.value,
                model.state.in_([s.value for s in IN_FLIGHT_STATES]),
                model.external_job_id.is_not(None),
                model.created_at < older_than,
            )
            .order_by(model.created_at.asc())
            .limit(limit)
            .all()
        )

    def list_for_owner(
        self,
        db: Session,
        owner_id: int,
        *,
        kind: JobKind | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Job], int]:
        """Return a page of the owner's jobs plus the total count.

        Jobs are ordered newest-first across both tables.
        """
        models = (model_for(kind),) if kind else JOB_MODELS
        offset = (page - 1) * page_size
        rows: list[Job] = []
        total = 0
        for model in models:
            q = db.query(model).filter(model.owner_id == owner_id)
            if kind:
                q = q.filter(model.kind == kind.value)
            total += q.count()
            rows.extend(
                q.order_by(model.created_at.desc()).limit(offset + page_size).all()
            )
        rows.sort(key=lambda j: j.created_at, reverse=True)
        return rows[offset:offset + page_size], total

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, db: Session, job: Job) -> None:
        db.delete(job)
        db.commit()
        logger.info("Deleted job %s", job.id)
