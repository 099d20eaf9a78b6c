"""Builds the service graph once per process and hands it out explicitly."""

from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from vibephoto.config import Settings
from vibephoto.database import get_db
from vibephoto.models.job import JobKind
from vibephoto.providers.registry import build_adapters
from vibephoto.services.credit_ledger import CreditLedger
from vibephoto.services.job_service import JobService
from vibephoto.services.migrator import StorageMigrator
from vibephoto.services.reconciler import JobReconciler
from vibephoto.services.storage import StorageBackend, build_storage
from vibephoto.services.sweeper import PollingSweeper, SweepConfig
from vibephoto.services.webhooks import WebhookReceiver


@dataclass
class Services:
    storage: StorageBackend
    ledger: CreditLedger
    jobs: JobService
    reconciler: JobReconciler
    sweeper: PollingSweeper
    webhooks: WebhookReceiver
    session_factory: Callable[[], Session] = get_db


def build_services(
    settings: Settings,
    *,
    session_factory: Optional[Callable[[], Session]] = None,
) -> Services:
    """Wire adapters, storage, ledger, reconciler, sweeper and receiver from settings."""
    session_factory = session_factory or get_db
    storage = build_storage(settings)
    ledger = CreditLedger()
    jobs = JobService()
    migrator = StorageMigrator(
        storage,
        fetch_timeout=settings.migration_fetch_timeout,
        attempts=settings.migration_attempts,
        backoff_seconds=settings.migration_backoff_seconds,
        thumbnail_max_size=settings.thumbnail_max_size,
    )
    reconciler = JobReconciler(
        build_adapters(settings),
        migrator,
        ledger,
        session_factory=session_factory,
        jobs=jobs,
        webhook_base_url=settings.public_base_url,
    )
    sweeper = PollingSweeper(
        reconciler,
        SweepConfig(
            min_age_seconds=settings.sweep_min_age_seconds,
            batch_sizes={
                JobKind.IMAGE: settings.sweep_image_batch_size,
                JobKind.UPSCALE: settings.sweep_upscale_batch_size,
                JobKind.VIDEO: settings.sweep_video_batch_size,
            },
            request_delay_seconds=settings.sweep_request_delay_seconds,
            poll_timeout_seconds=settings.provider_poll_timeout + 15,
            job_timeout_seconds=settings.job_timeout_seconds,
        ),
        session_factory=session_factory,
        jobs=jobs,
    )
    return Services(
        storage=storage,
        ledger=ledger,
        jobs=jobs,
        reconciler=reconciler,
        sweeper=sweeper,
        webhooks=WebhookReceiver(reconciler),
        session_factory=session_factory,
    )
