"""Copy provider-hosted results into durable storage.

Provider output URLs expire roughly an hour after a prediction finishes, so
each output is fetched and re-hosted under a deterministic key before the job
is marked COMPLETED.  Outputs are migrated concurrently and independently: a
failing output is reported in its own ``MigrationResult`` and never blocks
the others.

Fetch and put are each retried a bounded number of times with exponential
back-off.  The retry lives here, at the call site of the two fallible
collaborators, not inside the storage backends.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

import httpx
from PIL import Image, UnidentifiedImageError

from vibephoto.errors import StorageError, StorageMigrationError
from vibephoto.services.storage import StorageBackend, output_key, thumbnail_key
from vibephoto.services.thumbnails import make_image_thumbnail, make_video_poster

logger = logging.getLogger(__name__)

T = TypeVar("T")

OUTPUT_IMAGE = "image"
OUTPUT_VIDEO = "video"

_DEFAULT_CONTENT_TYPE = {OUTPUT_IMAGE: "image/png", OUTPUT_VIDEO: "video/mp4"}


@dataclass
class MigrationSource:
    source_url: str
    kind: str = OUTPUT_IMAGE


@dataclass
class MigrationResult:
    index: int
    ok: bool
    permanent_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error: Optional[str] = None


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500 or exc.response.status_code == 429
    return isinstance(exc, (httpx.TransportError, StorageError))


class StorageMigrator:
    def __init__(
        self,
        storage: StorageBackend,
        *,
        fetch_timeout: float = 60.0,
        attempts: int = 3,
        backoff_seconds: float = 1.0,
        thumbnail_max_size: int = 512,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.storage = storage
        self.fetch_timeout = fetch_timeout
        self.attempts = max(1, attempts)
        self.backoff_seconds = backoff_seconds
        self.thumbnail_max_size = thumbnail_max_size
        self._transport = transport

    async def migrate(
        self, job_id: str, owner_id: int, outputs: Sequence[MigrationSource]
    ) -> list[MigrationResult]:
        """Migrate every output; the result list is in the same order as ``outputs``."""
        if not outputs:
            return []
        async with httpx.AsyncClient(
            timeout=self.fetch_timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            results = await asyncio.gather(
                *(
                    self._migrate_one(client, job_id, owner_id, index, source)
                    for index, source in enumerate(outputs)
                )
            )

        migrated = sum(1 for r in results if r.ok)
        logger.info(
            "Migrated %d/%d outputs for job %s",
            migrated,
            len(results),
            job_id,
            extra={"migrated": migrated, "total": len(results)},
        )
        return list(results)

    # ------------------------------------------------------------------
    # Per-output pipeline
    # ------------------------------------------------------------------

    async def _migrate_one(
        self,
        client: httpx.AsyncClient,
        job_id: str,
        owner_id: int,
        index: int,
        source: MigrationSource,
    ) -> MigrationResult:
        try:
            data, content_type = await self._with_retries(
                lambda: self._fetch(client, source), f"fetch output {index}"
            )
            key = output_key(owner_id, job_id, index)
            permanent_url = await self._with_retries(
                lambda: asyncio.to_thread(self.storage.put, key, data, content_type),
                f"store output {index}",
            )
        except (httpx.HTTPError, httpx.InvalidURL, StorageError, StorageMigrationError) as exc:
            logger.warning(
                "Output %d of job %s could not be migrated: %s",
                index,
                job_id,
                exc,
                extra={"source_url": source.source_url},
            )
            return MigrationResult(index=index, ok=False, error=str(exc) or type(exc).__name__)
        except Exception as exc:
            logger.exception(
                "Unexpected error migrating output %d of job %s",
                index,
                job_id,
                extra={"source_url": source.source_url},
            )
            return MigrationResult(index=index, ok=False, error=f"{type(exc).__name__}: {exc}")

        thumbnail_url = await self._store_thumbnail(job_id, owner_id, index, source, data)
        return MigrationResult(
            index=index,
            ok=True,
            permanent_url=permanent_url,
            thumbnail_url=thumbnail_url,
        )

    async def _fetch(
        self, client: httpx.AsyncClient, source: MigrationSource
    ) -> tuple[bytes, str]:
        response = await client.get(source.source_url)
        if 400 <= response.status_code < 500 and response.status_code != 429:
            # Expired or revoked provider URL; retrying will not help
            raise StorageMigrationError(
                f"Source returned {response.status_code}: {source.source_url}"
            )
        response.raise_for_status()
        if not response.content:
            raise StorageMigrationError(f"Source returned an empty body: {source.source_url}")
        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        return response.content, content_type or _DEFAULT_CONTENT_TYPE[source.kind]

    async def _store_thumbnail(
        self,
        job_id: str,
        owner_id: int,
        index: int,
        source: MigrationSource,
        data: bytes,
    ) -> Optional[str]:
        """Derive and store a thumbnail. Failure only costs the thumbnail."""
        try:
            if source.kind == OUTPUT_VIDEO:
                thumb = await asyncio.to_thread(make_video_poster)
            else:
                thumb = await asyncio.to_thread(
                    make_image_thumbnail, data, self.thumbnail_max_size
                )
            key = thumbnail_key(owner_id, job_id, index)
            return await self._with_retries(
                lambda: asyncio.to_thread(self.storage.put, key, thumb, "image/jpeg"),
                f"store thumbnail {index}",
            )
        except (
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
            ValueError,
            StorageError,
        ) as exc:
            logger.warning("Thumbnail for output %d of job %s failed: %s", index, job_id, exc)
            return None

    async def _with_retries(self, op: Callable[[], Awaitable[T]], what: str) -> T:
        for attempt in range(1, self.attempts + 1):
            try:
                return await op()
            except (httpx.HTTPError, StorageError) as exc:
                if attempt == self.attempts or not _is_retryable(exc):
                    raise
                logger.warning("%s failed (attempt %d): %s", what, attempt, exc)
                await asyncio.sleep(self.backoff_seconds * 2 ** (attempt - 1))
        raise AssertionError("unreachable")
