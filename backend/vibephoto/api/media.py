"""Serves objects written by the local storage backend.

Stable URL pattern: /api/media/owner/{owner_id}/job/{job_id}/{index}
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from vibephoto.deps import get_services
from vibephoto.services.storage import LocalStorage
from vibephoto.wiring import Services

router = APIRouter(prefix="/api/media", tags=["media"])

# Keys carry no extension, so the type is sniffed from the leading bytes
_SIGNATURES: tuple[tuple[bytes, int, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", 0, "image/png"),
    (b"\xff\xd8\xff", 0, "image/jpeg"),
    (b"GIF8", 0, "image/gif"),
    (b"ftyp", 4, "video/mp4"),
    (b"\x1aE\xdf\xa3", 0, "video/webm"),
)


def sniff_media_type(head: bytes) -> str:
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    for magic, offset, media_type in _SIGNATURES:
        if head[offset:offset + len(magic)] == magic:
            return media_type
    return "application/octet-stream"


@router.get("/{key:path}")
def serve_media(key: str, services: Services = Depends(get_services)) -> FileResponse:
    """Serve a stored object. Path traversal outside the storage root is a 404."""
    storage = services.storage
    if not isinstance(storage, LocalStorage):
        raise HTTPException(status_code=404, detail="Not found")

    path = storage.resolve(key)
    if path is None or not path.is_file():
        raise HTTPException(status_code=404, detail="Not found")

    with path.open("rb") as fh:
        head = fh.read(16)
    return FileResponse(path, media_type=sniff_media_type(head))
