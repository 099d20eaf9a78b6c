"""Thumbnail derivation for migrated outputs."""

import io
import logging

from PIL import Image, ImageDraw

logger = logging.getLogger(__name__)

POSTER_SIZE = (320, 180)
_POSTER_TOP = (99, 102, 241)
_POSTER_BOTTOM = (139, 92, 246)


def make_image_thumbnail(data: bytes, max_size: int = 512) -> bytes:
    """Downscale an image so its longest side is at most ``max_size``.

    The result is always a JPEG; palette and alpha modes are flattened to RGB.

    Raises:
        PIL.UnidentifiedImageError: if ``data`` is not a decodable image.
    """
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        img.thumbnail((max_size, max_size), Image.LANCZOS)
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=80, optimize=True)
    return buf.getvalue()


def make_video_poster(size: tuple[int, int] = POSTER_SIZE) -> bytes:
    """Render a placeholder poster (vertical gradient plus a play glyph).

    Frame extraction would need ffmpeg in the runtime image, so video jobs get
    a generic poster instead.
    """
    width, height = size
    img = Image.new("RGB", size)
    draw = ImageDraw.Draw(img)
    for y in range(height):
        t = y / max(1, height - 1)
        color = tuple(
            round(top + (bottom - top) * t)
            for top, bottom in zip(_POSTER_TOP, _POSTER_BOTTOM)
        )
        draw.line([(0, y), (width, y)], fill=color)

    cx, cy = width // 2, height // 2
    radius = min(width, height) // 5
    draw.ellipse(
        [(cx - radius, cy - radius), (cx + radius, cy + radius)],
        fill=(255, 255, 255),
    )
    side = radius
    draw.polygon(
        [
            (cx - side // 3, cy - side // 2),
            (cx - side // 3, cy + side // 2),
            (cx + side // 2, cy),
        ],
        fill=_POSTER_TOP,
    )

    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=85)
    return buf.getvalue()
