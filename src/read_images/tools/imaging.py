"""Image preprocessing: load, bound the size, re-encode as JPEG, base64.

Every call runs the whole pipeline again.  Nothing is cached or written to
disk, so asking several questions about the same file repeats the work.
"""
from __future__ import annotations

import asyncio
import base64
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from ..config import ResizeProfile
from .errors import ImageDecodeError, ImageReadError

log = logging.getLogger(__name__)

MIME_TYPE = "image/jpeg"


@dataclass(frozen=True)
class ImageArtifact:
    raw_bytes: bytes = field(repr=False)
    width: int
    height: int
    encoded_bytes: bytes = field(repr=False)
    out_width: int
    out_height: int

    @property
    def base64(self) -> str:
        return base64.standard_b64encode(self.encoded_bytes).decode("ascii")


def target_size(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Scale so the larger side equals *max_dimension*; smaller images are left alone."""
    larger = max(width, height)
    if larger <= max_dimension:
        return width, height
    if width >= height:
        return max_dimension, max(1, round(height * max_dimension / width))
    return max(1, round(width * max_dimension / height)), max_dimension


def read_image_bytes(path: str | Path) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        reason = exc.strerror or exc.__class__.__name__
        raise ImageReadError(f"Cannot read image file {path}: {reason}") from exc


def encode_image(raw: bytes, profile: ResizeProfile) -> tuple[bytes, int, int, int, int]:
    """Return ``(jpeg_bytes, width, height, out_width, out_height)`` for *raw*."""
    try:
        with Image.open(io.BytesIO(raw)) as img:
            width, height = img.size
            img = ImageOps.exif_transpose(img)
            size = target_size(img.width, img.height, profile.max_dimension)
            if size != img.size:
                img = img.resize(size, Image.LANCZOS)
            buf = io.BytesIO()
            img.convert("RGB").save(buf, format="JPEG", quality=profile.quality)
    except UnidentifiedImageError as exc:
        raise ImageDecodeError("Unsupported or corrupt image data") from exc
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError(f"Failed to decode image: {exc}") from exc
    return buf.getvalue(), width, height, size[0], size[1]


def prepare_image(path: str | Path, profile: ResizeProfile) -> ImageArtifact:
    raw = read_image_bytes(path)
    log.debug("Read %d bytes from %s", len(raw), path)
    encoded, width, height, out_w, out_h = encode_image(raw, profile)
    log.info(
        "Prepared %s: %dx%d -> %dx%d, %d bytes JPEG q=%d",
        path, width, height, out_w, out_h, len(encoded), profile.quality,
    )
    return ImageArtifact(
        raw_bytes=raw,
        width=width,
        height=height,
        encoded_bytes=encoded,
        out_width=out_w,
        out_height=out_h,
    )


async def load_image(path: str | Path, profile: ResizeProfile) -> ImageArtifact:
    # File I/O and decoding run off the event loop so the transport keeps reading.
    return await asyncio.to_thread(prepare_image, path, profile)
