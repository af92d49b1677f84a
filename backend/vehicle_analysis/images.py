"""
Image intake - source loading, validation, and preparation for inlining.

Fingerprints are taken from the bytes returned by load_image_source; the
re-encoded attachment is only what gets sent to the inference service.
"""

import base64
import binascii
import io
import logging
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, ImageOps

from vehicle_analysis.models import InvalidImageError
from vehicle_analysis.config import (
    MAX_IMAGE_BYTES,
    ALLOWED_IMAGE_FORMATS,
    ANALYSIS_MAX_PX,
    ANALYSIS_JPEG_QUALITY,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageAttachment:
    """Binary image ready to be base64-inlined into a model request."""
    data: bytes
    mime_type: str

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


def load_image_source(source: bytes | str | Path) -> bytes:
    """
    Resolves an image source to raw bytes.

    Accepts raw bytes, a "data:<mime>;base64,<payload>" URL, or a
    filesystem path.

    Raises:
        InvalidImageError: If the source cannot be read or decoded.
    """
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)

    if isinstance(source, str) and source.startswith("data:"):
        _, _, payload = source.partition(",")
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidImageError(f"Data URL is not valid base64: {e}") from e

    path = Path(source)
    try:
        return path.read_bytes()
    except OSError as e:
        raise InvalidImageError(f"Failed to read image '{path.name}': {e}") from e


def prepare_attachment(image_bytes: bytes) -> ImageAttachment:
    """
    Validates an image and re-encodes it for the inference service.

    Pipeline:
    1. Size check
    2. Decode and verify
    3. Format check
    4. Apply EXIF orientation
    5. Downscale to fit ANALYSIS_MAX_PX (never enlarges)
    6. Re-encode as RGB JPEG

    Raises:
        InvalidImageError: For oversized, corrupt, or unsupported images.
    """
    size_mb = len(image_bytes) / (1024 * 1024)
    if len(image_bytes) > MAX_IMAGE_BYTES:
        raise InvalidImageError(
            f"Image too large: {size_mb:.1f}MB (max {MAX_IMAGE_BYTES / (1024 * 1024):.0f}MB)"
        )

    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.verify()
        img = Image.open(io.BytesIO(image_bytes))
    except Exception as e:
        raise InvalidImageError("Invalid image - file is corrupted or not an image") from e

    if img.format not in ALLOWED_IMAGE_FORMATS:
        raise InvalidImageError(
            f"Unsupported format: {img.format} (only {', '.join(sorted(ALLOWED_IMAGE_FORMATS))} allowed)"
        )

    try:
        img = ImageOps.exif_transpose(img)
        img.thumbnail((ANALYSIS_MAX_PX, ANALYSIS_MAX_PX), Image.Resampling.LANCZOS)
        img = img.convert("RGB")

        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=ANALYSIS_JPEG_QUALITY)
    except Exception as e:
        raise InvalidImageError(f"Image preparation failed: {e}") from e

    log.debug("prepared attachment %sx%s (%d bytes)", img.width, img.height, buf.tell())
    return ImageAttachment(data=buf.getvalue(), mime_type="image/jpeg")
