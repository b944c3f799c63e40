"""Image processing for image-type answers.

Uploaded photos are bounded before they reach the object store: the raw
file must fit ``MAX_INPUT_BYTES``; it is then downscaled to fit inside
``MAX_IMAGE_DIMENSION`` square and re-encoded as JPEG, trying each quality
in ``JPEG_QUALITIES`` until the result fits ``MAX_OUTPUT_BYTES``.

The object key is derived from (event, question, session) so a session's
re-upload for the same question overwrites its previous image.
"""

from __future__ import annotations

import io
import time
import uuid
from dataclasses import dataclass
from typing import Sequence

from PIL import Image, ImageOps, UnidentifiedImageError

from livepoll_core.constants import (
    IMAGE_CONTENT_TYPE,
    JPEG_QUALITIES,
    MAX_IMAGE_DIMENSION,
    MAX_INPUT_BYTES,
    MAX_OUTPUT_BYTES,
)
from livepoll_core.errors import UploadFailed, UploadFailureCause, ValidationFailed


@dataclass(frozen=True)
class ImageUpload:
    """A raw file attachment as received from the participant."""

    data: bytes
    filename: str | None = None
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    width: int
    height: int
    quality: int
    content_type: str = IMAGE_CONTENT_TYPE


def object_key(event_id: uuid.UUID, question_id: uuid.UUID, session_id: str) -> str:
    return f"{event_id}/{question_id}/{session_id}.jpg"


def cache_busted(url: str, *, at: float | None = None) -> str:
    """Append a millisecond timestamp so clients refetch overwritten images."""
    stamp = int((time.time() if at is None else at) * 1000)
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}t={stamp}"


def _flatten(img: Image.Image) -> Image.Image:
    """JPEG has no alpha channel: composite transparent images onto white."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def prepare_image(
    upload: ImageUpload,
    *,
    max_input_bytes: int = MAX_INPUT_BYTES,
    max_dimension: int = MAX_IMAGE_DIMENSION,
    max_output_bytes: int = MAX_OUTPUT_BYTES,
    qualities: Sequence[int] = JPEG_QUALITIES,
) -> EncodedImage:
    """Validate, downscale and re-encode an upload.

    CPU-bound; async callers run it in a worker thread.

    Raises:
        ValidationFailed: empty or unreadable file.
        UploadFailed: (TOO_LARGE) input over the ceiling, or no quality
            brings the output under ``max_output_bytes``.
    """
    if not upload.data:
        raise ValidationFailed("Image file is empty", user_message="Please attach an image.")
    if upload.size > max_input_bytes:
        raise UploadFailed(
            f"Image is {upload.size} bytes, limit is {max_input_bytes}",
            cause=UploadFailureCause.TOO_LARGE,
        )

    try:
        with Image.open(io.BytesIO(upload.data)) as src:
            # Honour the camera's orientation tag before resizing
            img = ImageOps.exif_transpose(src)
            img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationFailed(
            f"Unreadable image: {exc}",
            user_message="The attached file is not a supported image.",
        ) from exc

    img = _flatten(img)
    img.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)

    last_size = 0
    for quality in qualities:
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=quality, optimize=True)
        data = buf.getvalue()
        if len(data) <= max_output_bytes:
            return EncodedImage(data=data, width=img.width, height=img.height, quality=quality)
        last_size = len(data)

    raise UploadFailed(
        f"Encoded image is {last_size} bytes at lowest quality, limit is {max_output_bytes}",
        cause=UploadFailureCause.TOO_LARGE,
    )
