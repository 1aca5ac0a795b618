"""Decode, downsize and re-encode uploaded images before they reach a provider."""

from __future__ import annotations

import io
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass

from PIL import Image, ImageEnhance, ImageOps, UnidentifiedImageError

from ..config import AppConfig
from ..errors import DecodeError, PayloadTooLarge
from ..models.base import PreparedImage

logger = logging.getLogger(__name__)

JPEG_CONTENT_TYPE = "image/jpeg"


@dataclass(frozen=True, slots=True)
class ImageConstraints:
    """Size and quality budgets applied while preparing an image."""

    max_upload_bytes: int = 50 * 1024 * 1024
    max_dimension: int = 768
    payload_budget_bytes: int = 4 * 1024 * 1024
    jpeg_quality: int = 85
    min_jpeg_quality: int = 10
    jpeg_quality_step: int = 10

    @classmethod
    def from_config(cls, config: AppConfig) -> ImageConstraints:
        return cls(
            max_upload_bytes=config.max_upload_bytes,
            max_dimension=config.max_dimension,
            payload_budget_bytes=config.payload_budget_bytes,
            jpeg_quality=config.jpeg_quality,
            min_jpeg_quality=config.min_jpeg_quality,
            jpeg_quality_step=config.jpeg_quality_step,
        )

    def quality_ladder(self) -> list[int]:
        """JPEG qualities to try, best first, always ending at the minimum."""
        ladder = list(range(self.jpeg_quality, self.min_jpeg_quality, -self.jpeg_quality_step))
        ladder.append(self.min_jpeg_quality)
        return ladder


def _decode(raw: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(raw))
        image.load()
        return ImageOps.exif_transpose(image)
    except Image.DecompressionBombError as exc:
        raise DecodeError(f"Image dimensions are too large to decode safely: {exc}") from exc
    except UnidentifiedImageError as exc:
        raise DecodeError("Unrecognised image format.") from exc
    except (OSError, SyntaxError, ValueError) as exc:
        raise DecodeError(f"Image data is corrupt or truncated: {exc}") from exc


def _to_rgb(image: Image.Image) -> Image.Image:
    if image.mode == "RGB":
        return image
    has_alpha = image.mode in ("RGBA", "LA") or (
        image.mode == "P" and "transparency" in image.info
    )
    if not has_alpha:
        return image.convert("RGB")
    rgba = image.convert("RGBA")
    background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
    return Image.alpha_composite(background, rgba).convert("RGB")


def _fit_within(image: Image.Image, max_dimension: int) -> Image.Image:
    width, height = image.size
    longest = max(width, height)
    if longest <= max_dimension:
        return image
    ratio = max_dimension / longest
    target = (max(1, round(width * ratio)), max(1, round(height * ratio)))
    return image.resize(target, Image.Resampling.LANCZOS)


def _encode_jpeg(image: Image.Image, quality: int) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality, optimize=True)
    return buffer.getvalue()


def prepare_image(raw: bytes, constraints: ImageConstraints) -> PreparedImage:
    """Decode ``raw``, bound its dimensions and re-encode it under the payload budget."""
    if len(raw) > constraints.max_upload_bytes:
        raise PayloadTooLarge(
            f"Image is {len(raw)} bytes; the limit is {constraints.max_upload_bytes} bytes."
        )

    decoded = _decode(raw)
    resized = _fit_within(_to_rgb(decoded), constraints.max_dimension)

    smallest = 0
    for quality in constraints.quality_ladder():
        encoded = _encode_jpeg(resized, quality)
        if len(encoded) <= constraints.payload_budget_bytes:
            logger.debug(
                "Prepared %dx%d image at quality %d: %d -> %d bytes",
                resized.width,
                resized.height,
                quality,
                len(raw),
                len(encoded),
            )
            return PreparedImage(
                data=encoded,
                content_type=JPEG_CONTENT_TYPE,
                width=resized.width,
                height=resized.height,
                original_size=len(raw),
                quality=quality,
            )
        smallest = len(encoded)

    raise PayloadTooLarge(
        f"Encoded image is {smallest} bytes at minimum quality; "
        f"the budget is {constraints.payload_budget_bytes} bytes."
    )


def make_thumbnail(raw: bytes, *, size: int = 300, brightness: float = 1.1) -> bytes:
    """Return a brightened JPEG thumbnail no larger than ``size`` on its longest side."""
    image = _to_rgb(_decode(raw))
    image.thumbnail((size, size), Image.Resampling.BILINEAR)
    enhanced = ImageEnhance.Brightness(image).enhance(brightness)
    return _encode_jpeg(enhanced, 85)


class ImagePreprocessor:
    """Runs image preparation on a bounded pool separate from request threads."""

    def __init__(self, constraints: ImageConstraints, *, max_workers: int) -> None:
        self.constraints = constraints
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="eyeris-preprocess",
        )

    @classmethod
    def from_config(cls, config: AppConfig) -> ImagePreprocessor:
        return cls(ImageConstraints.from_config(config), max_workers=config.preprocess_workers)

    def submit(self, raw: bytes) -> Future[PreparedImage]:
        return self._executor.submit(prepare_image, raw, self.constraints)

    def submit_thumbnail(self, raw: bytes, *, size: int, brightness: float) -> Future[bytes]:
        return self._executor.submit(make_thumbnail, raw, size=size, brightness=brightness)

    def prepare(self, raw: bytes, *, timeout: float | None = None) -> PreparedImage:
        """Prepare ``raw`` on the pool and wait up to ``timeout`` seconds for it."""
        return self.submit(raw).result(timeout=timeout)

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)
