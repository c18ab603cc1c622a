"""Resize + JPEG quality stepping so images sent for inference stay near a byte budget."""
import io
import logging
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from app.core.errors import ImageProcessingError

logger = logging.getLogger(__name__)

DEFAULT_MAX_DIMENSION = 1024
DEFAULT_QUALITY = 80
DEFAULT_TARGET_BYTES = 100 * 1024
QUALITY_STEP = 10
QUALITY_FLOOR = 20
OUTPUT_MIME_TYPE = "image/jpeg"


@dataclass(frozen=True)
class CompressionResult:
    buffer: bytes
    original_size: int
    compressed_size: int
    ratio: float
    width: int
    height: int
    quality: int
    format: str = "jpeg"


def calculate_dimensions(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """Fit inside max_width x max_height keeping aspect ratio. Never upscales."""
    if width <= max_width and height <= max_height:
        return width, height
    ratio = min(max_width / width, max_height / height)
    return max(1, round(width * ratio)), max(1, round(height * ratio))


def _encode_jpeg(image: Image.Image, quality: int) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality, optimize=True)
    return buffer.getvalue()


class ImageTranscoder:
    """Stateless; one instance is shared by every request."""

    def __init__(
        self,
        max_width: int = DEFAULT_MAX_DIMENSION,
        max_height: int = DEFAULT_MAX_DIMENSION,
        quality: int = DEFAULT_QUALITY,
        target_bytes: int = DEFAULT_TARGET_BYTES,
    ) -> None:
        self.max_width = max_width
        self.max_height = max_height
        self.quality = quality
        self.target_bytes = target_bytes

    def compress(
        self,
        data: bytes,
        *,
        max_width: int | None = None,
        max_height: int | None = None,
        quality: int | None = None,
        target_bytes: int | None = None,
    ) -> CompressionResult:
        max_width = self.max_width if max_width is None else max_width
        max_height = self.max_height if max_height is None else max_height
        quality = max(self.quality if quality is None else quality, QUALITY_FLOOR)
        target_bytes = self.target_bytes if target_bytes is None else target_bytes
        original_size = len(data)

        try:
            with Image.open(io.BytesIO(data)) as source:
                source.load()
                width, height = calculate_dimensions(source.width, source.height, max_width, max_height)
                image = source.convert("RGB")
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
            raise ImageProcessingError(f"Image could not be decoded: {e}") from e
        if (width, height) != image.size:
            image = image.resize((width, height), Image.Resampling.LANCZOS)

        # Every pass encodes the resized original pixels, never the previous JPEG output
        current_quality = quality
        compressed = _encode_jpeg(image, current_quality)
        while len(compressed) > target_bytes and current_quality > QUALITY_FLOOR:
            current_quality = max(current_quality - QUALITY_STEP, QUALITY_FLOOR)
            compressed = _encode_jpeg(image, current_quality)

        if len(compressed) > target_bytes:
            logger.info("Quality floor reached with %d bytes (target %d)", len(compressed), target_bytes)
        return CompressionResult(
            buffer=compressed,
            original_size=original_size,
            compressed_size=len(compressed),
            ratio=original_size / len(compressed) if compressed else 0.0,
            width=width,
            height=height,
            quality=current_quality,
        )

