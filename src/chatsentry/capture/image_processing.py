"""Image preparation for vision model requests and UI previews."""

from io import BytesIO
from typing import Optional, Tuple
import structlog

from PIL import Image

from chatsentry import CropError
from chatsentry.core.models import Rect


def image_size(image: bytes) -> Tuple[int, int]:
    """Return (width, height) of an encoded image."""
    with Image.open(BytesIO(image)) as img:
        return img.size


def _encode(pil_image: Image.Image, fmt: str, quality: int) -> bytes:
    fmt = fmt.upper()
    if fmt in ("JPEG", "JPG"):
        fmt = "JPEG"
        if pil_image.mode not in ("RGB", "L"):
            pil_image = pil_image.convert("RGB")
    buffer = BytesIO()
    if fmt == "PNG":
        pil_image.save(buffer, format=fmt, optimize=True)
    else:
        pil_image.save(buffer, format=fmt, quality=quality)
    return buffer.getvalue()


class ImagePreprocessor:
    """Crops, downsizes and re-encodes screenshots."""

    def __init__(self, logger: Optional[structlog.BoundLogger] = None):
        self.logger = logger or structlog.get_logger(__name__)

    def crop(self, image: bytes, rect: Rect) -> bytes:
        """Crop an encoded image to a rectangle.

        Args:
            image: Encoded source image
            rect: Rectangle in source pixel coordinates

        Returns:
            PNG-encoded crop

        Raises:
            CropError: If the rectangle is empty or not fully inside the image
        """
        with Image.open(BytesIO(image)) as img:
            width, height = img.size
            if not rect.fits_within(width, height):
                raise CropError(
                    f"Crop area {rect.as_dict()} is outside the {width}x{height} screenshot"
                )
            cropped = img.crop((rect.x, rect.y, rect.right, rect.bottom))
            cropped.load()

        return _encode(cropped, "PNG", 100)

    def resize_for_model(self, image: bytes, max_side: int, fmt: str = "PNG", quality: int = 85) -> bytes:
        """Downscale so the longer side is at most max_side, then re-encode.

        Never upscales. Used before every model call since oversized images
        make the vision endpoint fail to decode them.

        Args:
            image: Encoded source image
            max_side: Upper bound for the longer side in pixels
            fmt: Target format (PNG or JPEG)
            quality: Encoder quality for lossy formats

        Returns:
            Re-encoded image bytes
        """
        with Image.open(BytesIO(image)) as img:
            img.load()
            width, height = img.size
            longer = max(width, height)
            if longer > max_side:
                ratio = max_side / longer
                new_size = (max(1, int(width * ratio)), max(1, int(height * ratio)))
                resized = img.resize(new_size, Image.Resampling.LANCZOS)
                self.logger.debug("Image resized for model",
                                original_size=f"{width}x{height}",
                                new_size=f"{new_size[0]}x{new_size[1]}")
            else:
                resized = img.copy()

        return _encode(resized, fmt, quality)

    def make_thumbnail(self, image: bytes, max_width: int = 320) -> bytes:
        """Build a small lossy JPEG preview for UI feedback."""
        with Image.open(BytesIO(image)) as img:
            img.load()
            preview = img.copy()
        if preview.width > max_width:
            ratio = max_width / preview.width
            preview.thumbnail((max_width, max(1, int(preview.height * ratio))))
        return _encode(preview, "JPEG", 60)
