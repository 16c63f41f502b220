"""Full-screen capture for ChatSentry.

Screenshots are taken with Pillow's ImageGrab, which covers Windows, macOS
and X11, and handed to the rest of the pipeline as PNG bytes.
"""

from io import BytesIO
from pathlib import Path
from typing import Optional
import structlog

from PIL import Image, ImageGrab

from chatsentry import CaptureError


class ScreenCapturer:
    """Captures the whole screen as an encoded image buffer."""

    def __init__(self, logger: Optional[structlog.BoundLogger] = None, all_screens: bool = False):
        """Initialize the screen capturer.

        Args:
            logger: Structured logger for operation tracking
            all_screens: Grab every attached display instead of the primary one (Windows only)
        """
        self.logger = logger or structlog.get_logger(__name__)
        self.all_screens = all_screens
        self.capture_count = 0

    def _grab(self) -> Optional[Image.Image]:
        return ImageGrab.grab(all_screens=self.all_screens)

    def capture_full_screen(self) -> bytes:
        """Capture the full screen.

        Returns:
            PNG-encoded screenshot bytes

        Raises:
            CaptureError: If the OS screenshot call fails or produces no output
        """
        try:
            screenshot = self._grab()
        except Exception as e:
            self.logger.error("Fullscreen capture failed", error=str(e))
            raise CaptureError(f"Screenshot failed: {e}") from e

        if screenshot is None or screenshot.width == 0 or screenshot.height == 0:
            self.logger.error("Fullscreen capture produced no image")
            raise CaptureError("Screenshot produced no output")

        buffer = BytesIO()
        screenshot.save(buffer, format="PNG")
        data = buffer.getvalue()
        if not data:
            raise CaptureError("Screenshot produced no output")

        self.capture_count += 1
        self.logger.debug("Fullscreen capture successful",
                        dimensions=(screenshot.width, screenshot.height),
                        size_kb=len(data) // 1024)
        return data


def save_image(image: bytes, output_path: Path) -> Path:
    """Write an encoded image buffer to disk.

    Args:
        image: Encoded image bytes
        output_path: Destination file

    Returns:
        The path written
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(image)
    return output_path
