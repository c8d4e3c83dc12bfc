"""
Image acquisition.

Turns an uploaded file or a live camera frame into a single data URI
(``data:<media type>;base64,<payload>``), which is the only image form the
rest of the service deals with.
"""
import base64
import logging
from io import BytesIO
from typing import Optional, Tuple

import cv2
from PIL import Image, UnidentifiedImageError

from ..errors import CameraUnavailable, FileTooLarge, UnsupportedFileType

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
CAPTURE_WIDTH = 1280
CAPTURE_HEIGHT = 720
JPEG_QUALITY = 85
DEFAULT_MEDIA_TYPE = "image/jpeg"


def encode_data_uri(data: bytes, media_type: str = DEFAULT_MEDIA_TYPE) -> str:
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


def strip_data_uri(image_data: str) -> str:
    """Return the base64 payload; unprefixed input is returned unchanged."""
    if "," in image_data:
        return image_data.split(",", 1)[1]
    return image_data


def media_type_for(image_data: str) -> str:
    if image_data.startswith("data:image/png"):
        return "image/png"
    if image_data.startswith("data:image/webp"):
        return "image/webp"
    return DEFAULT_MEDIA_TYPE


def parse_data_uri(image_data: str) -> Tuple[str, str]:
    return media_type_for(image_data), strip_data_uri(image_data)


def accept_upload(data: bytes, content_type: Optional[str], filename: Optional[str] = None) -> str:
    """Validate a user-selected file and return it as a data URI.

    Raises ``UnsupportedFileType`` when the declared type is not ``image/*`` or
    the bytes are not a readable image, and ``FileTooLarge`` above 10 MiB.
    """
    media_type = (content_type or "").split(";")[0].strip().lower()
    if not media_type.startswith("image/"):
        raise UnsupportedFileType()
    if len(data) > MAX_UPLOAD_BYTES:
        raise FileTooLarge()

    try:
        with Image.open(BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        logger.info("rejected upload %s: not a readable image (%s)", filename or "<unnamed>", e)
        raise UnsupportedFileType()

    return encode_data_uri(data, media_type)


class CameraSession:
    """Exclusive handle on a capture device.

    The device is released after a capture, on ``close()`` and on context
    exit, whichever comes first. Use as a context manager so error paths
    release it too.
    """

    def __init__(self, index: int = 0, width: int = CAPTURE_WIDTH, height: int = CAPTURE_HEIGHT):
        self.index = index
        self.width = width
        self.height = height
        self._capture = None

    @property
    def is_open(self) -> bool:
        return self._capture is not None

    def open(self) -> "CameraSession":
        if self._capture is not None:
            return self
        try:
            cap = cv2.VideoCapture(self.index)
        except cv2.error as e:
            raise CameraUnavailable() from e
        if not cap.isOpened():
            cap.release()
            raise CameraUnavailable()
        # Ideal resolution only; drivers may pick the nearest supported mode.
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._capture = cap
        logger.info("camera %s opened", self.index)
        return self

    def capture(self) -> str:
        """Grab the current frame as a JPEG data URI and release the device."""
        if self._capture is None:
            self.open()
        try:
            ok, frame = self._capture.read()
            if not ok or frame is None:
                raise CameraUnavailable("Could not read a frame from the camera.")
            ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), JPEG_QUALITY])
            if not ok:
                raise CameraUnavailable("Could not encode the captured frame.")
            return encode_data_uri(buf.tobytes(), "image/jpeg")
        except cv2.error as e:
            raise CameraUnavailable(f"Camera capture failed: {e}") from e
        finally:
            self.close()

    def close(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None
            logger.info("camera %s released", self.index)

    def __enter__(self) -> "CameraSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def capture_still(index: int = 0) -> str:
    with CameraSession(index) as camera:
        return camera.capture()
