"""
Calibration image decoding.

Files are read as bytes and decoded with ``cv2.imdecode``, so non-ASCII
paths work on every platform. A file that cannot be turned into an image
comes back as a :class:`DecodedImage` that carries the reason instead of
the pixels; the extractors report it as an image-decode skip.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np
from numpy.typing import NDArray

from pinhole_calib.core.types import FileFormatError
from pinhole_calib.utils.logging import get_logger

logger = get_logger("io.image_loader")


# Extensions OpenCV decodes in a default build
IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".bmp", ".tiff", ".tif", ".webp"})


@dataclass(frozen=True)
class DecodedImage:
    """A calibration image, or the reason it could not be decoded.

    Attributes:
        source: Path the image came from; None for in-memory arrays.
        image: Decoded pixels, or None on failure.
        error: Why decoding failed.
    """
    source: Optional[str]
    image: Optional[NDArray] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.image is not None


class ImageLoader:
    """Reads calibration images without raising on bad files.

    Example:
        >>> decoded = ImageLoader().read("C:/圖片/board_01.jpg")
        >>> if not decoded.ok:
        ...     print(decoded.error)
    """

    def __init__(self, flags: int = cv2.IMREAD_GRAYSCALE):
        """
        Args:
            flags: ``cv2.imdecode`` flags (default: 8-bit grayscale).
        """
        self.flags = flags

    def read(self, path: Union[str, Path]) -> DecodedImage:
        """Decode one image file.

        Args:
            path: Image path (Unicode allowed).

        Returns:
            DecodedImage with pixels, or with the failure reason.
        """
        path = Path(path)
        source = str(path)

        if not path.exists():
            return self._failed(source, "file not found")
        if not path.is_file():
            return self._failed(source, "not a regular file")

        try:
            data = path.read_bytes()
        except OSError as e:
            return self._failed(source, f"cannot read file ({e.strerror or e})")
        if not data:
            return self._failed(source, "file is empty")

        try:
            image = cv2.imdecode(np.frombuffer(data, np.uint8), self.flags)
        except cv2.error as e:
            return self._failed(source, f"decoder error ({e})")

        if image is None:
            suffix = path.suffix.lower() or "no extension"
            if suffix not in IMAGE_EXTENSIONS:
                return self._failed(source, f"unsupported image format ({suffix})")
            return self._failed(source, f"corrupt or truncated {suffix} data")

        logger.debug(f"Decoded {source} ({image.shape[1]}x{image.shape[0]})")
        return DecodedImage(source, image)

    @staticmethod
    def _failed(source: str, reason: str) -> DecodedImage:
        logger.warning(f"Cannot decode {source}: {reason}")
        return DecodedImage(source, error=f"Cannot decode {source}: {reason}")


def write_image(path: Union[str, Path], image: NDArray) -> Path:
    """Encode an image by its extension and write it, creating parent folders.

    Raises:
        FileFormatError: If OpenCV cannot encode the image for the extension.
        OSError: If the file cannot be written.
    """
    path = Path(path)
    try:
        success, encoded = cv2.imencode(path.suffix.lower(), image)
    except cv2.error as e:
        raise FileFormatError(f"Cannot encode image as {path.suffix or 'no extension'}: {e}") from e
    if not success:
        raise FileFormatError(f"Cannot encode image as {path.suffix or 'no extension'}")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encoded.tobytes())
    logger.debug(f"Wrote image: {path}")
    return path
