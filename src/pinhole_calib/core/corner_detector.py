"""
Chessboard correspondence extraction.

Finds the full grid of inner chessboard corners with OpenCV's
adaptive-threshold detector, refines them to sub-pixel accuracy and pairs
them row-major with the target's reference points.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np
from numpy.typing import NDArray

from pinhole_calib.core.target import generate_reference_points
from pinhole_calib.core.types import (
    ErrorKind,
    ExtractionOutcome,
    TargetConfig,
    TargetKind,
    UnsupportedTargetTypeError,
    ViewObservation,
)
from pinhole_calib.io.image_loader import DecodedImage, ImageLoader
from pinhole_calib.utils.logging import get_logger

logger = get_logger("core.corner_detector")


# Corner refinement criteria, shared by both target kinds
SUBPIX_CRITERIA = (
    cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER,
    30,  # max iterations
    0.001,  # epsilon
)

# Subpixel refinement window size
SUBPIX_WINDOW_SIZE = (11, 11)
SUBPIX_ZERO_ZONE = (-1, -1)


def to_grayscale(image: NDArray) -> NDArray[np.uint8]:
    """Convert a decoded image to single-channel 8-bit intensity."""
    if image.ndim == 3 and image.shape[2] == 4:
        gray = cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    elif image.ndim == 3 and image.shape[2] == 3:
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    elif image.ndim == 3:
        gray = image[:, :, 0]
    else:
        gray = image

    if gray.dtype != np.uint8:
        gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
    return gray


def load_view_image(
    image: Union[str, Path, NDArray],
    loader: ImageLoader,
) -> DecodedImage:
    """Resolve a path or array to a grayscale image, or the decode failure."""
    if isinstance(image, (str, Path)):
        decoded = loader.read(image)
        if not decoded.ok:
            return decoded
        return DecodedImage(decoded.source, to_grayscale(decoded.image))
    return DecodedImage(None, to_grayscale(image))


class ChessboardExtractor:
    """Chessboard corner extractor.

    Only complete grids are accepted; a partially visible board yields a
    skipped outcome.

    Example:
        >>> config = TargetConfig(TargetKind.CHESSBOARD, 9, 6, 25.0)
        >>> extractor = ChessboardExtractor(config)
        >>> outcome = extractor.extract("calibration_image.jpg")
        >>> if outcome.found:
        ...     print(f"Found {outcome.view.num_points} corners")
    """

    # Detection flags
    DEFAULT_FLAGS = (
        cv2.CALIB_CB_ADAPTIVE_THRESH
        | cv2.CALIB_CB_NORMALIZE_IMAGE
        | cv2.CALIB_CB_FAST_CHECK
    )

    def __init__(
        self,
        config: TargetConfig,
        refine_corners: bool = True,
        detection_flags: Optional[int] = None,
        image_loader: Optional[ImageLoader] = None,
    ):
        """Initialize the extractor.

        Args:
            config: Chessboard target configuration.
            refine_corners: Whether to refine corners with subpixel accuracy.
            detection_flags: OpenCV detection flags (default: adaptive + normalize + fast).
            image_loader: Loader used when a path is passed to :meth:`extract`.
        """
        if config.kind is not TargetKind.CHESSBOARD:
            raise UnsupportedTargetTypeError(
                f"ChessboardExtractor cannot handle target type {config.kind.value}"
            )
        self.config = config
        self.refine_corners = refine_corners
        self.detection_flags = self.DEFAULT_FLAGS if detection_flags is None else detection_flags
        self._image_loader = image_loader or ImageLoader()
        self._reference_points = generate_reference_points(config)

    def extract(self, image: Union[str, Path, NDArray]) -> ExtractionOutcome:
        """Extract chessboard correspondences from an image.

        Args:
            image: Image path or numpy array.

        Returns:
            ExtractionOutcome with the view, or the reason it was skipped.
        """
        decoded = load_view_image(image, self._image_loader)
        if not decoded.ok:
            return ExtractionOutcome.skipped(
                decoded.source, ErrorKind.IMAGE_DECODE_FAILURE, decoded.error
            )
        gray, source = decoded.image, decoded.source

        height, width = gray.shape[:2]
        image_size = (width, height)
        label = source or "array"

        try:
            found, corners = cv2.findChessboardCorners(
                gray, self.config.pattern_size, flags=self.detection_flags
            )
        except cv2.error as e:
            logger.warning(f"Chessboard detection error for {label}: {e}")
            return ExtractionOutcome.skipped(
                source, ErrorKind.TARGET_NOT_FOUND, f"Detection error: {e}", image_size
            )

        if not found or corners is None:
            logger.debug(f"Corner detection failed for: {label}")
            return ExtractionOutcome.skipped(
                source, ErrorKind.TARGET_NOT_FOUND, "No checkerboard pattern found", image_size
            )

        # Verify corner count
        expected_corners = self.config.num_corners
        if len(corners) != expected_corners:
            return ExtractionOutcome.skipped(
                source,
                ErrorKind.TARGET_NOT_FOUND,
                f"Expected {expected_corners} corners, found {len(corners)}",
                image_size,
            )

        # Refine corners with subpixel accuracy
        if self.refine_corners:
            corners = cv2.cornerSubPix(
                gray,
                corners,
                SUBPIX_WINDOW_SIZE,
                SUBPIX_ZERO_ZONE,
                SUBPIX_CRITERIA,
            )

        logger.debug(f"Detected {len(corners)} corners in: {label}")

        view = ViewObservation(
            image_size=image_size,
            object_points=self._reference_points,
            image_points=corners.reshape(-1, 2),
            source=source,
        )
        return ExtractionOutcome.accepted(view)
