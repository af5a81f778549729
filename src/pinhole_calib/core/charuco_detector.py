"""
ChArUco correspondence extraction.

Detects the board's ArUco markers, interpolates the chessboard corners
adjacent to them and emits a sparse set of correspondences, each tagged
with its stable corner identity. Partially occluded boards are accepted as
long as enough corners are identified.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np
from numpy.typing import NDArray

from pinhole_calib.core.corner_detector import (
    SUBPIX_CRITERIA,
    SUBPIX_WINDOW_SIZE,
    SUBPIX_ZERO_ZONE,
    load_view_image,
)
from pinhole_calib.core.target import create_charuco_board, generate_reference_points
from pinhole_calib.core.types import (
    ErrorKind,
    ExtractionOutcome,
    InvalidParameterError,
    TargetConfig,
    ViewObservation,
)
from pinhole_calib.io.image_loader import ImageLoader
from pinhole_calib.utils.logging import get_logger

logger = get_logger("core.charuco_detector")


# A view needs more than four identified corners
MIN_CHARUCO_CORNERS = 5


class CharucoExtractor:
    """ChArUco corner extractor.

    Example:
        >>> config = TargetConfig(TargetKind.CHARUCO, 6, 4, 30.0)
        >>> extractor = CharucoExtractor(config)
        >>> outcome = extractor.extract(frame)
        >>> outcome.view.point_ids if outcome.found else outcome.message
    """

    def __init__(
        self,
        config: TargetConfig,
        min_corners: int = MIN_CHARUCO_CORNERS,
        refine_corners: bool = True,
        image_loader: Optional[ImageLoader] = None,
    ):
        """Initialize the extractor.

        Args:
            config: ChArUco target configuration.
            min_corners: Minimum identified corners for a view to be accepted.
            refine_corners: Whether to refine interpolated corners with subpixel accuracy.
            image_loader: Loader used when a path is passed to :meth:`extract`.
        """
        if min_corners < 4:
            raise InvalidParameterError(f"min_corners must be >= 4, got {min_corners}")
        self.config = config
        self.min_corners = min_corners
        self.refine_corners = refine_corners
        self._image_loader = image_loader or ImageLoader()
        self._board = create_charuco_board(config)
        self._detector = cv2.aruco.CharucoDetector(self._board)
        self._reference_points = generate_reference_points(config)

    def extract(self, image: Union[str, Path, NDArray]) -> ExtractionOutcome:
        """Extract ChArUco correspondences from an image.

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
            charuco_corners, charuco_ids, _, marker_ids = self._detector.detectBoard(gray)
        except cv2.error as e:
            logger.warning(f"ChArUco detection error for {label}: {e}")
            return ExtractionOutcome.skipped(
                source, ErrorKind.TARGET_NOT_FOUND, f"Detection error: {e}", image_size
            )

        if marker_ids is None or len(marker_ids) == 0:
            logger.debug(f"No markers found in: {label}")
            return ExtractionOutcome.skipped(
                source,
                ErrorKind.TARGET_NOT_FOUND,
                f"No {self.config.dictionary_id} markers found",
                image_size,
            )

        num_corners = 0 if charuco_ids is None else len(charuco_ids)
        if num_corners < self.min_corners:
            return ExtractionOutcome.skipped(
                source,
                ErrorKind.TARGET_NOT_FOUND,
                f"Found {num_corners} ChArUco corners from {len(marker_ids)} markers, "
                f"need at least {self.min_corners}",
                image_size,
            )

        corners = charuco_corners.reshape(-1, 1, 2).astype(np.float32)
        if self.refine_corners:
            try:
                corners = cv2.cornerSubPix(
                    gray, corners, SUBPIX_WINDOW_SIZE, SUBPIX_ZERO_ZONE, SUBPIX_CRITERIA
                )
            except cv2.error as e:
                logger.debug(f"Sub-pixel refinement failed for {label}, keeping raw corners: {e}")

        ids = charuco_ids.ravel().astype(np.int32)
        order = np.argsort(ids)
        ids = ids[order]
        image_points = corners.reshape(-1, 2)[order]

        logger.debug(f"Detected {len(ids)} ChArUco corners ({len(marker_ids)} markers) in: {label}")

        view = ViewObservation(
            image_size=image_size,
            object_points=self._reference_points[ids],
            image_points=image_points,
            point_ids=ids,
            source=source,
        )
        return ExtractionOutcome.accepted(view)
