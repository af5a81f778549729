"""
Calibration target model.

Generates the canonical reference points of a chessboard or ChArUco board
in the board's own frame (millimeters, z = 0), maps grid positions to stable
point identities, and builds the OpenCV board objects and printable board
images.
"""

from __future__ import annotations

from typing import Optional

import cv2
import numpy as np
from numpy.typing import NDArray

from pinhole_calib.core.types import (
    InvalidParameterError,
    ReferencePoint3D,
    TargetConfig,
    TargetKind,
    UnsupportedTargetTypeError,
)


# ============================================================================
# ArUco Dictionary Reference
# ============================================================================

ARUCO_DICTIONARIES = {
    "DICT_4X4_50": cv2.aruco.DICT_4X4_50,
    "DICT_4X4_100": cv2.aruco.DICT_4X4_100,
    "DICT_4X4_250": cv2.aruco.DICT_4X4_250,
    "DICT_4X4_1000": cv2.aruco.DICT_4X4_1000,
    "DICT_5X5_50": cv2.aruco.DICT_5X5_50,
    "DICT_5X5_100": cv2.aruco.DICT_5X5_100,
    "DICT_5X5_250": cv2.aruco.DICT_5X5_250,
    "DICT_5X5_1000": cv2.aruco.DICT_5X5_1000,
    "DICT_6X6_50": cv2.aruco.DICT_6X6_50,
    "DICT_6X6_100": cv2.aruco.DICT_6X6_100,
    "DICT_6X6_250": cv2.aruco.DICT_6X6_250,
    "DICT_6X6_1000": cv2.aruco.DICT_6X6_1000,
    "DICT_7X7_50": cv2.aruco.DICT_7X7_50,
    "DICT_7X7_100": cv2.aruco.DICT_7X7_100,
    "DICT_7X7_250": cv2.aruco.DICT_7X7_250,
    "DICT_7X7_1000": cv2.aruco.DICT_7X7_1000,
    "DICT_ARUCO_ORIGINAL": cv2.aruco.DICT_ARUCO_ORIGINAL,
    "DICT_APRILTAG_16h5": cv2.aruco.DICT_APRILTAG_16h5,
    "DICT_APRILTAG_25h9": cv2.aruco.DICT_APRILTAG_25h9,
    "DICT_APRILTAG_36h10": cv2.aruco.DICT_APRILTAG_36h10,
    "DICT_APRILTAG_36h11": cv2.aruco.DICT_APRILTAG_36h11,
}

_DICTIONARIES_BY_KEY = {name.upper(): value for name, value in ARUCO_DICTIONARIES.items()}


def resolve_dictionary(name: str) -> int:
    """Look up an OpenCV predefined dictionary id by name.

    Matching is case-insensitive, and a name without a size suffix
    (``"DICT_4x4"``) selects the smallest dictionary of that family.

    Raises:
        UnsupportedTargetTypeError: If the dictionary is unknown.
    """
    key = str(name).strip().upper()
    if key in _DICTIONARIES_BY_KEY:
        return _DICTIONARIES_BY_KEY[key]
    if f"{key}_50" in _DICTIONARIES_BY_KEY:
        return _DICTIONARIES_BY_KEY[f"{key}_50"]
    raise UnsupportedTargetTypeError(f"Unsupported ArUco dictionary: {name!r}")


# ============================================================================
# Reference Points
# ============================================================================


def generate_reference_points(config: TargetConfig) -> NDArray[np.float64]:
    """Generate the 3D reference points of the target.

    Row i, column j maps to ``(j * square, i * square, 0)``; points are
    ordered row-major, so index ``i * inner_corners_x + j`` is also the
    ChArUco corner identity.

    Returns:
        Array of shape (inner_corners_x * inner_corners_y, 3).
    """
    objp = np.zeros((config.num_corners, 3), dtype=np.float64)
    objp[:, :2] = np.mgrid[0:config.inner_corners_x, 0:config.inner_corners_y].T.reshape(-1, 2)
    objp *= config.square_size_mm
    return objp


def point_identity(config: TargetConfig, row: int, col: int) -> int:
    """Stable identity of the inner corner at (row, col)."""
    if not (0 <= row < config.inner_corners_y and 0 <= col < config.inner_corners_x):
        raise InvalidParameterError(
            f"Corner ({row}, {col}) is outside the "
            f"{config.inner_corners_y} x {config.inner_corners_x} grid"
        )
    return row * config.inner_corners_x + col


def reference_point(config: TargetConfig, identity: int) -> ReferencePoint3D:
    """Reference point for a corner identity."""
    if not 0 <= identity < config.num_corners:
        raise InvalidParameterError(
            f"Corner identity {identity} out of range [0, {config.num_corners})"
        )
    row, col = divmod(identity, config.inner_corners_x)
    return ReferencePoint3D(
        col * config.square_size_mm, row * config.square_size_mm, 0.0
    )


# ============================================================================
# Board Creation
# ============================================================================


def create_charuco_board(config: TargetConfig) -> cv2.aruco.CharucoBoard:
    """Create an OpenCV CharucoBoard from configuration.

    The board has one more square than inner corners in each direction;
    marker ids run consecutively from ``config.start_id``.

    Raises:
        UnsupportedTargetTypeError: If the config is not a ChArUco target or
            the dictionary is unknown.
        InvalidParameterError: If the dictionary has too few markers.
    """
    if config.kind is not TargetKind.CHARUCO:
        raise UnsupportedTargetTypeError(
            f"Cannot build a ChArUco board for target type {config.kind.value}"
        )

    dictionary = cv2.aruco.getPredefinedDictionary(resolve_dictionary(config.dictionary_id))

    num_markers = (config.squares_x * config.squares_y) // 2
    available = dictionary.bytesList.shape[0]
    if config.start_id + num_markers > available:
        raise InvalidParameterError(
            f"Board needs marker ids {config.start_id}..{config.start_id + num_markers - 1} "
            f"but {config.dictionary_id} only has {available} markers"
        )
    ids = np.arange(config.start_id, config.start_id + num_markers, dtype=np.int32)

    board = cv2.aruco.CharucoBoard(
        (config.squares_x, config.squares_y),
        config.square_size_mm,
        config.marker_length_mm,
        dictionary,
        ids,
    )
    board.setLegacyPattern(config.legacy_pattern)

    return board


def generate_board_image(
    config: TargetConfig,
    pixels_per_square: int = 100,
    margin: Optional[int] = None,
) -> NDArray[np.uint8]:
    """Render a printable image of the target.

    The top-left square is black. With ``margin`` pixels of white border,
    the inner corner at (row, col) sits on the pixel edge at
    ``margin + (col + 1) * pixels_per_square``.

    Args:
        config: Target configuration.
        pixels_per_square: Square edge length in pixels.
        margin: White border in pixels (default: one square).

    Returns:
        Grayscale uint8 image.
    """
    if pixels_per_square < 4:
        raise InvalidParameterError(
            f"pixels_per_square must be >= 4, got {pixels_per_square}"
        )
    if margin is None:
        margin = pixels_per_square

    width = config.squares_x * pixels_per_square + 2 * margin
    height = config.squares_y * pixels_per_square + 2 * margin

    if config.kind is TargetKind.CHARUCO:
        board = create_charuco_board(config)
        return board.generateImage((width, height), marginSize=margin, borderBits=1)

    pattern = (np.indices((config.squares_y, config.squares_x)).sum(axis=0) % 2).astype(np.uint8)
    squares = np.kron(pattern * 255, np.ones((pixels_per_square, pixels_per_square), dtype=np.uint8))

    img = np.full((height, width), 255, dtype=np.uint8)
    img[margin:margin + squares.shape[0], margin:margin + squares.shape[1]] = squares
    return img
