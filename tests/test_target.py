"""
Tests for pinhole_calib.core.target.
"""

import cv2
import numpy as np
import pytest

from pinhole_calib.core.target import (
    ARUCO_DICTIONARIES,
    create_charuco_board,
    generate_board_image,
    generate_reference_points,
    point_identity,
    reference_point,
    resolve_dictionary,
)
from pinhole_calib.core.types import (
    InvalidParameterError,
    TargetConfig,
    TargetKind,
    UnsupportedTargetTypeError,
)


class TestReferencePoints:
    def test_shape_and_planarity(self, chessboard_config):
        points = generate_reference_points(chessboard_config)
        assert points.shape == (54, 3)
        assert points.dtype == np.float64
        assert np.all(points[:, 2] == 0.0)

    def test_row_major_order(self, chessboard_config):
        points = generate_reference_points(chessboard_config)
        np.testing.assert_array_equal(points[0], [0.0, 0.0, 0.0])
        np.testing.assert_array_equal(points[1], [25.0, 0.0, 0.0])
        np.testing.assert_array_equal(points[9], [0.0, 25.0, 0.0])
        np.testing.assert_array_equal(points[53], [200.0, 125.0, 0.0])

    def test_deterministic(self, chessboard_config):
        np.testing.assert_array_equal(
            generate_reference_points(chessboard_config),
            generate_reference_points(chessboard_config),
        )


class TestPointIdentity:
    def test_identity_matches_reference_order(self, charuco_config):
        points = generate_reference_points(charuco_config)
        identity = point_identity(charuco_config, row=2, col=3)
        assert identity == 2 * 6 + 3
        assert tuple(points[identity]) == tuple(reference_point(charuco_config, identity))

    def test_out_of_grid(self, charuco_config):
        with pytest.raises(InvalidParameterError):
            point_identity(charuco_config, row=4, col=0)
        with pytest.raises(InvalidParameterError):
            reference_point(charuco_config, 24)


class TestDictionaries:
    def test_common_dictionaries_exist(self):
        assert "DICT_4X4_50" in ARUCO_DICTIONARIES
        assert "DICT_6X6_250" in ARUCO_DICTIONARIES
        assert "DICT_APRILTAG_36h11" in ARUCO_DICTIONARIES

    def test_resolve_is_case_insensitive(self):
        assert resolve_dictionary("dict_5x5_100") == cv2.aruco.DICT_5X5_100

    def test_size_less_alias(self):
        assert resolve_dictionary("DICT_4x4") == cv2.aruco.DICT_4X4_50

    def test_unknown_dictionary(self):
        with pytest.raises(UnsupportedTargetTypeError):
            resolve_dictionary("DICT_3X3_10")


class TestCharucoBoard:
    def test_board_corners_match_reference_count(self, charuco_config):
        board = create_charuco_board(charuco_config)
        assert isinstance(board, cv2.aruco.CharucoBoard)
        assert len(board.getChessboardCorners()) == charuco_config.num_corners

    def test_marker_ids_start_at_start_id(self):
        config = TargetConfig(TargetKind.CHARUCO, 4, 3, 30.0, start_id=10)
        board = create_charuco_board(config)
        ids = np.asarray(board.getIds()).ravel()
        assert ids[0] == 10
        assert len(ids) == (5 * 4) // 2

    def test_dictionary_too_small(self):
        config = TargetConfig(TargetKind.CHARUCO, 10, 10, 20.0, dictionary_id="DICT_4X4_50")
        with pytest.raises(InvalidParameterError):
            create_charuco_board(config)

    def test_chessboard_config_rejected(self, chessboard_config):
        with pytest.raises(UnsupportedTargetTypeError):
            create_charuco_board(chessboard_config)


class TestBoardImage:
    def test_chessboard_layout(self, chessboard_config):
        image = generate_board_image(chessboard_config, pixels_per_square=20, margin=10)
        assert image.shape == (7 * 20 + 20, 10 * 20 + 20)
        assert image.dtype == np.uint8
        assert image[0, 0] == 255  # margin
        assert image[15, 15] == 0  # top-left square is black
        assert image[15, 35] == 255

    def test_charuco_image(self, charuco_config):
        image = generate_board_image(charuco_config, pixels_per_square=50)
        assert image.shape == (5 * 50 + 100, 7 * 50 + 100)
        assert image.ndim == 2

    def test_too_small_squares(self, chessboard_config):
        with pytest.raises(InvalidParameterError):
            generate_board_image(chessboard_config, pixels_per_square=2)
