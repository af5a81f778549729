"""
Tests for pinhole_calib.core.types.
"""

import numpy as np
import pytest

from pinhole_calib.core.types import (
    CalibrationResult,
    Correspondence,
    ErrorKind,
    Intrinsics,
    InvalidParameterError,
    NoTargetDetectedError,
    InsufficientViewsError,
    TargetConfig,
    TargetKind,
    UnsupportedTargetTypeError,
    ViewObservation,
)


class TestTargetKind:
    def test_parse_is_case_insensitive(self):
        assert TargetKind.parse("Chessboard") is TargetKind.CHESSBOARD
        assert TargetKind.parse("ChArUco") is TargetKind.CHARUCO
        assert TargetKind.parse(TargetKind.CHARUCO) is TargetKind.CHARUCO

    def test_unknown_kind_raises(self):
        with pytest.raises(UnsupportedTargetTypeError):
            TargetKind.parse("circles")


class TestTargetConfig:
    def test_derived_sizes(self, chessboard_config):
        assert chessboard_config.pattern_size == (9, 6)
        assert chessboard_config.num_corners == 54
        assert chessboard_config.squares_x == 10
        assert chessboard_config.squares_y == 7

    def test_kind_string_is_parsed(self):
        config = TargetConfig("charuco", 5, 4, 20.0)
        assert config.kind is TargetKind.CHARUCO

    def test_default_marker_size(self, charuco_config):
        assert charuco_config.marker_length_mm == pytest.approx(24.0)

    @pytest.mark.parametrize("kwargs", [
        dict(inner_corners_x=1, inner_corners_y=6, square_size_mm=25.0),
        dict(inner_corners_x=9, inner_corners_y=1, square_size_mm=25.0),
        dict(inner_corners_x=9, inner_corners_y=6, square_size_mm=0.0),
    ])
    def test_invalid_geometry(self, kwargs):
        with pytest.raises(InvalidParameterError):
            TargetConfig(TargetKind.CHESSBOARD, **kwargs)

    def test_marker_must_fit_in_square(self):
        with pytest.raises(InvalidParameterError):
            TargetConfig(TargetKind.CHARUCO, 6, 4, 30.0, marker_size_mm=30.0)

    def test_from_dict_accepts_camel_case(self):
        config = TargetConfig.from_dict({
            "targetType": "ChArUco",
            "boardWidth": 6,
            "boardHeight": 4,
            "squareSize": 30,
            "markerSize": 22,
            "dictionaryId": "DICT_5X5_100",
            "startId": 3,
        })
        assert config.kind is TargetKind.CHARUCO
        assert config.pattern_size == (6, 4)
        assert config.square_size_mm == 30.0
        assert config.marker_size_mm == 22.0
        assert config.dictionary_id == "DICT_5X5_100"
        assert config.start_id == 3

    def test_dict_round_trip(self, charuco_config):
        assert TargetConfig.from_dict(charuco_config.to_dict()) == TargetConfig(
            TargetKind.CHARUCO, 6, 4, 30.0, marker_size_mm=24.0
        )

    def test_from_dict_rejects_bad_values(self):
        with pytest.raises(InvalidParameterError):
            TargetConfig.from_dict({"boardWidth": "nine"})

    @pytest.mark.parametrize("value, expected", [
        ("false", False),
        ("False", False),
        ("0", False),
        ("no", False),
        ("true", True),
        ("YES", True),
        ("1", True),
        (True, True),
        (0, False),
    ])
    def test_from_dict_parses_legacy_pattern(self, value, expected):
        config = TargetConfig.from_dict({"targetType": "charuco", "legacyPattern": value})
        assert config.legacy_pattern is expected

    @pytest.mark.parametrize("value", ["maybe", 2, 0.5])
    def test_from_dict_rejects_bad_legacy_pattern(self, value):
        with pytest.raises(InvalidParameterError, match="legacy_pattern"):
            TargetConfig.from_dict({"legacy_pattern": value})


class TestViewObservation:
    def test_arrays_are_normalized(self):
        view = ViewObservation(
            image_size=(640, 480),
            object_points=np.zeros((4, 1, 3), dtype=np.float32),
            image_points=np.ones((4, 1, 2), dtype=np.float32),
        )
        assert view.object_points.shape == (4, 3)
        assert view.image_points.shape == (4, 2)
        assert view.object_points.dtype == np.float64
        assert view.num_points == 4

    def test_length_mismatch_raises(self):
        with pytest.raises(InvalidParameterError):
            ViewObservation((640, 480), np.zeros((4, 3)), np.zeros((3, 2)))

    def test_correspondences(self):
        view = ViewObservation(
            image_size=(640, 480),
            object_points=[[0.0, 0.0, 0.0], [25.0, 0.0, 0.0]],
            image_points=[[10.0, 20.0], [30.0, 20.0]],
            point_ids=[0, 1],
        )
        pairs = list(view.correspondences())
        assert len(pairs) == 2
        assert isinstance(pairs[1], Correspondence)
        assert pairs[1].reference.x == 25.0
        assert (pairs[1].u, pairs[1].v) == (30.0, 20.0)
        assert pairs[1].point_id == 1


class TestCalibrationResult:
    def test_failure_record_has_zeros(self):
        result = CalibrationResult(
            success=False,
            error_message="Image paths required",
            error_kind=ErrorKind.INVALID_PARAMETER,
        )
        record = result.to_record()
        assert record == {
            "success": False,
            "fx": 0.0,
            "fy": 0.0,
            "cx": 0.0,
            "cy": 0.0,
            "distortionCoefficients": [],
            "rmsError": 0.0,
            "errorMessage": "Image paths required",
        }
        assert "FAILED" in result.summary()

    def test_success_record(self):
        result = CalibrationResult(
            success=True,
            intrinsics=Intrinsics(800.0, 805.0, 320.0, 240.0),
            distortion=np.array([0.1, -0.2, 0.0, 0.0, 0.05]),
            rms_error=0.25,
        )
        record = result.to_record()
        assert record["success"] is True
        assert record["fx"] == 800.0
        assert record["distortionCoefficients"] == [0.1, -0.2, 0.0, 0.0, 0.05]
        assert record["errorMessage"] is None
        assert "fx=800.00" in result.summary()

    def test_camera_matrix(self):
        k = Intrinsics(800.0, 805.0, 320.0, 240.0).camera_matrix
        assert k[0, 0] == 800.0 and k[1, 1] == 805.0
        assert k[0, 2] == 320.0 and k[1, 2] == 240.0
        assert Intrinsics.from_matrix(k) == Intrinsics(800.0, 805.0, 320.0, 240.0)


class TestErrors:
    def test_error_kinds(self):
        assert InsufficientViewsError("x").kind is ErrorKind.INSUFFICIENT_VIEWS
        assert NoTargetDetectedError("x").kind is ErrorKind.INSUFFICIENT_VIEWS
        assert issubclass(NoTargetDetectedError, InsufficientViewsError)
