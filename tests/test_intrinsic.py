"""
Tests for the end-to-end intrinsic calibration run.
"""

import cv2
import numpy as np
import pytest

from pinhole_calib.core.intrinsic import (
    IntrinsicCalibrationConfig,
    IntrinsicCalibrator,
    calibrate_camera,
)
from pinhole_calib.core.solver import SolverConfig
from pinhole_calib.core.types import (
    ErrorKind,
    InsufficientViewsError,
    InvalidParameterError,
)
from pinhole_calib.utils.worker import ExtractionWorker, extract_all


@pytest.fixture
def image_files(rendered_views, temp_dir):
    paths = []
    for i, image in enumerate(rendered_views):
        path = temp_dir / f"view_{i:02d}.png"
        assert cv2.imwrite(str(path), image)
        paths.append(path)
    return paths


class TestIntrinsicCalibrationConfig:
    def test_required_views(self, chessboard_config, charuco_config):
        assert IntrinsicCalibrationConfig(chessboard_config).required_views == 10
        assert IntrinsicCalibrationConfig(charuco_config).required_views == 5
        assert IntrinsicCalibrationConfig(chessboard_config, min_views=6).required_views == 6

    @pytest.mark.parametrize("kwargs", [
        {"max_workers": 0},
        {"min_charuco_corners": 3},
        {"min_views": 1},
    ])
    def test_invalid(self, chessboard_config, kwargs):
        with pytest.raises(InvalidParameterError):
            IntrinsicCalibrationConfig(chessboard_config, **kwargs)


class TestIntrinsicCalibrator:
    def test_calibrates_rendered_views(self, chessboard_config, rendered_views):
        calibrator = IntrinsicCalibrator(
            IntrinsicCalibrationConfig(chessboard_config, min_views=6)
        )
        for image in rendered_views:
            assert calibrator.add_image(image).found
        assert calibrator.num_valid_images == 12
        assert calibrator.can_calibrate

        progress = []
        result = calibrator.calibrate(lambda c, t, m: progress.append(c))
        assert result.success
        assert result.fx == pytest.approx(800.0, rel=0.02)
        assert result.fy == pytest.approx(800.0, rel=0.02)
        assert result.rms_error < 1.0
        assert result.views_used == 12
        assert result.target == chessboard_config
        assert progress[-1] == 100

    def test_skipped_images_are_counted(self, chessboard_config, rendered_views):
        calibrator = IntrinsicCalibrator(
            IntrinsicCalibrationConfig(chessboard_config, min_views=6)
        )
        calibrator.add_images(list(rendered_views[:8]) + [np.full((480, 640), 255, np.uint8)])
        assert calibrator.num_images == 9
        assert len(calibrator.get_successful_outcomes()) == 8

        result = calibrator.calibrate()
        assert result.views_used == 8
        assert result.views_skipped == 1

    def test_mismatched_size_is_skipped(self, chessboard_config, rendered_views):
        resized = cv2.resize(rendered_views[1], (800, 600))
        calibrator = IntrinsicCalibrator(
            IntrinsicCalibrationConfig(chessboard_config, min_views=6)
        )
        calibrator.add_images([rendered_views[0], resized, *rendered_views[1:]])
        assert calibrator.num_valid_images == 13

        result = calibrator.calibrate()
        assert result.success
        assert result.image_size == (640, 480)
        assert result.views_used == 12
        assert result.views_skipped == 1
        assert "1 image(s) skipped for inconsistent image size" in result.warnings
        assert result.fx == pytest.approx(800.0, rel=0.02)

    def test_calibrates_charuco_views(self, charuco_config, rendered_charuco_views):
        calibrator = IntrinsicCalibrator(IntrinsicCalibrationConfig(charuco_config))
        calibrator.add_images(rendered_charuco_views)

        views = [o.view for o in calibrator.get_successful_outcomes()]
        assert len(views) >= 5
        assert all(v.point_ids is not None for v in views)
        assert any(v.num_points < charuco_config.num_corners for v in views)

        result = calibrator.calibrate()
        assert result.success, result.error_message
        assert result.fx == pytest.approx(800.0, rel=0.03)
        assert result.fy == pytest.approx(800.0, rel=0.03)
        assert result.cx == pytest.approx(320.0, abs=15.0)
        assert result.cy == pytest.approx(240.0, abs=15.0)
        assert result.target == charuco_config

    def test_too_few_views(self, chessboard_config, rendered_views):
        calibrator = IntrinsicCalibrator(IntrinsicCalibrationConfig(chessboard_config))
        calibrator.add_images(rendered_views[:4])
        assert not calibrator.can_calibrate
        with pytest.raises(InsufficientViewsError):
            calibrator.calibrate()

        result = calibrator.calibrate_result()
        assert not result.success
        assert result.error_kind is ErrorKind.INSUFFICIENT_VIEWS
        assert "Found 4, need at least 10" in result.error_message

    def test_clear(self, chessboard_config, rendered_views):
        calibrator = IntrinsicCalibrator(IntrinsicCalibrationConfig(chessboard_config))
        calibrator.add_image(rendered_views[0])
        calibrator.clear()
        assert calibrator.num_images == 0
        assert calibrator.get_outcomes() == []


class TestCalibrateCamera:
    def test_empty_paths(self, chessboard_config):
        result = calibrate_camera([], chessboard_config)
        assert not result.success
        assert result.error_kind is ErrorKind.INVALID_PARAMETER
        assert result.error_message == "Image paths required"

    def test_unsupported_target(self, temp_dir):
        result = calibrate_camera([temp_dir / "a.png"], {"targetType": "circles"})
        assert not result.success
        assert result.error_kind is ErrorKind.UNSUPPORTED_TARGET_TYPE

    def test_invalid_target_mapping(self, temp_dir):
        result = calibrate_camera([temp_dir / "a.png"], {"boardWidth": "wide"})
        assert not result.success
        assert result.error_kind is ErrorKind.INVALID_PARAMETER

    def test_missing_files(self, chessboard_config, temp_dir):
        result = calibrate_camera([temp_dir / "a.png", temp_dir / "b.png"], chessboard_config)
        assert not result.success
        assert "No calibration target detected" in result.error_message
        assert result.views_skipped == 2
        assert result.to_record()["fx"] == 0.0

    def test_from_files(self, image_files):
        target = {
            "targetType": "chessboard",
            "boardWidth": 9,
            "boardHeight": 6,
            "squareSize": 25.0,
        }
        result = calibrate_camera(
            image_files,
            target,
            min_views_override=6,
            solver_config=SolverConfig(fix_principal_point=True),
            max_workers=2,
        )
        assert result.success, result.error_message
        assert result.cx == 319.5
        assert result.fx == pytest.approx(800.0, rel=0.02)
        assert result.view_sources[0].endswith("view_00.png")

    def test_mismatched_size_file_is_skipped(self, image_files, rendered_views, temp_dir):
        large = temp_dir / "large.png"
        assert cv2.imwrite(str(large), cv2.resize(rendered_views[2], (800, 600)))

        result = calibrate_camera(
            [image_files[0], large, *image_files[1:]],
            {"targetType": "chessboard", "boardWidth": 9, "boardHeight": 6, "squareSize": 25.0},
            min_views_override=6,
        )
        assert result.success, result.error_message
        assert result.image_size == (640, 480)
        assert result.views_used == 12
        assert result.views_skipped == 1
        assert "1 image(s) skipped for inconsistent image size" in result.warnings
        assert not any(source.endswith("large.png") for source in result.view_sources)

    def test_divergence_keeps_view_counts(self, chessboard_config, rendered_views, temp_dir):
        paths = []
        for i in range(10):
            path = temp_dir / f"same_{i:02d}.png"
            assert cv2.imwrite(str(path), rendered_views[0])
            paths.append(path)
        large = temp_dir / "large.png"
        assert cv2.imwrite(str(large), cv2.resize(rendered_views[1], (800, 600)))

        result = calibrate_camera([*paths, large], chessboard_config)
        assert not result.success
        assert result.error_kind is ErrorKind.SOLVER_DIVERGENCE
        assert result.image_size == (640, 480)
        assert result.views_used == 10
        assert result.views_skipped == 1
        assert "1 image(s) skipped for inconsistent image size" in result.warnings
        summary = result.summary()
        assert "Images Used: 10, Skipped: 1" in summary
        assert "Warning: 1 image(s) skipped for inconsistent image size" in summary


class TestExtractionWorker:
    def test_order_preserved(self, chessboard_config, rendered_views):
        images = [rendered_views[0], np.full((480, 640), 255, np.uint8), rendered_views[1]]
        outcomes = extract_all(images * 2, chessboard_config, max_workers=3)
        assert [o.found for o in outcomes] == [True, False, True] * 2

    def test_progress(self, chessboard_config, rendered_views):
        calls = []
        ExtractionWorker(chessboard_config).run(
            rendered_views[:3], progress_callback=lambda c, t, m: calls.append((c, t))
        )
        assert calls[-1] == (3, 3)

    def test_invalid_workers(self, chessboard_config):
        with pytest.raises(InvalidParameterError):
            ExtractionWorker(chessboard_config, max_workers=0)

    def test_invalid_extractor_fails_fast(self, charuco_config):
        with pytest.raises(InvalidParameterError):
            ExtractionWorker(charuco_config, min_charuco_corners=2)
