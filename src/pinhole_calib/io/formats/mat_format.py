"""
MAT format support for calibration data.

MAT format is native to MATLAB and fully compatible with GNU Octave.
This implementation uses scipy.io for reading/writing MAT files.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Union

import numpy as np
import scipy.io as sio

from pinhole_calib.core.types import (
    CalibrationError,
    CalibrationResult,
    FileFormatError,
    Intrinsics,
    TargetConfig,
)
from pinhole_calib.utils.logging import get_logger

logger = get_logger("io.formats.mat")


def _scalar(data: dict[str, Any], key: str, default: float = 0.0) -> float:
    if key not in data:
        return default
    return float(np.array(data[key]).ravel()[0])


class MATFormat:
    """MAT format reader/writer for calibration data.

    Creates MAT files compatible with MATLAB and GNU Octave.

    Variables in the MAT file:
        camera_matrix       (3,3) double - Camera intrinsic matrix K
        distortion_coeffs   (1,n) double - Distortion coefficients
        image_size          (1,2) double - Image dimensions [width, height]
        reprojection_error  (1,1) double - RMS reprojection error
        per_view_errors     (1,m) double - RMS reprojection error per view
        target_kind         string       - 'chessboard' or 'charuco'
        target_size         (1,2) double - Inner corners [cols, rows]
        square_size_mm      (1,1) double - Square size in mm
        marker_size_mm      (1,1) double - Marker size in mm (ChArUco)
        dictionary_id       string       - ArUco dictionary (ChArUco)
        start_id            (1,1) double - First marker id (ChArUco)
        views_used          (1,1) double - Number of calibration views
        views_skipped       (1,1) double - Number of skipped images
        timestamp           string       - Calibration timestamp
        software_version    string       - Software version

    Example (Octave/MATLAB):
        >> data = load('calibration.mat');
        >> K = data.camera_matrix;
        >> D = data.distortion_coeffs;
        >> disp(['Focal length: ', num2str(K(1,1))]);
    """

    EXTENSION = ".mat"
    VERSION = "1.0"

    @classmethod
    def save(
        cls,
        path: Union[str, Path],
        result: CalibrationResult,
    ) -> None:
        """Save calibration result to a MAT (version 5) file.

        Args:
            path: Output file path.
            result: Calibration result to save.

        Raises:
            FileFormatError: If the result is a failure.
        """
        if not result.success or result.intrinsics is None:
            raise FileFormatError("Only successful calibration results can be saved")

        path = Path(path)
        if path.suffix.lower() != cls.EXTENSION:
            path = path.with_suffix(cls.EXTENSION)

        path.parent.mkdir(parents=True, exist_ok=True)

        image_size = result.image_size if result.image_size is not None else (0, 0)

        mdict: dict[str, Any] = {
            # Intrinsic parameters
            "camera_matrix": result.intrinsics.camera_matrix,
            "distortion_coeffs": np.array(result.distortion_coefficients).reshape(1, -1),
            "image_size": np.array(image_size, dtype=np.float64).reshape(1, 2),
            "reprojection_error": np.array([[result.rms_error]]),
            "per_view_errors": np.array(result.per_view_errors, dtype=np.float64).reshape(1, -1),
            # Metadata
            "views_used": np.array([[result.views_used]], dtype=np.float64),
            "views_skipped": np.array([[result.views_skipped]], dtype=np.float64),
            "timestamp": result.timestamp.isoformat(),
            "software_version": result.software_version,
            "format_version": cls.VERSION,
        }

        # Target config (optional)
        target = result.target
        if target is not None:
            mdict["target_kind"] = target.kind.value
            mdict["target_size"] = np.array(
                [[target.inner_corners_x, target.inner_corners_y]], dtype=np.float64
            )
            mdict["square_size_mm"] = np.array([[target.square_size_mm]])
            if "marker_size_mm" in target.to_dict():
                mdict["marker_size_mm"] = np.array([[target.marker_length_mm]])
                mdict["dictionary_id"] = target.dictionary_id
                mdict["start_id"] = np.array([[target.start_id]], dtype=np.float64)

        sio.savemat(path, mdict, do_compression=True)

        logger.info(f"Saved calibration to: {path}")

    @classmethod
    def load(cls, path: Union[str, Path]) -> CalibrationResult:
        """Load calibration result from MAT file.

        Args:
            path: Input file path.

        Returns:
            CalibrationResult loaded from file.

        Raises:
            FileFormatError: If file format is invalid.
        """
        path = Path(path)

        if not path.exists():
            raise FileFormatError(f"File not found: {path}")

        logger.info(f"Loading calibration from MAT: {path}")

        try:
            # squeeze_me=True: Convert single-element arrays to scalars
            data = sio.loadmat(path, squeeze_me=True)
        except Exception as e:
            raise FileFormatError(f"Failed to load MAT file: {e}") from e

        # Validate required fields
        if "camera_matrix" not in data:
            raise FileFormatError("Missing camera_matrix in MAT file")
        if "distortion_coeffs" not in data:
            raise FileFormatError("Missing distortion_coeffs in MAT file")

        try:
            intrinsics = Intrinsics.from_matrix(np.array(data["camera_matrix"], dtype=np.float64))
        except CalibrationError as e:
            raise FileFormatError(f"Invalid camera matrix: {e}") from e

        if "image_size" in data:
            image_size = tuple(int(x) for x in np.array(data["image_size"]).ravel()[:2])
        else:
            image_size = (0, 0)

        # Load target config (optional)
        target = None
        if "target_size" in data:
            size = np.array(data["target_size"]).ravel()
            target_data: dict[str, Any] = {
                "kind": str(data.get("target_kind", "chessboard")),
                "inner_corners_x": int(size[0]),
                "inner_corners_y": int(size[1]),
                "square_size_mm": _scalar(data, "square_size_mm"),
            }
            if "marker_size_mm" in data:
                target_data["marker_size_mm"] = _scalar(data, "marker_size_mm")
                target_data["dictionary_id"] = str(data.get("dictionary_id", "DICT_4X4_50"))
                target_data["start_id"] = int(_scalar(data, "start_id"))
            try:
                target = TargetConfig.from_dict(target_data)
            except CalibrationError as e:
                raise FileFormatError(f"Invalid target configuration: {e}") from e

        # Parse timestamp
        timestamp_str = str(data.get("timestamp", ""))
        try:
            timestamp = datetime.fromisoformat(timestamp_str) if timestamp_str else datetime.now()
        except ValueError:
            timestamp = datetime.now()

        per_view_errors: tuple[float, ...] = ()
        if "per_view_errors" in data:
            per_view_errors = tuple(
                float(e) for e in np.atleast_1d(np.array(data["per_view_errors"], dtype=np.float64))
            )

        return CalibrationResult(
            success=True,
            intrinsics=intrinsics,
            distortion=np.atleast_1d(np.array(data["distortion_coeffs"], dtype=np.float64)).ravel(),
            rms_error=_scalar(data, "reprojection_error"),
            image_size=image_size,
            target=target,
            per_view_errors=per_view_errors,
            views_used=int(_scalar(data, "views_used")),
            views_skipped=int(_scalar(data, "views_skipped")),
            timestamp=timestamp,
            software_version=str(data.get("software_version", "unknown")),
        )

    @classmethod
    def is_valid_file(cls, path: Union[str, Path]) -> bool:
        """Check if a file is a valid calibration MAT file.

        Args:
            path: File path to check.

        Returns:
            True if file is valid, False otherwise.
        """
        path = Path(path)
        if not path.exists():
            return False

        try:
            data = sio.loadmat(path, squeeze_me=True)
            return "camera_matrix" in data and "distortion_coeffs" in data
        except Exception:
            return False
