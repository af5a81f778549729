"""
JSON format support for calibration data.

JSON format is human-readable and widely supported.
It's useful for configuration, debugging, and interoperability.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Union

import numpy as np

from pinhole_calib.core.types import (
    CalibrationError,
    CalibrationResult,
    FileFormatError,
    Intrinsics,
    TargetConfig,
)
from pinhole_calib.utils.logging import get_logger

logger = get_logger("io.formats.json")

FORMAT_TYPE = "pinhole-calib"


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy arrays."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class JSONFormat:
    """JSON format reader/writer for calibration data.

    JSON structure:
        {
            "format_version": "1.0",
            "format_type": "pinhole-calib",
            "intrinsic": {
                "camera_matrix": [[fx, 0, cx], [0, fy, cy], [0, 0, 1]],
                "distortion_coeffs": [k1, k2, p1, p2, k3],
                "image_size": [width, height],
                "reprojection_error": 0.5,
                "fx": ..., "fy": ..., "cx": ..., "cy": ...
            },
            "metadata": {
                "timestamp": "2024-01-01T12:00:00",
                "target": {"kind": "chessboard", "inner_corners_x": 9, ...},
                "views_used": 12,
                "views_skipped": 1,
                "view_sources": ["img_01.png", ...],
                "warnings": [],
                "software_version": "0.1.0"
            },
            "per_view_errors": [0.3, 0.4, ...]
        }

    Example (Python):
        >>> import json
        >>> with open('calibration.json', 'r') as f:
        ...     data = json.load(f)
        >>> K = np.array(data['intrinsic']['camera_matrix'])
    """

    EXTENSION = ".json"
    VERSION = "1.0"

    @classmethod
    def to_dict(cls, result: CalibrationResult) -> dict[str, Any]:
        """Build the JSON document for a successful result.

        Raises:
            FileFormatError: If the result is a failure.
        """
        if not result.success or result.intrinsics is None:
            raise FileFormatError("Only successful calibration results can be saved")

        image_size = list(result.image_size) if result.image_size is not None else [0, 0]
        data: dict[str, Any] = {
            "format_version": cls.VERSION,
            "format_type": FORMAT_TYPE,
            "intrinsic": {
                "camera_matrix": result.intrinsics.camera_matrix.tolist(),
                "distortion_coeffs": result.distortion_coefficients,
                "image_size": image_size,
                "reprojection_error": result.rms_error,
                # Convenience fields
                "fx": result.fx,
                "fy": result.fy,
                "cx": result.cx,
                "cy": result.cy,
            },
            "metadata": {
                "timestamp": result.timestamp.isoformat(),
                "views_used": result.views_used,
                "views_skipped": result.views_skipped,
                "view_sources": list(result.view_sources),
                "warnings": list(result.warnings),
                "software_version": result.software_version,
            },
            "per_view_errors": list(result.per_view_errors),
        }

        if result.target is not None:
            data["metadata"]["target"] = result.target.to_dict()

        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CalibrationResult:
        """Rebuild a result from a JSON document.

        Raises:
            FileFormatError: If required fields are missing or invalid.
        """
        if "intrinsic" not in data:
            raise FileFormatError("Missing 'intrinsic' section in JSON file")

        intrinsic_data = data["intrinsic"]
        if "camera_matrix" not in intrinsic_data:
            raise FileFormatError("Missing 'camera_matrix' in intrinsic section")

        metadata = data.get("metadata", {})

        try:
            intrinsics = Intrinsics.from_matrix(
                np.array(intrinsic_data["camera_matrix"], dtype=np.float64)
            )
            target = None
            if "target" in metadata:
                target = TargetConfig.from_dict(metadata["target"])
        except CalibrationError as e:
            raise FileFormatError(f"Invalid calibration data: {e}") from e

        # Parse timestamp
        timestamp_str = metadata.get("timestamp", "")
        try:
            timestamp = datetime.fromisoformat(timestamp_str) if timestamp_str else datetime.now()
        except ValueError:
            timestamp = datetime.now()

        return CalibrationResult(
            success=True,
            intrinsics=intrinsics,
            distortion=np.array(
                intrinsic_data.get("distortion_coeffs", [0, 0, 0, 0, 0]), dtype=np.float64
            ),
            rms_error=float(intrinsic_data.get("reprojection_error", 0.0)),
            image_size=tuple(int(v) for v in intrinsic_data.get("image_size", [0, 0])),
            target=target,
            per_view_errors=tuple(float(e) for e in data.get("per_view_errors", [])),
            view_sources=tuple(str(s) for s in metadata.get("view_sources", [])),
            views_used=int(metadata.get("views_used", 0)),
            views_skipped=int(metadata.get("views_skipped", 0)),
            warnings=tuple(str(w) for w in metadata.get("warnings", [])),
            timestamp=timestamp,
            software_version=str(metadata.get("software_version", "unknown")),
        )

    @classmethod
    def save(
        cls,
        path: Union[str, Path],
        result: CalibrationResult,
        indent: int = 2,
        ensure_ascii: bool = False,
    ) -> None:
        """Save calibration result to JSON file.

        Args:
            path: Output file path.
            result: Calibration result to save.
            indent: JSON indentation level.
            ensure_ascii: If True, escape non-ASCII characters.

        Raises:
            FileFormatError: If the result is a failure.
        """
        data = cls.to_dict(result)

        path = Path(path)
        if path.suffix.lower() != cls.EXTENSION:
            path = path.with_suffix(cls.EXTENSION)

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=ensure_ascii, cls=NumpyEncoder)

        logger.info(f"Saved calibration to: {path}")

    @classmethod
    def load(cls, path: Union[str, Path]) -> CalibrationResult:
        """Load calibration result from JSON file.

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

        logger.info(f"Loading calibration from JSON: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise FileFormatError(f"Invalid JSON format: {e}") from e

        if not isinstance(data, dict):
            raise FileFormatError("JSON calibration file must contain an object")

        return cls.from_dict(data)

    @classmethod
    def is_valid_file(cls, path: Union[str, Path]) -> bool:
        """Check if a file is a valid calibration JSON file.

        Args:
            path: File path to check.

        Returns:
            True if file is valid, False otherwise.
        """
        path = Path(path)
        if not path.exists():
            return False

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return (
                isinstance(data, dict)
                and "camera_matrix" in data.get("intrinsic", {})
            )
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            return False

    @classmethod
    def to_string(cls, result: CalibrationResult, indent: int = 2) -> str:
        """Convert calibration result to JSON string.

        Args:
            result: Calibration result.
            indent: JSON indentation level.

        Returns:
            JSON string representation.
        """
        return json.dumps(cls.to_dict(result), indent=indent, ensure_ascii=False, cls=NumpyEncoder)
