"""
HDF5 format support for calibration data.

HDF5 is a cross-platform, widely supported format for scientific data.
It can be read by Python (h5py), MATLAB, Octave, Julia, R, and many other tools.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Union

import h5py
import numpy as np

from pinhole_calib.core.types import (
    CalibrationError,
    CalibrationResult,
    FileFormatError,
    Intrinsics,
    TargetConfig,
)
from pinhole_calib.io.formats.json_format import FORMAT_TYPE
from pinhole_calib.utils.logging import get_logger

logger = get_logger("io.formats.hdf5")


def _attr_value(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, np.generic):
        return value.item()
    return value


class HDF5Format:
    """HDF5 format reader/writer for calibration data.

    File structure:
        /intrinsic/
            camera_matrix      (3,3) float64
            distortion_coeffs  (n,) float64
            image_size         (2,) int32
            @reprojection_error float64
        /metadata/
            @timestamp, @views_used, @views_skipped, @software_version
            target/            (optional; attributes of the target config)
        /per_view_errors       (n,) float64

    Example (Python):
        >>> import h5py
        >>> with h5py.File('calibration.h5', 'r') as f:
        ...     K = f['/intrinsic/camera_matrix'][:]
        ...     D = f['/intrinsic/distortion_coeffs'][:]

    Example (Octave/MATLAB):
        K = h5read('calibration.h5', '/intrinsic/camera_matrix');
        D = h5read('calibration.h5', '/intrinsic/distortion_coeffs');
    """

    EXTENSION = ".h5"
    VERSION = "1.0"

    @classmethod
    def save(
        cls,
        path: Union[str, Path],
        result: CalibrationResult,
        compression: str = "gzip",
    ) -> None:
        """Save calibration result to HDF5 file.

        Args:
            path: Output file path.
            result: Calibration result to save.
            compression: Compression algorithm ('gzip', 'lzf', or None).

        Raises:
            FileFormatError: If the result is a failure.
        """
        if not result.success or result.intrinsics is None:
            raise FileFormatError("Only successful calibration results can be saved")

        path = Path(path)
        if path.suffix.lower() not in (".h5", ".hdf5"):
            path = path.with_suffix(cls.EXTENSION)

        path.parent.mkdir(parents=True, exist_ok=True)

        image_size = result.image_size if result.image_size is not None else (0, 0)

        with h5py.File(path, "w") as f:
            # File-level attributes
            f.attrs["format_version"] = cls.VERSION
            f.attrs["format_type"] = FORMAT_TYPE

            # Intrinsic group
            intrinsic_grp = f.create_group("intrinsic")
            intrinsic_grp.create_dataset(
                "camera_matrix",
                data=result.intrinsics.camera_matrix,
                compression=compression,
            )
            intrinsic_grp.create_dataset(
                "distortion_coeffs",
                data=np.array(result.distortion_coefficients, dtype=np.float64),
            )
            intrinsic_grp.create_dataset(
                "image_size",
                data=np.array(image_size, dtype=np.int32),
            )
            intrinsic_grp.attrs["reprojection_error"] = float(result.rms_error)

            # Metadata group
            metadata_grp = f.create_group("metadata")
            metadata_grp.attrs["timestamp"] = result.timestamp.isoformat()
            metadata_grp.attrs["views_used"] = result.views_used
            metadata_grp.attrs["views_skipped"] = result.views_skipped
            metadata_grp.attrs["software_version"] = result.software_version

            if result.target is not None:
                target_grp = metadata_grp.create_group("target")
                for key, value in result.target.to_dict().items():
                    target_grp.attrs[key] = value

            f.create_dataset(
                "per_view_errors",
                data=np.array(result.per_view_errors, dtype=np.float64),
            )

        logger.info(f"Saved calibration to: {path}")

    @classmethod
    def load(cls, path: Union[str, Path]) -> CalibrationResult:
        """Load calibration result from HDF5 file.

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

        logger.info(f"Loading calibration from HDF5: {path}")

        try:
            f = h5py.File(path, "r")
        except OSError as e:
            raise FileFormatError(f"Failed to open HDF5 file: {e}") from e

        with f:
            # Verify format
            format_type = _attr_value(f.attrs.get("format_type", ""))
            if format_type != FORMAT_TYPE:
                logger.warning(f"Unknown format type: {format_type}")

            if "intrinsic" not in f:
                raise FileFormatError("Missing intrinsic group in HDF5 file")

            intrinsic_grp = f["intrinsic"]
            try:
                intrinsics = Intrinsics.from_matrix(intrinsic_grp["camera_matrix"][:])
            except (KeyError, CalibrationError) as e:
                raise FileFormatError(f"Invalid camera matrix: {e}") from e

            distortion = np.array(intrinsic_grp["distortion_coeffs"][:], dtype=np.float64)
            image_size = tuple(int(v) for v in intrinsic_grp["image_size"][:])
            rms_error = float(intrinsic_grp.attrs.get("reprojection_error", 0.0))

            # Load metadata
            target = None
            timestamp_str = ""
            views_used = 0
            views_skipped = 0
            software_version = "unknown"

            metadata_grp = f.get("metadata")
            if isinstance(metadata_grp, h5py.Group):
                attrs = metadata_grp.attrs
                timestamp_str = _attr_value(attrs.get("timestamp", ""))
                views_used = int(attrs.get("views_used", 0))
                views_skipped = int(attrs.get("views_skipped", 0))
                software_version = str(_attr_value(attrs.get("software_version", "unknown")))

                if "target" in metadata_grp:
                    target_attrs = {
                        key: _attr_value(value)
                        for key, value in metadata_grp["target"].attrs.items()
                    }
                    try:
                        target = TargetConfig.from_dict(target_attrs)
                    except CalibrationError as e:
                        raise FileFormatError(f"Invalid target configuration: {e}") from e

            per_view_errors: tuple[float, ...] = ()
            if "per_view_errors" in f:
                per_view_errors = tuple(float(e) for e in f["per_view_errors"][:])

        # Parse timestamp
        try:
            timestamp = datetime.fromisoformat(timestamp_str) if timestamp_str else datetime.now()
        except ValueError:
            timestamp = datetime.now()

        return CalibrationResult(
            success=True,
            intrinsics=intrinsics,
            distortion=distortion,
            rms_error=rms_error,
            image_size=image_size,
            target=target,
            per_view_errors=per_view_errors,
            views_used=views_used,
            views_skipped=views_skipped,
            timestamp=timestamp,
            software_version=software_version,
        )

    @classmethod
    def is_valid_file(cls, path: Union[str, Path]) -> bool:
        """Check if a file is a valid pinhole-calib HDF5 file.

        Args:
            path: File path to check.

        Returns:
            True if file is valid, False otherwise.
        """
        path = Path(path)
        if not path.exists():
            return False

        try:
            with h5py.File(path, "r") as f:
                return "intrinsic" in f and "camera_matrix" in f["intrinsic"]
        except (OSError, KeyError):
            return False
