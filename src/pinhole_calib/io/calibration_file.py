"""
Unified calibration file interface.

Provides a single entry point for saving/loading calibration results
in multiple formats (JSON, HDF5, MAT).
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional, Union

from pinhole_calib.core.types import CalibrationResult, FileFormatError
from pinhole_calib.io.formats.hdf5_format import HDF5Format
from pinhole_calib.io.formats.json_format import JSONFormat
from pinhole_calib.io.formats.mat_format import MATFormat
from pinhole_calib.utils.logging import get_logger

logger = get_logger("io.calibration_file")


class CalibrationFileFormat(Enum):
    """Supported calibration file formats."""
    JSON = "json"
    HDF5 = "hdf5"
    MAT = "mat"

    @property
    def extension(self) -> str:
        return {
            CalibrationFileFormat.JSON: ".json",
            CalibrationFileFormat.HDF5: ".h5",
            CalibrationFileFormat.MAT: ".mat",
        }[self]

    @classmethod
    def from_extension(cls, ext: str) -> CalibrationFileFormat:
        """Get format from file extension.

        Args:
            ext: File extension (with or without leading dot).

        Raises:
            FileFormatError: If extension is not recognized.
        """
        key = ext.lower().lstrip(".")
        mapping = {
            "json": cls.JSON,
            "h5": cls.HDF5,
            "hdf5": cls.HDF5,
            "mat": cls.MAT,
        }
        if key not in mapping:
            raise FileFormatError(f"Unknown calibration file extension: {ext!r}")
        return mapping[key]


class CalibrationFile:
    """Unified interface for calibration file operations.

    Only successful results can be saved; loading always yields a
    successful result.

    Example:
        >>> CalibrationFile.save("calibration.json", result)  # JSON
        >>> CalibrationFile.save("calibration.h5", result)    # HDF5
        >>> CalibrationFile.save("calibration.mat", result)   # MAT (Octave)
        >>>
        >>> # Load (format auto-detected from extension)
        >>> result = CalibrationFile.load("calibration.h5")
    """

    # Format handlers
    _handlers = {
        CalibrationFileFormat.JSON: JSONFormat,
        CalibrationFileFormat.HDF5: HDF5Format,
        CalibrationFileFormat.MAT: MATFormat,
    }

    @classmethod
    def save(
        cls,
        path: Union[str, Path],
        result: CalibrationResult,
        format: Optional[CalibrationFileFormat] = None,
    ) -> Path:
        """Save calibration result to file.

        Args:
            path: Output file path. A path without a known extension is
                written as JSON.
            result: Successful calibration result.
            format: File format (auto-detected from extension if None).

        Returns:
            Path to saved file.

        Raises:
            FileFormatError: If the result is a failure.
            OSError: If the file cannot be written.
        """
        if not result.success:
            raise FileFormatError(
                f"Cannot save a failed calibration result: {result.error_message}"
            )

        path = Path(path)

        if format is None:
            try:
                format = CalibrationFileFormat.from_extension(path.suffix)
            except FileFormatError:
                format = CalibrationFileFormat.JSON
                path = path.with_suffix(format.extension)
        elif path.suffix.lower() != format.extension:
            path = path.with_suffix(format.extension)

        cls._handlers[format].save(path, result)

        logger.info(f"Saved calibration to {format.value}: {path}")
        return path

    @classmethod
    def load(
        cls,
        path: Union[str, Path],
        format: Optional[CalibrationFileFormat] = None,
    ) -> CalibrationResult:
        """Load calibration result from file.

        Args:
            path: Input file path.
            format: File format (auto-detected if None).

        Returns:
            CalibrationResult loaded from file.

        Raises:
            FileFormatError: If file cannot be loaded.
        """
        path = Path(path)

        if not path.exists():
            raise FileFormatError(f"File not found: {path}")

        if format is None:
            try:
                format = CalibrationFileFormat.from_extension(path.suffix)
            except FileFormatError:
                format = cls._detect_format(path)

        result = cls._handlers[format].load(path)

        logger.info(f"Loaded calibration from {format.value}: {path}")
        return result

    @classmethod
    def _detect_format(cls, path: Path) -> CalibrationFileFormat:
        """Detect file format from content.

        Raises:
            FileFormatError: If format cannot be detected.
        """
        for format, handler in cls._handlers.items():
            if handler.is_valid_file(path):
                return format

        raise FileFormatError(f"Could not detect format of: {path}")

    @classmethod
    def get_supported_extensions(cls) -> list[str]:
        """Get list of supported file extensions."""
        return [".json", ".h5", ".hdf5", ".mat"]

    @classmethod
    def save_all_formats(
        cls,
        base_path: Union[str, Path],
        result: CalibrationResult,
    ) -> dict[str, Path]:
        """Save calibration result in all supported formats.

        Args:
            base_path: Base path; any extension is replaced.
            result: Successful calibration result.

        Returns:
            Dictionary mapping format names to saved paths.
        """
        base_path = Path(base_path)
        saved_paths = {}

        for format in CalibrationFileFormat:
            output_path = base_path.with_suffix(format.extension)
            saved_paths[format.value] = cls.save(output_path, result, format=format)

        return saved_paths
