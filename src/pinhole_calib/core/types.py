"""
Core data types for camera calibration.

This module defines the fundamental data structures used throughout
pinhole-calib: the calibration target description, per-view point
correspondences, camera intrinsics, the terminal calibration result and
the exception hierarchy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterator, Mapping, NamedTuple, Optional

import numpy as np
from numpy.typing import NDArray


SOFTWARE_VERSION = "0.1.0"

# Marker edge length relative to the square edge when none is given
DEFAULT_MARKER_RATIO = 0.8


class TargetKind(Enum):
    """Supported planar calibration targets."""
    CHESSBOARD = "chessboard"
    CHARUCO = "charuco"

    @classmethod
    def parse(cls, value: Any) -> TargetKind:
        """Parse a target kind from its name (case-insensitive).

        Raises:
            UnsupportedTargetTypeError: If the name is not a known target.
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for kind in cls:
            if kind.value == key:
                return kind
        raise UnsupportedTargetTypeError(
            f"Unsupported target type: {value!r} "
            f"(expected one of: {', '.join(k.value for k in cls)})"
        )


class ErrorKind(Enum):
    """Failure categories reported by a calibration run."""
    IMAGE_DECODE_FAILURE = "image_decode_failure"
    TARGET_NOT_FOUND = "target_not_found"
    IMAGE_SIZE_INCONSISTENT = "image_size_inconsistent"
    INSUFFICIENT_VIEWS = "insufficient_views"
    SOLVER_DIVERGENCE = "solver_divergence"
    UNSUPPORTED_TARGET_TYPE = "unsupported_target_type"
    INVALID_PARAMETER = "invalid_parameter"
    FILE_FORMAT = "file_format"


# Accepted spellings of boolean options in config mappings
_TRUE_STRINGS = frozenset({"true", "yes", "on", "1"})
_FALSE_STRINGS = frozenset({"false", "no", "off", "0", ""})


@dataclass(frozen=True)
class TargetConfig:
    """Configuration for a planar calibration target.

    Attributes:
        kind: Chessboard or ChArUco board.
        inner_corners_x: Number of inner corners in the horizontal direction.
        inner_corners_y: Number of inner corners in the vertical direction.
        square_size_mm: Size of each square in millimeters.
        marker_size_mm: ArUco marker edge length (ChArUco only).
            Defaults to 80% of the square size.
        dictionary_id: ArUco dictionary name (ChArUco only).
        start_id: First marker id printed on the board (ChArUco only).
        legacy_pattern: Use the pre-4.6 OpenCV ChArUco layout.

    Example:
        A standard 10x7 chessboard (with 9x6 inner corners):
        >>> config = TargetConfig(TargetKind.CHESSBOARD, 9, 6, 25.0)
    """
    kind: TargetKind
    inner_corners_x: int
    inner_corners_y: int
    square_size_mm: float
    marker_size_mm: Optional[float] = None
    dictionary_id: str = "DICT_4X4_50"
    start_id: int = 0
    legacy_pattern: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", TargetKind.parse(self.kind))
        if self.inner_corners_x < 2:
            raise InvalidParameterError(
                f"inner_corners_x must be >= 2, got {self.inner_corners_x}"
            )
        if self.inner_corners_y < 2:
            raise InvalidParameterError(
                f"inner_corners_y must be >= 2, got {self.inner_corners_y}"
            )
        if self.square_size_mm <= 0:
            raise InvalidParameterError(
                f"square_size_mm must be > 0, got {self.square_size_mm}"
            )
        if self.kind is TargetKind.CHARUCO:
            marker = self.marker_length_mm
            if marker <= 0 or marker >= self.square_size_mm:
                raise InvalidParameterError(
                    f"marker_size_mm must be in (0, {self.square_size_mm}), got {marker}"
                )
            if self.start_id < 0:
                raise InvalidParameterError(f"start_id must be >= 0, got {self.start_id}")

    @property
    def pattern_size(self) -> tuple[int, int]:
        """OpenCV-compatible pattern size (cols, rows)."""
        return (self.inner_corners_x, self.inner_corners_y)

    @property
    def num_corners(self) -> int:
        """Total number of inner corners."""
        return self.inner_corners_x * self.inner_corners_y

    @property
    def squares_x(self) -> int:
        return self.inner_corners_x + 1

    @property
    def squares_y(self) -> int:
        return self.inner_corners_y + 1

    @property
    def marker_length_mm(self) -> float:
        """Effective marker edge length in millimeters."""
        if self.marker_size_mm is None:
            return self.square_size_mm * DEFAULT_MARKER_RATIO
        return float(self.marker_size_mm)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "inner_corners_x": self.inner_corners_x,
            "inner_corners_y": self.inner_corners_y,
            "square_size_mm": float(self.square_size_mm),
        }
        if self.kind is TargetKind.CHARUCO:
            data.update({
                "marker_size_mm": self.marker_length_mm,
                "dictionary_id": self.dictionary_id,
                "start_id": self.start_id,
                "legacy_pattern": self.legacy_pattern,
            })
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TargetConfig:
        """Build a config from a mapping.

        Accepts the snake_case keys written by :meth:`to_dict` as well as the
        camelCase argument names used by mobile callers (``targetType``,
        ``boardWidth``, ``boardHeight``, ``squareSize``, ``markerSize``,
        ``dictionaryId``, ``startId``).
        """
        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        def flag(*keys: str) -> bool:
            value = pick(*keys, default=False)
            if isinstance(value, str):
                text = value.strip().lower()
                if text in _TRUE_STRINGS:
                    return True
                if text in _FALSE_STRINGS:
                    return False
                raise ValueError(f"{keys[0]} must be a boolean, got {value!r}")
            if isinstance(value, (bool, int, np.integer, np.bool_)) and value in (0, 1):
                return bool(value)
            raise ValueError(f"{keys[0]} must be a boolean, got {value!r}")

        try:
            marker = pick("marker_size_mm", "markerSize")
            return cls(
                kind=TargetKind.parse(pick("kind", "targetType", default="chessboard")),
                inner_corners_x=int(pick("inner_corners_x", "boardWidth", default=9)),
                inner_corners_y=int(pick("inner_corners_y", "boardHeight", default=6)),
                square_size_mm=float(pick("square_size_mm", "squareSize", default=25.0)),
                marker_size_mm=float(marker) if marker is not None else None,
                dictionary_id=str(pick("dictionary_id", "dictionaryId", default="DICT_4X4_50")),
                start_id=int(pick("start_id", "startId", default=0)),
                legacy_pattern=flag("legacy_pattern", "legacyPattern"),
            )
        except (TypeError, ValueError) as e:
            raise InvalidParameterError(f"Invalid target configuration: {e}") from e


class ReferencePoint3D(NamedTuple):
    """A target reference point in millimeters (target frame, z = 0)."""
    x: float
    y: float
    z: float = 0.0


class Correspondence(NamedTuple):
    """One reference point paired with its observed pixel location."""
    reference: ReferencePoint3D
    u: float
    v: float
    point_id: Optional[int] = None


@dataclass(frozen=True)
class ViewObservation:
    """All correspondences extracted from one image.

    Attributes:
        image_size: Image dimensions as (width, height).
        object_points: Reference points, shape (N, 3), millimeters.
        image_points: Observed pixel coordinates, shape (N, 2).
        point_ids: Stable point identities (ChArUco), shape (N,), or None.
        source: Image path or label, for diagnostics.
    """
    image_size: tuple[int, int]
    object_points: NDArray[np.float64]
    image_points: NDArray[np.float64]
    point_ids: Optional[NDArray[np.int32]] = None
    source: Optional[str] = None

    def __post_init__(self) -> None:
        object_points = np.asarray(self.object_points, dtype=np.float64).reshape(-1, 3)
        image_points = np.asarray(self.image_points, dtype=np.float64).reshape(-1, 2)
        if len(object_points) != len(image_points):
            raise InvalidParameterError(
                f"object_points ({len(object_points)}) and image_points "
                f"({len(image_points)}) must have the same length"
            )
        object.__setattr__(self, "object_points", object_points)
        object.__setattr__(self, "image_points", image_points)
        object.__setattr__(self, "image_size", (int(self.image_size[0]), int(self.image_size[1])))
        if self.point_ids is not None:
            point_ids = np.asarray(self.point_ids, dtype=np.int32).ravel()
            if len(point_ids) != len(object_points):
                raise InvalidParameterError("point_ids must match the number of points")
            object.__setattr__(self, "point_ids", point_ids)

    @property
    def num_points(self) -> int:
        return len(self.image_points)

    @property
    def label(self) -> str:
        return self.source or "array"

    def correspondences(self) -> Iterator[Correspondence]:
        """Iterate over the individual correspondences of this view."""
        for i in range(self.num_points):
            x, y, z = self.object_points[i]
            u, v = self.image_points[i]
            point_id = int(self.point_ids[i]) if self.point_ids is not None else None
            yield Correspondence(
                ReferencePoint3D(float(x), float(y), float(z)), float(u), float(v), point_id
            )


@dataclass(frozen=True)
class ExtractionOutcome:
    """Result of one correspondence extraction attempt.

    Either ``view`` is set (success) or ``skip_reason`` says why the image
    was skipped.
    """
    source: Optional[str]
    view: Optional[ViewObservation] = None
    skip_reason: Optional[ErrorKind] = None
    message: str = ""
    image_size: tuple[int, int] = (0, 0)

    @property
    def found(self) -> bool:
        return self.view is not None

    @property
    def label(self) -> str:
        return self.source or "array"

    @classmethod
    def accepted(cls, view: ViewObservation) -> ExtractionOutcome:
        return cls(source=view.source, view=view, image_size=view.image_size)

    @classmethod
    def skipped(
        cls,
        source: Optional[str],
        reason: ErrorKind,
        message: str,
        image_size: tuple[int, int] = (0, 0),
    ) -> ExtractionOutcome:
        return cls(source=source, skip_reason=reason, message=message, image_size=image_size)


@dataclass
class CalibrationSession:
    """Views accepted for one calibration run, plus skip bookkeeping."""
    kind: TargetKind
    image_size: Optional[tuple[int, int]] = None
    views: list[ViewObservation] = field(default_factory=list)
    total_images: int = 0
    decode_failures: int = 0
    targets_not_found: int = 0
    size_mismatches: int = 0

    @property
    def num_views(self) -> int:
        return len(self.views)

    @property
    def num_skipped(self) -> int:
        return self.decode_failures + self.targets_not_found + self.size_mismatches

    @property
    def num_points(self) -> int:
        return sum(view.num_points for view in self.views)


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole intrinsics in pixels."""
    fx: float
    fy: float
    cx: float
    cy: float

    @property
    def camera_matrix(self) -> NDArray[np.float64]:
        """3x3 camera matrix K."""
        return np.array([
            [self.fx, 0.0, self.cx],
            [0.0, self.fy, self.cy],
            [0.0, 0.0, 1.0],
        ], dtype=np.float64)

    @classmethod
    def from_matrix(cls, camera_matrix: NDArray[np.float64]) -> Intrinsics:
        camera_matrix = np.asarray(camera_matrix, dtype=np.float64)
        if camera_matrix.shape != (3, 3):
            raise InvalidParameterError(
                f"camera_matrix must be 3x3, got {camera_matrix.shape}"
            )
        return cls(
            fx=float(camera_matrix[0, 0]),
            fy=float(camera_matrix[1, 1]),
            cx=float(camera_matrix[0, 2]),
            cy=float(camera_matrix[1, 2]),
        )


@dataclass(frozen=True)
class CalibrationResult:
    """Terminal outcome of a calibration run.

    A successful result carries intrinsics, distortion coefficients
    ``[k1, k2, p1, p2, k3, ...]`` and the RMS reprojection error; a failed
    one carries ``error_message`` and ``error_kind``.
    """
    success: bool
    intrinsics: Optional[Intrinsics] = None
    distortion: Optional[NDArray[np.float64]] = None
    rms_error: Optional[float] = None
    error_message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    # Run diagnostics
    image_size: Optional[tuple[int, int]] = None
    target: Optional[TargetConfig] = None
    per_view_errors: tuple[float, ...] = ()
    view_sources: tuple[str, ...] = ()
    views_used: int = 0
    views_skipped: int = 0
    warnings: tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=datetime.now)
    software_version: str = SOFTWARE_VERSION

    @property
    def fx(self) -> float:
        return self.intrinsics.fx if self.intrinsics is not None else 0.0

    @property
    def fy(self) -> float:
        return self.intrinsics.fy if self.intrinsics is not None else 0.0

    @property
    def cx(self) -> float:
        return self.intrinsics.cx if self.intrinsics is not None else 0.0

    @property
    def cy(self) -> float:
        return self.intrinsics.cy if self.intrinsics is not None else 0.0

    @property
    def distortion_coefficients(self) -> list[float]:
        if self.distortion is None:
            return []
        return [float(c) for c in np.asarray(self.distortion).ravel()]

    def to_record(self) -> dict[str, Any]:
        """Flat record for callers across a process or platform boundary."""
        return {
            "success": self.success,
            "fx": self.fx,
            "fy": self.fy,
            "cx": self.cx,
            "cy": self.cy,
            "distortionCoefficients": self.distortion_coefficients,
            "rmsError": float(self.rms_error) if self.rms_error is not None else 0.0,
            "errorMessage": self.error_message,
        }

    def summary(self) -> str:
        """Generate a human-readable summary of the calibration."""
        lines = [
            "=" * 50,
            "Camera Calibration Result",
            "=" * 50,
            f"Timestamp: {self.timestamp.strftime('%Y-%m-%d %H:%M:%S')}",
            f"Software Version: {self.software_version}",
            "",
        ]

        if not self.success:
            kind = self.error_kind.value if self.error_kind is not None else "unknown"
            lines.extend([
                f"FAILED ({kind}): {self.error_message}",
                f"Images Used: {self.views_used}, Skipped: {self.views_skipped}",
            ])
            lines.extend(f"Warning: {warning}" for warning in self.warnings)
            lines.append("=" * 50)
            return "\n".join(lines)

        coeffs = self.distortion_coefficients + [0.0] * 5
        lines.extend([
            "Intrinsic Parameters:",
        ])
        if self.image_size is not None:
            lines.append(f"  Image Size: {self.image_size[0]} x {self.image_size[1]}")
        lines.extend([
            f"  Focal Length: fx={self.fx:.2f}, fy={self.fy:.2f}",
            f"  Principal Point: cx={self.cx:.2f}, cy={self.cy:.2f}",
            f"  Reprojection Error: {self.rms_error:.4f} pixels",
            "",
            "Distortion Coefficients:",
            f"  k1={coeffs[0]:.6f}, k2={coeffs[1]:.6f}",
            f"  p1={coeffs[2]:.6f}, p2={coeffs[3]:.6f}",
            f"  k3={coeffs[4]:.6f}",
        ])
        if len(self.distortion_coefficients) > 5:
            extra = ", ".join(f"{c:.6f}" for c in self.distortion_coefficients[5:])
            lines.append(f"  k4..k6={extra}")

        if self.target is not None:
            lines.extend([
                "",
                "Target Configuration:",
                f"  Type: {self.target.kind.value}",
                f"  Pattern: {self.target.inner_corners_x} x {self.target.inner_corners_y} inner corners",
                f"  Square Size: {self.target.square_size_mm} mm",
            ])

        lines.extend([
            "",
            f"Images Used: {self.views_used}, Skipped: {self.views_skipped}",
        ])
        for warning in self.warnings:
            lines.append(f"Warning: {warning}")
        lines.append("=" * 50)

        return "\n".join(lines)


# Custom exceptions
class CalibrationError(Exception):
    """Base exception for calibration errors.

    ``session`` holds the aggregated views when the run got that far.
    """
    kind: Optional[ErrorKind] = None
    session: Optional[CalibrationSession] = None


class InsufficientViewsError(CalibrationError):
    """Raised when fewer views were accepted than the run requires."""
    kind = ErrorKind.INSUFFICIENT_VIEWS

    def __init__(
        self,
        message: str,
        found: int = 0,
        required: int = 0,
        session: Optional[CalibrationSession] = None,
    ):
        super().__init__(message)
        self.found = found
        self.required = required
        self.session = session


class NoTargetDetectedError(InsufficientViewsError):
    """Raised when no image yielded any target correspondences."""
    pass


class SolverDivergenceError(CalibrationError):
    """Raised when the solve is ill-conditioned or fails to converge."""
    kind = ErrorKind.SOLVER_DIVERGENCE


class DegenerateHomographyError(SolverDivergenceError):
    """Raised when a view's points do not determine a homography."""
    pass


class UnsupportedTargetTypeError(CalibrationError):
    """Raised for unknown target types or marker dictionaries."""
    kind = ErrorKind.UNSUPPORTED_TARGET_TYPE


class InvalidParameterError(CalibrationError):
    """Raised when invalid parameters are provided."""
    kind = ErrorKind.INVALID_PARAMETER


class FileFormatError(CalibrationError):
    """Raised when file format is invalid or unsupported."""
    kind = ErrorKind.FILE_FORMAT
