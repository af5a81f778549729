"""Core calibration algorithms - no I/O beyond image decoding."""

from pinhole_calib.core.types import (
    CalibrationError,
    CalibrationResult,
    CalibrationSession,
    ErrorKind,
    ExtractionOutcome,
    InsufficientViewsError,
    Intrinsics,
    NoTargetDetectedError,
    SolverDivergenceError,
    TargetConfig,
    TargetKind,
    ViewObservation,
)
from pinhole_calib.core.target import generate_board_image, generate_reference_points
from pinhole_calib.core.extraction import create_extractor, detect_target, extract
from pinhole_calib.core.aggregator import aggregate
from pinhole_calib.core.solver import CalibrationSolver, SolverConfig, SolverOutput, solve
from pinhole_calib.core.intrinsic import (
    IntrinsicCalibrationConfig,
    IntrinsicCalibrator,
    calibrate_camera,
)

__all__ = [
    # Types
    "CalibrationError",
    "CalibrationResult",
    "CalibrationSession",
    "ErrorKind",
    "ExtractionOutcome",
    "InsufficientViewsError",
    "Intrinsics",
    "NoTargetDetectedError",
    "SolverDivergenceError",
    "TargetConfig",
    "TargetKind",
    "ViewObservation",
    # Target
    "generate_board_image",
    "generate_reference_points",
    # Extraction
    "create_extractor",
    "detect_target",
    "extract",
    "aggregate",
    # Solver
    "CalibrationSolver",
    "SolverConfig",
    "SolverOutput",
    "solve",
    # Intrinsic
    "IntrinsicCalibrationConfig",
    "IntrinsicCalibrator",
    "calibrate_camera",
]
