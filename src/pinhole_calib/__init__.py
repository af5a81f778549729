"""
pinhole-calib: pinhole camera intrinsic calibration.

Estimates the camera matrix and lens distortion of a pinhole camera from
still images of a chessboard or ChArUco target.
"""

from pinhole_calib.core.types import (
    SOFTWARE_VERSION,
    CalibrationResult,
    Intrinsics,
    TargetConfig,
    TargetKind,
)

__version__ = SOFTWARE_VERSION

__all__ = [
    "CalibrationResult",
    "Intrinsics",
    "TargetConfig",
    "TargetKind",
    "__version__",
]
