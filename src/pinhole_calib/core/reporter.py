"""
Calibration result assembly.

Turns a solved session, or the error that ended a run, into the terminal
:class:`CalibrationResult`.
"""

from __future__ import annotations

from typing import Optional

from pinhole_calib.core.solver import SolverOutput
from pinhole_calib.core.types import (
    CalibrationError,
    CalibrationResult,
    CalibrationSession,
    ErrorKind,
    TargetConfig,
)


def _session_warnings(session: CalibrationSession) -> list[str]:
    warnings = []
    if session.size_mismatches:
        warnings.append(
            f"{session.size_mismatches} image(s) skipped for inconsistent image size"
        )
    if session.decode_failures:
        warnings.append(f"{session.decode_failures} image(s) could not be decoded")
    if session.targets_not_found:
        warnings.append(f"Target not found in {session.targets_not_found} image(s)")
    return warnings


def success_result(
    session: CalibrationSession,
    output: SolverOutput,
    target: Optional[TargetConfig] = None,
) -> CalibrationResult:
    """Build the result of a successful solve."""
    dropped = session.num_views - len(output.view_indices)
    return CalibrationResult(
        success=True,
        intrinsics=output.intrinsics,
        distortion=output.distortion.copy(),
        rms_error=float(output.rms_error),
        image_size=session.image_size,
        target=target,
        per_view_errors=tuple(float(e) for e in output.per_view_errors),
        view_sources=tuple(session.views[i].label for i in output.view_indices),
        views_used=len(output.view_indices),
        views_skipped=session.num_skipped + dropped,
        warnings=tuple(_session_warnings(session) + list(output.warnings)),
    )


def failure_result(
    error: BaseException,
    session: Optional[CalibrationSession] = None,
    target: Optional[TargetConfig] = None,
) -> CalibrationResult:
    """Build the result of a failed run.

    Errors outside the calibration hierarchy are reported as solver
    divergence, matching how the run treats unexpected numeric failures.
    """
    if session is None and isinstance(error, CalibrationError):
        session = error.session

    if isinstance(error, CalibrationError) and error.kind is not None:
        kind = error.kind
        message = str(error)
    else:
        kind = ErrorKind.SOLVER_DIVERGENCE
        message = f"Calibration failed: {error}"

    return CalibrationResult(
        success=False,
        error_message=message or kind.value,
        error_kind=kind,
        image_size=session.image_size if session is not None else None,
        target=target,
        views_used=session.num_views if session is not None else 0,
        views_skipped=session.num_skipped if session is not None else 0,
        warnings=tuple(_session_warnings(session)) if session is not None else (),
    )
