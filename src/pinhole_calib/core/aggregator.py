"""
View aggregation and run gating.

Collects per-image extraction outcomes into a calibration session: failed
extractions are counted, views whose image size differs from the first
accepted view are dropped, and the run is refused when too few views
remain.
"""

from __future__ import annotations

from typing import Iterable, Optional

from pinhole_calib.core.types import (
    CalibrationSession,
    ErrorKind,
    ExtractionOutcome,
    InsufficientViewsError,
    InvalidParameterError,
    NoTargetDetectedError,
    TargetKind,
)
from pinhole_calib.utils.logging import get_logger

logger = get_logger("core.aggregator")


# Minimum number of accepted views per target kind
MIN_VIEWS_CHESSBOARD = 10
MIN_VIEWS_CHARUCO = 5


def required_views(kind: TargetKind, min_views: Optional[int] = None) -> int:
    """Minimum number of views a run needs for the target kind."""
    if min_views is not None:
        if min_views < 2:
            raise InvalidParameterError(f"min_views must be >= 2, got {min_views}")
        return min_views
    if kind is TargetKind.CHARUCO:
        return MIN_VIEWS_CHARUCO
    return MIN_VIEWS_CHESSBOARD


def aggregate(
    outcomes: Iterable[ExtractionOutcome],
    kind: TargetKind,
    min_views: Optional[int] = None,
) -> CalibrationSession:
    """Build a calibration session from extraction outcomes.

    Args:
        outcomes: Per-image outcomes, in input order.
        kind: Target kind of the run.
        min_views: Override of the per-kind view threshold.

    Returns:
        CalibrationSession with the accepted views.

    Raises:
        NoTargetDetectedError: If no image produced a view.
        InsufficientViewsError: If fewer views than required were accepted.
    """
    required = required_views(kind, min_views)
    session = CalibrationSession(kind=kind)

    for outcome in outcomes:
        session.total_images += 1

        if not outcome.found:
            if outcome.skip_reason is ErrorKind.IMAGE_DECODE_FAILURE:
                session.decode_failures += 1
            else:
                session.targets_not_found += 1
            logger.warning(f"Skipping {outcome.label}: {outcome.message}")
            continue

        view = outcome.view
        if session.image_size is None:
            session.image_size = view.image_size
        elif view.image_size != session.image_size:
            session.size_mismatches += 1
            logger.warning(
                f"Skipping {view.label}: image size {view.image_size[0]}x{view.image_size[1]} "
                f"differs from {session.image_size[0]}x{session.image_size[1]}"
            )
            continue

        session.views.append(view)

    logger.info(
        f"Aggregated {session.num_views} views from {session.total_images} images "
        f"({session.num_skipped} skipped)"
    )

    if session.num_views == 0:
        raise NoTargetDetectedError(
            f"No calibration target detected in any of {session.total_images} images.",
            found=0,
            required=required,
            session=session,
        )

    if session.num_views < required:
        raise InsufficientViewsError(
            f"Not enough valid images. Found {session.num_views}, need at least {required}.",
            found=session.num_views,
            required=required,
            session=session,
        )

    return session
