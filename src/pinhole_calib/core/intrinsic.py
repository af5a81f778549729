"""
Camera intrinsic calibration.

This module runs a complete calibration: correspondence extraction over a
set of images, view aggregation, the solve and result assembly. It is the
boundary of the engine; :func:`calibrate_camera` always returns a
:class:`CalibrationResult` and never raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

from numpy.typing import NDArray

from pinhole_calib.core.aggregator import aggregate, required_views
from pinhole_calib.core.charuco_detector import MIN_CHARUCO_CORNERS
from pinhole_calib.core.extraction import create_extractor
from pinhole_calib.core.reporter import failure_result, success_result
from pinhole_calib.core.solver import CalibrationSolver, SolverConfig
from pinhole_calib.core.types import (
    CalibrationError,
    CalibrationResult,
    CalibrationSession,
    ExtractionOutcome,
    InvalidParameterError,
    TargetConfig,
)
from pinhole_calib.utils.logging import get_logger
from pinhole_calib.utils.worker import ExtractionWorker, ProgressCallback

logger = get_logger("core.intrinsic")


@dataclass
class IntrinsicCalibrationConfig:
    """Configuration for intrinsic calibration.

    Attributes:
        target: Calibration target configuration.
        solver: Solver flags and convergence settings.
        min_views: Override of the per-target minimum view count.
        min_charuco_corners: Minimum identified corners per ChArUco view.
        max_workers: Threads used for correspondence extraction.
    """
    target: TargetConfig
    solver: SolverConfig = field(default_factory=SolverConfig)
    min_views: Optional[int] = None
    min_charuco_corners: int = MIN_CHARUCO_CORNERS
    max_workers: int = 1

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise InvalidParameterError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.min_charuco_corners < 4:
            raise InvalidParameterError(
                f"min_charuco_corners must be >= 4, got {self.min_charuco_corners}"
            )
        # Validates the override
        required_views(self.target.kind, self.min_views)

    @property
    def required_views(self) -> int:
        """Minimum number of accepted views for this run."""
        return required_views(self.target.kind, self.min_views)


class IntrinsicCalibrator:
    """Camera intrinsic parameter calibrator.

    Estimates the camera matrix and distortion coefficients from multiple
    images of a chessboard or ChArUco board.

    Example:
        >>> config = IntrinsicCalibrationConfig(
        ...     target=TargetConfig(TargetKind.CHESSBOARD, 9, 6, 25.0)
        ... )
        >>> calibrator = IntrinsicCalibrator(config)
        >>>
        >>> # Add images
        >>> for path in image_paths:
        ...     calibrator.add_image(path)
        >>>
        >>> # Run calibration
        >>> result = calibrator.calibrate()
        >>> print(f"Reprojection error: {result.rms_error:.4f}")
    """

    def __init__(self, config: IntrinsicCalibrationConfig):
        """Initialize the calibrator.

        Args:
            config: Calibration configuration.

        Raises:
            UnsupportedTargetTypeError: If the target cannot be extracted.
        """
        self.config = config
        self._extractor = create_extractor(
            config.target, min_charuco_corners=config.min_charuco_corners
        )
        self._outcomes: list[ExtractionOutcome] = []

    def add_image(
        self,
        image: Union[str, Path, NDArray],
    ) -> ExtractionOutcome:
        """Add an image for calibration.

        Args:
            image: Image path or numpy array.

        Returns:
            ExtractionOutcome indicating success or the skip reason.
        """
        outcome = self._extractor.extract(image)
        self._record(outcome)
        return outcome

    def add_images(
        self,
        images: Sequence[Union[str, Path, NDArray]],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> list[ExtractionOutcome]:
        """Add multiple images for calibration.

        Extraction runs on ``config.max_workers`` threads.

        Args:
            images: List of image paths or arrays.
            progress_callback: Optional callback(current, total, message).

        Returns:
            List of ExtractionOutcome for each image, in input order.
        """
        worker = ExtractionWorker(
            self.config.target,
            max_workers=self.config.max_workers,
            min_charuco_corners=self.config.min_charuco_corners,
        )
        outcomes = worker.run(images, progress_callback=progress_callback)
        for outcome in outcomes:
            self._record(outcome)
        return outcomes

    def _record(self, outcome: ExtractionOutcome) -> None:
        self._outcomes.append(outcome)
        if outcome.found:
            logger.info(f"Added image: {outcome.label} ({self.num_valid_images} total)")
        else:
            logger.warning(f"Skipped image: {outcome.label} - {outcome.message}")

    @property
    def num_images(self) -> int:
        """Number of images added so far."""
        return len(self._outcomes)

    @property
    def num_valid_images(self) -> int:
        """Number of images where the target was found."""
        return sum(1 for outcome in self._outcomes if outcome.found)

    @property
    def can_calibrate(self) -> bool:
        """Check if enough images are available for calibration."""
        return self.num_valid_images >= self.config.required_views

    def clear(self) -> None:
        """Clear all added images and reset calibrator."""
        self._outcomes.clear()
        logger.info("Calibrator cleared")

    def build_session(self) -> CalibrationSession:
        """Aggregate the added images into a calibration session.

        Raises:
            InsufficientViewsError: If too few views were accepted.
        """
        return aggregate(self._outcomes, self.config.target.kind, self.config.min_views)

    def calibrate(
        self,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> CalibrationResult:
        """Run camera calibration.

        Args:
            progress_callback: Optional callback(current, total, message).

        Returns:
            Successful CalibrationResult.

        Raises:
            InsufficientViewsError: If not enough valid images.
            SolverDivergenceError: If the solve fails.
        """
        if progress_callback:
            progress_callback(0, 100, "Aggregating views...")

        session = self.build_session()

        logger.info(
            f"Starting calibration with {session.num_views} views, "
            f"image size: {session.image_size}"
        )

        if progress_callback:
            progress_callback(10, 100, "Solving intrinsics...")

        try:
            output = CalibrationSolver(self.config.solver).solve(session)
        except CalibrationError as e:
            if e.session is None:
                e.session = session
            raise

        if progress_callback:
            progress_callback(100, 100, "Calibration complete")

        logger.info(f"Calibration complete, RMS error: {output.rms_error:.4f} pixels")

        return success_result(session, output, target=self.config.target)

    def calibrate_result(
        self,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> CalibrationResult:
        """Run calibration, reporting failures as a result instead of raising."""
        try:
            return self.calibrate(progress_callback)
        except CalibrationError as e:
            logger.error(f"Calibration failed: {e}")
            return failure_result(e, target=self.config.target)

    def get_outcomes(self) -> list[ExtractionOutcome]:
        """Get all extraction outcomes."""
        return self._outcomes.copy()

    def get_successful_outcomes(self) -> list[ExtractionOutcome]:
        """Get only outcomes where the target was found."""
        return [outcome for outcome in self._outcomes if outcome.found]


def calibrate_camera(
    image_paths: Sequence[Union[str, Path]],
    target_config: Union[TargetConfig, Mapping[str, Any]],
    min_views_override: Optional[int] = None,
    solver_config: Optional[SolverConfig] = None,
    max_workers: int = 1,
    progress_callback: Optional[ProgressCallback] = None,
) -> CalibrationResult:
    """Calibrate a camera from image files.

    Every failure, including invalid configuration, is reported in the
    returned result.

    Args:
        image_paths: Calibration image paths.
        target_config: Target configuration, or a mapping accepted by
            :meth:`TargetConfig.from_dict`.
        min_views_override: Override of the per-target minimum view count.
        solver_config: Solver flags and convergence settings.
        max_workers: Threads used for correspondence extraction.
        progress_callback: Optional callback(current, total, message).

    Returns:
        CalibrationResult; check ``success``.
    """
    target = None
    try:
        if not image_paths:
            raise InvalidParameterError("Image paths required")
        if isinstance(target_config, Mapping):
            target_config = TargetConfig.from_dict(target_config)
        target = target_config

        config = IntrinsicCalibrationConfig(
            target=target,
            solver=solver_config or SolverConfig(),
            min_views=min_views_override,
            max_workers=max_workers,
        )
    except CalibrationError as e:
        logger.error(f"Calibration failed: {e}")
        return failure_result(e, target=target)

    return run_calibration(image_paths, config, progress_callback)


def run_calibration(
    image_paths: Sequence[Union[str, Path]],
    config: IntrinsicCalibrationConfig,
    progress_callback: Optional[ProgressCallback] = None,
) -> CalibrationResult:
    """Calibrate from image files with a full configuration, never raising.

    Args:
        image_paths: Calibration image paths.
        config: Calibration configuration.
        progress_callback: Optional callback(current, total, message).

    Returns:
        CalibrationResult; check ``success``.
    """
    try:
        if not image_paths:
            raise InvalidParameterError("Image paths required")
        calibrator = IntrinsicCalibrator(config)
        calibrator.add_images(list(image_paths), progress_callback)
        return calibrator.calibrate()

    except CalibrationError as e:
        logger.error(f"Calibration failed: {e}")
        return failure_result(e, target=config.target)
    except Exception as e:
        logger.exception("Unexpected error during calibration")
        return failure_result(e, target=config.target)
