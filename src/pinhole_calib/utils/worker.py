"""
Background extraction workers.

Runs per-image correspondence extraction on a thread pool. OpenCV releases
the GIL inside detection, so threads give real parallelism here; each
worker thread builds its own extractor.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

from numpy.typing import NDArray

from pinhole_calib.core.charuco_detector import MIN_CHARUCO_CORNERS
from pinhole_calib.core.extraction import Extractor, create_extractor
from pinhole_calib.core.types import ExtractionOutcome, InvalidParameterError, TargetConfig
from pinhole_calib.utils.logging import get_logger

logger = get_logger("utils.worker")

ProgressCallback = Callable[[int, int, str], None]


class ExtractionWorker:
    """Extracts correspondences from a batch of images.

    Outcomes are returned in input order regardless of completion order.

    Example:
        >>> worker = ExtractionWorker(config, max_workers=4)
        >>> outcomes = worker.run(image_paths)
    """

    def __init__(
        self,
        config: TargetConfig,
        max_workers: int = 1,
        min_charuco_corners: int = MIN_CHARUCO_CORNERS,
    ):
        if max_workers < 1:
            raise InvalidParameterError(f"max_workers must be >= 1, got {max_workers}")
        self.config = config
        self.max_workers = max_workers
        self.min_charuco_corners = min_charuco_corners
        self._local = threading.local()

        # Fail fast on unsupported configurations before any image is read
        self._local.extractor = self._create_extractor()

    def _create_extractor(self) -> Extractor:
        return create_extractor(self.config, min_charuco_corners=self.min_charuco_corners)

    def _extractor(self) -> Extractor:
        extractor = getattr(self._local, "extractor", None)
        if extractor is None:
            extractor = self._create_extractor()
            self._local.extractor = extractor
        return extractor

    def _extract_one(self, image: Union[str, Path, NDArray]) -> ExtractionOutcome:
        return self._extractor().extract(image)

    def run(
        self,
        images: Sequence[Union[str, Path, NDArray]],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> list[ExtractionOutcome]:
        """Extract all images.

        Args:
            images: Image paths or arrays.
            progress_callback: Optional callback(current, total, message).

        Returns:
            One outcome per image, in input order.
        """
        total = len(images)
        if self.max_workers == 1 or total <= 1:
            outcomes = []
            for i, image in enumerate(images):
                if progress_callback:
                    progress_callback(i, total, f"Detecting ({i + 1}/{total})...")
                outcomes.append(self._extract_one(image))
        else:
            logger.debug(f"Extracting {total} images on {self.max_workers} threads")
            outcomes = []
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                for i, outcome in enumerate(executor.map(self._extract_one, images)):
                    if progress_callback:
                        progress_callback(i, total, f"Detecting ({i + 1}/{total})...")
                    outcomes.append(outcome)

        if progress_callback:
            progress_callback(total, total, "Detection complete")

        found = sum(1 for outcome in outcomes if outcome.found)
        logger.info(f"Target found in {found} of {total} images")
        return outcomes


def extract_all(
    images: Sequence[Union[str, Path, NDArray]],
    config: TargetConfig,
    max_workers: int = 1,
    min_charuco_corners: int = MIN_CHARUCO_CORNERS,
    progress_callback: Optional[ProgressCallback] = None,
) -> list[ExtractionOutcome]:
    """Extract correspondences from every image, preserving input order."""
    worker = ExtractionWorker(
        config, max_workers=max_workers, min_charuco_corners=min_charuco_corners
    )
    return worker.run(images, progress_callback=progress_callback)
