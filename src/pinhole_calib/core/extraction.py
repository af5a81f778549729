"""
Extractor selection and the per-image extraction contract.

The two extractors are closed algorithms chosen by target kind; callers go
through :func:`create_extractor` or :func:`extract` and never construct
them by kind themselves.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

from numpy.typing import NDArray

from pinhole_calib.core.charuco_detector import MIN_CHARUCO_CORNERS, CharucoExtractor
from pinhole_calib.core.corner_detector import ChessboardExtractor
from pinhole_calib.core.types import (
    TargetConfig,
    TargetKind,
    UnsupportedTargetTypeError,
    ViewObservation,
)
from pinhole_calib.io.image_loader import ImageLoader

Extractor = Union[ChessboardExtractor, CharucoExtractor]


def create_extractor(
    config: TargetConfig,
    min_charuco_corners: int = MIN_CHARUCO_CORNERS,
    image_loader: Optional[ImageLoader] = None,
) -> Extractor:
    """Create the extractor matching the target kind.

    Raises:
        UnsupportedTargetTypeError: If no extractor handles the target kind.
    """
    if config.kind is TargetKind.CHESSBOARD:
        return ChessboardExtractor(config, image_loader=image_loader)
    if config.kind is TargetKind.CHARUCO:
        return CharucoExtractor(
            config, min_corners=min_charuco_corners, image_loader=image_loader
        )
    raise UnsupportedTargetTypeError(f"No extractor for target type: {config.kind}")


def extract(
    image: Union[str, Path, NDArray],
    config: TargetConfig,
) -> tuple[bool, Optional[ViewObservation]]:
    """Extract correspondences from a single image.

    Args:
        image: Image path or numpy array.
        config: Target configuration.

    Returns:
        (found, view). ``view`` is None when the target was not found.
    """
    outcome = create_extractor(config).extract(image)
    return outcome.found, outcome.view


def detect_target(
    image: Union[str, Path, NDArray],
    config: TargetConfig,
) -> bool:
    """Quick check whether the target is visible in an image."""
    found, _ = extract(image, config)
    return found
