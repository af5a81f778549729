"""
Calibration run files.

A run file is TOML with a ``[target]`` table, an optional ``[solver]``
table and top-level run settings:

    images = ["captures/*.png"]
    min_views = 8
    max_workers = 4

    [target]
    kind = "charuco"
    inner_corners_x = 6
    inner_corners_y = 4
    square_size_mm = 30.0
    dictionary_id = "DICT_4X4_50"

    [solver]
    fix_principal_point = true
    distortion_model_size = 5

Image patterns are resolved relative to the run file.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence, Union

import rtoml

from pinhole_calib.core.intrinsic import IntrinsicCalibrationConfig
from pinhole_calib.core.solver import SolverConfig
from pinhole_calib.core.types import FileFormatError, InvalidParameterError, TargetConfig
from pinhole_calib.utils.logging import get_logger

logger = get_logger("io.run_config")

_SOLVER_KEYS = {f.name for f in dataclasses.fields(SolverConfig)}


@dataclass
class RunConfig:
    """A calibration configuration together with its input images."""
    calibration: IntrinsicCalibrationConfig
    images: list[Path] = field(default_factory=list)


def parse_solver_config(data: dict[str, Any]) -> SolverConfig:
    """Build a SolverConfig from a ``[solver]`` table.

    Raises:
        InvalidParameterError: On unknown keys or invalid values.
    """
    unknown = set(data) - _SOLVER_KEYS
    if unknown:
        raise InvalidParameterError(f"Unknown solver settings: {', '.join(sorted(unknown))}")
    return SolverConfig(**data)


def resolve_images(patterns: Sequence[str], base_dir: Path) -> list[Path]:
    """Expand image glob patterns relative to ``base_dir``, in sorted order."""
    images: list[Path] = []
    seen = set()
    for pattern in patterns:
        path = Path(pattern)
        if path.is_absolute():
            matches = sorted(Path(path.anchor).glob(str(path.relative_to(path.anchor))))
        else:
            matches = sorted(base_dir.glob(pattern))
        if not matches:
            logger.warning(f"No images match pattern: {pattern}")
        for match in matches:
            if match not in seen:
                seen.add(match)
                images.append(match)
    return images


def load_run_config(path: Union[str, Path]) -> RunConfig:
    """Load a calibration run from a TOML file.

    Args:
        path: Path to the run file.

    Returns:
        RunConfig with the calibration configuration and resolved images.

    Raises:
        FileFormatError: If the file is missing or not valid TOML.
        InvalidParameterError: If a setting is invalid.
    """
    path = Path(path)
    if not path.exists():
        raise FileFormatError(f"Run file not found: {path}")

    try:
        data = rtoml.load(path)
    except rtoml.TomlParsingError as e:
        raise FileFormatError(f"Invalid TOML in {path}: {e}") from e

    if "target" not in data:
        raise FileFormatError(f"Missing [target] table in {path}")

    try:
        calibration = IntrinsicCalibrationConfig(
            target=TargetConfig.from_dict(data["target"]),
            solver=parse_solver_config(data.get("solver", {})),
            min_views=data.get("min_views"),
            min_charuco_corners=int(data.get("min_charuco_corners", 5)),
            max_workers=int(data.get("max_workers", 1)),
        )
    except TypeError as e:
        raise InvalidParameterError(f"Invalid run configuration: {e}") from e

    patterns = data.get("images", [])
    if isinstance(patterns, str):
        patterns = [patterns]

    images = resolve_images(patterns, path.parent)
    logger.info(f"Loaded run file {path}: {len(images)} images")
    return RunConfig(calibration=calibration, images=images)


def save_run_config(
    config: IntrinsicCalibrationConfig,
    path: Union[str, Path],
    images: Optional[Sequence[str]] = None,
) -> None:
    """Save a calibration configuration as a TOML run file.

    Args:
        config: Calibration configuration.
        path: Output path.
        images: Image glob patterns to record.
    """
    data: dict[str, Any] = {
        "max_workers": config.max_workers,
        "min_charuco_corners": config.min_charuco_corners,
    }
    if config.min_views is not None:
        data["min_views"] = config.min_views
    if images:
        data["images"] = [str(image) for image in images]
    data["target"] = config.target.to_dict()
    data["solver"] = dataclasses.asdict(config.solver)

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        rtoml.dump(data, f)

    logger.info(f"Saved run file: {path}")
