"""
Plane-to-image homography estimation.

Normalized direct linear transform: both point sets are translated to
their centroid and scaled to an average distance of sqrt(2) before the
SVD solve, then the normalization is undone.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from pinhole_calib.core.types import DegenerateHomographyError


# Minimum singular value ratio for a point set to count as non-collinear
COLLINEARITY_TOLERANCE = 1e-6


def normalization_matrix(points: NDArray[np.float64]) -> NDArray[np.float64]:
    """Similarity transform that centers points and scales them to mean norm sqrt(2)."""
    centroid = points.mean(axis=0)
    mean_dist = np.mean(np.linalg.norm(points - centroid, axis=1))
    if not np.isfinite(mean_dist) or mean_dist <= 0:
        raise DegenerateHomographyError("Points are coincident")
    scale = np.sqrt(2.0) / mean_dist
    return np.array([
        [scale, 0.0, -scale * centroid[0]],
        [0.0, scale, -scale * centroid[1]],
        [0.0, 0.0, 1.0],
    ])


def _check_spread(points: NDArray[np.float64], label: str) -> None:
    centered = points - points.mean(axis=0)
    singular = np.linalg.svd(centered, compute_uv=False)
    if singular[0] <= 0 or singular[1] / singular[0] < COLLINEARITY_TOLERANCE:
        raise DegenerateHomographyError(f"{label} points are collinear")


def estimate_homography(
    object_points: NDArray[np.float64],
    image_points: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Estimate the homography mapping target-plane points to pixels.

    Args:
        object_points: Target points, shape (N, 2) or (N, 3) with z = 0.
        image_points: Observed pixels, shape (N, 2).

    Returns:
        3x3 homography normalized so that ``H[2, 2] == 1``.

    Raises:
        DegenerateHomographyError: For fewer than 4 points, collinear
            points or a non-finite solution.
    """
    src = np.asarray(object_points, dtype=np.float64)[:, :2]
    dst = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)

    if len(src) != len(dst):
        raise DegenerateHomographyError(
            f"Point count mismatch: {len(src)} target vs {len(dst)} image points"
        )
    if len(src) < 4:
        raise DegenerateHomographyError(f"Need at least 4 points, got {len(src)}")
    if not (np.all(np.isfinite(src)) and np.all(np.isfinite(dst))):
        raise DegenerateHomographyError("Non-finite point coordinates")

    _check_spread(src, "Target")
    _check_spread(dst, "Image")

    t_src = normalization_matrix(src)
    t_dst = normalization_matrix(dst)
    src_n = src @ t_src[:2, :2].T + t_src[:2, 2]
    dst_n = dst @ t_dst[:2, :2].T + t_dst[:2, 2]

    n = len(src)
    x, y = src_n[:, 0], src_n[:, 1]
    u, v = dst_n[:, 0], dst_n[:, 1]
    zeros = np.zeros(n)
    ones = np.ones(n)

    a = np.empty((2 * n, 9))
    a[0::2] = np.column_stack([x, y, ones, zeros, zeros, zeros, -u * x, -u * y, -u])
    a[1::2] = np.column_stack([zeros, zeros, zeros, x, y, ones, -v * x, -v * y, -v])

    try:
        _, _, vt = np.linalg.svd(a)
    except np.linalg.LinAlgError as e:
        raise DegenerateHomographyError(f"SVD failed: {e}") from e

    h_n = vt[-1].reshape(3, 3)
    h = np.linalg.inv(t_dst) @ h_n @ t_src

    if not np.all(np.isfinite(h)) or abs(h[2, 2]) < 1e-12:
        raise DegenerateHomographyError("Homography is not finite")

    return h / h[2, 2]
