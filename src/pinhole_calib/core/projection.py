"""
Pinhole projection with radial and tangential distortion.

Implements the OpenCV distortion model on batches of points:
``[k1, k2, p1, p2, k3]`` and the rational extension ``[k4, k5, k6]``.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
from numpy.typing import NDArray


# Supported distortion vector lengths
DISTORTION_SIZES = (4, 5, 8)


def pad_distortion(distortion: Optional[NDArray[np.float64]]) -> NDArray[np.float64]:
    """Return the distortion vector padded with zeros to 8 coefficients."""
    padded = np.zeros(8, dtype=np.float64)
    if distortion is not None:
        coeffs = np.asarray(distortion, dtype=np.float64).ravel()
        padded[:min(len(coeffs), 8)] = coeffs[:8]
    return padded


def rotation_matrices(rvecs: NDArray[np.float64]) -> NDArray[np.float64]:
    """Rodrigues formula for a batch of rotation vectors.

    Args:
        rvecs: Rotation vectors, shape (M, 3).

    Returns:
        Rotation matrices, shape (M, 3, 3).
    """
    rvecs = np.asarray(rvecs, dtype=np.float64).reshape(-1, 3)
    theta = np.linalg.norm(rvecs, axis=1)
    small = theta < 1e-12
    safe_theta = np.where(small, 1.0, theta)
    axis = rvecs / safe_theta[:, None]

    kx, ky, kz = axis[:, 0], axis[:, 1], axis[:, 2]
    zeros = np.zeros_like(kx)
    k = np.stack([
        np.stack([zeros, -kz, ky], axis=1),
        np.stack([kz, zeros, -kx], axis=1),
        np.stack([-ky, kx, zeros], axis=1),
    ], axis=1)

    sin = np.where(small, 0.0, np.sin(theta))[:, None, None]
    cos = np.where(small, 1.0, np.cos(theta))[:, None, None]
    eye = np.eye(3)[None, :, :]
    return eye + sin * k + (1.0 - cos) * (k @ k)


def distort_normalized(
    x: NDArray[np.float64],
    y: NDArray[np.float64],
    distortion: NDArray[np.float64],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Apply distortion to normalized image coordinates."""
    k1, k2, p1, p2, k3, k4, k5, k6 = pad_distortion(distortion)
    r2 = x * x + y * y
    r4 = r2 * r2
    r6 = r4 * r2
    radial = (1.0 + k1 * r2 + k2 * r4 + k3 * r6) / (1.0 + k4 * r2 + k5 * r4 + k6 * r6)
    xd = x * radial + 2.0 * p1 * x * y + p2 * (r2 + 2.0 * x * x)
    yd = y * radial + p1 * (r2 + 2.0 * y * y) + 2.0 * p2 * x * y
    return xd, yd


def project_views(
    object_points: NDArray[np.float64],
    view_index: NDArray[np.int64],
    rvecs: NDArray[np.float64],
    tvecs: NDArray[np.float64],
    camera_matrix: NDArray[np.float64],
    distortion: Optional[NDArray[np.float64]] = None,
) -> NDArray[np.float64]:
    """Project points that belong to several views at once.

    Args:
        object_points: Target points, shape (N, 3).
        view_index: View of each point, shape (N,).
        rvecs: Per-view rotation vectors, shape (M, 3).
        tvecs: Per-view translations, shape (M, 3).
        camera_matrix: 3x3 camera matrix.
        distortion: Distortion coefficients (4, 5 or 8 values).

    Returns:
        Pixel coordinates, shape (N, 2).
    """
    rotations = rotation_matrices(rvecs)[view_index]
    translations = np.asarray(tvecs, dtype=np.float64).reshape(-1, 3)[view_index]

    cam = np.einsum("nij,nj->ni", rotations, object_points) + translations
    x = cam[:, 0] / cam[:, 2]
    y = cam[:, 1] / cam[:, 2]
    xd, yd = distort_normalized(x, y, distortion)

    k = np.asarray(camera_matrix, dtype=np.float64)
    u = k[0, 0] * xd + k[0, 1] * yd + k[0, 2]
    v = k[1, 1] * yd + k[1, 2]
    return np.column_stack([u, v])


def project_points(
    object_points: NDArray[np.float64],
    rvec: NDArray[np.float64],
    tvec: NDArray[np.float64],
    camera_matrix: NDArray[np.float64],
    distortion: Optional[NDArray[np.float64]] = None,
) -> NDArray[np.float64]:
    """Project the target points of a single view to pixels."""
    object_points = np.asarray(object_points, dtype=np.float64).reshape(-1, 3)
    view_index = np.zeros(len(object_points), dtype=np.int64)
    return project_views(
        object_points,
        view_index,
        np.asarray(rvec, dtype=np.float64).reshape(1, 3),
        np.asarray(tvec, dtype=np.float64).reshape(1, 3),
        camera_matrix,
        distortion,
    )
