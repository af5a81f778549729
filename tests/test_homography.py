"""
Tests for pinhole_calib.core.homography.
"""

import numpy as np
import pytest

from pinhole_calib.core.homography import estimate_homography
from pinhole_calib.core.types import DegenerateHomographyError, SolverDivergenceError


def apply(h, points):
    homogeneous = np.column_stack([points, np.ones(len(points))]) @ h.T
    return homogeneous[:, :2] / homogeneous[:, 2:]


@pytest.fixture
def true_homography():
    return np.array([
        [1.9, 0.15, 120.0],
        [-0.1, 2.1, 80.0],
        [2e-4, -1e-4, 1.0],
    ])


@pytest.fixture
def plane_points():
    xx, yy = np.meshgrid(np.arange(9) * 25.0, np.arange(6) * 25.0)
    return np.column_stack([xx.ravel(), yy.ravel()])


class TestEstimateHomography:
    def test_exact_recovery(self, true_homography, plane_points):
        h = estimate_homography(plane_points, apply(true_homography, plane_points))
        np.testing.assert_allclose(h, true_homography, rtol=1e-6, atol=1e-9)

    def test_accepts_3d_planar_points(self, true_homography, plane_points):
        points_3d = np.column_stack([plane_points, np.zeros(len(plane_points))])
        h = estimate_homography(points_3d, apply(true_homography, plane_points))
        assert h[2, 2] == pytest.approx(1.0)
        np.testing.assert_allclose(apply(h, plane_points), apply(true_homography, plane_points), atol=1e-6)

    def test_four_points_suffice(self, true_homography):
        square = np.array([[0.0, 0.0], [100.0, 0.0], [100.0, 100.0], [0.0, 100.0]])
        h = estimate_homography(square, apply(true_homography, square))
        np.testing.assert_allclose(h, true_homography, rtol=1e-6, atol=1e-9)

    def test_too_few_points(self, true_homography):
        points = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        with pytest.raises(DegenerateHomographyError):
            estimate_homography(points, apply(true_homography, points))

    def test_collinear_points(self, true_homography):
        points = np.column_stack([np.arange(10) * 10.0, np.arange(10) * 5.0])
        with pytest.raises(DegenerateHomographyError):
            estimate_homography(points, apply(true_homography, points))

    def test_non_finite_points(self, true_homography, plane_points):
        image = apply(true_homography, plane_points)
        image[3, 0] = np.nan
        with pytest.raises(DegenerateHomographyError):
            estimate_homography(plane_points, image)

    def test_degenerate_is_solver_divergence(self):
        assert issubclass(DegenerateHomographyError, SolverDivergenceError)
