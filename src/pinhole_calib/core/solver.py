"""
Camera intrinsic solver.

Estimates the camera matrix and distortion coefficients from a calibration
session in two stages:

1. A closed-form seed from the per-view homographies (Zhang's method, or
   focal lengths alone with the principal point held at the image center),
   followed by per-view poses recovered from ``K^-1 H``.
2. Joint nonlinear refinement of intrinsics, distortion and all poses with
   ``scipy.optimize.least_squares`` over the reprojection residuals.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Optional

import cv2
import numpy as np
from numpy.typing import NDArray
from scipy.optimize import least_squares
from scipy.sparse import lil_matrix

from pinhole_calib.core.homography import estimate_homography
from pinhole_calib.core.projection import DISTORTION_SIZES, project_views
from pinhole_calib.core.types import (
    CalibrationSession,
    DegenerateHomographyError,
    Intrinsics,
    InvalidParameterError,
    SolverDivergenceError,
)
from pinhole_calib.utils.logging import get_logger

logger = get_logger("core.solver")


# Parameters shared by all views: fx, fy, cx, cy
INTRINSIC_PARAM_COUNT = 4

# Pose parameters per view: rvec, tvec
POSE_PARAM_COUNT = 6

# Minimum number of views with a valid homography
MIN_SOLVABLE_VIEWS = 2

# Minimum number of views for the full closed-form estimate
MIN_ZHANG_VIEWS = 3


@dataclass
class SolverConfig:
    """Configuration of the calibration solve.

    Attributes:
        distortion_model_size: Number of distortion coefficients (4, 5 or 8).
        fix_principal_point: Hold the principal point at the image center.
        fix_aspect_ratio: Hold fx/fy at its closed-form value.
        zero_tangent_dist: Force p1 = p2 = 0.
        max_iterations: Cap on residual evaluations during refinement.
        tolerance: Relative tolerance on cost and parameter change.
        min_view_angle_deg: Views whose board normals all lie within this
            angle of each other are rejected as degenerate.
        max_focal_uncertainty: Largest accepted standard deviation of fx and
            fy, relative to their value.
        max_principal_point_uncertainty: Largest accepted standard deviation
            of cx and cy, relative to the larger image dimension.
    """
    distortion_model_size: int = 5
    fix_principal_point: bool = False
    fix_aspect_ratio: bool = False
    zero_tangent_dist: bool = False
    max_iterations: int = 200
    tolerance: float = 1e-8
    min_view_angle_deg: float = 1.0
    max_focal_uncertainty: float = 0.01
    max_principal_point_uncertainty: float = 0.01

    def __post_init__(self) -> None:
        if self.distortion_model_size not in DISTORTION_SIZES:
            raise InvalidParameterError(
                f"distortion_model_size must be one of {DISTORTION_SIZES}, "
                f"got {self.distortion_model_size}"
            )
        if self.max_iterations < 1:
            raise InvalidParameterError(
                f"max_iterations must be >= 1, got {self.max_iterations}"
            )
        if not 0 < self.tolerance < 1:
            raise InvalidParameterError(f"tolerance must be in (0, 1), got {self.tolerance}")
        if self.min_view_angle_deg < 0:
            raise InvalidParameterError(
                f"min_view_angle_deg must be >= 0, got {self.min_view_angle_deg}"
            )
        for name in ("max_focal_uncertainty", "max_principal_point_uncertainty"):
            if getattr(self, name) <= 0:
                raise InvalidParameterError(f"{name} must be > 0, got {getattr(self, name)}")


@dataclass
class SolverOutput:
    """Result of a successful solve.

    Attributes:
        intrinsics: Refined camera intrinsics.
        distortion: Distortion coefficients ``[k1, k2, p1, p2, k3, ...]``.
        rms_error: RMS reprojection error over all points, in pixels.
        per_view_errors: RMS reprojection error of each used view.
        rvecs: Per-view rotation vectors, shape (M, 3).
        tvecs: Per-view translations in millimeters, shape (M, 3).
        view_indices: Indices into ``session.views`` of the views used.
        initial_rms: RMS reprojection error of the closed-form seed.
        iterations: Residual evaluations spent in refinement.
        intrinsic_std: Standard deviations of fx, fy, cx, cy in pixels;
            zero for held parameters.
        warnings: Non-fatal issues met during the solve.
    """
    intrinsics: Intrinsics
    distortion: NDArray[np.float64]
    rms_error: float
    per_view_errors: list[float]
    rvecs: NDArray[np.float64]
    tvecs: NDArray[np.float64]
    view_indices: list[int]
    initial_rms: float = 0.0
    iterations: int = 0
    intrinsic_std: NDArray[np.float64] = field(
        default_factory=lambda: np.zeros(INTRINSIC_PARAM_COUNT)
    )
    warnings: list[str] = field(default_factory=list)

    @property
    def camera_matrix(self) -> NDArray[np.float64]:
        return self.intrinsics.camera_matrix


# ============================================================================
# Closed-form Initialization
# ============================================================================


def _conic_row(h: NDArray[np.float64], i: int, j: int) -> NDArray[np.float64]:
    """Row of the linear system in ``b = [B11, B12, B22, B13, B23, B33]``."""
    return np.array([
        h[0, i] * h[0, j],
        h[0, i] * h[1, j] + h[1, i] * h[0, j],
        h[1, i] * h[1, j],
        h[2, i] * h[0, j] + h[0, i] * h[2, j],
        h[2, i] * h[1, j] + h[1, i] * h[2, j],
        h[2, i] * h[2, j],
    ])


def _normalizer(image_size: tuple[int, int]) -> tuple[NDArray[np.float64], float, float, float]:
    width, height = image_size
    scale = float(max(width, height))
    cx0 = (width - 1) / 2.0
    cy0 = (height - 1) / 2.0
    n = np.array([[scale, 0.0, cx0], [0.0, scale, cy0], [0.0, 0.0, 1.0]])
    return n, scale, cx0, cy0


def _normalized_homographies(
    homographies: list[NDArray[np.float64]],
    image_size: tuple[int, int],
) -> list[NDArray[np.float64]]:
    n_inv = np.linalg.inv(_normalizer(image_size)[0])
    normalized = []
    for h in homographies:
        hn = n_inv @ h
        normalized.append(hn / np.linalg.norm(hn))
    return normalized


def _inside_image(cx: float, cy: float, image_size: tuple[int, int]) -> bool:
    width, height = image_size
    return 0.0 <= cx < width and 0.0 <= cy < height


def zhang_intrinsics(
    homographies: list[NDArray[np.float64]],
    image_size: tuple[int, int],
) -> Optional[Intrinsics]:
    """Closed-form intrinsics with a free principal point and zero skew.

    Returns:
        Intrinsics, or None if the image of the absolute conic is not
        positive definite or the principal point falls outside the image.
    """
    _, scale, cx0, cy0 = _normalizer(image_size)

    rows = []
    for h in _normalized_homographies(homographies, image_size):
        rows.append(_conic_row(h, 0, 1))
        rows.append(_conic_row(h, 0, 0) - _conic_row(h, 1, 1))
    rows.append(np.array([0.0, 1.0, 0.0, 0.0, 0.0, 0.0]))

    _, _, vt = np.linalg.svd(np.array(rows))
    b11, b12, b22, b13, b23, b33 = vt[-1]

    denom = b11 * b22 - b12 * b12
    if abs(b11) < 1e-15 or denom <= 0:
        return None

    v0 = (b12 * b13 - b11 * b23) / denom
    lam = b33 - (b13 * b13 + v0 * (b12 * b13 - b11 * b23)) / b11
    alpha_sq = lam / b11
    beta_sq = lam * b11 / denom
    if alpha_sq <= 0 or beta_sq <= 0:
        return None

    alpha = np.sqrt(alpha_sq)
    beta = np.sqrt(beta_sq)
    gamma = -b12 * alpha_sq * beta / lam
    u0 = gamma * v0 / beta - b13 * alpha_sq / lam

    intrinsics = Intrinsics(
        fx=float(alpha * scale),
        fy=float(beta * scale),
        cx=float(u0 * scale + cx0),
        cy=float(v0 * scale + cy0),
    )
    values = (intrinsics.fx, intrinsics.fy, intrinsics.cx, intrinsics.cy)
    if not np.all(np.isfinite(values)):
        return None
    if not _inside_image(intrinsics.cx, intrinsics.cy, image_size):
        return None
    return intrinsics


def centered_focal_intrinsics(
    homographies: list[NDArray[np.float64]],
    image_size: tuple[int, int],
) -> Intrinsics:
    """Closed-form focal lengths with the principal point at the image center.

    Raises:
        SolverDivergenceError: If the focal lengths cannot be recovered.
    """
    _, scale, cx0, cy0 = _normalizer(image_size)

    a = []
    c = []
    for h in _normalized_homographies(homographies, image_size):
        # h1^T B h2 = 0
        a.append([h[0, 0] * h[0, 1], h[1, 0] * h[1, 1]])
        c.append(-h[2, 0] * h[2, 1])
        # h1^T B h1 = h2^T B h2
        a.append([h[0, 0] ** 2 - h[0, 1] ** 2, h[1, 0] ** 2 - h[1, 1] ** 2])
        c.append(-(h[2, 0] ** 2 - h[2, 1] ** 2))

    try:
        u, *_ = np.linalg.lstsq(np.array(a), np.array(c), rcond=None)
    except np.linalg.LinAlgError as e:
        raise SolverDivergenceError(f"Focal length initialization failed: {e}") from e

    if not np.all(np.isfinite(u)) or np.any(u <= 0):
        raise SolverDivergenceError(
            "Focal length initialization failed: views do not constrain the focal length"
        )

    return Intrinsics(
        fx=float(scale / np.sqrt(u[0])),
        fy=float(scale / np.sqrt(u[1])),
        cx=cx0,
        cy=cy0,
    )


def pose_from_homography(
    camera_matrix: NDArray[np.float64],
    homography: NDArray[np.float64],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Recover a view's pose from its homography.

    Returns:
        (rvec, tvec) with the board in front of the camera.
    """
    a = np.linalg.solve(camera_matrix, homography)
    norm = (np.linalg.norm(a[:, 0]) + np.linalg.norm(a[:, 1])) / 2.0
    if norm <= 0 or not np.isfinite(norm):
        raise SolverDivergenceError("Cannot recover view pose from homography")

    a = a / norm
    if a[2, 2] < 0:
        a = -a

    r = np.column_stack([a[:, 0], a[:, 1], np.cross(a[:, 0], a[:, 1])])
    u, _, vt = np.linalg.svd(r)
    rotation = u @ vt
    if np.linalg.det(rotation) < 0:
        u[:, -1] *= -1
        rotation = u @ vt

    rvec, _ = cv2.Rodrigues(rotation)
    return rvec.ravel(), a[:, 2].copy()


def max_normal_angle(rvecs: NDArray[np.float64]) -> float:
    """Largest angle in degrees between the board normals of any two views."""
    normals = np.array([cv2.Rodrigues(rvec)[0][:, 2] for rvec in rvecs])
    cosines = np.clip(normals @ normals.T, -1.0, 1.0)
    return float(np.degrees(np.arccos(cosines.min())))


# ============================================================================
# Nonlinear Refinement
# ============================================================================


def _sparsity_pattern(
    view_index: NDArray[np.int64],
    num_views: int,
    num_shared: int,
    free: NDArray[np.bool_],
):
    """Jacobian pattern: shared parameters touch every residual, poses only their view."""
    num_points = len(view_index)
    pattern = lil_matrix((2 * num_points, num_shared + num_views * POSE_PARAM_COUNT), dtype=int)
    pattern[:, :num_shared] = 1

    i = np.arange(num_points)
    for s in range(POSE_PARAM_COUNT):
        column = num_shared + view_index * POSE_PARAM_COUNT + s
        pattern[2 * i, column] = 1
        pattern[2 * i + 1, column] = 1

    return pattern.tocsc()[:, np.flatnonzero(free)]


def _per_view_rms(
    residuals: NDArray[np.float64],
    view_index: NDArray[np.int64],
    num_views: int,
) -> NDArray[np.float64]:
    squared = (residuals.reshape(-1, 2) ** 2).sum(axis=1)
    sums = np.bincount(view_index, weights=squared, minlength=num_views)
    counts = np.bincount(view_index, minlength=num_views)
    return np.sqrt(sums / np.maximum(counts, 1))


def intrinsic_std(
    jacobian,
    residuals: NDArray[np.float64],
    free: NDArray[np.bool_],
    held: Optional[NDArray[np.bool_]] = None,
) -> NDArray[np.float64]:
    """Standard deviations of fx, fy, cx, cy from the final Jacobian.

    The covariance is ``s^2 (J^T J)^-1`` with ``s^2`` the residual variance,
    taken over the free parameters. Columns marked in ``held`` are left out,
    which conditions the estimate on their refined values.

    Args:
        jacobian: Jacobian over the free parameters, dense or sparse.
        residuals: Final residual vector.
        free: Mask of free entries in the full parameter vector.
        held: Mask over the full parameter vector of free entries to leave out.

    Returns:
        Array of 4 standard deviations; ``inf`` where the views leave a
        parameter undetermined, zero where it is not free.
    """
    keep = np.ones(jacobian.shape[1], dtype=bool)
    if held is not None:
        keep = ~held[free]
    jacobian = jacobian[:, np.flatnonzero(keep)]
    full_index = np.flatnonzero(free)[keep]

    std = np.zeros(INTRINSIC_PARAM_COUNT)
    num_residuals, num_params = jacobian.shape
    if num_residuals <= num_params:
        std[free[:INTRINSIC_PARAM_COUNT]] = np.inf
        return std

    normal = jacobian.T @ jacobian
    if hasattr(normal, "toarray"):
        normal = normal.toarray()
    normal = np.asarray(normal, dtype=np.float64)
    scale = np.sqrt(np.diag(normal))
    if not np.all(np.isfinite(scale)) or np.any(scale <= 0):
        std[free[:INTRINSIC_PARAM_COUNT]] = np.inf
        return std

    # Column scaling keeps mm, radian and pixel parameters comparable
    scaled = normal / np.outer(scale, scale)
    try:
        covariance = np.linalg.inv(scaled)
    except np.linalg.LinAlgError:
        std[free[:INTRINSIC_PARAM_COUNT]] = np.inf
        return std
    variance = float(residuals @ residuals) / (num_residuals - num_params)

    for column, param in enumerate(full_index):
        if param >= INTRINSIC_PARAM_COUNT:
            break
        value = covariance[column, column] * variance / scale[column] ** 2
        std[param] = np.sqrt(value) if value >= 0 and np.isfinite(value) else np.inf
    return std


class CalibrationSolver:
    """Intrinsic calibration solver.

    Example:
        >>> solver = CalibrationSolver(SolverConfig(fix_principal_point=True))
        >>> output = solver.solve(session)
        >>> print(f"fx={output.intrinsics.fx:.1f}, RMS={output.rms_error:.3f}")
    """

    def __init__(self, config: Optional[SolverConfig] = None):
        self.config = config or SolverConfig()

    def solve(self, session: CalibrationSession) -> SolverOutput:
        """Estimate intrinsics, distortion and poses for a session.

        Args:
            session: Aggregated views sharing one image size.

        Returns:
            SolverOutput of the refined solve.

        Raises:
            SolverDivergenceError: If the views do not determine the
                camera or the refinement fails.
        """
        config = self.config
        if session.image_size is None or not session.views:
            raise SolverDivergenceError("Session has no views to solve")
        image_size = session.image_size
        warnings: list[str] = []

        # Per-view homographies; degenerate views are dropped
        homographies = []
        view_indices = []
        for index, view in enumerate(session.views):
            try:
                homographies.append(estimate_homography(view.object_points, view.image_points))
                view_indices.append(index)
            except DegenerateHomographyError as e:
                message = f"Dropped view {view.label}: {e}"
                logger.warning(message)
                warnings.append(message)

        if len(homographies) < MIN_SOLVABLE_VIEWS:
            raise SolverDivergenceError(
                f"Only {len(homographies)} views have a valid homography, "
                f"need at least {MIN_SOLVABLE_VIEWS}"
            )

        views = [session.views[i] for i in view_indices]
        num_views = len(views)

        # Closed-form seed
        intrinsics = None
        if not config.fix_principal_point and num_views >= MIN_ZHANG_VIEWS:
            intrinsics = zhang_intrinsics(homographies, image_size)
            if intrinsics is None:
                logger.debug("Zhang initialization rejected, holding principal point at center")
        if intrinsics is None:
            intrinsics = centered_focal_intrinsics(homographies, image_size)

        logger.debug(
            f"Initial intrinsics: fx={intrinsics.fx:.2f}, fy={intrinsics.fy:.2f}, "
            f"cx={intrinsics.cx:.2f}, cy={intrinsics.cy:.2f}"
        )

        k = intrinsics.camera_matrix
        try:
            poses = [pose_from_homography(k, h) for h in homographies]
        except np.linalg.LinAlgError as e:
            raise SolverDivergenceError(f"Pose initialization failed: {e}") from e
        rvecs0 = np.array([p[0] for p in poses])
        tvecs0 = np.array([p[1] for p in poses])

        spread = max_normal_angle(rvecs0)
        if spread < config.min_view_angle_deg:
            raise SolverDivergenceError(
                f"Views are degenerate: board orientations differ by at most {spread:.3f} deg "
                f"(need {config.min_view_angle_deg} deg); capture the target at varied angles"
            )

        # Stack correspondences of all views
        object_points = np.concatenate([v.object_points for v in views])
        image_points = np.concatenate([v.image_points for v in views])
        view_index = np.concatenate([
            np.full(v.num_points, i, dtype=np.int64) for i, v in enumerate(views)
        ])
        num_points = len(object_points)

        # Parameter layout: [fx, fy, cx, cy, dist..., (rvec, tvec) per view]
        dist_size = config.distortion_model_size
        num_shared = INTRINSIC_PARAM_COUNT + dist_size
        x_full = np.concatenate([
            [intrinsics.fx, intrinsics.fy, intrinsics.cx, intrinsics.cy],
            np.zeros(dist_size),
            np.hstack([rvecs0, tvecs0]).ravel(),
        ])

        free = np.ones(len(x_full), dtype=bool)
        aspect_ratio = intrinsics.fx / intrinsics.fy
        if config.fix_aspect_ratio:
            free[0] = False
        if config.fix_principal_point:
            free[2:4] = False
        if config.zero_tangent_dist:
            free[INTRINSIC_PARAM_COUNT + 2:INTRINSIC_PARAM_COUNT + 4] = False

        def unpack(x_free: NDArray[np.float64]):
            x = x_full.copy()
            x[free] = x_free
            if config.fix_aspect_ratio:
                x[0] = aspect_ratio * x[1]
            camera = np.array([[x[0], 0.0, x[2]], [0.0, x[1], x[3]], [0.0, 0.0, 1.0]])
            distortion = x[INTRINSIC_PARAM_COUNT:num_shared]
            pose = x[num_shared:].reshape(num_views, POSE_PARAM_COUNT)
            return camera, distortion, pose[:, :3], pose[:, 3:]

        def residuals(x_free: NDArray[np.float64]) -> NDArray[np.float64]:
            camera, distortion, rvecs, tvecs = unpack(x_free)
            projected = project_views(
                object_points, view_index, rvecs, tvecs, camera, distortion
            )
            return (projected - image_points).ravel()

        x0 = x_full[free]
        initial = residuals(x0)
        initial_rms = float(np.sqrt(np.sum(initial ** 2) / num_points))
        if not np.isfinite(initial_rms):
            raise SolverDivergenceError("Initial estimate projects to non-finite points")
        logger.debug(f"Initial RMS reprojection error: {initial_rms:.4f} px")

        try:
            result = least_squares(
                residuals,
                x0,
                jac_sparsity=_sparsity_pattern(view_index, num_views, num_shared, free),
                x_scale="jac",
                ftol=config.tolerance,
                xtol=config.tolerance,
                max_nfev=config.max_iterations,
                method="trf",
            )
        except (ValueError, np.linalg.LinAlgError) as e:
            raise SolverDivergenceError(f"Nonlinear refinement failed: {e}") from e

        if result.status < 0:
            raise SolverDivergenceError(f"Nonlinear refinement failed: {result.message}")
        if result.status == 0:
            message = (
                f"Refinement stopped at the iteration cap ({config.max_iterations}) "
                "before converging"
            )
            logger.warning(message)
            warnings.append(message)

        camera, distortion, rvecs, tvecs = unpack(result.x)
        final = result.fun
        rms = float(np.sqrt(np.sum(final ** 2) / num_points))

        if not (np.all(np.isfinite(result.x)) and np.isfinite(rms)):
            raise SolverDivergenceError("Refinement produced non-finite parameters")
        refined = Intrinsics.from_matrix(camera)
        if refined.fx <= 0 or refined.fy <= 0:
            raise SolverDivergenceError(
                f"Refinement produced non-positive focal length "
                f"(fx={refined.fx:.3f}, fy={refined.fy:.3f})"
            )
        if not _inside_image(refined.cx, refined.cy, image_size):
            raise SolverDivergenceError(
                f"Refined principal point ({refined.cx:.1f}, {refined.cy:.1f}) "
                f"lies outside the {image_size[0]}x{image_size[1]} image"
            )
        if rms > initial_rms * (1.0 + 1e-9):
            raise SolverDivergenceError(
                f"Refinement diverged: RMS grew from {initial_rms:.4f} to {rms:.4f} px"
            )

        # Rational terms k4..k6 trade off against k1..k3 on any view set
        held = np.zeros(len(x_full), dtype=bool)
        held[INTRINSIC_PARAM_COUNT + 5:num_shared] = True
        std = intrinsic_std(result.jac, final, free, held & free)
        if config.fix_aspect_ratio:
            std[0] = aspect_ratio * std[1]
        logger.debug(
            f"Intrinsic std: fx={std[0]:.3f}, fy={std[1]:.3f}, cx={std[2]:.3f}, cy={std[3]:.3f} px"
        )

        focal_limit = config.max_focal_uncertainty * min(refined.fx, refined.fy)
        center_limit = config.max_principal_point_uncertainty * max(image_size)
        if max(std[0], std[1]) > focal_limit or max(std[2], std[3]) > center_limit:
            raise SolverDivergenceError(
                f"Views are degenerate: intrinsics are too uncertain "
                f"(std fx={std[0]:.2f}, fy={std[1]:.2f}, cx={std[2]:.2f}, cy={std[3]:.2f} px); "
                "capture the target at varied angles"
            )

        logger.info(
            f"Solve finished after {result.nfev} evaluations: RMS {initial_rms:.4f} -> {rms:.4f} px"
        )

        return SolverOutput(
            intrinsics=refined,
            distortion=np.array(distortion, dtype=np.float64),
            rms_error=rms,
            per_view_errors=_per_view_rms(final, view_index, num_views).tolist(),
            rvecs=np.array(rvecs),
            tvecs=np.array(tvecs),
            view_indices=view_indices,
            initial_rms=initial_rms,
            iterations=int(result.nfev),
            intrinsic_std=std,
            warnings=warnings,
        )


def solve(
    session: CalibrationSession,
    distortion_model_size: Optional[int] = None,
    config: Optional[SolverConfig] = None,
) -> SolverOutput:
    """Solve a session with an optional distortion model override.

    Args:
        session: Aggregated views.
        distortion_model_size: Number of distortion coefficients (4, 5 or 8);
            overrides ``config.distortion_model_size`` when given.
        config: Solver configuration.

    Returns:
        SolverOutput of the refined solve.
    """
    config = config or SolverConfig()
    if distortion_model_size is not None:
        config = dataclasses.replace(config, distortion_model_size=distortion_model_size)
    return CalibrationSolver(config).solve(session)
