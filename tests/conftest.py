"""
Pytest configuration and shared fixtures.
"""

import tempfile
from pathlib import Path

import cv2
import numpy as np
import pytest

from pinhole_calib.core.target import generate_board_image, generate_reference_points
from pinhole_calib.core.types import (
    CalibrationSession,
    TargetConfig,
    TargetKind,
    ViewObservation,
)


IMAGE_SIZE = (640, 480)

# Board orientations (degrees about x, y, z) of the synthetic views
POSE_ANGLES_DEG = [
    (20, 0, 0),
    (-20, 0, 5),
    (0, 20, -5),
    (0, -20, 0),
    (15, 15, 10),
    (-15, 15, -10),
    (15, -15, 0),
    (-15, -15, 5),
    (25, 5, 0),
    (5, -25, 0),
    (-10, 25, 8),
    (10, 10, -8),
]


def board_poses(config, num_views=12, distance_mm=550.0):
    """Fixed poses that keep the whole board in a 640x480 view."""
    center = np.array([
        (config.inner_corners_x - 1) * config.square_size_mm / 2.0,
        (config.inner_corners_y - 1) * config.square_size_mm / 2.0,
        0.0,
    ])
    poses = []
    for i in range(num_views):
        rvec = np.radians(np.array(POSE_ANGLES_DEG[i % len(POSE_ANGLES_DEG)], dtype=np.float64))
        rotation, _ = cv2.Rodrigues(rvec)
        position = np.array([((i % 3) - 1) * 20.0, ((i % 2) * 2 - 1) * 15.0, distance_mm + 10.0 * i])
        poses.append((rvec, position - rotation @ center))
    return poses


def render_board_view(config, camera_matrix, rvec, tvec, image_size=IMAGE_SIZE, pixels_per_square=40):
    """Render the chessboard or ChArUco board as seen by an undistorted camera."""
    canvas = generate_board_image(config, pixels_per_square=pixels_per_square, margin=pixels_per_square)

    # Canvas pixel -> board plane (mm); inner corner (0, 0) sits at 2 * pps - 0.5
    scale = config.square_size_mm / pixels_per_square
    offset = 2 * pixels_per_square - 0.5
    canvas_to_plane = np.array([
        [scale, 0.0, -offset * scale],
        [0.0, scale, -offset * scale],
        [0.0, 0.0, 1.0],
    ])

    rotation, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64))
    plane_to_image = camera_matrix @ np.column_stack([rotation[:, 0], rotation[:, 1], tvec])
    image = cv2.warpPerspective(
        canvas,
        plane_to_image @ canvas_to_plane,
        image_size,
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=255,
    )
    return cv2.GaussianBlur(image, (3, 3), 0)


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that's cleaned up after test."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td)


@pytest.fixture
def camera_matrix():
    """Ground-truth camera of the synthetic views."""
    return np.array([
        [800.0, 0.0, 320.0],
        [0.0, 800.0, 240.0],
        [0.0, 0.0, 1.0],
    ], dtype=np.float64)


@pytest.fixture
def chessboard_config():
    """Standard 10x7 chessboard with 9x6 inner corners."""
    return TargetConfig(TargetKind.CHESSBOARD, 9, 6, 25.0)


@pytest.fixture
def charuco_config():
    """7x5 square ChArUco board."""
    return TargetConfig(TargetKind.CHARUCO, 6, 4, 30.0, dictionary_id="DICT_4X4_50")


@pytest.fixture
def make_views(camera_matrix, chessboard_config):
    """Factory for synthetic views projected through a known camera."""
    def _make(
        num_views=12,
        noise_px=0.1,
        distortion=None,
        image_size=IMAGE_SIZE,
        poses=None,
        keep_fraction=1.0,
        config=None,
    ):
        config = config or chessboard_config
        rng = np.random.default_rng(0)
        reference = generate_reference_points(config)
        dist = np.zeros(5) if distortion is None else np.asarray(distortion, dtype=np.float64)
        poses = poses or board_poses(config, num_views)

        views = []
        for i, (rvec, tvec) in enumerate(poses):
            ids = np.arange(len(reference))
            if keep_fraction < 1.0:
                count = max(6, int(len(reference) * keep_fraction))
                ids = np.sort(rng.choice(len(reference), size=count, replace=False))
            projected, _ = cv2.projectPoints(reference[ids], rvec, tvec, camera_matrix, dist)
            image_points = projected.reshape(-1, 2) + rng.normal(0.0, noise_px, (len(ids), 2))
            views.append(ViewObservation(
                image_size=image_size,
                object_points=reference[ids],
                image_points=image_points,
                point_ids=ids if keep_fraction < 1.0 else None,
                source=f"view_{i:02d}",
            ))
        return views
    return _make


@pytest.fixture
def make_session(make_views):
    """Factory for a calibration session of synthetic views."""
    def _make(**kwargs):
        views = make_views(**kwargs)
        return CalibrationSession(
            kind=TargetKind.CHESSBOARD,
            image_size=views[0].image_size,
            views=views,
            total_images=len(views),
        )
    return _make


@pytest.fixture(scope="module")
def rendered_views():
    """Twelve rendered 640x480 chessboard images of the ground-truth camera."""
    config = TargetConfig(TargetKind.CHESSBOARD, 9, 6, 25.0)
    camera = np.array([[800.0, 0.0, 320.0], [0.0, 800.0, 240.0], [0.0, 0.0, 1.0]])
    return [
        render_board_view(config, camera, rvec, tvec)
        for rvec, tvec in board_poses(config)
    ]


@pytest.fixture(scope="module")
def rendered_charuco_views():
    """Twelve rendered 640x480 ChArUco images, the right side of every other one covered."""
    config = TargetConfig(TargetKind.CHARUCO, 6, 4, 30.0, dictionary_id="DICT_4X4_50")
    camera = np.array([[800.0, 0.0, 320.0], [0.0, 800.0, 240.0], [0.0, 0.0, 1.0]])
    images = []
    for i, (rvec, tvec) in enumerate(board_poses(config)):
        image = render_board_view(config, camera, rvec, tvec, pixels_per_square=60)
        if i % 2:
            image[:, 420:] = 255
        images.append(image)
    return images
