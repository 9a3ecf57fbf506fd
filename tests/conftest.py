import pytest
import numpy as np
import cv2


def make_texture(width: int, height: int, block: int = 4, seed: int = 0) -> np.ndarray:
    """Random gray blocks: many distinctive corners, no repeating structure"""
    rng = np.random.default_rng(seed)
    small = rng.integers(0, 256, size=(height // block, width // block), dtype=np.uint8)
    return cv2.resize(small, (width, height), interpolation=cv2.INTER_NEAREST)


@pytest.fixture
def texture_factory():
    return make_texture


@pytest.fixture(scope='session')
def pattern_image():
    return cv2.cvtColor(make_texture(320, 240, block=6, seed=1), cv2.COLOR_GRAY2BGR)


@pytest.fixture(scope='session')
def other_pattern_image():
    return cv2.cvtColor(make_texture(320, 240, block=6, seed=2), cv2.COLOR_GRAY2BGR)


@pytest.fixture(scope='session')
def true_homography():
    # Mild rotation, scale and perspective, pattern lands inside a 640x480 frame
    return np.array([
        [0.9, 0.08, 120.0],
        [-0.05, 0.95, 90.0],
        [1e-4, 5e-5, 1.0]
    ], dtype=np.float64)


@pytest.fixture(scope='session')
def scene_image(pattern_image, true_homography):
    return cv2.warpPerspective(pattern_image, true_homography, (640, 480), flags=cv2.INTER_LINEAR)
