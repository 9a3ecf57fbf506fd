import pytest
import numpy as np
import cv2
from patterntracking.geometry import identity, is_identity, compose, transform_points, warp_to_pattern
from patterntracking.features import to_grayscale


@pytest.fixture
def rough():
    return np.array([[1.1, 0.05, 30.0], [-0.02, 0.95, 12.0], [1e-4, -2e-4, 1.0]])


@pytest.fixture
def refinement():
    return np.array([[1.0, 0.01, 1.5], [0.0, 1.02, -0.8], [0.0, 1e-5, 1.0]])


class TestHomographyOps:
    def test_identity(self):
        assert is_identity(identity())
        assert identity().dtype == np.float64

    def test_compose_matches_sequential_transform(self, rough, refinement):
        points = np.array([[0, 0], [200, 0], [200, 100], [0, 100], [37.5, 81.25]], dtype=np.float32)

        chained = transform_points(points, compose(rough, refinement))
        sequential = transform_points(transform_points(points, refinement), rough)
        np.testing.assert_allclose(chained, sequential, atol=1e-3)

    def test_compose_with_identity(self, rough):
        np.testing.assert_allclose(compose(rough, identity()), rough)
        np.testing.assert_allclose(compose(identity(), rough), rough)

    def test_transform_points_translation(self):
        H = np.array([[1, 0, 5], [0, 1, -3], [0, 0, 1]], dtype=np.float64)
        result = transform_points(np.array([[0, 0], [10, 20]]), H)
        np.testing.assert_allclose(result, [[5, -3], [15, 17]], atol=1e-5)

    def test_transform_no_points(self):
        assert transform_points(np.zeros((0, 2)), identity()).shape == (0, 2)

    def test_warp_inverse_map(self, texture_factory):
        image = texture_factory(120, 80, seed=3)
        shift = np.array([[1, 0, 10], [0, 1, 5], [0, 0, 1]], dtype=np.float64)
        # H maps pattern -> frame, so the warped view starts at (10, 5) of the frame
        warped = warp_to_pattern(image, shift, (50, 40))
        assert warped.shape == (40, 50)
        np.testing.assert_array_equal(warped, image[5:45, 10:60])


class TestGrayscale:
    @pytest.mark.parametrize("shape", [(20, 30), (20, 30, 1), (20, 30, 3), (20, 30, 4)])
    def test_channels(self, shape):
        gray = to_grayscale(np.zeros(shape, dtype=np.uint8))
        assert gray.shape == (20, 30)

    def test_bgr_conversion(self):
        image = np.zeros((4, 4, 3), dtype=np.uint8)
        image[:, :, 2] = 255  # red
        assert to_grayscale(image)[0, 0] == cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)[0, 0]

    def test_unsupported(self):
        with pytest.raises(ValueError):
            to_grayscale(np.zeros((4, 4, 2), dtype=np.uint8))
