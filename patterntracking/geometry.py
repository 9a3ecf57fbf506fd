from typing import Tuple
import numpy as np
import cv2


def identity() -> np.ndarray:
    """3x3 identity homography (float64)."""
    return np.eye(3, dtype=np.float64)


def is_identity(H: np.ndarray, atol: float = 1e-9) -> bool:
    assert H.shape == (3, 3), "H must be a 3x3 matrix"
    return bool(np.allclose(H, np.eye(3), atol=atol))


def compose(outer: np.ndarray, inner: np.ndarray) -> np.ndarray:
    """
    Chain two homographies: the result applies `inner` first, then `outer`.

    Mapping a point through compose(rough, refinement) is the same as mapping it
    through refinement and then through rough.
    """
    assert outer.shape == (3, 3), "outer must be a 3x3 matrix"
    assert inner.shape == (3, 3), "inner must be a 3x3 matrix"

    return np.matmul(outer.astype(np.float64), inner.astype(np.float64))


def transform_points(points: np.ndarray, H: np.ndarray) -> np.ndarray:
    """
    Apply a homography to an (N, 2) array of points.

    Returns an (N, 2) float32 array.
    """
    assert H.shape == (3, 3), "H must be a 3x3 matrix"

    points = np.asarray(points, dtype=np.float32).reshape(-1, 1, 2)
    if len(points) == 0:
        return np.zeros((0, 2), dtype=np.float32)
    transformed = cv2.perspectiveTransform(points, H.astype(np.float64))
    return transformed.reshape(-1, 2)


def warp_to_pattern(image: np.ndarray, H: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """
    Resample `image` into the pattern's reference frame.

    H maps pattern -> image, so the warp is done with the inverse map. Bicubic
    interpolation keeps enough detail for features to be re-detected.
    """
    assert H.shape == (3, 3), "H must be a 3x3 matrix"

    width, height = int(size[0]), int(size[1])
    return cv2.warpPerspective(image, H.astype(np.float64), (width, height),
                               flags=cv2.WARP_INVERSE_MAP | cv2.INTER_CUBIC)
