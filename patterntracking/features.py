from typing import List, Optional, Tuple
import logging
import numpy as np
import cv2

logger = logging.getLogger(__name__)

Features = Tuple[List[cv2.KeyPoint], Optional[np.ndarray]]


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Convert a 1, 3 (BGR) or 4 (BGRA) channel image to single channel"""
    if image.ndim == 2:
        return image
    if image.ndim == 3:
        channels = image.shape[2]
        if channels == 1:
            return image[:, :, 0]
        if channels == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        if channels == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    raise ValueError(f"Unsupported image shape for grayscale conversion: {image.shape}")


class FeatureExtractor:
    """
    Detects keypoints and computes descriptors on grayscale images.

    Any cv2.Feature2D works; ORB (binary descriptors) is the default.
    """

    def __init__(self, feature2d: Optional[cv2.Feature2D] = None, max_features: int = 1000):
        self.feature2d = feature2d if feature2d is not None else cv2.ORB_create(nfeatures=max_features)

    def extract(self, gray: np.ndarray) -> Features:
        """
        Returns (keypoints, descriptors). Descriptors are None when nothing was found.
        """
        assert gray is not None and gray.size > 0, "image must not be empty"
        assert gray.ndim == 2, "image must be single channel"

        keypoints = self.feature2d.detect(gray, None)
        if not keypoints:
            return [], None

        keypoints, descriptors = self.feature2d.compute(gray, keypoints)
        # compute() may drop keypoints too close to the border
        if not keypoints or descriptors is None:
            return [], None

        logger.debug(f"Extracted {len(keypoints)} features from {gray.shape[1]}x{gray.shape[0]} image")
        return list(keypoints), descriptors


def keypoints_to_array(keypoints: List[cv2.KeyPoint]) -> np.ndarray:
    """Pack keypoints into an (N, 7) float64 array: x, y, size, angle, response, octave, class_id"""
    rows = [[kp.pt[0], kp.pt[1], kp.size, kp.angle, kp.response, kp.octave, kp.class_id]
            for kp in keypoints]
    return np.array(rows, dtype=np.float64).reshape(-1, 7)


def keypoints_from_array(data: np.ndarray) -> List[cv2.KeyPoint]:
    data = np.asarray(data, dtype=np.float64).reshape(-1, 7)
    return [cv2.KeyPoint(float(x), float(y), float(size), float(angle), float(response), int(octave), int(class_id))
            for x, y, size, angle, response, octave, class_id in data]


def keypoint_positions(keypoints: List[cv2.KeyPoint]) -> np.ndarray:
    return np.array([kp.pt for kp in keypoints], dtype=np.float32).reshape(-1, 2)
