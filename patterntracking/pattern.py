from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
import json
import logging
import numpy as np
import cv2
from .features import FeatureExtractor, to_grayscale, keypoints_to_array, keypoints_from_array

logger = logging.getLogger(__name__)

KEYPOINT_FIELDS = 7  # x, y, size, angle, response, octave, class_id


# Registered planar pattern
@dataclass
class Pattern:
    size: Tuple[int, int]  # (width, height)
    points2d: np.ndarray  # 4x2 corners: top-left, top-right, bottom-right, bottom-left
    points3d: np.ndarray  # 4x3 corners on the normalized z=0 plane
    keypoints: List[cv2.KeyPoint] = field(default_factory=list)
    descriptors: Optional[np.ndarray] = None
    name: str = ""

    def __post_init__(self):
        assert len(self.points2d) == 4, "pattern needs 4 image corners"
        assert len(self.points3d) == 4, "pattern needs 4 plane corners"
        assert len(self.keypoints) == self.num_descriptors, "keypoints and descriptors must be aligned"

    @property
    def num_descriptors(self) -> int:
        if self.descriptors is None:
            return 0
        return self.descriptors.shape[0]

    @property
    def empty(self) -> bool:
        return self.num_descriptors == 0

    @classmethod
    def from_dict(cls, data: Dict) -> 'Pattern':
        if 'width' not in data or 'height' not in data:
            raise ValueError("Pattern record needs width and height")
        width, height = data['width'], data['height']
        points2d, points3d = pattern_contours(width, height)
        descriptors = data.get('descriptors')
        return cls(
            size=(int(width), int(height)),
            points2d=points2d,
            points3d=points3d,
            keypoints=keypoints_from_array(np.array(data.get('keypoints', []))),
            descriptors=np.array(descriptors, dtype=data.get('dtype', 'uint8')) if descriptors else None,
            name=data.get('name', '')
        )

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'width': self.size[0],
            'height': self.size[1],
            'keypoints': keypoints_to_array(self.keypoints).tolist(),
            'descriptors': self.descriptors.tolist() if self.descriptors is not None else [],
            'dtype': str(self.descriptors.dtype) if self.descriptors is not None else 'uint8'
        }


@dataclass
class PatternTrackingInfo:
    pattern_idx: int
    homography: np.ndarray  # 3x3, pattern plane -> frame
    points2d: np.ndarray  # pattern corners in frame coordinates


def pattern_contours(width: float, height: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Build the 2D image contour and the 3D plane contour of a width x height pattern.

    The plane contour is centred at the origin and keeps the aspect ratio, the
    longer side spanning [-1, 1].
    """
    if not (width > 0 and height > 0):
        raise ValueError(f"Pattern size must be positive, got {width}x{height}")
    w, h = float(width), float(height)
    max_size = max(w, h)
    unit_w = w / max_size
    unit_h = h / max_size

    points2d = np.array([
        [0, 0],
        [w, 0],
        [w, h],
        [0, h]
    ], dtype=np.float32)

    points3d = np.array([
        [-unit_w, -unit_h, 0],
        [unit_w, -unit_h, 0],
        [unit_w, unit_h, 0],
        [-unit_w, unit_h, 0]
    ], dtype=np.float32)

    return points2d, points3d


def build_pattern_from_image(image: np.ndarray, extractor: FeatureExtractor, name: str = "") -> Pattern:
    height, width = image.shape[:2]
    points2d, points3d = pattern_contours(width, height)

    gray = to_grayscale(image)
    keypoints, descriptors = extractor.extract(gray)
    if not keypoints:
        logger.warning(f"Pattern '{name}' has no features and will never be matched")

    return Pattern(
        size=(width, height),
        points2d=points2d,
        points3d=points3d,
        keypoints=keypoints,
        descriptors=descriptors,
        name=name
    )


def build_patterns_from_images(images: List[np.ndarray], extractor: FeatureExtractor) -> List[Pattern]:
    return [build_pattern_from_image(image, extractor, name=f"pattern{i}") for i, image in enumerate(images)]


def _read_keypoints(node: cv2.FileNode) -> List[cv2.KeyPoint]:
    if node.empty() or node.isNone():
        return []
    # Matrix form written by save_pattern
    if node.isMap():
        return keypoints_from_array(node.mat())
    if not node.isSeq():
        raise ValueError("keypoints must be a sequence or a matrix")

    # Keypoint sequence as written by OpenCV: either nested [x, y, ...] entries or one flat list
    values = []
    for i in range(node.size()):
        child = node.at(i)
        if child.isSeq():
            values.extend(child.at(j).real() for j in range(child.size()))
        else:
            values.append(child.real())
    if len(values) % KEYPOINT_FIELDS != 0:
        raise ValueError(f"Malformed keypoint sequence with {len(values)} values")
    return keypoints_from_array(np.array(values))


def load_pattern(path: Union[str, Path]) -> Pattern:
    """Load a pattern record (width, height, keypoints, descriptors) from a YAML/XML or JSON file"""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Pattern file not found: {path}")

    if path.suffix.lower() == ".json":
        with path.open('r') as f:
            data = json.load(f)
        data.setdefault('name', path.stem)
        return Pattern.from_dict(data)

    fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
    if not fs.isOpened():
        raise ValueError(f"Cannot open pattern file: {path}")
    try:
        width = fs.getNode("width").real()
        height = fs.getNode("height").real()
        if width <= 0 or height <= 0:
            raise ValueError(f"Pattern file {path} has invalid size {width}x{height}")

        keypoints = _read_keypoints(fs.getNode("keypoints"))
        descriptors_node = fs.getNode("descriptors")
        descriptors = None if descriptors_node.empty() else descriptors_node.mat()
    finally:
        fs.release()

    if descriptors is not None and descriptors.size == 0:
        descriptors = None
    if len(keypoints) != (0 if descriptors is None else descriptors.shape[0]):
        raise ValueError(f"Pattern file {path} has {len(keypoints)} keypoints but "
                         f"{0 if descriptors is None else descriptors.shape[0]} descriptors")

    points2d, points3d = pattern_contours(width, height)
    return Pattern(
        size=(int(width), int(height)),
        points2d=points2d,
        points3d=points3d,
        keypoints=keypoints,
        descriptors=descriptors,
        name=path.stem
    )


def build_patterns_from_files(paths: List[Union[str, Path]]) -> List[Pattern]:
    return [load_pattern(path) for path in paths]


def save_pattern(pattern: Pattern, path: Union[str, Path]) -> None:
    path = Path(path)
    if path.suffix.lower() == ".json":
        with path.open('w') as f:
            json.dump(pattern.to_dict(), f)
        return

    fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_WRITE)
    try:
        fs.write("width", int(pattern.size[0]))
        fs.write("height", int(pattern.size[1]))
        if not pattern.empty:
            fs.write("keypoints", keypoints_to_array(pattern.keypoints))
            fs.write("descriptors", pattern.descriptors)
    finally:
        fs.release()
