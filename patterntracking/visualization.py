from typing import List, Optional
import numpy as np
import cv2
import rerun as rr
from .params import DetectorFlags
from .features import keypoint_positions


class DetectionVisualizer:
    """
    Logs the intermediate stages of a detection to rerun.

    Nothing is logged unless the debug_mode flag is set, so a visualizer can stay
    attached to a detector in production.
    """

    def __init__(self, flags: Optional[DetectorFlags] = None, app_id: str = "Pattern Tracking"):
        self.flags = flags or DetectorFlags()
        self.app_id = app_id

    @property
    def enabled(self) -> bool:
        return self.flags.get_flag('debug_mode')

    def start(self, spawn: bool = False):
        """Initialize the rerun recording; spawn=True opens a local viewer"""
        rr.init(self.app_id, spawn=spawn)

    def log_frame(self, gray: np.ndarray, keypoints: List[cv2.KeyPoint]):
        if not self.enabled:
            return
        rr.log("frame/image", rr.Image(gray))
        if keypoints:
            rr.log("frame/keypoints", rr.Points2D(positions=keypoint_positions(keypoints), radii=2,
                                                  colors=[0.0, 0.6, 1.0, 1.0]))
        else:
            rr.log("frame/keypoints", rr.Points2D(positions=np.zeros((0, 2))))

    def log_matches(self, stage: str, query_keypoints: List[cv2.KeyPoint], matches: List[cv2.DMatch]):
        """Log the query side of each match as a point cloud under the given stage"""
        if not self.enabled:
            return
        positions = np.array([query_keypoints[m.queryIdx].pt for m in matches], dtype=np.float32).reshape(-1, 2)
        distances = np.array([m.distance for m in matches], dtype=np.float32)

        # Color by normalized distance, green (close) to red (far)
        if len(distances) > 0 and distances.max() > distances.min():
            distances = (distances - distances.min()) / (distances.max() - distances.min())
        else:
            distances = np.zeros_like(distances)
        colors = np.column_stack([
            distances,
            1.0 - distances,
            np.zeros_like(distances),
            np.ones_like(distances)
        ])
        rr.log(f"{stage}/matches", rr.Points2D(positions=positions, radii=3, colors=colors))

    def log_warped(self, warped: np.ndarray):
        if not self.enabled:
            return
        rr.log("refinement/warped", rr.Image(warped))

    def log_contour(self, points2d: np.ndarray, pattern_idx: int):
        if not self.enabled:
            return
        contour = np.vstack([points2d, points2d[:1]]).astype(np.float32)
        rr.log("frame/contour", rr.LineStrips2D([contour], colors=[0.0, 1.0, 0.0, 1.0], radii=1.5,
                                                labels=[f"pattern{pattern_idx}"]))
