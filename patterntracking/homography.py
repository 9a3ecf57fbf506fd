from dataclasses import dataclass, field
from typing import List
import logging
import numpy as np
import cv2
from .geometry import identity

logger = logging.getLogger(__name__)

MIN_NUMBER_MATCHES = 25


@dataclass
class PatternMatchResult:
    matches: List[cv2.DMatch] = field(default_factory=list)
    homography: np.ndarray = field(default_factory=identity)
    homography_found: bool = False

    @property
    def num_inliers(self) -> int:
        return len(self.matches) if self.homography_found else 0


def refine_matches_with_homography(query_keypoints: List[cv2.KeyPoint],
                                   train_keypoints: List[cv2.KeyPoint],
                                   reprojection_threshold: float,
                                   matches: List[cv2.DMatch],
                                   min_matches: int = MIN_NUMBER_MATCHES) -> PatternMatchResult:
    """
    Fit a pattern -> query homography with RANSAC and keep only the inlier matches.

    With fewer than `min_matches` correspondences the fit is not attempted and the
    input matches are returned as they are. The fit only counts as found when more
    than `min_matches` inliers survive. The input list is never modified.
    """
    if len(matches) < min_matches:
        return PatternMatchResult(matches=matches, homography=identity(), homography_found=False)

    src_points = np.float32([train_keypoints[m.trainIdx].pt for m in matches]).reshape(-1, 1, 2)
    dst_points = np.float32([query_keypoints[m.queryIdx].pt for m in matches]).reshape(-1, 1, 2)

    homography, inliers_mask = cv2.findHomography(src_points, dst_points, cv2.RANSAC, reprojection_threshold)

    # findHomography returns None when no model could be fitted
    if homography is None or homography.size == 0:
        logger.warning(f"Degenerate homography fit on {len(matches)} matches, substituting identity")
        homography = identity()
    if inliers_mask is None:
        inliers_mask = np.zeros(len(matches), dtype=np.uint8)

    inliers = [m for m, keep in zip(matches, inliers_mask.ravel()) if keep]
    found = len(inliers) > min_matches
    logger.debug(f"Homography inliers: {len(inliers)}/{len(matches)} (found={found})")

    return PatternMatchResult(matches=inliers, homography=np.asarray(homography, dtype=np.float64),
                              homography_found=found)
