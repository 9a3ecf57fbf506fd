from typing import Dict, List, Optional, Sequence, Tuple
from concurrent.futures import ThreadPoolExecutor
from collections import deque
from functools import partial
from pathlib import Path
from threading import Event
import logging
import time
import numpy as np
import cv2
from .features import FeatureExtractor, Features, to_grayscale
from .geometry import compose, is_identity, transform_points, warp_to_pattern
from .homography import PatternMatchResult, refine_matches_with_homography
from .matching import PatternMatcher
from .params import DetectorParams, DetectorFlags
from .pattern import Pattern, PatternTrackingInfo, build_patterns_from_images, build_patterns_from_files
from .visualization import DetectionVisualizer

logger = logging.getLogger(__name__)


def select_best_match(results: Sequence[PatternMatchResult]) -> int:
    """
    Index of the pattern with the most inliers among those with a homography.

    Scans in pattern order, so the first pattern wins a tie. Returns -1 if no
    pattern produced a homography.
    """
    max_found = 0
    max_found_idx = -1
    for i, result in enumerate(results):
        if result.num_inliers > max_found:
            max_found = result.num_inliers
            max_found_idx = i
    return max_found_idx


class PatternDetector:
    def __init__(self,
                 extractor: FeatureExtractor = None,
                 params: DetectorParams = None,
                 flags: DetectorFlags = None,
                 visualizer: DetectionVisualizer = None):
        self.params = params or DetectorParams()
        self.params.validate()
        self.extractor = extractor or FeatureExtractor(max_features=self.params.max_features)
        self.flags = flags or DetectorFlags()
        self.visualizer = visualizer
        self.matcher = PatternMatcher(norm=self.params.norm)

        # Last 100 samples per stage, only filled while the timing_stats flag is set
        self.max_stats_samples = 100
        self.timing_stats: Dict[str, deque] = {
            'feature_extraction': deque(maxlen=self.max_stats_samples),
            'pattern_matching': deque(maxlen=self.max_stats_samples),
            'refinement': deque(maxlen=self.max_stats_samples),
            'total_detection': deque(maxlen=self.max_stats_samples)
        }

    @property
    def patterns(self) -> List[Pattern]:
        return self.matcher.patterns

    def train(self, patterns: List[Pattern]) -> None:
        """Replace the trained pattern set"""
        self.matcher.train(patterns)

    def build_patterns_from_images(self, images: List[np.ndarray]) -> List[Pattern]:
        return build_patterns_from_images(images, self.extractor)

    def build_patterns_from_files(self, paths: List[Path]) -> List[Pattern]:
        return build_patterns_from_files(paths)

    @staticmethod
    def get_gray(image: np.ndarray) -> np.ndarray:
        return to_grayscale(image)

    def extract_features(self, gray: np.ndarray) -> Features:
        return self.extractor.extract(gray)

    def _update_timing(self, category: str, duration: float):
        """Update timing statistics for a category"""
        if not self.flags.get_flag('timing_stats'):
            return
        self.timing_stats[category].append(duration)

    def get_timing_stats(self):
        """Get average timing statistics"""
        stats = {}
        for category, times in self.timing_stats.items():
            times_list = list(times)
            if times_list:
                stats[category] = {
                    'avg': sum(times_list) / len(times_list) * 1000,  # Convert to ms
                    'min': min(times_list) * 1000,
                    'max': max(times_list) * 1000
                }
        return stats

    def get_matches(self, query_descriptors: Optional[np.ndarray], pattern_idx: int) -> List[cv2.DMatch]:
        return self.matcher.match(query_descriptors, pattern_idx,
                                  use_ratio_test=self.params.ratio_test,
                                  min_ratio=self.params.min_ratio)

    def match_pattern(self, query_keypoints: List[cv2.KeyPoint], query_descriptors: Optional[np.ndarray],
                      pattern_idx: int) -> PatternMatchResult:
        """Match the query against one pattern and validate the matches with a homography"""
        matches = self.get_matches(query_descriptors, pattern_idx)
        return refine_matches_with_homography(query_keypoints, self.matcher.patterns[pattern_idx].keypoints,
                                              self.params.reprojection_threshold, matches,
                                              min_matches=self.params.min_matches)

    def _match_job(self, query_keypoints, query_descriptors, cancel_event: Optional[Event],
                   pattern_idx: int) -> PatternMatchResult:
        if cancel_event is not None and cancel_event.is_set():
            return PatternMatchResult()
        return self.match_pattern(query_keypoints, query_descriptors, pattern_idx)

    def match_all(self, query_keypoints: List[cv2.KeyPoint], query_descriptors: Optional[np.ndarray],
                  cancel_event: Optional[Event] = None) -> List[PatternMatchResult]:
        """
        Match the query against every trained pattern.

        Each job reads the shared query and its own read-only matcher and returns its
        own result; results come back in pattern order whatever the worker count.
        """
        if not self.matcher.trained:
            raise RuntimeError("Pattern matchers have not been trained, call train() first")

        job = partial(self._match_job, query_keypoints, query_descriptors, cancel_event)
        pattern_indices = range(len(self.matcher))
        num_workers = min(self.params.num_workers, len(self.matcher))
        if num_workers <= 1:
            return [job(i) for i in pattern_indices]

        with ThreadPoolExecutor(max_workers=num_workers) as executor:
            return list(executor.map(job, pattern_indices))

    def refine_homography(self, gray: np.ndarray, pattern_idx: int,
                          rough_homography: np.ndarray) -> Tuple[bool, np.ndarray]:
        """
        Re-match against the pattern on the frame warped into the pattern's reference frame.

        Returns (found, homography); on success the homography is the rough one
        composed with the refinement estimated on the warped image.
        """
        pattern = self.matcher.patterns[pattern_idx]
        warped = warp_to_pattern(gray, rough_homography, pattern.size)
        if self.visualizer:
            self.visualizer.log_warped(warped)

        warped_keypoints, warped_descriptors = self.extract_features(warped)
        refined_matches = self.get_matches(warped_descriptors, pattern_idx)
        refined = refine_matches_with_homography(warped_keypoints, pattern.keypoints,
                                                 self.params.reprojection_threshold, refined_matches,
                                                 min_matches=self.params.min_matches)
        logger.debug(f"Refinement on warped frame: {len(warped_keypoints)} features, "
                     f"{len(refined.matches)} matches (found={refined.homography_found}, "
                     f"identity={is_identity(refined.homography)})")
        if self.visualizer:
            self.visualizer.log_matches("refinement", warped_keypoints, refined.matches)

        if not refined.homography_found:
            return False, rough_homography
        return True, compose(rough_homography, refined.homography)

    def find_pattern(self, image: np.ndarray,
                     cancel_event: Optional[Event] = None) -> Tuple[bool, Optional[PatternTrackingInfo]]:
        """
        Look for any trained pattern in the image.

        Returns (found, info); info is None when nothing was found. All per-frame
        state lives in this call, so a trained detector can serve several threads.
        """
        if not self.matcher.trained:
            raise RuntimeError("Pattern matchers have not been trained, call train() first")

        total_start = time.time()
        try:
            return self._find_pattern(self.get_gray(image), cancel_event)
        finally:
            self._update_timing('total_detection', time.time() - total_start)

    def _find_pattern(self, gray: np.ndarray,
                      cancel_event: Optional[Event]) -> Tuple[bool, Optional[PatternTrackingInfo]]:
        start = time.time()
        query_keypoints, query_descriptors = self.extract_features(gray)
        self._update_timing('feature_extraction', time.time() - start)
        if self.visualizer:
            self.visualizer.log_frame(gray, query_keypoints)

        if not query_keypoints:
            logger.debug("No features found in query frame")
            return False, None

        start = time.time()
        results = self.match_all(query_keypoints, query_descriptors, cancel_event)
        self._update_timing('pattern_matching', time.time() - start)

        if cancel_event is not None and cancel_event.is_set():
            logger.info("Detection cancelled")
            return False, None

        best_idx = select_best_match(results)
        if best_idx < 0:
            logger.debug(f"No pattern matched ({len(query_keypoints)} query features)")
            return False, None

        rough = results[best_idx]
        pattern = self.matcher.patterns[best_idx]
        logger.debug(f"Best pattern {best_idx} ({pattern.name}) with {len(rough.matches)} inliers")
        if self.visualizer:
            self.visualizer.log_matches("rough", query_keypoints, rough.matches)

        homography = rough.homography
        if self.params.refine_homography:
            start = time.time()
            refined_found, refined_homography = self.refine_homography(gray, best_idx, rough.homography)
            self._update_timing('refinement', time.time() - start)

            if refined_found:
                homography = refined_homography
            elif self.params.fallback_to_rough:
                logger.info(f"Refinement failed for pattern {best_idx}, using rough homography")
            else:
                logger.debug(f"Refinement failed for pattern {best_idx}")
                return False, None

        info = PatternTrackingInfo(
            pattern_idx=best_idx,
            homography=homography,
            points2d=transform_points(pattern.points2d, homography)
        )
        if self.visualizer:
            self.visualizer.log_contour(info.points2d, best_idx)

        return True, info
