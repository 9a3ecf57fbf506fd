from typing import List, Optional, Sequence
import logging
import numpy as np
import cv2
from .pattern import Pattern

logger = logging.getLogger(__name__)

NORMS = {
    "hamming": cv2.NORM_HAMMING,
    "l2": cv2.NORM_L2,
}


def norm_for_descriptors(descriptors: Optional[np.ndarray], norm: str = "auto") -> int:
    """Binary (uint8) descriptors are compared with Hamming distance, float ones with L2"""
    if norm != "auto":
        return NORMS[norm]
    if descriptors is not None and descriptors.dtype != np.uint8:
        return cv2.NORM_L2
    return cv2.NORM_HAMMING


def ratio_test(knn_matches: Sequence[Sequence[cv2.DMatch]], min_ratio: float) -> List[cv2.DMatch]:
    """
    Keep the best match of each query descriptor only if it is clearly closer than the runner-up.

    Written as best < min_ratio * second so that a zero distance never divides;
    when both distances are zero the match is ambiguous and dropped.
    """
    good = []
    for candidates in knn_matches:
        if len(candidates) < 2:
            continue
        best, second = candidates[0], candidates[1]
        if best.distance < min_ratio * second.distance:
            good.append(best)
    return good


class PatternMatcher:
    """One brute-force matcher per trained pattern"""

    def __init__(self, norm: str = "auto"):
        if norm not in ("auto", *NORMS):
            raise ValueError(f"Unsupported descriptor norm: {norm}")
        self.norm = norm
        self.patterns: List[Pattern] = []
        self.matchers: Optional[List[cv2.DescriptorMatcher]] = None

    def __len__(self) -> int:
        return len(self.patterns)

    @property
    def trained(self) -> bool:
        return self.matchers is not None

    def train(self, patterns: List[Pattern]) -> None:
        """Replace the pattern set and rebuild every matcher from scratch"""
        self.patterns = list(patterns)
        matchers = []
        for pattern in self.patterns:
            matcher = cv2.BFMatcher(norm_for_descriptors(pattern.descriptors, self.norm), crossCheck=False)
            matcher.clear()
            if not pattern.empty:
                matcher.add([pattern.descriptors.copy()])
                matcher.train()
            matchers.append(matcher)
        self.matchers = matchers
        logger.info(f"Trained {len(matchers)} pattern matchers "
                    f"({sum(p.num_descriptors for p in self.patterns)} descriptors)")

    def _matcher(self, pattern_idx: int) -> cv2.DescriptorMatcher:
        if self.matchers is None:
            raise RuntimeError("Pattern matchers have not been trained, call train() first")
        if not 0 <= pattern_idx < len(self.matchers):
            raise IndexError(f"Pattern index {pattern_idx} out of range (0..{len(self.matchers) - 1})")
        return self.matchers[pattern_idx]

    def match(self, query_descriptors: Optional[np.ndarray], pattern_idx: int,
              use_ratio_test: bool = True, min_ratio: float = 1.0 / 1.5) -> List[cv2.DMatch]:
        matcher = self._matcher(pattern_idx)
        if query_descriptors is None or len(query_descriptors) == 0 or self.patterns[pattern_idx].empty:
            return []

        if use_ratio_test:
            # 2 nearest trained descriptors per query descriptor, nearest first
            knn_matches = matcher.knnMatch(query_descriptors, k=2)
            return ratio_test(knn_matches, min_ratio)
        return list(matcher.match(query_descriptors))
