from .detector import PatternDetector, select_best_match
from .features import FeatureExtractor, to_grayscale
from .homography import PatternMatchResult, refine_matches_with_homography
from .matching import PatternMatcher
from .params import DetectorParams, DetectorParamsManager, DetectorFlags
from .pattern import Pattern, PatternTrackingInfo, load_pattern, save_pattern
from .visualization import DetectionVisualizer
