"""
Pattern tracking runner

Detects registered planar patterns in a video, camera or still image and draws
their outline on each frame.

Usage:
    python -m patterntracking.main --pattern cover.png [--pattern poster.yml ...] --source video.mp4 [--debug] [--timing] [--no-display]
"""

import argparse
import logging
from pathlib import Path
from typing import List
import cv2
import numpy as np
from patterntracking.detector import PatternDetector
from patterntracking.params import DetectorParams, DetectorParamsManager, DetectorFlags
from patterntracking.pattern import Pattern, build_pattern_from_image, load_pattern
from patterntracking.visualization import DetectionVisualizer

IMAGE_SUFFIXES = {'.png', '.jpg', '.jpeg', '.bmp'}


def draw_contour(frame: np.ndarray, points2d: np.ndarray, color=(0, 255, 0)) -> np.ndarray:
    result = frame.copy()
    return cv2.polylines(result, [np.int32(points2d).reshape(-1, 1, 2)], True, color, 3)


def load_patterns(detector: PatternDetector, paths: List[str]) -> List[Pattern]:
    patterns = []
    for path in map(Path, paths):
        if path.suffix.lower() in IMAGE_SUFFIXES:
            image = cv2.imread(str(path))
            if image is None:
                raise FileNotFoundError(f"Cannot read pattern image: {path}")
            patterns.append(build_pattern_from_image(image, detector.extractor, name=path.stem))
        else:
            patterns.append(load_pattern(path))
    return patterns


def load_params(args) -> DetectorParams:
    if args.config:
        params = DetectorParamsManager(config_dir=Path(args.config)).load_params()
    else:
        params = DetectorParams()
    if args.no_refine:
        params.refine_homography = False
    if args.no_ratio_test:
        params.ratio_test = False
    return params


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Detect planar patterns in frames")
    parser.add_argument('--pattern', action='append', required=True,
                        help="Pattern image or YAML/JSON record (repeatable)")
    parser.add_argument('--source', default='0', help="Video file, image file or camera index")
    parser.add_argument('--config', help="Directory containing pattern-detector.json")
    parser.add_argument('--no-refine', action='store_true', help="Skip homography refinement")
    parser.add_argument('--no-ratio-test', action='store_true', help="Use plain nearest neighbour matching")
    parser.add_argument('--debug', action='store_true', help="Log detection stages to rerun")
    parser.add_argument('--timing', action='store_true', help="Print timing statistics at exit")
    parser.add_argument('--no-display', action='store_true', help="Print results instead of opening a window")
    return parser.parse_args(argv)


def report(frame: np.ndarray, found: bool, info, patterns: List[Pattern], flags: DetectorFlags, wait: int) -> bool:
    """Print or show the detection result; returns False when the user asked to quit"""
    if found:
        print(f"Found {patterns[info.pattern_idx].name} at {info.points2d.tolist()}")
    elif wait == 0:
        print("No pattern found")

    if not flags.get_flag('display'):
        return True
    if found:
        frame = draw_contour(frame, info.points2d)
    cv2.imshow("Pattern Tracking", frame)
    return (cv2.waitKey(wait) & 0xFF) != ord('q')


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    flags = DetectorFlags(debug_mode=args.debug, timing_stats=args.timing, display=not args.no_display)
    logging.getLogger(__name__).info(f"Detector flags: {flags.to_dict()}")
    visualizer = DetectionVisualizer(flags)
    if args.debug:
        visualizer.start(spawn=True)

    detector = PatternDetector(params=load_params(args), flags=flags, visualizer=visualizer)
    patterns = load_patterns(detector, args.pattern)
    detector.train(patterns)

    source = Path(args.source)
    if source.suffix.lower() in IMAGE_SUFFIXES:
        frame = cv2.imread(str(source))
        if frame is None:
            raise FileNotFoundError(f"Cannot read image: {source}")
        found, info = detector.find_pattern(frame)
        report(frame, found, info, patterns, flags, wait=0)
    else:
        cap = cv2.VideoCapture(int(args.source) if args.source.isdigit() else args.source)
        while cap.isOpened():
            ret, frame = cap.read()
            if not ret:
                break

            found, info = detector.find_pattern(frame)
            if not report(frame, found, info, patterns, flags, wait=1):
                break
        cap.release()

    if flags.get_flag('display'):
        cv2.destroyAllWindows()

    if args.timing:
        for category, stats in detector.get_timing_stats().items():
            print(f"{category}: avg {stats['avg']:.2f}ms, min {stats['min']:.2f}ms, max {stats['max']:.2f}ms")


if __name__ == "__main__":
    main()
