from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Dict, Optional
from threading import Event
import json
import logging

logger = logging.getLogger(__name__)


@dataclass
class DetectorParams:
    ratio_test: bool = True
    min_ratio: float = 1.0 / 1.5  # best / second-best distance must stay below this
    refine_homography: bool = True
    reprojection_threshold: float = 3.0  # pixels
    min_matches: int = 25
    norm: str = "auto"  # "auto", "hamming" or "l2"
    max_features: int = 1000
    num_workers: int = 4
    fallback_to_rough: bool = False

    @classmethod
    def from_dict(cls, data: Dict) -> 'DetectorParams':
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise KeyError(f"Unknown detector parameters: {sorted(unknown)}")
        params = cls(**data)
        params.validate()
        return params

    def to_dict(self) -> Dict:
        return asdict(self)

    def validate(self) -> None:
        if self.norm not in ("auto", "hamming", "l2"):
            raise ValueError(f"Unsupported descriptor norm: {self.norm}")
        if not 0.0 < self.min_ratio <= 1.0:
            raise ValueError(f"min_ratio must be in (0, 1], got {self.min_ratio}")
        if self.reprojection_threshold <= 0:
            raise ValueError("reprojection_threshold must be positive")
        if self.min_matches < 4:
            raise ValueError("min_matches must be at least 4 for a homography")
        if self.num_workers < 0:
            raise ValueError("num_workers must not be negative")


class DetectorParamsManager:
    def __init__(self, config_dir: Optional[Path] = Path("config"), filename: str = "pattern-detector.json"):
        self.config_dir = Path(config_dir)
        self.filename = filename
        self.params = DetectorParams()

    @property
    def path(self) -> Path:
        return self.config_dir / self.filename

    def load_params(self) -> DetectorParams:
        """Load detector parameters from the config directory"""
        if not self.path.exists():
            raise FileNotFoundError(f"Config file not found: {self.path}")

        with self.path.open('r') as f:
            data = json.load(f)

        self.params = DetectorParams.from_dict(data)
        logger.info(f"Loaded detector parameters from {self.path}")
        return self.params

    def save_params(self) -> None:
        """Save detector parameters to JSON file"""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        # Overwrites any existing content
        with self.path.open('w') as f:
            json.dump(self.params.to_dict(), f, indent=4)

    def get_params(self) -> DetectorParams:
        return self.params

    def update_params(self, params: DetectorParams) -> None:
        """Update detector parameters"""
        params.validate()
        self.params = params


class DetectorFlags:
    """
    Runtime switches shared by the detector, its visualizer and the runner.

    timing_stats: record per-stage detection durations
    debug_mode: log intermediate detection stages to rerun
    display: draw results and show frames in an OpenCV window
    """

    NAMES = ('timing_stats', 'debug_mode', 'display')

    def __init__(self, **states: bool):
        self._events: Dict[str, Event] = {name: Event() for name in self.NAMES}
        self.set_flags(**states)

    def _event(self, flag_name: str) -> Event:
        if flag_name not in self._events:
            raise KeyError(f"Unknown detector flag: {flag_name}")
        return self._events[flag_name]

    def set_flag(self, flag_name: str, state: bool):
        event = self._event(flag_name)
        if state:
            event.set()
        else:
            event.clear()

    def get_flag(self, flag_name: str) -> bool:
        return self._event(flag_name).is_set()

    def set_flags(self, **states: bool):
        for flag_name, state in states.items():
            self.set_flag(flag_name, state)

    def to_dict(self) -> Dict[str, bool]:
        return {name: event.is_set() for name, event in self._events.items()}
