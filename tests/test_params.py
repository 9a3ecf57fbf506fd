import pytest
import json
from patterntracking.params import DetectorParams, DetectorParamsManager, DetectorFlags


@pytest.fixture(scope='session')
def sample_params_data():
    return {
        "ratio_test": False,
        "min_ratio": 0.7,
        "refine_homography": False,
        "reprojection_threshold": 4.0,
        "min_matches": 30,
        "norm": "hamming",
        "max_features": 500,
        "num_workers": 2,
        "fallback_to_rough": True
    }


@pytest.fixture
def temp_config_dir(tmp_path, sample_params_data):
    config_file = tmp_path / "pattern-detector.json"
    with config_file.open('w') as f:
        json.dump(sample_params_data, f)
    return tmp_path


@pytest.fixture
def params_manager(temp_config_dir):
    return DetectorParamsManager(config_dir=temp_config_dir)


class TestDetectorParams:
    def test_defaults(self):
        params = DetectorParams()
        assert params.ratio_test
        assert params.refine_homography
        assert params.min_matches == 25
        assert params.reprojection_threshold == 3.0
        assert params.min_ratio == pytest.approx(1 / 1.5)
        assert not params.fallback_to_rough

    def test_from_dict(self, sample_params_data):
        params = DetectorParams.from_dict(sample_params_data)
        assert params.to_dict() == sample_params_data

    def test_unknown_key(self):
        with pytest.raises(KeyError):
            DetectorParams.from_dict({"ratio": 0.5})

    def test_invalid_norm(self):
        with pytest.raises(ValueError):
            DetectorParams.from_dict({"norm": "manhattan"})

    def test_invalid_min_matches(self):
        with pytest.raises(ValueError):
            DetectorParams(min_matches=3).validate()


class TestDetectorParamsManager:
    def test_load_params(self, params_manager, sample_params_data):
        params = params_manager.load_params()
        assert params.to_dict() == sample_params_data
        assert params_manager.get_params() is params

    def test_missing_file(self, tmp_path):
        manager = DetectorParamsManager(config_dir=tmp_path / "missing")
        with pytest.raises(FileNotFoundError):
            manager.load_params()

    def test_invalid_json(self, temp_config_dir, params_manager):
        (temp_config_dir / "pattern-detector.json").write_text("invalid json")
        with pytest.raises(json.JSONDecodeError):
            params_manager.load_params()

    def test_save_and_reload(self, tmp_path):
        manager = DetectorParamsManager(config_dir=tmp_path / "config")
        manager.update_params(DetectorParams(num_workers=1, ratio_test=False))
        manager.save_params()

        reloaded = DetectorParamsManager(config_dir=tmp_path / "config").load_params()
        assert reloaded.num_workers == 1
        assert not reloaded.ratio_test


class TestDetectorFlags:
    def test_set_and_get(self):
        flags = DetectorFlags()
        assert not flags.get_flag('debug_mode')
        flags.set_flags(debug_mode=True, timing_stats=True)
        assert flags.get_flag('debug_mode')
        assert flags.get_flag('timing_stats')
        flags.set_flag('debug_mode', False)
        assert not flags.get_flag('debug_mode')

    def test_unknown_flag(self):
        flags = DetectorFlags()
        with pytest.raises(KeyError):
            flags.set_flag('visualization_enabled', True)
        with pytest.raises(KeyError):
            flags.get_flag('no_such_flag')
        with pytest.raises(KeyError):
            DetectorFlags(no_such_flag=True)

    def test_initial_states(self):
        flags = DetectorFlags(display=True)
        assert flags.to_dict() == {'timing_stats': False, 'debug_mode': False, 'display': True}
