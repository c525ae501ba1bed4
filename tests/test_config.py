"""Tests for autohdr.config."""

from __future__ import annotations

from pathlib import Path

import pytest

from autohdr.config import AutoHdrConfig, CameraKeys
from autohdr.sequence.model import Criteria
from autohdr.sequence.rating import ExposureThresholds


class TestDefaults:
    def test_analysis_defaults(self) -> None:
        config = AutoHdrConfig()
        assert config.thresholds() == ExposureThresholds(254, 5)
        assert config.shot_gap == 6
        assert config.criteria() == Criteria(1, 1, 10)
        assert config.max_exposure is None
        assert config.frame_queue_size == 2

    def test_folders_default_to_cwd(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        config = AutoHdrConfig()
        assert config.capture_folder == tmp_path
        assert config.hdr_path == tmp_path / "hdr_result.tif"
        assert config.ldr_path == tmp_path / "ldr_result.tif"

    def test_camera_keys(self) -> None:
        assert AutoHdrConfig().camera_keys == CameraKeys("iso", "aperture", "shutterspeed")

    def test_shot_name(self) -> None:
        assert AutoHdrConfig().shot_name(4) == "Image_4"
        assert AutoHdrConfig(shot_prefix="hdr_").shot_name(0) == "hdr_0"


class TestValidation:
    def test_string_folders_become_paths(self) -> None:
        config = AutoHdrConfig(capture_folder="shots", composition_folder="out")  # type: ignore[arg-type]
        assert config.capture_folder == Path("shots")
        assert config.hdr_path == Path("out") / "hdr_result.tif"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"white_threshold": 300},
            {"black_threshold": -1},
            {"ev_gap": 0},
            {"shots_per_ev": -2},
            {"frame_queue_size": 0},
        ],
    )
    def test_invalid_values(self, kwargs: dict[str, int]) -> None:
        with pytest.raises(ValueError):
            AutoHdrConfig(**kwargs)

    def test_criteria_are_clamped(self) -> None:
        config = AutoHdrConfig(lower=0, upper=500, max_shots=0)
        assert config.criteria() == Criteria(1, 100, 2)


class TestFromMapping:
    def test_empty_mapping_gives_defaults(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        config = AutoHdrConfig.from_mapping({})
        assert config.shot_gap == 6
        assert config.capture_folder == tmp_path

    def test_all_sections(self, tmp_path: Path) -> None:
        config = AutoHdrConfig.from_mapping(
            {
                "camera": {"key_iso": "isospeed", "key_ap": "f-number", "key_exp": "exptime"},
                "analysis": {
                    "white_threshold": "250",
                    "black_threshold": "10",
                    "ev_gap": "1",
                    "ev_exp": "2",
                },
                "capture": {"folder": str(tmp_path / "shots")},
                "composition": {"folder": str(tmp_path / "merged")},
            }
        )
        assert config.camera_keys == CameraKeys("isospeed", "f-number", "exptime")
        assert config.thresholds() == ExposureThresholds(250, 10)
        assert config.shot_gap == 2
        assert config.capture_folder == tmp_path / "shots"
        assert config.ldr_path == tmp_path / "merged" / "ldr_result.tif"

    def test_default_folder_keyword(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        config = AutoHdrConfig.from_mapping({"capture": {"folder": "default"}})
        assert config.capture_folder == tmp_path

    def test_non_numeric_value(self) -> None:
        with pytest.raises(ValueError):
            AutoHdrConfig.from_mapping({"analysis": {"ev_gap": "two"}})
