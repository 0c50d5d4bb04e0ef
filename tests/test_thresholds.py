import json

import pytest

from reptrack.thresholds import DEFAULT_THRESHOLDS, ThresholdSet, ThresholdStore


def test_defaults():
    th = DEFAULT_THRESHOLDS
    assert th.upward_acceleration == pytest.approx(0.8)
    assert th.downward_acceleration == pytest.approx(-0.6)
    assert th.stable_threshold == pytest.approx(0.3)
    assert th.min_rep_duration == 800
    assert th.max_rep_duration == 5000
    assert th.min_amplitude == pytest.approx(1.0)


def test_merged_accepts_both_key_styles_and_skips_unknown():
    th = DEFAULT_THRESHOLDS.merged({"minAmplitude": 0.5, "bogus": 3, "stable_threshold": None})
    th = th.merged(max_rep_duration=4000)
    assert th.min_amplitude == pytest.approx(0.5)
    assert th.max_rep_duration == 4000
    assert th.stable_threshold == pytest.approx(0.3)
    # original untouched
    assert DEFAULT_THRESHOLDS.min_amplitude == pytest.approx(1.0)


def test_camel_dict_round_trip():
    th = ThresholdSet(upward_acceleration=1.2, min_rep_duration=700)
    data = th.to_dict(camel=True)
    assert data["upwardAcceleration"] == pytest.approx(1.2)
    assert ThresholdSet.from_dict(data) == th


def test_store_save_and_load(tmp_path):
    store = ThresholdStore(str(tmp_path / "cal" / "calibration.json"))
    assert store.load() is None
    th = ThresholdSet(upward_acceleration=0.9, downward_acceleration=-0.7)
    saved_at = store.save(th, "2026-01-02T03:04:05Z")
    assert saved_at == "2026-01-02T03:04:05Z"

    loaded, date = store.load()
    assert loaded == th
    assert date == "2026-01-02T03:04:05Z"

    store.clear()
    assert store.load() is None


def test_store_save_stamps_iso_time(tmp_path):
    store = ThresholdStore(str(tmp_path / "calibration.json"))
    saved_at = store.save(DEFAULT_THRESHOLDS)
    assert saved_at.endswith("Z") and "T" in saved_at


@pytest.mark.parametrize("content", ["not json", json.dumps([1, 2]), json.dumps({"thresholds": 5})])
def test_store_ignores_malformed_file(tmp_path, content):
    path = tmp_path / "calibration.json"
    path.write_text(content)
    assert ThresholdStore(str(path)).load() is None
