from __future__ import annotations

import pytest

from interview_studio.presets import MINUTE_MS, PRESET_CONFIGS, Preset, describe, get_config


def test_standard_preset_durations_and_budget() -> None:
    cfg = get_config(Preset.STANDARD)
    assert cfg.prep_duration == 5 * MINUTE_MS
    assert cfg.coding_duration == 35 * MINUTE_MS
    assert cfg.silent_duration == 5 * MINUTE_MS
    assert cfg.nudge_budget == 3


def test_every_preset_has_a_config() -> None:
    assert set(PRESET_CONFIGS) == set(Preset)
    assert len(PRESET_CONFIGS) == 4
    for preset in Preset:
        cfg = get_config(preset)
        assert cfg.prep_duration > 0
        assert cfg.coding_duration > 0
        assert cfg.silent_duration > 0
        assert cfg.nudge_budget >= 0


def test_preset_budgets() -> None:
    assert get_config(Preset.HIGH_PRESSURE).nudge_budget == 1
    assert get_config(Preset.NO_ASSISTANCE).nudge_budget == 0
    assert get_config(Preset.SPEED_ROUND).nudge_budget == 2
    assert get_config(Preset.SPEED_ROUND).coding_duration == 10 * MINUTE_MS


def test_preset_lookup_by_value() -> None:
    assert Preset("high_pressure") is Preset.HIGH_PRESSURE
    with pytest.raises(ValueError):
        Preset("relaxed")


def test_describe_mentions_all_knobs() -> None:
    assert describe(Preset.STANDARD) == "5 min prep, 35 min coding, 5 min silent, 3 nudges"
    assert describe(Preset.HIGH_PRESSURE).endswith("1 nudge")
