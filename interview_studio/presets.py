from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

MINUTE_MS = 60 * 1000


class Preset(str, Enum):
    STANDARD = "standard"
    HIGH_PRESSURE = "high_pressure"
    NO_ASSISTANCE = "no_assistance"
    SPEED_ROUND = "speed_round"


@dataclass(frozen=True, slots=True)
class PresetConfig:
    prep_duration: int  # ms
    coding_duration: int  # ms
    silent_duration: int  # ms
    nudge_budget: int


PRESET_CONFIGS: dict[Preset, PresetConfig] = {
    Preset.STANDARD: PresetConfig(
        prep_duration=5 * MINUTE_MS,
        coding_duration=35 * MINUTE_MS,
        silent_duration=5 * MINUTE_MS,
        nudge_budget=3,
    ),
    Preset.HIGH_PRESSURE: PresetConfig(
        prep_duration=3 * MINUTE_MS,
        coding_duration=25 * MINUTE_MS,
        silent_duration=2 * MINUTE_MS,
        nudge_budget=1,
    ),
    Preset.NO_ASSISTANCE: PresetConfig(
        prep_duration=5 * MINUTE_MS,
        coding_duration=35 * MINUTE_MS,
        silent_duration=5 * MINUTE_MS,
        nudge_budget=0,
    ),
    Preset.SPEED_ROUND: PresetConfig(
        prep_duration=2 * MINUTE_MS,
        coding_duration=10 * MINUTE_MS,
        silent_duration=2 * MINUTE_MS,
        nudge_budget=2,
    ),
}

PRESET_LABELS: dict[Preset, str] = {
    Preset.STANDARD: "Standard",
    Preset.HIGH_PRESSURE: "High Pressure",
    Preset.NO_ASSISTANCE: "No Assistance",
    Preset.SPEED_ROUND: "Speed Round",
}


def get_config(preset: Preset) -> PresetConfig:
    return PRESET_CONFIGS[preset]


def describe(preset: Preset) -> str:
    """One-line human description, e.g. for menus."""
    cfg = get_config(preset)
    nudges = "nudge" if cfg.nudge_budget == 1 else "nudges"
    return (
        f"{cfg.prep_duration // MINUTE_MS} min prep, "
        f"{cfg.coding_duration // MINUTE_MS} min coding, "
        f"{cfg.silent_duration // MINUTE_MS} min silent, "
        f"{cfg.nudge_budget} {nudges}"
    )
