"""
MediaSlim Settings Module

Compression settings, read from a YAML file and validated into a dataclass.
"""

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional

import yaml

from dimensions import DPI_PRESETS, MAX_ANCESTOR_DEPTH
from errors import SettingsError
from transcoder import OUTPUT_FORMATS

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass(frozen=True)
class CompressionSettings:
    """How images are resampled and re-encoded."""
    quality: float = 0.8
    dpi: int = 150
    format: str = "webp"
    output_suffix: str = "_compressed"
    max_ancestor_depth: int = MAX_ANCESTOR_DEPTH

    def __post_init__(self):
        if not isinstance(self.quality, (int, float)) or not 0 < self.quality <= 1:
            raise SettingsError(f"quality must be in (0, 1], got {self.quality!r}")
        if not isinstance(self.dpi, int) or self.dpi <= 0:
            raise SettingsError(f"dpi must be a positive integer, got {self.dpi!r}")
        if self.format not in OUTPUT_FORMATS:
            raise SettingsError(
                f"format must be one of {', '.join(OUTPUT_FORMATS)}, got {self.format!r}"
            )
        if not self.output_suffix:
            raise SettingsError("output_suffix must not be empty")
        if not isinstance(self.max_ancestor_depth, int) or self.max_ancestor_depth <= 0:
            raise SettingsError(
                f"max_ancestor_depth must be a positive integer, got {self.max_ancestor_depth!r}"
            )

    @property
    def is_dpi_preset(self) -> bool:
        return self.dpi in DPI_PRESETS

    @classmethod
    def from_dict(cls, config: Optional[dict]) -> "CompressionSettings":
        """Build settings from a parsed config mapping; unknown keys are rejected."""
        config = config or {}
        if not isinstance(config, dict):
            raise SettingsError("settings file must contain a mapping")

        known = {f.name for f in fields(cls)}
        unknown = set(config) - known
        if unknown:
            raise SettingsError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        return cls(**config)

    def override(self, **changes) -> "CompressionSettings":
        """Copy with the non-None values replaced."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def load_settings(config_path: Optional[Path] = None) -> CompressionSettings:
    """Load settings from YAML; a missing default file means built-in defaults."""
    path = config_path or DEFAULT_SETTINGS_PATH
    if not path.exists():
        if config_path is not None:
            raise SettingsError(f"Config file not found: {path}")
        return CompressionSettings()

    with open(path, 'r', encoding='utf-8') as f:
        try:
            config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise SettingsError(f"Invalid settings file {path}: {e}") from e

    return CompressionSettings.from_dict(config)
