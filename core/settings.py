# Copyright (C) 2025 grodz
#
# This file is part of Lull.
#
# Lull is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Playback tuning values, resolved once from settings.yaml."""

from dataclasses import dataclass
from typing import Any

from core.exceptions import ConfigurationError


@dataclass(frozen=True, slots=True)
class PlaybackSettings:
    """
    Timing and level constants for one controller.

    All times are seconds; volumes are multipliers (1.0 = unchanged).

    Attributes:
        default_volume: Target volume for a new controller
        max_volume: Upper bound for any volume write
        fade_duration: Length of a volume fade
        fade_steps_per_second: Volume writes per second during a fade
        duck_ratio: Fraction of the target volume used while someone speaks
        duck_release_delay: Silence needed before volume fades back up
    """
    default_volume: float = 1.0
    max_volume: float = 2.0
    fade_duration: float = 1.5
    fade_steps_per_second: int = 10
    duck_ratio: float = 0.2
    duck_release_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.max_volume <= 0:
            raise ConfigurationError(f"max_volume must be positive, got {self.max_volume}")
        if not 0 <= self.default_volume <= self.max_volume:
            raise ConfigurationError(
                f"default_volume {self.default_volume} outside 0-{self.max_volume}"
            )
        if self.fade_duration < 0 or self.duck_release_delay < 0:
            raise ConfigurationError("fade_duration and duck_release_delay must be non-negative")
        if self.fade_steps_per_second <= 0:
            raise ConfigurationError("fade_steps_per_second must be positive")
        if not 0 <= self.duck_ratio <= 1:
            raise ConfigurationError(f"duck_ratio {self.duck_ratio} outside 0-1")

    @property
    def fade_steps(self) -> int:
        """Number of volume writes in one fade."""
        return max(1, round(self.fade_duration * self.fade_steps_per_second))

    def clamp_volume(self, volume: float) -> float:
        return max(0.0, min(volume, self.max_volume))

    @classmethod
    def from_config(cls, config_manager: Any) -> "PlaybackSettings":
        """Build from the ``playback`` section of a loaded ConfigManager."""
        section = config_manager.get("playback", {}) or {}
        defaults = cls()
        return cls(
            default_volume=float(section.get("default_volume", defaults.default_volume)),
            max_volume=float(section.get("max_volume", defaults.max_volume)),
            fade_duration=float(section.get("fade_duration", defaults.fade_duration)),
            fade_steps_per_second=int(section.get("fade_steps_per_second", defaults.fade_steps_per_second)),
            duck_ratio=float(section.get("duck_ratio", defaults.duck_ratio)),
            duck_release_delay=float(section.get("duck_release_delay", defaults.duck_release_delay)),
        )
