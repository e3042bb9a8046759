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

"""Configuration management for Lull."""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Any, Callable

import yaml
from dotenv import load_dotenv
from loguru import logger


# =============================================================================
# DEFAULT SETTINGS SCHEMA
# =============================================================================
# These defaults are used when settings.yaml is missing or incomplete.
# Environment variables can override any setting (see _apply_env_overrides).
#
# Playback Settings (playback.*):
#   default_volume         - Target volume for a new guild (0.0-max_volume, 1.0 = unchanged)
#   max_volume             - Highest volume a user can set (at most 2.0)
#   fade_duration          - Seconds a volume fade takes
#   fade_steps_per_second  - Volume writes per second while fading
#   duck_ratio             - Fraction of the volume kept while someone speaks (0-1)
#   duck_release_delay     - Seconds of silence before fading back up
#   ffmpeg_before_options  - FFmpeg input options for streams
#   ffmpeg_options         - FFmpeg output options for streams
#
# Now Playing Settings (now_playing.*):
#   enabled                - Keep the now-playing message updated
#   author_name            - Author line on the idle embed
#   color                  - Embed accent color as hex integer (e.g., 0x0000FF)
#   idle_title             - Title shown when nothing is playing
#
# Logging Settings (logging.*):
#   level                  - Log verbosity: "minimal", "verbose", or "debug"
# =============================================================================

DEFAULT_SETTINGS = {
    "playback": {
        "default_volume": 1.0,
        "max_volume": 2.0,
        "fade_duration": 1.5,
        "fade_steps_per_second": 10,
        "duck_ratio": 0.2,
        "duck_release_delay": 1.0,
        "ffmpeg_before_options": "-reconnect 1 -reconnect_streamed 1 -reconnect_delay_max 5",
        "ffmpeg_options": "-vn",
    },
    "now_playing": {
        "enabled": True,
        "author_name": "Lull Music",
        "author_icon_url": None,  # bot avatar is used when the bot passes one in
        "color": 0x0000FF,
        "idle_title": "Not playing",
    },
    # Logging (LOG_LEVEL env var overrides this)
    "logging": {
        "level": "verbose",  # minimal, verbose, debug
    },
}

VOLUME_CEILING = 2.0
LOG_LEVELS = ("minimal", "verbose", "debug")


def deep_merge(user: dict, defaults: dict, _prefix: str = "") -> dict:
    """Lay settings.yaml values over DEFAULT_SETTINGS.

    Every section and key from ``defaults`` is present in the result, so
    callers never need to check for a missing ``playback.duck_ratio``.
    Sections merge key by key; a key Lull doesn't know about is reported
    with its dotted path (``playback.fade_sped``) and dropped.

    ``defaults`` is never mutated; nested sections in the result are copies.
    """
    merged = {key: (dict(value) if isinstance(value, dict) else value) for key, value in defaults.items()}
    for key, value in user.items():
        path = f"{_prefix}{key}"
        if key not in defaults:
            logger.warning(f"unknown config key: {path}")
        elif isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = deep_merge(value, merged[key], _prefix=f"{path}.")
        else:
            merged[key] = value
    return merged


def load_yaml(path: Path, defaults: dict) -> dict:
    """Read settings.yaml and merge it over ``defaults``.

    A missing file, an empty file, a top level that isn't a mapping, or a
    syntax error all leave the bot running on defaults. The last two are
    logged so a typo in settings.yaml doesn't go unnoticed.
    """
    if not path.exists():
        return deep_merge({}, defaults)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            user = yaml.safe_load(f)
    except yaml.YAMLError:
        logger.opt(exception=True).error(f"failed to parse {path.name}, using defaults")
        return deep_merge({}, defaults)

    if user is None:
        user = {}
    if not isinstance(user, dict):
        logger.warning(f"{path.name} should be a mapping of sections, using defaults")
        return deep_merge({}, defaults)
    return deep_merge(user, defaults)


def save_yaml(path: Path, data: dict, header: str = "") -> None:
    """Write ``data`` to ``path`` as YAML, replacing the file in one step.

    The YAML goes to a temp file in the same directory first and is then
    renamed over ``path``, so a crash never leaves a half-written
    settings.yaml behind. ``header`` (comment lines, already ``#``-prefixed)
    is written above the YAML; key order follows ``data``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(header)
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        temp_path.replace(path)
    except Exception:
        temp_path.unlink(missing_ok=True)
        raise


class ConfigManager:
    """Manages configuration from settings.yaml.

    Loads configuration at startup with this priority (highest wins):
    1. DEFAULT_SETTINGS (built-in defaults)
    2. settings.yaml (user customization)
    3. Environment variables (including a .env file in the config directory)

    Access patterns:
        config_manager.get("playback")           # Get a section
        config_manager.get("key", default)       # Get with fallback

    Settings are validated after loading - invalid values are clamped or
    reset to defaults with a warning logged.

    Attributes:
        config_path: Directory containing settings.yaml
        settings: Loaded settings dict (after validation)
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = Path(config_path)
        self.settings: dict = {}

    async def load(self) -> dict:
        """Load settings from YAML, apply env overrides, validate.

        Generates settings.yaml with default values and a header comment when
        it is missing. Returns the settings dict for convenience.
        """
        settings_path = self.config_path / "settings.yaml"
        self.settings = await asyncio.to_thread(load_yaml, settings_path, DEFAULT_SETTINGS)

        # Generate if missing
        if not settings_path.exists():
            header = "# Lull Settings\n# Edit these values to customize behavior\n\n"
            await asyncio.to_thread(save_yaml, settings_path, DEFAULT_SETTINGS, header)
            logger.debug(f"generated {settings_path.name}")

        # .env never overrides variables already set in the environment
        load_dotenv(self.config_path / ".env")

        self._apply_env_overrides()
        self._validate_settings()

        logger.debug("config loaded")
        return self.settings

    def _validate_settings(self) -> None:
        """Validate and clamp settings after loading from all sources.

        Validation steps:
        1. Null-restore: YAML "key:" with no value becomes None. Restores
           defaults for null sections and null nested keys.
        2. Bounded numbers: Clamps playback values to their valid ranges (logs
           warning if clamped), default_volume last so it respects max_volume.
        3. Now-playing color: Coerces string hex values to int (handles
           "0000FF", "0x0000FF", "#0000FF").
        4. Logging level: Unknown names fall back to "verbose".

        Logs warnings for any values that needed correction.
        """
        # Restore defaults for null values (YAML "key:" with no value)
        for section, defaults in DEFAULT_SETTINGS.items():
            sect = self.settings.get(section)
            if not isinstance(sect, dict):
                if sect is not None:
                    logger.warning(f"{section} should be a mapping, using defaults")
                self.settings[section] = dict(defaults)
                continue
            for key in list(sect):
                if sect[key] is None and key in defaults:
                    sect[key] = defaults[key]

        playback = self.settings["playback"]
        validations = {
            "max_volume": (float, 0.1, VOLUME_CEILING),
            "fade_duration": (float, 0.0, None),
            "fade_steps_per_second": (int, 1, 100),
            "duck_ratio": (float, 0.0, 1.0),
            "duck_release_delay": (float, 0.0, None),
            "default_volume": (float, 0.0, None),  # upper bound is max_volume
        }
        for key, (kind, min_val, max_val) in validations.items():
            if key == "default_volume":
                max_val = playback["max_volume"]
            value = playback.get(key)
            try:
                v = kind(value)
                clamped = max(min_val, v if max_val is None else min(max_val, v))
                if clamped != v:
                    range_str = f"{min_val}+" if max_val is None else f"{min_val}-{max_val}"
                    logger.warning(f"playback.{key}={v} out of range, clamped to {clamped} (valid: {range_str})")
                playback[key] = clamped
            except (ValueError, TypeError):
                logger.warning(f"playback.{key}={value!r} invalid, using default")
                playback[key] = DEFAULT_SETTINGS["playback"][key]

        # Validate now-playing color (coerce string hex to int)
        now_playing = self.settings["now_playing"]
        color = now_playing.get("color")
        if not isinstance(color, int) or isinstance(color, bool):
            try:
                color_str = str(color).strip().lstrip("#").removeprefix("0x").removeprefix("0X")
                now_playing["color"] = int(color_str, 16)
            except (ValueError, TypeError):
                logger.warning(f"now_playing.color={color!r} invalid, using default")
                now_playing["color"] = DEFAULT_SETTINGS["now_playing"]["color"]

        level = str(self.settings["logging"].get("level", "verbose")).lower()
        if level not in LOG_LEVELS:
            logger.warning(f"logging.level={level!r} invalid, using verbose (valid: {', '.join(LOG_LEVELS)})")
            level = "verbose"
        self.settings["logging"]["level"] = level

    def _apply_env_overrides(self) -> None:
        """Override settings with environment variables.

        Environment variables always win over YAML settings, enabling Docker
        users to configure the bot without editing files.

        The env_map dict maps ENV_VAR_NAME -> (setting_key, converter):
        - setting_key: Dot notation for nested keys (e.g., "now_playing.color")
        - converter: Function to transform string value (float, str, bool lambda, etc.)

        Invalid env var values are logged as warnings and ignored (setting unchanged).
        """
        def hex_color(x: str) -> int:
            x = x.strip().lstrip("#").removeprefix("0x").removeprefix("0X")
            return int(x, 16)

        def flag(x: str) -> bool:
            return x.lower() == "true"

        env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
            # Playback (range validation handled by _validate_settings)
            "DEFAULT_VOLUME": ("playback.default_volume", float),
            "MAX_VOLUME": ("playback.max_volume", float),
            "FADE_DURATION": ("playback.fade_duration", float),
            "FADE_STEPS_PER_SECOND": ("playback.fade_steps_per_second", int),
            "DUCK_RATIO": ("playback.duck_ratio", float),
            "DUCK_RELEASE_DELAY": ("playback.duck_release_delay", float),
            "FFMPEG_BEFORE_OPTIONS": ("playback.ffmpeg_before_options", str),
            "FFMPEG_OPTIONS": ("playback.ffmpeg_options", str),
            # Now playing
            "NOW_PLAYING_ENABLED": ("now_playing.enabled", flag),
            "NOW_PLAYING_COLOR": ("now_playing.color", hex_color),
            "NOW_PLAYING_AUTHOR": ("now_playing.author_name", str),
            "NOW_PLAYING_AUTHOR_ICON": ("now_playing.author_icon_url", str),
            "LOG_LEVEL": ("logging.level", str),
        }

        for env_key, (setting_key, converter) in env_map.items():
            if value := os.getenv(env_key):
                try:
                    converted = converter(value)
                    section, key = setting_key.split(".")
                    target = self.settings.setdefault(section, {})
                    if not isinstance(target, dict):
                        # Corrupted YAML: expected dict but got scalar
                        logger.warning(f"invalid config structure for {setting_key}")
                        continue
                    target[key] = converted
                    logger.debug(f"{env_key} overrides {setting_key}")
                except (ValueError, TypeError) as e:
                    logger.warning(f"invalid env var {env_key}: {e}")

    def get(self, key: str, default=None) -> Any:
        """Get a setting value from settings.yaml.

        Args:
            key: Top-level setting key (e.g., "playback", "logging")
            default: Value to return if key not found

        Returns:
            Setting value, or default if not found
        """
        return self.settings.get(key, default)
