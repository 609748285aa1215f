#!/usr/bin/env python3
"""
Centralized configuration loading utility for the presentation engine.

This module provides functions to load and merge the presentation
configuration file, handle environment variable substitution, fall back to
built-in defaults, and cache the parsed result.
"""

import os
import re
import copy
import logging
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from functools import lru_cache

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/presentation.yaml"


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""
    pass


@lru_cache(maxsize=16)
def load_presentation_config(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Load the presentation configuration with caching.

    Missing files are not an error: the built-in defaults are returned so the
    engine can run without any configuration on disk.

    Args:
        config_path: Path to presentation configuration file

    Returns:
        Dictionary containing the configuration merged over the defaults

    Raises:
        ConfigurationError: If the file exists but cannot be parsed
    """
    path = Path(config_path)
    if not path.exists():
        logger.warning(f"Presentation configuration not found: {path}, using defaults")
        return _get_default_presentation_config()

    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Failed to load configuration {path}: {e}")

    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {path}")

    config = _substitute_env_vars(config)
    merged = _deep_merge(_get_default_presentation_config(), config)

    logger.debug(f"Loaded presentation configuration from {path}")
    return merged


def get_section(section: str, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Extract one configuration section, merged over its defaults.

    Args:
        section: Section name (e.g. 'alignment', 'sensor')
        config: Pre-loaded configuration (optional)

    Returns:
        Dictionary containing the section parameters
    """
    if config is None:
        config = load_presentation_config()

    defaults = _get_default_presentation_config().get(section, {})
    values = config.get(section) or {}
    if not isinstance(values, dict):
        raise ConfigurationError(f"Section '{section}' must be a mapping, got {type(values).__name__}")

    return _deep_merge(defaults, values)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _substitute_env_vars(config: Any) -> Any:
    """
    Recursively substitute environment variables in configuration values.

    Supports ${VAR_NAME} and ${VAR_NAME:-default} syntax.
    """
    if isinstance(config, dict):
        return {key: _substitute_env_vars(value) for key, value in config.items()}
    elif isinstance(config, list):
        return [_substitute_env_vars(item) for item in config]
    elif isinstance(config, str):
        def replace_env_var(match):
            var_expr = match.group(1)
            if ":-" in var_expr:
                var_name, default = var_expr.split(":-", 1)
                return os.getenv(var_name, default)
            else:
                return os.getenv(var_expr, match.group(0))  # Return original if not found

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, config)
    else:
        return config


def _get_default_presentation_config() -> Dict[str, Any]:
    """Return default presentation configuration when no file is found."""
    return {
        "alignment": {
            "query_words": 4,
            "window_words": 6
        },
        "transition": {
            "fade_settle": 2.5,
            "post_settle": 0.1,
            "fallback_slide_duration": 8.0
        },
        "camera": {
            "default_position": [0.0, 1.6, 5.0],
            "default_rotation": [0.0, 0.0, 0.0],
            "look_at": [0.0, 1.75, -0.5],
            "min_fov": 10.0,
            "max_fov": 120.0,
            "move_speed": 5.0,
            "fast_move_speed": 10.0,
            "rotate_speed": 1.5,
            "zoom_speed": 20.0
        },
        "animation": {
            "asset_dolly_speed": 0.05,
            "scale_up_duration": 12.0,
            "scale_up_target": 0.5,
            "strafe_speed": 0.2,
            "zolly_speeds": {
                "zolly_in": 0.3,
                "zolly_in_gentle": 0.1,
                "zolly_in_fast": 0.5,
                "zolly_out": 0.3
            },
            "orbit_frequency": 0.2,
            "pan_amplitude": 1.5,
            "orbit_amplitude": 1.0,
            "default_orbit_amplitude_x": 1.0,
            "default_orbit_amplitude_y": 0.6,
            "default_orbit_step": 0.01,
            "max_frame_dt": 0.1
        },
        "sensor": {
            "enabled": True,
            "smoothing": 0.1,
            "range_x": 0.8,
            "range_y": 0.6,
            "counter_rotation_gain": 0.2
        },
        "audio": {
            "music_volume": 0.5,
            "music_resume_volume": 0.3,
            "narration_volume": 1.0,
            "narration_delay": 0.0
        },
        "subtitles": {
            "mode": "highlight",
            "char_delay": 0.042,
            "space_delay": 0.040,
            "sentence_pause": 1.0
        },
        "prefetch": {
            "ahead": 2
        },
        "assets": {
            "root": "assets"
        }
    }


def get_alignment_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get text alignment parameters."""
    return get_section("alignment", config)


def get_sensor_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get head-tracking offset parameters."""
    return get_section("sensor", config)


def get_animation_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Get per-slide animation parameters, including the look-at target.

    Every animation parameter is numeric, so values that arrive as strings
    from ${VAR:-default} substitution are cast to float here.
    """
    animation = _as_floats(get_section("animation", config))
    animation["look_at"] = _as_floats(get_section("camera", config)["look_at"])
    return animation


def _as_floats(values: Any) -> Any:
    if isinstance(values, dict):
        return {key: _as_floats(value) for key, value in values.items()}
    elif isinstance(values, (list, tuple)):
        return [_as_floats(value) for value in values]
    elif isinstance(values, str):
        try:
            return float(values)
        except ValueError:
            raise ConfigurationError(f"Expected a number, got '{values}'")
    return values


def get_scheduler_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Get the flattened parameter set used by the timeline scheduler.

    Args:
        config: Pre-loaded configuration (optional)

    Returns:
        Dictionary with 'transition', 'camera', 'audio', 'subtitles',
        'prefetch' and 'assets' sections
    """
    if config is None:
        config = load_presentation_config()

    return {
        name: get_section(name, config)
        for name in ("transition", "camera", "audio", "subtitles", "prefetch", "assets")
    }


def clear_config_cache():
    """Clear the configuration cache to force reloading on next access."""
    load_presentation_config.cache_clear()
    logger.debug("Configuration cache cleared")
