"""
Configuration management for the dithering application.
Handles loading, saving, and managing user preferences.
"""

import copy
import json
import os
import logging
from typing import Any, Optional, Dict
from pathlib import Path

__all__ = [
    'ConfigManager',
]

logger = logging.getLogger('retro_dither.config')


class ConfigManager:
    """Manages application configuration and user preferences."""

    DEFAULT_CONFIG = {
        # Default processing settings
        "defaults": {
            "algorithm": "floyd-steinberg",  # "floyd-steinberg", "bayer", "ordered"
            "palette": "1bit",               # "1bit", "cga", "websafe"
            "threshold": 128,
            "scale": 100,
            "num_workers": 1
        },

        # Last used paths
        "paths": {
            "last_image_dir": None,
            "last_save_dir": None
        },

        # Recent files (keep last 10)
        "recent_files": []
    }

    def __init__(self, config_file: str = "retro_dither_settings.json"):
        """
        Initialize config manager.

        Args:
            config_file: Path to config file
        """
        self.config_file = config_file
        self.config = self._load_config()

    def _load_config(self) -> Dict:
        """Load config from file, or fall back to defaults if missing or unreadable."""
        defaults = copy.deepcopy(self.DEFAULT_CONFIG)
        if not os.path.exists(self.config_file):
            return defaults
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                loaded = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Error loading config: {e}")
            return defaults
        if not isinstance(loaded, dict):
            logger.warning(f"Ignoring config file {self.config_file}: top level is not an object")
            return defaults
        # Merge with defaults to handle new settings
        return self._merge_configs(defaults, loaded)

    def _merge_configs(self, default: Dict, loaded: Dict) -> Dict:
        """
        Recursively merge loaded config with defaults.
        Ensures all default keys exist even if not in loaded config.
        """
        for key, value in default.items():
            if key in loaded:
                if isinstance(value, dict) and isinstance(loaded[key], dict):
                    default[key] = self._merge_configs(value, loaded[key])
                else:
                    default[key] = loaded[key]
        return default

    def save(self) -> bool:
        """Save current config to file. Returns False if it could not be written."""
        try:
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=4)
            return True
        except OSError as e:
            logger.warning(f"Error saving config: {e}")
            return False

    def get(self, *keys: str, default: Any = None) -> Any:
        """
        Get config value by nested keys.

        Args:
            *keys: Nested keys (e.g., "defaults", "threshold")
            default: Default value if key not found

        Returns:
            Config value or default

        Example:
            config.get("defaults", "threshold")  # Returns 128
        """
        value = self.config
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def set(self, *keys: str, value: Any):
        """
        Set config value by nested keys.

        Example:
            config.set("defaults", "palette", value="cga")
        """
        if len(keys) == 0:
            return

        # Navigate to the parent dict
        current = self.config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def update_last_path(self, path_type: str, filepath: str):
        """
        Update last used directory for a path type.

        Args:
            path_type: "image" or "save"
            filepath: File path to extract directory from
        """
        if filepath:
            directory = str(Path(filepath).parent)
            self.set("paths", f"last_{path_type}_dir", value=directory)

    def get_last_path(self, path_type: str) -> Optional[str]:
        return self.get("paths", f"last_{path_type}_dir")

    def add_recent_file(self, filepath: str, max_recent: int = 10):
        """
        Add file to the front of the recent files list.
        """
        recent = list(self.get("recent_files", default=[]))

        if filepath in recent:
            recent.remove(filepath)
        recent.insert(0, filepath)

        self.set("recent_files", value=recent[:max_recent])

    def get_recent_files(self, max_count: int = 10) -> list:
        """
        Get list of recent files that still exist.
        """
        recent = self.get("recent_files", default=[])
        existing = [f for f in recent if os.path.exists(f)]
        return existing[:max_count]

    def clear_recent_files(self):
        """Clear all recent files."""
        self.set("recent_files", value=[])
