"""
Global app configuration for the EX_P02 webapp.

Two kinds of configuration live here:

- Startup settings read from the environment: the hosted backend endpoint
  and its public API key, plus cache timings (``BackendSettings``).
- Persisted UI preferences stored in ``app_settings.json`` inside the app
  config folder (``AppConfigManager``).

The app config folder location is determined by (in order of priority):
1. EXP02_CONFIG environment variable
2. Default platform-specific location (``platformdirs.user_config_dir``)
"""

import json
import os
from dataclasses import dataclass, field, asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import platformdirs

from .shared.logger import get_logger

logger = get_logger(__name__)

APP_NAME = "ex-p02-webapp"
APP_AUTHOR = "extension-systems"

DEFAULT_STALE_TIME = 5 * 60.0
DEFAULT_GC_TIME = 10 * 60.0


@dataclass
class BackendSettings:
    """Connection settings for the hosted backend."""
    url: str
    anon_key: str
    stale_time: float = DEFAULT_STALE_TIME
    gc_time: float = DEFAULT_GC_TIME
    timeout: float = 15.0
    extra_headers: Dict[str, str] = field(default_factory=dict)

    @property
    def rest_url(self) -> str:
        return f"{self.url.rstrip('/')}/rest/v1"

    @property
    def auth_url(self) -> str:
        return f"{self.url.rstrip('/')}/auth/v1"

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.anon_key)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        # never echo the key back to clients
        data["anon_key"] = "***" if self.anon_key else ""
        return data

    @classmethod
    def from_env(cls) -> "BackendSettings":
        return cls(
            url=os.environ.get("SUPABASE_URL", ""),
            anon_key=os.environ.get("SUPABASE_ANON_KEY", ""),
            stale_time=float(os.environ.get("EXP02_STALE_TIME", DEFAULT_STALE_TIME)),
            gc_time=float(os.environ.get("EXP02_GC_TIME", DEFAULT_GC_TIME)),
        )


class AppConfigManager:
    """Manages the app configuration folder and persisted UI preferences."""

    def __init__(self):
        self._config_dir = self._get_config_dir()
        self._config_dir.mkdir(parents=True, exist_ok=True)
        self._app_settings_path = self._config_dir / "app_settings.json"

    def _get_config_dir(self) -> Path:
        env_config = os.environ.get("EXP02_CONFIG")
        if env_config:
            return Path(env_config)
        return Path(platformdirs.user_config_dir(APP_NAME, APP_AUTHOR))

    @property
    def config_dir(self) -> Path:
        """Get the config directory path."""
        return self._config_dir

    # ============================================================================
    # App Settings
    # ============================================================================

    def _default_app_settings(self) -> Dict[str, Any]:
        """Get default app settings."""
        return {
            "version": "1.0",
            "ui_preferences": {},
            "last_updated": datetime.now().isoformat(),
        }

    def get_app_settings(self) -> Dict[str, Any]:
        """Load app settings from disk."""
        if self._app_settings_path.exists():
            try:
                with open(self._app_settings_path, "r", encoding="utf-8") as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load app settings: %s", e)
        return self._default_app_settings()

    def save_app_settings(self, settings: Dict[str, Any]) -> bool:
        """Save app settings to disk."""
        try:
            settings["last_updated"] = datetime.now().isoformat()
            with open(self._app_settings_path, "w", encoding="utf-8") as f:
                json.dump(settings, f, indent=2)
            return True
        except OSError as e:
            logger.error("Failed to save app settings: %s", e)
            return False

    # ============================================================================
    # UI Preferences
    # ============================================================================

    def get_ui_preferences(self) -> Dict[str, Any]:
        """Get UI preferences."""
        settings = self.get_app_settings()
        return settings.get("ui_preferences", {})

    def save_ui_preferences(self, preferences: Dict[str, Any]) -> bool:
        """Save UI preferences (shallow merge over the stored ones)."""
        settings = self.get_app_settings()
        settings["ui_preferences"] = {**settings.get("ui_preferences", {}), **preferences}
        return self.save_app_settings(settings)

    def get_dark_mode(self, system_prefers_dark: bool = False) -> bool:
        """Return the stored dark-mode flag.

        Falls back to the platform-reported colour scheme when the user never
        chose one.
        """
        stored: Optional[bool] = self.get_ui_preferences().get("dark_mode")
        if stored is None:
            return system_prefers_dark
        return bool(stored)

    def set_dark_mode(self, enabled: bool) -> bool:
        return self.save_ui_preferences({"dark_mode": bool(enabled)})


# Global app config instance
app_config = AppConfigManager()
