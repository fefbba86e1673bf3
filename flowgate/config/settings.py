"""
Application settings and configuration.

This module centralizes all configuration settings for the orchestration
layer. Values come from environment variables, optionally loaded from a
``.env`` file, so the same build runs unchanged in containers.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv


class Settings:
    """
    Application settings with environment variable support.

    Server passwords are deliberately not part of the settings; they are
    resolved per call by the credential provider (see
    ``flowgate.core.server_registry``).
    """

    def __init__(self):
        """Initialize application settings."""
        load_dotenv()

        self.BASE_DIR = Path(__file__).resolve().parent.parent
        data_dir = Path(os.environ.get("FLOWGATE_DATA_DIR", "data"))

        # Catalog of servers, modules and datasets
        self.CATALOG_PATH = Path(
            os.environ.get("FLOWGATE_CATALOG_PATH", str(data_dir / "catalog.json"))
        )
        # Analysis rows (JSON Lines)
        self.STORE_PATH = Path(
            os.environ.get("FLOWGATE_STORE_PATH", str(data_dir / "analyses.jsonl"))
        )
        # Shared storage where Galaxy outputs are copied out-of-band
        self.GALAXY_RESULT_ROOT = Path(
            os.environ.get(
                "FLOWGATE_GALAXY_RESULT_ROOT", str(data_dir / "galaxy_results")
            )
        )
        # Galaxy data library receiving uploaded inputs, and target history
        self.GALAXY_LIBRARY = os.environ.get("FLOWGATE_GALAXY_LIBRARY", "FlowGate")
        self.GALAXY_HISTORY_ID: Optional[str] = (
            os.environ.get("FLOWGATE_GALAXY_HISTORY_ID") or None
        )

        # Backend calls
        self.BACKEND_TIMEOUT = float(os.environ.get("FLOWGATE_BACKEND_TIMEOUT", "30"))
        self.SSL_VERIFY = (
            os.environ.get("FLOWGATE_SSL_VERIFY", "true").lower() == "true"
        )

        # Polling
        self.POLL_WORKERS = int(os.environ.get("FLOWGATE_POLL_WORKERS", "4"))
        self.SWEEP_INTERVAL = float(os.environ.get("FLOWGATE_SWEEP_INTERVAL", "0"))

        # Optional shared secret for the status callback endpoint
        self.CALLBACK_TOKEN: Optional[str] = (
            os.environ.get("FLOWGATE_CALLBACK_TOKEN") or None
        )

        # Logging settings
        self.LOG_LEVEL = os.environ.get("FLOWGATE_LOG_LEVEL", "INFO").upper()

        # Web server settings (for 'flowgate serve')
        self.PORT = int(os.environ.get("PORT", "8000"))
        self.HOST = os.environ.get("HOST", "0.0.0.0")
        self.DEBUG = os.environ.get("DEBUG", "False").lower() == "true"

    def get_all_settings(self) -> Dict[str, Any]:
        """
        Get all settings as a dictionary.

        The callback token is masked.

        Returns:
            dict: All settings
        """
        settings_dict = {}
        for attr in dir(self):
            if not attr.startswith("_") and not callable(getattr(self, attr)):
                settings_dict[attr] = getattr(self, attr)
        if settings_dict.get("CALLBACK_TOKEN"):
            settings_dict["CALLBACK_TOKEN"] = "********"
        return settings_dict

    def get_setting(self, name: str, default: Any = None) -> Any:
        """
        Get a specific setting.

        Args:
            name: Setting name
            default: Default value if setting doesn't exist

        Returns:
            Value of the setting or default
        """
        return getattr(self, name, default)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the application settings.

    Returns:
        Settings: Application settings
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
