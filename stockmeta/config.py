import copy
import json
import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Configuration for metadata generation
CONFIG = {
    # API Settings
    "default_model": "gemini-2.5-flash",
    "requests_per_minute": 15,  # Per key, free tier limit
    "rate_window": 60.0,  # Seconds before request counters reset
    "rate_wait_grace": 1.0,  # Extra second before retrying after a full window
    "rate_poll_interval": 1.0,  # Countdown refresh while all keys are busy

    # Backoff Strategy
    "initial_backoff": 1.0,  # Seconds
    "max_backoff": 30.0,  # Cap for the doubling delay
    "backoff_multiplier": 2,

    # Run Settings
    "batch_size": 3,
    "retry_pass_delay": 2.0,  # Settling delay before the retry pass

    # File Settings
    "settings_file": "stockmeta_settings.json",
    "thumbnail_max_width": 300,
    "api_max_width": 800,
    "jpeg_quality": 70,

    # Supported media types
    "supported_mime_types": (
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/svg+xml",
        "video/mp4",
        "video/quicktime",
        "application/postscript",
        "application/pdf",
    ),
}

DEFAULT_CONTROLS = {
    "active_tab": "metadata",
    "title_length": 60,
    "desc_length": 150,
    "keywords_count": 30,
    "batch_size": CONFIG["batch_size"],
    "advance_title": {
        "transparent_bg": False,
        "white_bg": False,
        "vector": False,
        "illustration": False,
    },
    "custom_prompt_select": "default",
    "custom_prompt_entry": "",
    "desc_words": 40,
    "prompt_switches": {
        "silhouette": False,
        "white_bg": False,
        "transparent_bg": False,
        "custom_prompt": False,
    },
    "custom_prompt_entry_prompt": "",
}

DEFAULT_SETTINGS = {
    "api_keys": [],
    "model": CONFIG["default_model"],
    "selected_stock_site": "General",
    "file_extension": "default",
    "controls": DEFAULT_CONTROLS,
}


def _merge(defaults, stored):
    """Overlay stored values on a copy of defaults, recursing into nested dicts"""
    merged = copy.deepcopy(defaults)
    for key, value in stored.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def env_api_keys():
    """Collect API keys from the environment (.env is loaded first)"""
    load_dotenv()
    keys = []
    raw = os.getenv("GEMINI_API_KEYS", "")
    keys.extend(k.strip() for k in raw.split(",") if k.strip())
    single = os.getenv("GEMINI_API_KEY")
    if single and single.strip() not in keys:
        keys.append(single.strip())
    return keys


class Settings:
    """Persisted user settings: API keys, model and generation controls"""

    def __init__(self, path=None, data=None):
        self.path = path or CONFIG["settings_file"]
        self.data = _merge(DEFAULT_SETTINGS, data or {})
        # Keys from GEMINI_API_KEY(S); used when none are stored, never saved
        self.env_keys = []

    @classmethod
    def load(cls, path=None, use_env=True):
        """Load settings from file, falling back to defaults"""
        path = path or CONFIG["settings_file"]
        stored = {}
        if os.path.exists(path):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    stored = json.load(f)
                if not isinstance(stored, dict):
                    raise ValueError("settings root must be an object")
            except (OSError, ValueError) as e:
                logger.warning("Failed to parse settings from %s: %s", path, e)
                stored = {}
        settings = cls(path, stored)
        if use_env:
            settings.env_keys = env_api_keys()
        return settings

    def save(self):
        """Write settings on explicit user save"""
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self.data, f, indent=2)
        logger.info("Settings saved to %s", self.path)

    @property
    def api_keys(self):
        return list(self.data["api_keys"] or self.env_keys)

    def add_api_key(self, key):
        key = key.strip()
        if key and key not in self.data["api_keys"]:
            self.data["api_keys"].append(key)

    def remove_api_key(self, key):
        self.data["api_keys"] = [k for k in self.data["api_keys"] if k != key]

    @property
    def model(self):
        return self.data["model"]

    @property
    def controls(self):
        return self.data["controls"]

    @property
    def selected_stock_site(self):
        return self.data["selected_stock_site"]

    @property
    def file_extension(self):
        return self.data["file_extension"]

    def update_controls(self, **changes):
        self.data["controls"] = _merge(self.data["controls"], changes)
