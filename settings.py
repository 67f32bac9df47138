"""
SoundScout Settings Manager
Handles dynamic configuration management using settings.json
"""

import ast
import json
import os
import shutil
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from logging_config import get_logger

logger = get_logger(__name__)

if "__compiled__" in globals() or getattr(sys, 'frozen', False):
    ROOT_DIR = Path(sys.executable).parent
else:
    ROOT_DIR = Path(__file__).parent

# Allow overriding the settings file location via environment variable (Docker persistence)
SETTINGS_FILE = Path(os.getenv("SOUNDSCOUT_SETTINGS_FILE", str(ROOT_DIR / "settings.json")))


@dataclass
class Setting:
    """Represents a single configurable setting"""
    name: str
    type: type
    default: Any
    requires_restart: bool = False
    category: Optional[str] = None
    description: Optional[str] = None
    widget_type: str = "text"  # text, number, slider, switch, select, list
    options: Optional[list] = None  # For select
    min_val: Optional[float] = None  # For slider/number
    max_val: Optional[float] = None  # For slider/number
    advanced: bool = False  # Hide from main view

    def validate_and_convert(self, value: Any) -> Any:
        try:
            if value is None:
                return self.default
            if self.type == bool and isinstance(value, str):
                return value.lower() in ('true', '1', 'yes', 'on')

            if self.type == list:
                if isinstance(value, list):
                    return value
                if isinstance(value, str):
                    value = value.strip()
                    try:
                        parsed = ast.literal_eval(value)
                        if isinstance(parsed, list):
                            return parsed
                    except (ValueError, SyntaxError):
                        pass
                    clean_value = value.strip("[]")
                    if clean_value:
                        return [v.strip().strip("'").strip('"') for v in clean_value.split(',') if v.strip()]
                    return []
                return self.default

            converted = self.type(value)
            if self.min_val is not None and converted < self.min_val:
                return self.default
            if self.max_val is not None and converted > self.max_val:
                return self.default
            return converted
        except (ValueError, TypeError):
            return self.default


class SettingsManager:
    def __init__(self, settings_file: Path = SETTINGS_FILE):
        self._settings_file = settings_file
        self._settings: Dict[str, Any] = {}

        # Secrets (ACRCloud key/secret) are deliberately absent: env only
        self._definitions = {
            # Debug
            "debug.log_file": Setting("Log File", str, "soundscout.log", True, "Debug", "Log file name"),
            "debug.log_level": Setting("Log Level", str, "INFO", True, "Debug", "Logging verbosity", "select", options=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
            "debug.log_to_console": Setting("Log to Console", bool, True, True, "Debug", "Print logs to terminal", "switch"),
            "debug.log_detailed": Setting("Detailed Logging", bool, False, True, "Debug", "Write DEBUG records to the log file", "switch"),
            "debug.log_vendor_http": Setting("Log Vendor HTTP", bool, False, True, "Debug", "Keep urllib3 connection logs", "switch", advanced=True),
            "debug.log_rotation.max_bytes": Setting("Max Log Size", int, 1048576, True, "Debug", "Max log file size (bytes)", "number"),
            "debug.log_rotation.backup_count": Setting("Log Backups", int, 10, True, "Debug", "Number of backups to keep", "number"),

            # Server
            "server.port": Setting("Port", int, 9020, True, "Server", "Server port", "number"),
            "server.host": Setting("Host", str, "0.0.0.0", True, "Server", "Bind address"),

            # ACRCloud (non-secret parts only)
            "acrcloud.host": Setting("Host", str, "identify-us-west-2.acrcloud.com", True, "ACRCloud", "Identify endpoint host"),
            "acrcloud.timeout": Setting("Timeout", float, 30.0, False, "ACRCloud", "Request timeout (s)", "number", min_val=1.0, max_val=120.0),

            # Recognition
            "recognition.min_confidence": Setting("Min Confidence", float, 0.60, False, "Recognition", "Scores below this are treated as not found", "slider", min_val=0.0, max_val=1.0),
            "recognition.max_audio_base64_length": Setting("Max Sample Size", int, 1_400_000, False, "Recognition", "Max base64 characters per sample", "number", advanced=True),

            # Quota
            "quota.hourly_limit": Setting("Hourly Limit", int, 20, False, "Quota", "Max recognition attempts per hour", "number", min_val=1),
            "quota.free_monthly_limit": Setting("Free Tier", int, 5, False, "Quota", "Monthly matches on the free tier", "number", min_val=0),
            "quota.discovery_monthly_limit": Setting("Discovery Tier", int, 50, False, "Quota", "Monthly matches on the discovery tier", "number", min_val=0),

            # Capture
            "capture.max_duration_ms": Setting("Max Duration", int, 10000, False, "Capture", "Auto-stop after (ms)", "number", min_val=1000, max_val=60000),
            "capture.tick_ms": Setting("Tick", int, 100, False, "Capture", "Timer resolution (ms)", "number", advanced=True),
            "capture.sample_rate": Setting("Sample Rate", int, 44100, True, "Capture", "Microphone sample rate (Hz)", "number"),
            "capture.device_id": Setting("Device ID", int, None, False, "Capture", "Input device ID (blank = default)", "number"),

            # Storage
            "storage.backend": Setting("Store", str, "json", True, "Storage", "Discovery store backend", "select", options=["json", "memory"]),
        }

        self.load_settings()

    def load_settings(self) -> None:
        """Load settings from JSON, fall back to defaults"""
        self._settings = {}

        for key, definition in self._definitions.items():
            self._settings[key] = definition.default

        if not self._settings_file.exists():
            return

        try:
            with open(self._settings_file, 'r', encoding='utf-8') as f:
                saved = json.load(f)
            for key, val in saved.items():
                if key in self._definitions:
                    self._settings[key] = self._definitions[key].validate_and_convert(val)
                else:
                    # Keep unknown keys so a downgrade does not drop them
                    self._settings[key] = val
        except (OSError, ValueError, AttributeError) as e:
            logger.error(f"Failed to load {self._settings_file.name}: {e} - using defaults")
            backup_path = self._settings_file.with_suffix('.json.corrupted')
            try:
                shutil.copy2(self._settings_file, backup_path)
                logger.info(f"Backed up corrupted settings to {backup_path}")
            except OSError as backup_error:
                logger.warning(f"Could not back up corrupted settings: {backup_error}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value.
        Priority:
        1. Loaded value (from JSON or Schema Default)
        2. Provided 'default' argument (if key unknown)
        """
        if key in self._settings:
            return self._settings[key]
        if key in self._definitions:
            return self._definitions[key].default
        return default

    def set(self, key: str, value: Any) -> bool:
        """Set a known key. Returns True when the change needs a restart."""
        if key not in self._definitions:
            raise KeyError(f"Unknown setting: {key}")
        setting = self._definitions[key]
        self._settings[key] = setting.validate_and_convert(value)
        return setting.requires_restart

    def save_to_config(self) -> None:
        """Save current memory settings to JSON file"""
        temp_path = self._settings_file.parent / f"settings_{uuid.uuid4().hex}.json.tmp"
        try:
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(self._settings, f, indent=4, sort_keys=True)
            # Atomic replace (works on both Windows and Unix)
            os.replace(temp_path, self._settings_file)
        except OSError as e:
            logger.error(f"Failed to save settings: {e}")
            if temp_path.exists():
                temp_path.unlink()
            raise

    def get_all(self) -> Dict:
        """Return settings grouped by category for the settings API"""
        result = {}
        for key, val in self._settings.items():
            defin = self._definitions.get(key)
            if not defin:
                continue
            cat = defin.category or "Misc"
            result.setdefault(cat, {})[key] = {
                "value": val,
                "name": defin.name,
                "description": defin.description,
                "type": defin.type.__name__,
                "requires_restart": defin.requires_restart,
                "widget_type": defin.widget_type,
                "options": defin.options,
                "min": defin.min_val,
                "max": defin.max_val,
                "advanced": defin.advanced,
            }
        return result


settings = SettingsManager()
