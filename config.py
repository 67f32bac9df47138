"""
SoundScout Configuration Loader
Loads values from env vars and settings.json via the settings manager.
"""
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from settings import settings

# ==========================================
# Path Configuration
# ==========================================
if "__compiled__" in globals() or getattr(sys, 'frozen', False):
    ROOT_DIR = Path(sys.executable).parent
else:
    ROOT_DIR = Path(__file__).parent

VERSION = "0.4.0"

env_file = ROOT_DIR / '.env'
if env_file.exists():
    load_dotenv(env_file)


# Helper to prefer Env Var > Settings JSON > Default
def conf(key, default=None):
    # 1. Check Env Var (Highest Priority - good for docker/dev)
    env_val = os.getenv(key.upper().replace('.', '_'))
    if env_val is not None:
        return env_val

    # 2. Check Settings JSON
    json_val = settings.get(key)
    if json_val is not None:
        return json_val

    # 3. Default
    return default


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.lower() in ('true', '1', 'yes', 'on')
    return bool(value)


def _device_id(value):
    # PortAudio takes an index or a name substring
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return value


# ==========================================
# EXPORTED CONFIG DICTS
# ==========================================

DATA_DIR = Path(os.getenv("SOUNDSCOUT_DATA_DIR", str(ROOT_DIR / "data")))

DEBUG = {
    "log_file": conf("debug.log_file", "soundscout.log"),
    "log_level": conf("debug.log_level", "INFO"),
    "log_to_console": _as_bool(conf("debug.log_to_console", True)),
    "log_detailed": _as_bool(conf("debug.log_detailed", False)),
    "log_vendor_http": _as_bool(conf("debug.log_vendor_http", False)),
    "log_rotation": {
        "max_bytes": int(conf("debug.log_rotation.max_bytes", 1048576)),
        "backup_count": int(conf("debug.log_rotation.backup_count", 10)),
    }
}

SERVER = {
    "port": int(conf("server.port", 9020)),
    "host": conf("server.host", "0.0.0.0"),
}

# Credentials are read from the environment only (never settings.json).
# Missing key/secret is a fatal configuration error at request time.
ACRCLOUD = {
    "host": os.getenv("ACRCLOUD_HOST") or conf("acrcloud.host", "identify-us-west-2.acrcloud.com"),
    "access_key": os.getenv("ACRCLOUD_ACCESS_KEY", ""),
    "access_secret": os.getenv("ACRCLOUD_ACCESS_SECRET", ""),
    "timeout": float(conf("acrcloud.timeout", 30.0)),
}

RECOGNITION = {
    "min_confidence": float(conf("recognition.min_confidence", 0.60)),
    "max_audio_base64_length": int(conf("recognition.max_audio_base64_length", 1_400_000)),
}

QUOTA = {
    "hourly_limit": int(conf("quota.hourly_limit", 20)),
    "window_seconds": 60 * 60,
    "monthly_limits": {
        "free": int(conf("quota.free_monthly_limit", 5)),
        "discovery": int(conf("quota.discovery_monthly_limit", 50)),
        "premium": None,  # Unbounded
    },
}

CAPTURE = {
    "max_duration_ms": int(conf("capture.max_duration_ms", 10000)),
    "tick_ms": int(conf("capture.tick_ms", 100)),
    "sample_rate": int(conf("capture.sample_rate", 44100)),
    "device_id": _device_id(conf("capture.device_id")),  # None = system default input
}

STORAGE = {
    "backend": conf("storage.backend", "json"),
    "discoveries_file": Path(os.getenv("SOUNDSCOUT_DISCOVERIES_FILE", str(DATA_DIR / "discoveries.json"))),
}
