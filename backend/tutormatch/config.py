"""Application settings and validation.

Values come from the environment. When `CONFIG_FILE` points at a JSON
document, its keys override the environment so a deployment can ship one
file per environment instead of a long list of variables.
"""

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger("tutormatch.config")

BASE = Path(__file__).resolve().parent.parent
DEFAULT_SESSION_SECRET = "change_me_for_prod"

_FILE_KEYS = {
    "ENV",
    "SESSION_SECRET",
    "SESSION_MAX_AGE",
    "ALLOW_INSECURE_SESSION",
    "DATABASE_URL",
    "PROTECTED_DIR",
    "LOG_LEVEL",
    "ADMIN_USERNAME",
    "ADMIN_PASSWORD",
}


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() == "true"


def load_config_file(location: str) -> dict:
    """Read a JSON settings file and return its key/value pairs.

    Raises RuntimeError when the file is missing, malformed or carries
    keys the application does not know about.
    """
    path = Path(location)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise RuntimeError(f"config file not found: {path}")
    except json.JSONDecodeError as e:
        raise RuntimeError(f"config file {path} is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise RuntimeError(f"config file {path} must contain a JSON object")
    unknown = sorted(set(data) - _FILE_KEYS)
    if unknown:
        raise RuntimeError(f"unknown settings in {path}: {', '.join(unknown)}")
    return data


class Settings:
    ENV: str
    SESSION_SECRET: str
    SESSION_MAX_AGE: int
    ALLOW_INSECURE_SESSION: bool
    DATABASE_URL: str
    PROTECTED_DIR: Path
    LOG_LEVEL: str
    ADMIN_USERNAME: str | None
    ADMIN_PASSWORD: str | None
    CONFIG_FILE: str | None

    def __init__(self):
        self.CONFIG_FILE = os.getenv("CONFIG_FILE") or None
        overrides = load_config_file(self.CONFIG_FILE) if self.CONFIG_FILE else {}

        def get(key: str, default):
            if key in overrides:
                return overrides[key]
            return os.getenv(key, default)

        self.ENV = str(get("ENV", "dev")).lower()
        self.SESSION_SECRET = str(get("SESSION_SECRET", DEFAULT_SESSION_SECRET))
        self.SESSION_MAX_AGE = int(get("SESSION_MAX_AGE", str(8 * 60 * 60)))  # 8 hours
        self.ALLOW_INSECURE_SESSION = _as_bool(get("ALLOW_INSECURE_SESSION", "false"))
        self.DATABASE_URL = str(get("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}"))
        self.PROTECTED_DIR = Path(get("PROTECTED_DIR", str(BASE / "protected")))
        self.LOG_LEVEL = str(get("LOG_LEVEL", "INFO")).upper()
        self.ADMIN_USERNAME = get("ADMIN_USERNAME", None) or None
        self.ADMIN_PASSWORD = get("ADMIN_PASSWORD", None) or None
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_SESSION and self.SESSION_SECRET == DEFAULT_SESSION_SECRET:
            raise RuntimeError("SESSION_SECRET must be set to a non-default value in non-dev environments")
        if self.SESSION_MAX_AGE <= 0:
            raise RuntimeError("SESSION_MAX_AGE must be a positive number of seconds")

    def describe_source(self) -> str:
        """Human readable description of where the settings came from."""
        if self.CONFIG_FILE:
            return f"file {self.CONFIG_FILE}"
        return "environment"
