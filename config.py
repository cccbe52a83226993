import logging as _logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path.home() / ".modloader" / ".env")
load_dotenv(Path.cwd() / ".env")

_log = _logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_suffix(name: str, default: str) -> str:
    """Read a file suffix, adding the leading dot when it is missing."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    return raw if raw.startswith(".") else f".{raw}"


def _env_log_level(name: str, default: str) -> str:
    raw = os.getenv(name, "").strip().upper()
    if raw and raw in _logging.getLevelNamesMapping():
        return raw
    if raw:
        _log.warning("Ignoring unknown log level %s=%s, using %s", name, raw, default)
    return default


# Module loading
MODULES_ENABLED = _env_bool("MODLOADER_ENABLED", True)
MODULE_SUFFIX = _env_suffix("MODLOADER_SUFFIX", ".py")
MODULE_EXPORT = os.getenv("MODLOADER_EXPORT", "MODULE").strip() or "MODULE"

# Paths (relative paths resolve against the working directory at use time)
MODULES_DIR = Path(os.getenv("MODLOADER_MODULES_DIR", "modules")).expanduser()
MODULE_CONFIG_DIR = Path(os.getenv("MODLOADER_CONFIG_DIR", "moduleconfigs")).expanduser()

# Logging
LOG_DIR = Path(
    os.getenv("MODLOADER_LOG_DIR", str(Path.home() / ".modloader" / "logs"))
).expanduser()
LOG_LEVEL = _env_log_level("MODLOADER_LOG_LEVEL", "INFO")
