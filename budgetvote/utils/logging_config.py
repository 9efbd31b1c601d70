import logging
import logging.config
import os
from pathlib import Path
from typing import Dict, List, Tuple

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_DEFAULT_MAX_BYTES = 5 * 1024 * 1024
_DEFAULT_BACKUP_COUNT = 3

# logger name -> (handlers, level); None means LOG_LEVEL
_LOGGERS: Dict[str, Tuple[List[str], str]] = {
    "uvicorn": (["console", "app_file"], "INFO"),
    "uvicorn.access": (["console", "app_file"], "INFO"),
    "uvicorn.error": (["console", "error_file"], "INFO"),
    "auth_module": (["console", "app_file"], "INFO"),
    # Privileged session actions: create, activate, advance, schedule, close, recompute
    "audit": (["console", "app_file", "audit_file"], "INFO"),
    "app": (["console", "app_file", "error_file"], "DEBUG"),
    "budgetvote": (["console", "app_file", "error_file"], None),
}


def _env_int(name: str, fallback: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return fallback
    try:
        value = int(raw)
    except ValueError:
        return fallback
    return value if value >= 0 else fallback


def _prune_backups(log_dir: Path, base_name: str, backup_count: int) -> None:
    """Drop rotated files beyond ``backup_count``, newest kept."""
    if backup_count < 1:
        return
    rotated = sorted(
        log_dir.glob(f"{base_name}.*"),
        key=lambda path: path.stat().st_mtime,
        reverse=True,
    )
    for stale in rotated[backup_count:]:
        try:
            stale.unlink()
        except OSError:
            continue


def _file_handler(path: Path, level: str, max_bytes: int, backup_count: int) -> dict:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "formatter": "default",
        "filename": str(path),
        "maxBytes": max_bytes,
        "backupCount": backup_count,
        "level": level,
        "encoding": "utf8",
    }


def setup_logging(log_dir: str = "logs"):
    """
    Configure console output plus rotating files in ``log_dir``:
    app.log (INFO and up), error.log (ERROR and up) and audit.log.

    LOG_LEVEL sets the console and budgetvote.* level; LOG_MAX_BYTES and
    LOG_BACKUP_COUNT size the rotation.
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    max_bytes = _env_int("LOG_MAX_BYTES", _DEFAULT_MAX_BYTES)
    backup_count = _env_int("LOG_BACKUP_COUNT", _DEFAULT_BACKUP_COUNT)

    files = {
        "app_file": ("app.log", "INFO"),
        "error_file": ("error.log", "ERROR"),
        "audit_file": ("audit.log", "INFO"),
    }
    handlers: Dict[str, dict] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "level": level,
        }
    }
    for handler_name, (filename, handler_level) in files.items():
        _prune_backups(directory, filename, backup_count)
        handlers[handler_name] = _file_handler(
            directory / filename, handler_level, max_bytes, backup_count
        )

    loggers = {
        name: {
            "handlers": logger_handlers,
            "level": logger_level or level,
            "propagate": False,
        }
        for name, (logger_handlers, logger_level) in _LOGGERS.items()
    }
    loggers[""] = {
        "handlers": ["console", "app_file", "error_file"],
        "level": "INFO",
        "propagate": True,
    }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"format": _FORMAT}},
            "handlers": handlers,
            "loggers": loggers,
        }
    )
    logging.getLogger("app").info(
        "Logging configured: level=%s dir=%s", level, directory.resolve()
    )
