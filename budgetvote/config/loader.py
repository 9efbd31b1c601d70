from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml

_CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"

_DEFAULT_TERMINATION = {
    "grace_seconds": 60,
}
_DEFAULT_VOTING = {
    "auto_close_grace_seconds": 0,
    "phase2_duration_hours": 6,
}


@dataclass(frozen=True)
class VotingSettings:
    """Per-invocation voting configuration handed to services explicitly."""

    termination_grace_seconds: int = _DEFAULT_TERMINATION["grace_seconds"]
    auto_close_grace_seconds: int = _DEFAULT_VOTING["auto_close_grace_seconds"]
    phase2_duration_hours: float = _DEFAULT_VOTING["phase2_duration_hours"]


def load_config() -> Dict[str, Any]:
    """Load the application config from YAML, returning an empty mapping on error."""
    try:
        with _CONFIG_PATH.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
            if isinstance(data, dict):
                return data
            logging.warning(
                "Config file %s is not a mapping; using defaults.", _CONFIG_PATH
            )
            return {}
    except FileNotFoundError:
        logging.warning(
            "Configuration file %s not found; using defaults.", _CONFIG_PATH
        )
        return {}
    except Exception as exc:  # noqa: BLE001
        logging.error("Failed to load configuration from %s: %s", _CONFIG_PATH, exc)
        return {}


def _coerce_positive_int(value: Any, fallback: int) -> int:
    try:
        candidate = int(value)
        return candidate if candidate > 0 else fallback
    except Exception:  # noqa: BLE001
        return fallback


def _coerce_non_negative_int(value: Any, fallback: int) -> int:
    try:
        candidate = int(value)
        return candidate if candidate >= 0 else fallback
    except Exception:  # noqa: BLE001
        return fallback


def _coerce_positive_float(value: Any, fallback: float) -> float:
    try:
        candidate = float(value)
        return candidate if candidate > 0 else fallback
    except Exception:  # noqa: BLE001
        return fallback


def _coerce_bool(value: Any, fallback: bool) -> bool:
    if value is None:
        return fallback
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _env_override(name: str, value: Any) -> Any:
    env_value = os.getenv(name)
    if env_value is None:
        return value
    return env_value


def get_voting_settings() -> VotingSettings:
    """
    Return the voting settings sourced from config with safe defaults.

    Priority for each value:
    1) BUDGETVOTE_* env var
    2) config.yaml section
    3) built-in default
    """
    config = load_config()
    termination = config.get("termination") or {}
    voting = config.get("voting") or {}

    grace_seconds = _env_override(
        "BUDGETVOTE_TERMINATION_GRACE_SECONDS", termination.get("grace_seconds")
    )
    auto_close_grace = _env_override(
        "BUDGETVOTE_AUTO_CLOSE_GRACE_SECONDS", voting.get("auto_close_grace_seconds")
    )
    duration_hours = _env_override(
        "BUDGETVOTE_PHASE2_DURATION_HOURS", voting.get("phase2_duration_hours")
    )

    return VotingSettings(
        termination_grace_seconds=_coerce_non_negative_int(
            grace_seconds, _DEFAULT_TERMINATION["grace_seconds"]
        ),
        auto_close_grace_seconds=_coerce_non_negative_int(
            auto_close_grace, _DEFAULT_VOTING["auto_close_grace_seconds"]
        ),
        phase2_duration_hours=_coerce_positive_float(
            duration_hours, _DEFAULT_VOTING["phase2_duration_hours"]
        ),
    )


def get_access_token_expire_minutes(default: int = 30) -> int:
    """Return the JWT lifetime, preferring config.yaml over the environment."""
    config = load_config()
    section = config.get("auth") or {}
    configured = _coerce_positive_int(section.get("access_token_expire_minutes"), 0)
    if configured:
        return configured
    return _coerce_positive_int(
        os.getenv("BUDGETVOTE_ACCESS_TOKEN_EXPIRE_MINUTES"), default
    )


def get_auto_provision_users() -> bool:
    """Return whether unknown token subjects become participant accounts."""
    config = load_config()
    section = config.get("auth") or {}
    return _coerce_bool(section.get("auto_provision_users"), True)
