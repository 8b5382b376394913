"""
CONFIG.PY: SINGLE SOURCE OF TRUTH

This module is the ONLY place allowed to read environment variables.

Portal credentials are required; everything else carries the default the
back office runs with. If a value is present but invalid the process fails
early with ``ConfigError`` before touching the portal.

The configuration is loaded ONCE, on first access, and cached:

    from baixa_os.config import config

Do not access os.getenv directly from any other module (the portal time zone
helper in ``baixa_os.common.date_utils`` is the one documented exception).
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from dotenv import load_dotenv

from baixa_os.gcom.models import Credentials

PROJECT_ROOT = Path(__file__).resolve().parents[1]

# OS env overrides values from .env
load_dotenv(PROJECT_ROOT / ".env")

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ["GCOM_USERNAME", "GCOM_PASSWORD"]

EMAIL_REQUIRED_KEYS = ["NOTIFY_EMAIL_FROM", "NOTIFY_SMTP_HOST"]

DEFAULTS = {
    "GCOM_ROWS_PER_PAGE": "100",
    "GCOM_EMPTY_POLL_INTERVAL_SECONDS": "30",
    "GCOM_HEADLESS": "true",
    "GCOM_SLOW_MO_MS": "0",
    "GCOM_CHROME_EXECUTABLE": "",
    "GCOM_SEARCH_RETRIES": "3",
    "GCOM_SEARCH_RETRY_DELAY_SECONDS": "2",
    "PORTAL_TIMEZONE": "America/Sao_Paulo",
    "JSON_LOG_FILE": "",
    "NOTIFY_EMAIL_ENABLED": "false",
    "NOTIFY_EMAIL_FROM": "",
    "NOTIFY_EMAIL_FROM_NAME": "",
    "NOTIFY_EMAIL_TO": "",
    "NOTIFY_EMAIL_RECIPIENTS": "",
    "NOTIFY_SMTP_HOST": "",
    "NOTIFY_SMTP_PORT": "587",
    "NOTIFY_SMTP_USERNAME": "",
    "NOTIFY_SMTP_PASSWORD": "",
    "NOTIFY_SMTP_USE_TLS": "true",
}

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


def _fail(message: str) -> ConfigError:
    logger.error(message)
    return ConfigError(message)


def _require(env: Mapping[str, str], key: str) -> str:
    value = env.get(key)
    if value is None:
        raise _fail(f"Missing required environment variable: {key}")
    stripped = value.strip()
    if not stripped:
        raise _fail(f"Environment variable {key} cannot be blank")
    return stripped


def _optional(env: Mapping[str, str], key: str) -> str:
    value = env.get(key)
    if value is None:
        return DEFAULTS[key]
    return value.strip()


def _parse_bool(value: str, *, key: str) -> bool:
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise _fail(f"Config key {key} must be a boolean string; got {value!r}")


def _parse_int(value: str, *, key: str, minimum: int = 0) -> int:
    try:
        parsed = int(value.strip())
    except (TypeError, ValueError):
        raise _fail(f"Config key {key} must be an integer; got {value!r}")
    if parsed < minimum:
        raise _fail(f"Config key {key} must be >= {minimum}; got {parsed}")
    return parsed


def _parse_float(value: str, *, key: str) -> float:
    try:
        parsed = float(value.strip())
    except (TypeError, ValueError):
        raise _fail(f"Config key {key} must be a number; got {value!r}")
    if parsed < 0:
        raise _fail(f"Config key {key} cannot be negative; got {parsed}")
    return parsed


def _parse_list(value: str) -> list[str]:
    if not value:
        return []
    tokens = re.split(r"[,\n]", value)
    return [token.strip() for token in tokens if token and token.strip()]


def _merge_recipients(single: str, many: list[str]) -> list[str]:
    merged: list[str] = []
    for candidate in [single, *many]:
        candidate = candidate.strip()
        if candidate and candidate not in merged:
            merged.append(candidate)
    return merged


@dataclass(slots=True, frozen=True)
class Config:
    gcom_username: str
    gcom_password: str
    rows_per_page: int
    empty_poll_interval_seconds: float
    headless: bool
    slow_mo_ms: int
    chrome_executable: str
    search_retries: int
    search_retry_delay_seconds: float
    portal_timezone: str
    json_log_file: str

    email_enabled: bool
    email_from: str
    email_from_name: str
    email_recipients: list[str]
    smtp_host: str
    smtp_port: int
    smtp_username: str
    smtp_password: str
    smtp_use_tls: bool

    def credentials(self) -> Credentials:
        return Credentials(username=self.gcom_username, password=self.gcom_password)

    @classmethod
    def load_from_env(cls, environ: Mapping[str, str] | None = None) -> Config:
        env = dict(os.environ if environ is None else environ)

        email_enabled = _parse_bool(_optional(env, "NOTIFY_EMAIL_ENABLED"), key="NOTIFY_EMAIL_ENABLED")
        if email_enabled:
            for key in EMAIL_REQUIRED_KEYS:
                _require(env, key)
        recipients = _merge_recipients(
            _optional(env, "NOTIFY_EMAIL_TO"),
            _parse_list(_optional(env, "NOTIFY_EMAIL_RECIPIENTS")),
        )

        return cls(
            gcom_username=_require(env, "GCOM_USERNAME"),
            gcom_password=_require(env, "GCOM_PASSWORD"),
            rows_per_page=_parse_int(
                _optional(env, "GCOM_ROWS_PER_PAGE"), key="GCOM_ROWS_PER_PAGE", minimum=1
            ),
            empty_poll_interval_seconds=_parse_float(
                _optional(env, "GCOM_EMPTY_POLL_INTERVAL_SECONDS"), key="GCOM_EMPTY_POLL_INTERVAL_SECONDS"
            ),
            headless=_parse_bool(_optional(env, "GCOM_HEADLESS"), key="GCOM_HEADLESS"),
            slow_mo_ms=_parse_int(_optional(env, "GCOM_SLOW_MO_MS"), key="GCOM_SLOW_MO_MS"),
            chrome_executable=_optional(env, "GCOM_CHROME_EXECUTABLE"),
            search_retries=_parse_int(_optional(env, "GCOM_SEARCH_RETRIES"), key="GCOM_SEARCH_RETRIES"),
            search_retry_delay_seconds=_parse_float(
                _optional(env, "GCOM_SEARCH_RETRY_DELAY_SECONDS"), key="GCOM_SEARCH_RETRY_DELAY_SECONDS"
            ),
            portal_timezone=_optional(env, "PORTAL_TIMEZONE") or DEFAULTS["PORTAL_TIMEZONE"],
            json_log_file=_optional(env, "JSON_LOG_FILE"),
            email_enabled=email_enabled,
            email_from=_optional(env, "NOTIFY_EMAIL_FROM"),
            email_from_name=_optional(env, "NOTIFY_EMAIL_FROM_NAME"),
            email_recipients=recipients,
            smtp_host=_optional(env, "NOTIFY_SMTP_HOST"),
            smtp_port=_parse_int(_optional(env, "NOTIFY_SMTP_PORT"), key="NOTIFY_SMTP_PORT", minimum=1),
            smtp_username=_optional(env, "NOTIFY_SMTP_USERNAME"),
            smtp_password=_optional(env, "NOTIFY_SMTP_PASSWORD"),
            smtp_use_tls=_parse_bool(_optional(env, "NOTIFY_SMTP_USE_TLS"), key="NOTIFY_SMTP_USE_TLS"),
        )


_cached: Config | None = None


def load_config() -> Config:
    global _cached
    if _cached is None:
        _cached = Config.load_from_env()
    return _cached


def __getattr__(name: str) -> Any:
    if name == "config":
        return load_config()
    raise AttributeError(name)
