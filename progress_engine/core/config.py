from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off")


def _getenv(name: str, default: str) -> str:
    # Centralize env access so type casting stays in one place
    return os.environ.get(name, default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


@dataclass(frozen=True, slots=True)
class ThresholdConfig:
    """Certificate thresholds and grading weights, all in percent.

    virtual_threshold:  interactive progress needed for the virtual certificate.
    complete_threshold: weighted final score needed for the complete certificate.
    interactive_weight / activities_weight: must add up to 100.
    allow_retry:   a later evaluation may replace an earlier one.
    auto_generate: issue the certificate as soon as a tier is granted.
    """

    virtual_threshold: int = 80
    complete_threshold: int = 70
    interactive_weight: int = 50
    activities_weight: int = 50
    allow_retry: bool = True
    auto_generate: bool = True

    def __post_init__(self) -> None:
        for name in (
            "virtual_threshold",
            "complete_threshold",
            "interactive_weight",
            "activities_weight",
        ):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be between 0 and 100 (got {value!r})")

        if self.interactive_weight + self.activities_weight != 100:
            raise ValueError(
                "interactive_weight + activities_weight must equal 100 "
                f"(got {self.interactive_weight} + {self.activities_weight})"
            )


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    redis_url: str | None
    progress_store_url: str | None
    progress_store_timeout: float = 10.0
    completion_threshold: int = 80
    max_sessions: int = 1000
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_thresholds() -> ThresholdConfig:
    return ThresholdConfig(
        virtual_threshold=_getenv_int("CERT_VIRTUAL_THRESHOLD", 80),
        complete_threshold=_getenv_int("CERT_COMPLETE_THRESHOLD", 70),
        interactive_weight=_getenv_int("GRADING_INTERACTIVE_WEIGHT", 50),
        activities_weight=_getenv_int("GRADING_ACTIVITIES_WEIGHT", 50),
        allow_retry=_getenv_bool("CERT_ALLOW_RETRY", True),
        auto_generate=_getenv_bool("CERT_AUTO_GENERATE", True),
    )


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    completion_threshold = _getenv_int("PROGRESS_COMPLETION_THRESHOLD", 80)
    if not 0 <= completion_threshold <= 100:
        raise ValueError(
            "PROGRESS_COMPLETION_THRESHOLD must be between 0 and 100 "
            f"(got {completion_threshold!r})"
        )

    max_sessions = _getenv_int("PROGRESS_MAX_SESSIONS", 1000)
    if max_sessions < 1:
        raise ValueError(f"PROGRESS_MAX_SESSIONS must be at least 1 (got {max_sessions!r})")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv_bool("LOG_JSON", False),
        port=_getenv_int("PORT", 8000),
        redis_url=_getenv("REDIS_URL", "") or None,
        progress_store_url=_getenv("PROGRESS_STORE_URL", "") or None,
        progress_store_timeout=_getenv_float("PROGRESS_STORE_TIMEOUT", 10.0),
        completion_threshold=completion_threshold,
        max_sessions=max_sessions,
        thresholds=load_thresholds(),
    )


# Module-level singleton so imports are cheap
SETTINGS = load_settings()
