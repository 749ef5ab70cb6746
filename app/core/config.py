from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it’s easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


def _getenv_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name, str(default))
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive (got {value})")
    return value


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    zarinpal_merchant_id: str | None = None
    zarinpal_sandbox: bool = True
    payment_callback_url: str = "http://localhost:3000/payment/callback"
    payment_min_amount: int = 1000
    payment_max_amount: int = 50_000_000
    gateway_timeout_seconds: float = 10.0
    gateway_max_attempts: int = 3
    wallet_cas_max_retries: int = 5

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    database_url = _getenv("DATABASE_URL", "") or None
    redis_url = _getenv("REDIS_URL", "") or None

    payment_min_amount = _getenv_int("PAYMENT_MIN_AMOUNT", 1000, minimum=1)
    payment_max_amount = _getenv_int("PAYMENT_MAX_AMOUNT", 50_000_000, minimum=1)
    if payment_max_amount < payment_min_amount:
        raise ValueError(
            "PAYMENT_MAX_AMOUNT must be >= PAYMENT_MIN_AMOUNT "
            f"(got {payment_max_amount} < {payment_min_amount})"
        )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv_bool("LOG_JSON", False),
        port=port,
        database_url=database_url,
        redis_url=redis_url,
        zarinpal_merchant_id=_getenv("ZARINPAL_MERCHANT_ID", "") or None,
        zarinpal_sandbox=_getenv_bool("ZARINPAL_SANDBOX", True),
        payment_callback_url=_getenv(
            "PAYMENT_CALLBACK_URL", "http://localhost:3000/payment/callback"
        ),
        payment_min_amount=payment_min_amount,
        payment_max_amount=payment_max_amount,
        gateway_timeout_seconds=_getenv_float("GATEWAY_TIMEOUT_SECONDS", 10.0),
        gateway_max_attempts=_getenv_int("GATEWAY_MAX_ATTEMPTS", 3, minimum=1),
        wallet_cas_max_retries=_getenv_int("WALLET_CAS_MAX_RETRIES", 5, minimum=1),
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
