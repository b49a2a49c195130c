from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

from core.payments.types import PaymentProviderName, ProviderConfig

load_dotenv()

SUPPORTED_PAYMENT_PROVIDERS = tuple(item.value for item in PaymentProviderName)
SUPPORTED_PAYMENT_MODES = ("test", "live")

# Provider-specific variables, in (api_key, api_secret, webhook_secret, mode) order.
# Each one falls back to the generic PAYMENT_* variable when unset.
_PROVIDER_ENV = {
    "stripe": ("STRIPE_API_KEY", None, "STRIPE_WEBHOOK_SECRET", None),
    "razorpay": ("RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET", "RAZORPAY_WEBHOOK_SECRET", None),
    "cashfree": ("CASHFREE_APP_ID", "CASHFREE_SECRET_KEY", "CASHFREE_WEBHOOK_SECRET", "CASHFREE_MODE"),
}
# Adapter options, keyed by provider, as option name -> environment variable.
_PROVIDER_OPTION_ENV = {
    "cashfree": {"default_customer_phone": "CASHFREE_DEFAULT_CUSTOMER_PHONE"},
}
_GENERIC_ENV = ("PAYMENT_API_KEY", "PAYMENT_API_SECRET", "PAYMENT_WEBHOOK_SECRET", "PAYMENT_MODE")


def _split_csv(value: str | None) -> tuple[str, ...]:
    if not value:
        return tuple()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _env(name: str | None) -> str | None:
    if name is None:
        return None
    raw_value = os.getenv(name)
    if raw_value is None:
        return None
    normalized = raw_value.strip()
    return normalized or None


def _env_flag(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or default).strip().lower() in {"1", "true", "yes"}


def _provider_env(provider: str, index: int) -> str | None:
    specific = _PROVIDER_ENV[provider][index]
    return _env(specific) or _env(_GENERIC_ENV[index])


def _selected_provider() -> str:
    return (_env("PAYMENT_PROVIDER") or "stripe").lower()


def collect_missing_required_env_vars() -> list[str]:
    missing: list[str] = []

    for var_name in ("SECRET_KEY", "MONGO_URL", "DB_NAME"):
        if _env(var_name) is None:
            missing.append(var_name)

    provider = _selected_provider()
    if provider in _PROVIDER_ENV:
        api_key_var, api_secret_var, webhook_var, _ = _PROVIDER_ENV[provider]
        if _provider_env(provider, 0) is None:
            missing.append(api_key_var)
        if api_secret_var and _provider_env(provider, 1) is None:
            missing.append(api_secret_var)
        if _provider_env(provider, 2) is None:
            missing.append(webhook_var)

    return sorted(set(missing))


def collect_invalid_env_values() -> list[str]:
    invalid_values: list[str] = []

    if _selected_provider() not in SUPPORTED_PAYMENT_PROVIDERS:
        invalid_values.append(
            f"PAYMENT_PROVIDER must be one of: {', '.join(SUPPORTED_PAYMENT_PROVIDERS)}"
        )

    for var_name in ("PAYMENT_MODE", "CASHFREE_MODE"):
        mode = _env(var_name)
        if mode is not None and mode.lower() not in SUPPORTED_PAYMENT_MODES:
            invalid_values.append(f"{var_name} must be one of: test, live")

    return invalid_values


def validate_required_environment() -> None:
    missing_vars = collect_missing_required_env_vars()
    invalid_values = collect_invalid_env_values()
    if not missing_vars and not invalid_values:
        return

    message_lines = ["Application startup blocked by invalid environment configuration."]
    if missing_vars:
        message_lines.append("")
        message_lines.append("Missing required environment variables:")
        message_lines.extend(f"- {name}" for name in missing_vars)
    if invalid_values:
        message_lines.append("")
        message_lines.append("Invalid environment values:")
        message_lines.extend(f"- {message}" for message in invalid_values)
    raise RuntimeError("\n".join(message_lines))


def build_provider_config(provider: str) -> ProviderConfig:
    """Read credentials for ``provider`` from the environment."""
    key = provider.lower()
    if key not in _PROVIDER_ENV:
        raise ValueError(f"Unsupported payment provider '{provider}'")
    mode = (_provider_env(key, 3) or "test").lower()
    options: dict[str, str] = {}
    for option, env_name in _PROVIDER_OPTION_ENV.get(key, {}).items():
        value = _env(env_name)
        if value:
            options[option] = value
    return ProviderConfig(
        provider=PaymentProviderName(key),
        api_key=_provider_env(key, 0) or "",
        api_secret=_provider_env(key, 1),
        webhook_secret=_provider_env(key, 2),
        mode="live" if mode == "live" else "test",
        options=options,
    )


@dataclass(frozen=True)
class Settings:
    env: str
    secret_key: str
    mongo_url: str
    db_name: str
    redis_url: str
    cors_origins: tuple[str, ...]
    role_rate_limits: str | None
    debug_include_error_details: bool
    payment_provider: str
    payment_allow_followup_refunds: bool

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    def provider_config(self, provider: str | None = None) -> ProviderConfig:
        return build_provider_config(provider or self.payment_provider)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    validate_required_environment()

    return Settings(
        env=os.getenv("ENV", "development"),
        secret_key=os.getenv("SECRET_KEY", ""),
        mongo_url=os.getenv("MONGO_URL", ""),
        db_name=os.getenv("DB_NAME", ""),
        redis_url=os.getenv("REDIS_URL")
        or f"redis://{os.getenv('REDIS_HOST', '127.0.0.1')}:{os.getenv('REDIS_PORT', '6379')}/0",
        cors_origins=_split_csv(os.getenv("CORS_ORIGINS")),
        role_rate_limits=_env("ROLE_RATE_LIMITS"),
        debug_include_error_details=_env_flag("DEBUG_INCLUDE_ERROR_DETAILS"),
        payment_provider=_selected_provider(),
        payment_allow_followup_refunds=_env_flag("PAYMENT_ALLOW_FOLLOWUP_REFUNDS"),
    )
