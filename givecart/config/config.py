# givecart/config/config.py
# Canonical GiveCart configuration (env-first, production-safe)

from __future__ import annotations

import os
from typing import Optional


# ----------------------------
# Env helpers
# ----------------------------
_TRUTHY = {"1", "true", "yes", "on", "y"}
_FALSY = {"0", "false", "no", "off", "n"}


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    s = str(v).strip()
    return s if s else default


def _bool(name: str, default: bool = False) -> bool:
    v = _env(name)
    if v is None:
        return default
    s = v.strip().lower()
    if s in _TRUTHY:
        return True
    if s in _FALSY:
        return False
    return default


def _int(name: str, default: int) -> int:
    v = _env(name)
    if v is None:
        return default
    try:
        return int(str(v).strip())
    except Exception:
        return default


def _float(name: str, default: float) -> float:
    v = _env(name)
    if v is None:
        return default
    try:
        return float(str(v).strip())
    except Exception:
        return default


# ----------------------------
# Config classes
# ----------------------------
class BaseConfig:
    """
    Env-first config:
    - all important settings can be overridden via environment variables
    - safe defaults for local dev
    """

    ENV = (_env("APP_ENV") or _env("ENV") or _env("FLASK_ENV") or "base").strip().lower()

    DEBUG = _bool("FLASK_DEBUG", False)
    TESTING = _bool("TESTING", False)

    SECRET_KEY = _env("SECRET_KEY", "dev-change-me")
    LOG_LEVEL = _env("LOG_LEVEL", "INFO")

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = _env("SQLALCHEMY_DATABASE_URI", "sqlite:///givecart-dev.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    AUTO_CREATE_SQLITE = _bool("AUTO_CREATE_SQLITE", True)

    # Payment provider (Stripe checkout sessions)
    STRIPE_SECRET_KEY = _env("STRIPE_SECRET_KEY", "")
    STRIPE_TIMEOUT_SECONDS = _float("STRIPE_TIMEOUT_SECONDS", 10.0)
    STRIPE_MAX_NETWORK_RETRIES = _int("STRIPE_MAX_NETWORK_RETRIES", 2)
    STRIPE_WEBHOOK_SECRET = _env("STRIPE_WEBHOOK_SECRET", "")
    PAYMENT_MODE = _env("PAYMENT_MODE", "test")

    # Form-provider webhooks
    FORM_WEBHOOK_SECRET = _env("FORM_WEBHOOK_SECRET", _env("JOTFORM_WEBHOOK_SECRET", ""))
    AUDIT_PAYLOAD_MAX_CHARS = _int("AUDIT_PAYLOAD_MAX_CHARS", 1000)

    # Milestones ($777 per cycle)
    MILESTONE_GOAL_CENTS = _int("MILESTONE_GOAL_CENTS", 77700)

    # Vendor price prefetch
    VENDOR_PRICE_URL = _env("VENDOR_PRICE_URL", "")
    VENDOR_API_TOKEN = _env("VENDOR_API_TOKEN", "")
    VENDOR_STORE_CODE = _int("VENDOR_STORE_CODE", 9)
    VENDOR_TIMEOUT_SECONDS = _float("VENDOR_TIMEOUT_SECONDS", 8.0)
    PRICE_PREFETCH_BATCH_SIZE = _int("PRICE_PREFETCH_BATCH_SIZE", 5)
    PRICE_PREFETCH_BATCH_DELAY = _float("PRICE_PREFETCH_BATCH_DELAY", 1.0)
    PRICE_BREAKER_THRESHOLD = _int("PRICE_BREAKER_THRESHOLD", 3)
    PRICE_BREAKER_COOLDOWN = _float("PRICE_BREAKER_COOLDOWN", 60.0)

    @classmethod
    def init_app(cls, app) -> None:
        """
        Optional hook for factory boot hardening.
        Called from create_app() after app.config.from_object(...)
        """
        uri = str(app.config.get("SQLALCHEMY_DATABASE_URI") or "")

        # SQLite tuning (better concurrency behavior than default)
        if uri.startswith("sqlite:"):
            opts = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
            connect_args = dict(opts.get("connect_args") or {})
            connect_args.setdefault("check_same_thread", False)
            connect_args.setdefault("timeout", 15)
            opts["connect_args"] = connect_args
            opts.setdefault("pool_pre_ping", True)
            app.config["SQLALCHEMY_ENGINE_OPTIONS"] = opts


class DevelopmentConfig(BaseConfig):
    ENV = "development"
    DEBUG = True

    SQLALCHEMY_DATABASE_URI = _env("SQLALCHEMY_DATABASE_URI", "sqlite:///givecart-dev.db")


class TestingConfig(BaseConfig):
    ENV = "testing"
    TESTING = True
    DEBUG = False

    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_WEBHOOK_SECRET = "whsec_test_dummy"
    FORM_WEBHOOK_SECRET = ""
    PRICE_PREFETCH_BATCH_DELAY = 0.0


class ProductionConfig(BaseConfig):
    ENV = "production"
    DEBUG = False
    AUTO_CREATE_SQLITE = False

    @classmethod
    def init_app(cls, app) -> None:
        super().init_app(app)

        # ---- Production guardrails (fail fast) ----
        sk = app.config.get("SECRET_KEY")
        if not sk or sk == "dev-change-me":
            raise RuntimeError("SECRET_KEY must be set to a strong random value in production.")

        if not (app.config.get("STRIPE_SECRET_KEY") or "").startswith(("sk_", "rk_")):
            raise RuntimeError("STRIPE_SECRET_KEY must be set in production.")

        if _bool("FLASK_DEBUG", False):
            raise RuntimeError("FLASK_DEBUG must be 0 in production.")
