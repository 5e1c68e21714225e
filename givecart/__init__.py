# givecart/__init__.py
# GiveCart: Flask app factory
# Goals:
# - exactly-once order/donation intake behind two HTTP paths
# - JSON error shape everywhere (API-only service)
# - request-id aware logging

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional, Type, Union
from uuid import uuid4

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.utils import import_string

# IMPORTANT: never override real env vars in prod
load_dotenv(override=False)

from givecart.config import CONFIG_BY_NAME  # noqa: E402
from givecart.errors import GiveCartError  # noqa: E402
from givecart.extensions import db, init_all_extensions  # noqa: E402

ConfigLike = Union[str, Type[Any]]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _env_mode() -> str:
    raw = (os.getenv("APP_ENV") or os.getenv("ENV") or os.getenv("FLASK_ENV") or "").strip().lower()
    if raw in {"prod", "production"}:
        return "production"
    if raw in {"test", "testing"}:
        return "testing"
    return "development"


def _resolve_config(target: Optional[ConfigLike]) -> ConfigLike:
    """
    Choose config class/module path.
    - If explicitly provided, respect it.
    - Else if FLASK_CONFIG is set, use it.
    - Else choose by APP_ENV/ENV/FLASK_ENV.
    """
    if target is not None:
        return target

    explicit = (os.getenv("FLASK_CONFIG") or "").strip()
    if explicit:
        return explicit

    return CONFIG_BY_NAME[_env_mode()]


def _json_error(message: str, status: int, **extra: Any):
    payload: Dict[str, Any] = {"ok": False, "error": {"code": extra.pop("code", int(status)), "message": str(message)}}
    rid = extra.pop("request_id", None)
    if rid:
        payload["error"]["request_id"] = rid
    if extra:
        payload["error"].update(extra)

    resp = jsonify(payload)
    resp.status_code = int(status)
    return resp


# -----------------------------------------------------------------------------
# Logging with request_id
# -----------------------------------------------------------------------------
class _RequestIDFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        try:
            record.request_id = getattr(g, "request_id", "-")
        except RuntimeError:
            # outside an app/request context (CLI, worker threads)
            record.request_id = "-"
        return True


def _configure_logging(app: Flask) -> None:
    fmt = "%(asctime)s [%(levelname)s] %(name)s [rid=%(request_id)s]: %(message)s"
    root = logging.getLogger()

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt))
        handler.addFilter(_RequestIDFilter())
        root.addHandler(handler)
    else:
        for h in root.handlers:
            h.addFilter(_RequestIDFilter())
            if not getattr(h, "formatter", None) or "%(request_id)s" not in getattr(h.formatter, "_fmt", ""):
                h.setFormatter(logging.Formatter(fmt))

    root.setLevel(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    logging.getLogger("werkzeug").setLevel(str(app.config.get("WERKZEUG_LOG_LEVEL", "WARNING")).upper())
    app.logger.info("Loaded config: ENV=%s DEBUG=%s", app.config.get("ENV", "?"), app.debug)


# -----------------------------------------------------------------------------
# Request lifecycle + errors
# -----------------------------------------------------------------------------
def _register_request_lifecycle(app: Flask) -> None:
    @app.before_request
    def _bootstrap_request():
        g.request_id = request.headers.get("X-Request-ID") or uuid4().hex
        g._start_ts = time.perf_counter()

    @app.after_request
    def _attach_request_headers(resp):
        resp.headers["X-Request-ID"] = getattr(g, "request_id", "-")
        start = getattr(g, "_start_ts", None)
        if start:
            resp.headers["X-Response-Time-ms"] = str(int((time.perf_counter() - start) * 1000))
        return resp


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(GiveCartError)
    def _domain_err(err: GiveCartError):
        if err.status_code >= 500:
            app.logger.error("%s: %s %s", err.code, err.message, err.context)
        return _json_error(
            err.message,
            err.status_code,
            code=err.code,
            transient=err.transient,
            request_id=getattr(g, "request_id", "-"),
        )

    @app.errorhandler(HTTPException)
    def _http_err(err: HTTPException):
        return _json_error(err.description or err.name, err.code or 500, request_id=getattr(g, "request_id", "-"))

    @app.errorhandler(Exception)
    def _uncaught(err: Exception):
        app.logger.exception("Unhandled error")
        return _json_error("Internal Server Error", 500, request_id=getattr(g, "request_id", "-"))


# -----------------------------------------------------------------------------
# Health + blueprints + tables
# -----------------------------------------------------------------------------
def _register_health_endpoints(app: Flask) -> None:
    @app.get("/healthz")
    def _healthz():
        return {
            "status": "ok",
            "env": app.config.get("ENV", "unknown"),
            "request_id": getattr(g, "request_id", "-"),
        }


def _register_blueprints(app: Flask) -> None:
    from givecart.blueprints.causes import bp as causes_bp
    from givecart.blueprints.payments import bp as payments_bp

    app.register_blueprint(payments_bp, url_prefix="/payments")
    app.register_blueprint(causes_bp, url_prefix="/api")


def _maybe_create_sqlite_tables(app: Flask) -> None:
    uri = (app.config.get("SQLALCHEMY_DATABASE_URI") or "").strip()
    if not uri.startswith("sqlite"):
        return
    if app.config.get("AUTO_CREATE_SQLITE", True) is not True:
        return
    with app.app_context():
        import givecart.models  # noqa: F401  (register tables)

        db.create_all()


# -----------------------------------------------------------------------------
# App Factory
# -----------------------------------------------------------------------------
def create_app(config_class: Optional[ConfigLike] = None, **overrides: Any) -> Flask:
    """
    Build the app. ``overrides`` are applied on top of the config class
    (tests use this for a per-test database URI).
    """
    app = Flask(__name__, static_folder=None, template_folder=None)

    # ---- Config loading
    cfg = _resolve_config(config_class)
    cfg_obj = import_string(cfg) if isinstance(cfg, str) else cfg
    app.config.from_object(cfg_obj)
    app.config.update(overrides)

    init_hook = getattr(cfg_obj, "init_app", None)
    if callable(init_hook):
        init_hook(app)

    app.config.setdefault("JSON_SORT_KEYS", False)
    app.url_map.strict_slashes = False

    # ---- Logging
    _configure_logging(app)

    # ---- Core extensions
    init_all_extensions(app, cors_origins=os.getenv("CORS_ORIGINS", "*"))
    _maybe_create_sqlite_tables(app)

    # ---- Request lifecycle / errors
    _register_request_lifecycle(app)
    _register_error_handlers(app)

    # ---- Blueprints + health
    _register_blueprints(app)
    _register_health_endpoints(app)

    # ---- CLI
    from givecart.cli import register_cli

    register_cli(app)

    return app


__all__ = ["create_app"]
