import logging
import os
import time
from typing import Any, Callable, Dict, Optional

from blinker import Namespace
from flask_migrate import Migrate
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.exc import OperationalError

log = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Core singletons
# ─────────────────────────────────────────────────────────────
db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=os.getenv("SOCKET_ASYNC_MODE", "threading"))


# ─────────────────────────────────────────────────────────────
# Safe DB helpers
# ─────────────────────────────────────────────────────────────
def safe_commit() -> bool:
    try:
        db.session.commit()
        return True
    except Exception as e:
        log.error("DB commit failed: %s", e, exc_info=True)
        db.session.rollback()
        return False


def retry_on_db_lock(fn: Callable[[], Any], *, attempts: int = 6) -> Any:
    """Run ``fn`` and retry with short backoff while SQLite reports a lock."""
    last_err: Optional[Exception] = None
    for i in range(attempts):
        try:
            return fn()
        except OperationalError as e:
            last_err = e
            db.session.rollback()
            msg = str(e).lower()
            if ("database is locked" in msg) or ("sqlite_busy" in msg):
                time.sleep(0.05 * (i + 1))
                continue
            raise
    assert last_err is not None
    raise last_err


# ─────────────────────────────────────────────────────────────
# Lightweight signals + safe socket emit
# ─────────────────────────────────────────────────────────────
_signals = Namespace()
milestone_crossed = _signals.signal("milestone-crossed")


def emit_socket(event: str, data: Optional[Dict[str, Any]] = None, room: Optional[str] = None) -> bool:
    try:
        socketio.emit(event, data or {}, to=room)
        return True
    except Exception as e:
        log.warning("socket emit failed: %s", e)
        return False


# ─────────────────────────────────────────────────────────────
# Init all extensions
# ─────────────────────────────────────────────────────────────
def init_all_extensions(app: Any, *, cors_origins: Any = "*") -> None:
    db.init_app(app)
    migrate.init_app(app, db, compare_type=True, render_as_batch=True)
    socketio.init_app(app, cors_allowed_origins=cors_origins)


__all__ = [
    "db",
    "migrate",
    "socketio",
    "safe_commit",
    "retry_on_db_lock",
    "milestone_crossed",
    "emit_socket",
    "init_all_extensions",
]
