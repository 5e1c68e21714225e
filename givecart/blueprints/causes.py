from __future__ import annotations

from flask import Blueprint, jsonify

from givecart.extensions import db
from givecart.models import Cause

bp = Blueprint("causes", __name__)


@bp.get("/causes/<cause_id>/milestones")
def cause_milestones(cause_id: str):
    """Milestone progress, always derived from the current aggregate."""
    cause = db.session.get(Cause, cause_id)
    if cause is None:
        resp = jsonify({"ok": False, "error": {"code": "cause_not_found", "message": "Cause not found"}})
        resp.status_code = 404
        return resp

    return jsonify(
        {
            "ok": True,
            "cause": cause.as_dict(),
            "milestones": cause.milestones.as_dict(),
        }
    )
