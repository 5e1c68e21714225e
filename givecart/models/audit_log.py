from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import Index
from sqlalchemy.orm import Mapped, mapped_column

from givecart.extensions import db
from givecart.models.mixins import CreatedAtMixin


class AuditLog(db.Model, CreatedAtMixin):
    """Append-only forensic trail (webhook receipts, failures)."""

    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_log_entity", "entity_type", "entity_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    action: Mapped[str] = mapped_column(db.String(80), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(db.String(40), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(db.String(120), nullable=True)

    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(db.JSON, nullable=True)

    @classmethod
    def record(
        cls,
        action: str,
        *,
        entity_type: str,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> "AuditLog":
        entry = cls(action=action[:80], entity_type=entity_type[:40], entity_id=(entity_id or None), details=details)
        db.session.add(entry)
        return entry

    def __repr__(self) -> str:  # pragma: no cover
        return f"<AuditLog {self.action} {self.entity_type}:{self.entity_id}>"
