from __future__ import annotations

from givecart.extensions import db
from givecart.models.audit_log import AuditLog
from givecart.models.cause import Cause
from givecart.models.donation import Donation
from givecart.models.order import ORDER_STATUSES, Order

__all__ = ["db", "AuditLog", "Cause", "Donation", "Order", "ORDER_STATUSES"]
