from __future__ import annotations

from ..extensions import db
from kasse.time_utils import utcnow


class SoftDeleteMixin:
    """
    Lifecycle flag shared by every entity that is never physically removed.

    Financial rows (invoices, payments, registers, devices) are deactivated,
    not deleted. Query them through `active(Model)` so the filter lives in one place.
    """
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    deactivated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def deactivate(self) -> None:
        self.is_active = False
        self.deactivated_at = utcnow()


def active(model):
    """Query scoped to rows whose lifecycle flag is still active."""
    return db.session.query(model).filter(model.is_active.is_(True))
