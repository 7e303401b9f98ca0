from __future__ import annotations

from ..extensions import db
from saleflow.time_utils import to_utc_z


ACTIVITY_SEVERITIES = ("info", "warning", "critical")


class ActivityLog(db.Model):
    """
    Activity audit log for sale lifecycle events.

    WHY: Voids and refunds move money back out of the store and must be
    traceable to a person after the fact.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("ix_activity_logs_entity", "entity_type", "entity_id"),
        db.Index("ix_activity_logs_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    action = db.Column(db.String(64), nullable=False, index=True)  # sale.created, sale.voided, ...
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)
    entity_name = db.Column(db.String(255), nullable=True)  # e.g., receipt number

    severity = db.Column(db.String(16), nullable=False, default="info")
    details = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    actor = db.relationship("User", backref=db.backref("activity_logs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "severity": self.severity,
            "details": self.details or {},
            "created_at": to_utc_z(self.created_at),
        }
