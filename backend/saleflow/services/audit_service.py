# Overview: Best-effort activity log for sale lifecycle events.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import ActivityLog
from ..models.audit import ACTIVITY_SEVERITIES


def record(
    *,
    actor_user_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int | None,
    entity_name: str | None = None,
    severity: str = "info",
    details: dict | None = None,
) -> ActivityLog | None:
    """
    Append an activity entry in its own commit.

    Called after the business transaction has committed. A failure here is
    rolled back and logged; it never reaches the caller, because the sale it
    describes is already durable.
    """
    if not current_app.config.get("AUDIT_LOG_ENABLED", True):
        return None
    if severity not in ACTIVITY_SEVERITIES:
        severity = "info"

    try:
        entry = ActivityLog(
            actor_user_id=actor_user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            severity=severity,
            details=details or {},
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Failed to write activity log %s for %s %s", action, entity_type, entity_id, exc_info=True
        )
        return None


def list_activity(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    action: str | None = None,
    limit: int = 50,
) -> list[ActivityLog]:
    query = db.session.query(ActivityLog)
    if entity_type:
        query = query.filter(ActivityLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(ActivityLog.entity_id == entity_id)
    if action:
        query = query.filter(ActivityLog.action == action)
    return query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()
