from __future__ import annotations

from flask import Blueprint, request

from cotacoes.application.notification_service import NotificationService
from cotacoes.db import get_db
from cotacoes.routes.common import current_actor, respond, tenant


notification_bp = Blueprint("notifications", __name__)

_NOTIFICATION_SERVICE = NotificationService()


@notification_bp.route("/api/notifications", methods=["GET"])
def list_notifications():
    result = _NOTIFICATION_SERVICE.list_notifications(
        get_db(), tenant_id=tenant(), actor=current_actor(), args=request.args
    )
    return respond(result)


@notification_bp.route("/api/notifications/<int:notification_id>/read", methods=["POST"])
def mark_notification_read(notification_id: int):
    db = get_db()
    result = _NOTIFICATION_SERVICE.mark_read(
        db, tenant_id=tenant(), actor=current_actor(), notification_id=notification_id
    )
    db.commit()
    return respond(result)


@notification_bp.route("/api/notifications/read-all", methods=["POST"])
def mark_all_notifications_read():
    db = get_db()
    result = _NOTIFICATION_SERVICE.mark_all_read(db, tenant_id=tenant(), actor=current_actor())
    db.commit()
    return respond(result)


@notification_bp.route("/api/audit-logs", methods=["GET"])
def list_audit_logs():
    result = _NOTIFICATION_SERVICE.list_audit(get_db(), tenant_id=tenant(), actor=current_actor(), args=request.args)
    return respond(result)
