from __future__ import annotations

from typing import Any, Dict

from cotacoes.core import DomainEvent, EventBus, get_event_bus
from cotacoes.domain.contracts import Actor
from cotacoes.errors import ConflictError, NotFoundError, ValidationError
from cotacoes.infrastructure.repositories.quoting import AuditLogRepository, StatusEventRepository
from cotacoes.policies import MANAGER_ROLES, STAFF_ROLES, require_roles
from cotacoes.quoting.flow_policy import allowed_actions, primary_action
from cotacoes.ui_strings import success_message


class ApplicationService:
    """Shared plumbing for the application services (events, audit, guards)."""

    def __init__(self, event_bus: EventBus | None = None) -> None:
        self.event_bus = event_bus or get_event_bus()

    def _publish(self, event: DomainEvent) -> None:
        self.event_bus.publish(event)

    @staticmethod
    def _audit(
        db,
        tenant_id: str,
        actor: Actor | None,
        *,
        action: str,
        entity: str,
        entity_id: int | None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        AuditLogRepository(tenant_id=tenant_id).record(
            db,
            action=action,
            entity=entity,
            entity_id=entity_id,
            user_email=actor.email if actor else None,
            details=details,
        )

    @staticmethod
    def _status_event(
        db,
        tenant_id: str,
        *,
        entity: str,
        entity_id: int,
        from_status: str | None,
        to_status: str,
        reason: str,
    ) -> None:
        StatusEventRepository(tenant_id=tenant_id).add_event(
            db,
            entity=entity,
            entity_id=entity_id,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
        )

    @staticmethod
    def _ok(key: str) -> str:
        return success_message(key)

    @staticmethod
    def _not_found(code: str, **payload) -> NotFoundError:
        return NotFoundError(code=code, message_key=code, payload=payload)

    @staticmethod
    def _invalid(code: str, http_status: int = 400, **payload) -> ValidationError:
        return ValidationError(code=code, message_key=code, http_status=http_status, payload=payload)

    @staticmethod
    def _conflict(code: str, **payload) -> ConflictError:
        return ConflictError(code=code, message_key=code, payload=payload)

    @staticmethod
    def _forbidden_action(stage: str, status: str | None, action: str) -> ConflictError:
        return ConflictError(
            code="action_not_allowed_for_status",
            message_key="action_not_allowed_for_status",
            payload={
                "stage": stage,
                "status": status,
                "action": action,
                "allowed_actions": allowed_actions(stage, status),
                "primary_action": primary_action(stage, status),
            },
        )

    @staticmethod
    def _require_staff(actor: Actor) -> None:
        require_roles(*STAFF_ROLES, role=actor.role)

    @staticmethod
    def _require_manager(actor: Actor) -> None:
        require_roles(*MANAGER_ROLES, role=actor.role)
