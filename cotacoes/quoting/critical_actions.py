from __future__ import annotations

from typing import Dict, Tuple


CRITICAL_ACTIONS: Dict[str, Dict[str, str]] = {
    "cancel_quote": {
        "action_key": "cancel_quote",
        "confirm_message_key": "cancel_quote",
        "impact_text_key": "impact.cancel_quote",
    },
    "delete_quote": {
        "action_key": "delete_quote",
        "confirm_message_key": "delete_quote",
        "impact_text_key": "impact.delete_quote",
    },
    "approve_proposal": {
        "action_key": "approve_proposal",
        "confirm_message_key": "approve_proposal",
        "impact_text_key": "impact.approve_proposal",
    },
    "confirm_delivery": {
        "action_key": "confirm_delivery",
        "confirm_message_key": "confirm_delivery",
        "impact_text_key": "impact.confirm_delivery",
    },
    "cancel_payment": {
        "action_key": "cancel_payment",
        "confirm_message_key": "cancel_payment",
        "impact_text_key": "impact.cancel_payment",
    },
    "send_campaign": {
        "action_key": "send_campaign",
        "confirm_message_key": "send_campaign",
        "impact_text_key": "impact.send_campaign",
    },
    "cancel_invitation_letter": {
        "action_key": "cancel_invitation_letter",
        "confirm_message_key": "cancel_invitation_letter",
        "impact_text_key": "impact.cancel_invitation_letter",
    },
    "delete_supplier_document": {
        "action_key": "delete_supplier_document",
        "confirm_message_key": "delete_supplier_document",
        "impact_text_key": "impact.delete_supplier_document",
    },
}


_TRUE_TEXT_VALUES = {"1", "true", "yes", "on", "sim"}


def get_critical_action(action_key: str | None) -> Dict[str, str] | None:
    if not action_key:
        return None
    return CRITICAL_ACTIONS.get(str(action_key).strip())


def is_critical_action(action_key: str | None) -> bool:
    return get_critical_action(action_key) is not None


def _is_explicit_true(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value) == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_TEXT_VALUES
    return False


def resolve_confirmation(request_obj, payload: dict | None = None) -> Tuple[bool, str]:
    payload_dict = payload if isinstance(payload, dict) else {}

    confirm_token = (
        payload_dict.get("confirm_token")
        or request_obj.args.get("confirm_token")
        or request_obj.headers.get("X-Confirm-Token")
    )
    if isinstance(confirm_token, str) and confirm_token.strip():
        return True, "confirm_token"

    confirm_value = payload_dict.get("confirm")
    if confirm_value is None:
        confirm_value = request_obj.args.get("confirm")
    if confirm_value is None:
        confirm_value = request_obj.headers.get("X-Confirm")

    if _is_explicit_true(confirm_value):
        return True, "confirm_flag"

    return False, "missing_confirmation"
