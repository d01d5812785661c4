from __future__ import annotations

from typing import Dict, List

from cotacoes.ui_strings import status_label


QUOTE_STAGE = "cotacao"

PROCESS_STAGES: List[Dict[str, str]] = [
    {"key": "cotacao", "label": "Cotacao"},
    {"key": "aprovacao", "label": "Aprovacao"},
    {"key": "pagamento", "label": "Pagamento"},
    {"key": "entrega", "label": "Entrega"},
]


ACTION_LABELS: Dict[str, str] = {
    "edit_quote": "Editar cotacao",
    "send_to_suppliers": "Enviar aos fornecedores",
    "delete_quote": "Excluir rascunho",
    "cancel_quote": "Cancelar cotacao",
    "submit_proposal": "Enviar proposta",
    "approve_proposal": "Aprovar proposta",
    "reject_proposal": "Rejeitar proposta",
    "request_approval": "Enviar para aprovacao",
    "decide_approval": "Decidir aprovacao",
    "reopen_quote": "Reabrir cotacao",
    "create_payment": "Gerar pagamento",
    "finalize_quote": "Finalizar cotacao",
    "create_invitation_letter": "Gerar carta convite",
    "view_quote": "Ver cotacao",
    "confirm_delivery": "Confirmar entrega",
    "open_dispute": "Abrir disputa",
    "cancel_payment": "Cancelar pagamento",
    "validate_document": "Validar documento",
    "reject_document": "Rejeitar documento",
    "edit_letter": "Editar carta",
    "send_letter": "Enviar carta",
    "cancel_letter": "Cancelar carta",
    "delete_letter": "Excluir carta",
    "edit_campaign": "Editar campanha",
    "send_campaign": "Enviar campanha",
}


# Allowed status changes for quotes. Terminal statuses map to an empty set.
QUOTE_TRANSITIONS: Dict[str, set[str]] = {
    "draft": {"sent", "cancelled"},
    "sent": {"receiving", "received", "cancelled"},
    "receiving": {"received", "under_review", "approved", "cancelled"},
    "received": {"receiving", "under_review", "approved", "rejected", "cancelled"},
    "under_review": {"approved", "rejected", "cancelled"},
    "approved": {"finalized"},
    "rejected": {"draft", "cancelled"},
    "finalized": set(),
    "cancelled": set(),
}

TERMINAL_QUOTE_STATUSES = {"finalized", "cancelled"}

# Transitions performed by the system rather than by a user action.
AUTOMATED_TRANSITIONS = {
    ("sent", "receiving"),
    ("receiving", "under_review"),
    ("received", "under_review"),
    ("under_review", "approved"),
    ("under_review", "rejected"),
}

# Targets a user may set through the status endpoint. Approval and review
# statuses only come from the approval workflow.
MANUAL_QUOTE_TARGETS = {"received", "draft", "cancelled"}


FLOW_POLICY: Dict[str, Dict[str, Dict[str, object]]] = {
    "cotacao": {
        "draft": {
            "allowed_actions": [
                "edit_quote",
                "send_to_suppliers",
                "delete_quote",
                "create_invitation_letter",
                "view_quote",
            ],
            "primary_action": "send_to_suppliers",
        },
        "sent": {
            "allowed_actions": [
                "send_to_suppliers",
                "submit_proposal",
                "cancel_quote",
                "create_invitation_letter",
                "view_quote",
            ],
            "primary_action": "view_quote",
        },
        "receiving": {
            "allowed_actions": [
                "send_to_suppliers",
                "submit_proposal",
                "approve_proposal",
                "reject_proposal",
                "request_approval",
                "cancel_quote",
                "view_quote",
            ],
            "primary_action": "approve_proposal",
        },
        "received": {
            "allowed_actions": [
                "approve_proposal",
                "reject_proposal",
                "request_approval",
                "cancel_quote",
                "view_quote",
            ],
            "primary_action": "approve_proposal",
        },
        "under_review": {
            "allowed_actions": ["decide_approval", "cancel_quote", "view_quote"],
            "primary_action": "decide_approval",
        },
        "approved": {
            "allowed_actions": ["create_payment", "finalize_quote", "view_quote"],
            "primary_action": "create_payment",
        },
        "rejected": {
            "allowed_actions": ["reopen_quote", "cancel_quote", "view_quote"],
            "primary_action": "reopen_quote",
        },
        "finalized": {
            "allowed_actions": ["view_quote"],
            "primary_action": "view_quote",
        },
        "cancelled": {
            "allowed_actions": ["view_quote"],
            "primary_action": "view_quote",
        },
    },
    "pagamento": {
        "pending": {
            "allowed_actions": ["cancel_payment"],
            "primary_action": "cancel_payment",
        },
        "in_escrow": {
            "allowed_actions": ["confirm_delivery", "open_dispute"],
            "primary_action": "confirm_delivery",
        },
        "overdue": {
            "allowed_actions": ["cancel_payment"],
            "primary_action": "cancel_payment",
        },
    },
    "documento": {
        "pending": {
            "allowed_actions": ["validate_document", "reject_document"],
            "primary_action": "validate_document",
        },
    },
    "carta_convite": {
        "draft": {
            "allowed_actions": ["edit_letter", "send_letter", "cancel_letter", "delete_letter"],
            "primary_action": "send_letter",
        },
        "sent": {
            "allowed_actions": ["cancel_letter"],
            "primary_action": None,
        },
    },
    "campanha": {
        "draft": {
            "allowed_actions": ["edit_campaign", "send_campaign"],
            "primary_action": "send_campaign",
        },
        "failed": {
            "allowed_actions": ["edit_campaign", "send_campaign"],
            "primary_action": "send_campaign",
        },
    },
}


def _fallback_policy() -> Dict[str, object]:
    return {"allowed_actions": [], "primary_action": None}


def status_policy(stage: str, status: str | None) -> Dict[str, object]:
    if not status:
        return _fallback_policy()
    return FLOW_POLICY.get(stage, {}).get(str(status), _fallback_policy())


def allowed_actions(stage: str, status: str | None) -> List[str]:
    actions = status_policy(stage, status).get("allowed_actions") or []
    if not isinstance(actions, list):
        return []
    return [str(action) for action in actions]


def primary_action(stage: str, status: str | None) -> str | None:
    action = status_policy(stage, status).get("primary_action")
    if not action:
        return None
    return str(action)


def action_allowed(stage: str, status: str | None, action: str) -> bool:
    if not action:
        return False
    return action in set(allowed_actions(stage, status))


def action_label(action: str, fallback: str | None = None) -> str:
    label = ACTION_LABELS.get(action)
    if label:
        return label
    if fallback is not None:
        return fallback
    return action


def flow_meta(stage: str, status: str | None) -> Dict[str, object]:
    return {
        "stage": stage,
        "status": status,
        "allowed_actions": allowed_actions(stage, status),
        "primary_action": primary_action(stage, status),
    }


def can_transition(from_status: str | None, to_status: str | None) -> bool:
    if not from_status or not to_status:
        return False
    return str(to_status) in QUOTE_TRANSITIONS.get(str(from_status), set())


def is_manual_transition(from_status: str | None, to_status: str | None) -> bool:
    if (str(from_status or ""), str(to_status or "")) in AUTOMATED_TRANSITIONS:
        return False
    return str(to_status or "") in MANUAL_QUOTE_TARGETS and can_transition(from_status, to_status)


def next_quote_statuses(status: str | None) -> List[str]:
    return sorted(QUOTE_TRANSITIONS.get(str(status or ""), set()))


def build_process_steps(current_stage: str) -> List[Dict[str, object]]:
    current_index = 0
    for idx, item in enumerate(PROCESS_STAGES):
        if item["key"] == current_stage:
            current_index = idx
            break
    steps: List[Dict[str, object]] = []
    for idx, item in enumerate(PROCESS_STAGES):
        if idx < current_index:
            state = "done"
        elif idx == current_index:
            state = "current"
        else:
            state = "upcoming"
        steps.append({"key": item["key"], "label": item["label"], "state": state})
    return steps


def stage_for_quote_status(status: str | None) -> str:
    if status == "under_review":
        return "aprovacao"
    if status in {"approved", "finalized"}:
        return "pagamento"
    return "cotacao"


def status_flow(status: str | None) -> List[Dict[str, object]]:
    current = str(status or "")
    return [
        {
            "status": next_status,
            "label": status_label(QUOTE_STAGE, next_status),
            "automated": (current, next_status) in AUTOMATED_TRANSITIONS,
            "manual": is_manual_transition(current, next_status),
        }
        for next_status in next_quote_statuses(current)
    ]
