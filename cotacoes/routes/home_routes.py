from flask import Blueprint, jsonify

from cotacoes.quoting.critical_actions import CRITICAL_ACTIONS
from cotacoes.quoting.flow_policy import ACTION_LABELS, PROCESS_STAGES, build_process_steps
from cotacoes.routes.common import critical_confirmation_details, current_actor, tenant
from cotacoes.ui_strings import frontend_bundle


home_bp = Blueprint("home", __name__)


@home_bp.route("/")
def home():
    actor = current_actor()
    return jsonify(
        {
            "tenant_id": tenant(),
            "user": {"email": actor.email, "role": actor.role, "supplier_id": actor.supplier_id},
            "process_stage": PROCESS_STAGES[0]["key"],
            "process_steps": build_process_steps(PROCESS_STAGES[0]["key"]),
        }
    )


@home_bp.route("/api/ui-strings")
def ui_strings():
    bundle = frontend_bundle()
    bundle["actions"] = dict(ACTION_LABELS)
    bundle["critical_actions"] = {key: critical_confirmation_details(key) for key in CRITICAL_ACTIONS}
    return jsonify(bundle)
