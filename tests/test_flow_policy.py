import unittest

from cotacoes.quoting.flow_policy import (
    FLOW_POLICY,
    QUOTE_TRANSITIONS,
    TERMINAL_QUOTE_STATUSES,
    action_allowed,
    action_label,
    allowed_actions,
    build_process_steps,
    can_transition,
    flow_meta,
    is_manual_transition,
    next_quote_statuses,
    primary_action,
    stage_for_quote_status,
    status_flow,
)
from cotacoes.ui_strings import status_keys_for_group


class FlowPolicyTest(unittest.TestCase):
    def test_every_quote_status_has_a_policy(self) -> None:
        for status in status_keys_for_group("cotacao"):
            self.assertIn(status, FLOW_POLICY["cotacao"], f"status sem policy: {status}")
            self.assertIn(status, QUOTE_TRANSITIONS, f"status sem transicoes: {status}")

    def test_primary_action_is_always_allowed(self) -> None:
        for stage, statuses in FLOW_POLICY.items():
            for status in statuses:
                primary = primary_action(stage, status)
                if primary:
                    self.assertTrue(action_allowed(stage, status, primary), f"{stage}:{status}:{primary}")

    def test_actions_have_labels(self) -> None:
        for stage, statuses in FLOW_POLICY.items():
            for status in statuses:
                for action in allowed_actions(stage, status):
                    self.assertNotEqual(action_label(action), action, f"acao sem label: {action}")

    def test_unknown_status_falls_back_to_no_actions(self) -> None:
        self.assertEqual(allowed_actions("cotacao", "inexistente"), [])
        self.assertIsNone(primary_action("cotacao", None))
        self.assertFalse(action_allowed("cotacao", "draft", ""))

    def test_quote_transitions(self) -> None:
        self.assertTrue(can_transition("draft", "sent"))
        self.assertTrue(can_transition("rejected", "draft"))
        self.assertFalse(can_transition("draft", "approved"))
        self.assertFalse(can_transition("approved", "cancelled"))
        self.assertFalse(can_transition(None, "sent"))
        for status in TERMINAL_QUOTE_STATUSES:
            self.assertEqual(next_quote_statuses(status), [])

    def test_status_flow_marks_automated_steps(self) -> None:
        flow = {item["status"]: item for item in status_flow("sent")}
        self.assertTrue(flow["receiving"]["automated"])
        self.assertFalse(flow["cancelled"]["automated"])
        self.assertTrue(flow["cancelled"]["manual"])
        self.assertFalse(flow["receiving"]["manual"])
        self.assertTrue(flow["cancelled"]["label"])

    def test_only_user_driven_targets_are_manual(self) -> None:
        self.assertFalse(is_manual_transition("received", "received"))
        self.assertTrue(is_manual_transition("receiving", "received"))
        self.assertTrue(is_manual_transition("rejected", "draft"))
        self.assertFalse(is_manual_transition("received", "approved"))
        self.assertFalse(is_manual_transition("receiving", "under_review"))
        self.assertFalse(is_manual_transition("received", "rejected"))
        self.assertFalse(is_manual_transition("draft", "received"))

    def test_process_steps(self) -> None:
        steps = build_process_steps(stage_for_quote_status("under_review"))
        self.assertEqual([step["state"] for step in steps], ["done", "current", "upcoming", "upcoming"])
        self.assertEqual(stage_for_quote_status("approved"), "pagamento")
        self.assertEqual(stage_for_quote_status("draft"), "cotacao")

    def test_flow_meta(self) -> None:
        meta = flow_meta("pagamento", "in_escrow")
        self.assertEqual(meta["primary_action"], "confirm_delivery")
        self.assertIn("open_dispute", meta["allowed_actions"])


if __name__ == "__main__":
    unittest.main()
