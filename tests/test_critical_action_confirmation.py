import unittest

from cotacoes.quoting.critical_actions import CRITICAL_ACTIONS
from cotacoes.ui_strings import confirm_message, error_message
from tests.helpers.api_case import ApiTestCase


class CriticalActionConfirmationTest(ApiTestCase):
    sandbox_prefix = "critical_confirm"
    tenant_id = "tenant-confirm"

    def _pending_proposal(self) -> int:
        supplier_id = self.create_supplier()
        quote_id = self.create_quote()
        self.send_quote(quote_id, [supplier_id])
        return self.submit_proposal(quote_id, supplier_id, 980.0)

    def _assert_confirmation_required(self, response, action_key: str) -> None:
        self.assertEqual(response.status_code, 400)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "confirmation_required")
        self.assertEqual(payload.get("message"), error_message("confirmation_required"))
        self.assertEqual(payload.get("action"), action_key)
        confirmation = payload.get("confirmation") or {}
        self.assertEqual(confirmation.get("action_key"), action_key)
        self.assertEqual(confirmation.get("confirm_message"), confirm_message(action_key, action_key))
        self.assertTrue(confirmation.get("impact"))
        self.assertTrue(payload.get("request_id"))

    def test_every_critical_action_has_texts(self) -> None:
        for action_key, meta in CRITICAL_ACTIONS.items():
            self.assertEqual(meta["action_key"], action_key)
            self.assertNotEqual(confirm_message(meta["confirm_message_key"], ""), "")

    def test_approve_without_confirmation_fails(self) -> None:
        response_id = self._pending_proposal()
        response = self.client.post(f"/api/proposals/{response_id}/approve", headers=self.headers, json={})
        self._assert_confirmation_required(response, "approve_proposal")

    def test_approve_with_confirm_flag_in_body(self) -> None:
        response_id = self._pending_proposal()
        response = self.client.post(
            f"/api/proposals/{response_id}/approve", headers=self.headers, json={"confirm": True}
        )
        self.assertEqual(response.status_code, 200, response.get_json())

    def test_approve_with_confirm_token_header(self) -> None:
        response_id = self._pending_proposal()
        headers = dict(self.headers)
        headers["X-Confirm-Token"] = "ok-123"
        response = self.client.post(f"/api/proposals/{response_id}/approve", headers=headers)
        self.assertEqual(response.status_code, 200, response.get_json())

    def test_approve_with_confirm_query_string(self) -> None:
        response_id = self._pending_proposal()
        response = self.client.post(f"/api/proposals/{response_id}/approve?confirm=sim", headers=self.headers)
        self.assertEqual(response.status_code, 200, response.get_json())

    def test_false_confirm_flag_is_not_accepted(self) -> None:
        response_id = self._pending_proposal()
        response = self.client.post(
            f"/api/proposals/{response_id}/approve", headers=self.headers, json={"confirm": "nao"}
        )
        self._assert_confirmation_required(response, "approve_proposal")

    def test_delete_draft_quote_asks_for_delete_confirmation(self) -> None:
        quote_id = self.create_quote()
        response = self.client.delete(f"/api/quotes/{quote_id}", headers=self.headers)
        self._assert_confirmation_required(response, "delete_quote")

    def test_cancel_sent_quote_asks_for_cancel_confirmation(self) -> None:
        supplier_id = self.create_supplier()
        quote_id = self.create_quote()
        self.send_quote(quote_id, [supplier_id])

        via_delete = self.client.delete(f"/api/quotes/{quote_id}", headers=self.headers)
        self._assert_confirmation_required(via_delete, "cancel_quote")

        via_status = self.client.post(
            f"/api/quotes/{quote_id}/status", headers=self.headers, json={"status": "cancelled"}
        )
        self._assert_confirmation_required(via_status, "cancel_quote")

        headers = dict(self.headers)
        headers["X-Confirm"] = "true"
        confirmed = self.client.post(
            f"/api/quotes/{quote_id}/status", headers=headers, json={"status": "cancelled", "reason": "Obra adiada"}
        )
        self.assertEqual(confirmed.status_code, 200, confirmed.get_json())
        self.assertEqual(confirmed.get_json()["status"], "cancelled")

    def test_non_critical_status_change_needs_no_confirmation(self) -> None:
        supplier_id = self.create_supplier()
        quote_id = self.create_quote()
        self.send_quote(quote_id, [supplier_id])
        response = self.client.post(f"/api/quotes/{quote_id}/status", headers=self.headers, json={"status": "received"})
        self.assertEqual(response.status_code, 200, response.get_json())


if __name__ == "__main__":
    unittest.main()
