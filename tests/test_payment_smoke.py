import unittest
from unittest.mock import patch

from cotacoes.application.payment_service import PaymentService
from cotacoes.db import get_db
from cotacoes.domain.contracts import Actor
from cotacoes.errors import SystemError
from tests.helpers.api_case import MANAGER_EMAIL, ApiTestCase


WEBHOOK_TOKEN = "webhook-secret"


class PaymentEscrowSmokeTest(ApiTestCase):
    sandbox_prefix = "payment_smoke"
    tenant_id = "tenant-payments"
    config_overrides = {"PAYMENT_WEBHOOK_TOKEN": WEBHOOK_TOKEN, "ESCROW_HOLD_DAYS": 7}

    def _create_payment(self) -> dict:
        quote_id, supplier_id, _ = self.approved_quote(amount=1500.0)
        response = self.client.post("/api/payments", headers=self.headers, json={"quote_id": quote_id})
        self.assertEqual(response.status_code, 201, response.get_json())
        payment = response.get_json()
        self.assertEqual(payment["supplier_id"], supplier_id)
        return payment

    def _webhook(self, reference: str, event: str = "PAYMENT_RECEIVED", token: str | None = WEBHOOK_TOKEN):
        headers = {"X-Webhook-Token": token} if token is not None else {}
        return self.client.post(
            "/api/webhooks/payments",
            headers=headers,
            json={"event": event, "payment": {"externalReference": reference}},
        )

    def _payment_in_escrow(self) -> tuple[dict, str]:
        payment = self._create_payment()
        webhook = self._webhook(payment["external_reference"])
        self.assertEqual(webhook.status_code, 200, webhook.get_json())
        detail = self.client.get(f"/api/payments/{payment['id']}", headers=self.headers).get_json()
        return detail, detail["confirmation"]["confirmation_code"]

    def test_payment_requires_approved_quote(self) -> None:
        quote_id = self.create_quote()
        response = self.client.post("/api/payments", headers=self.headers, json={"quote_id": quote_id})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()["error"], "payment_quote_not_approved")

    def test_created_payment_is_pending_with_reference(self) -> None:
        payment = self._create_payment()
        self.assertEqual(payment["status"], "pending")
        self.assertEqual(payment["external_reference"], f"pay_{self.tenant_id}_{payment['id']}")
        self.assertEqual(float(payment["amount"]), 1500.0)
        self.assertIn("cancel_payment", payment["flow"]["allowed_actions"])

        duplicate = self.client.post("/api/payments", headers=self.headers, json={"quote_id": payment["quote_id"]})
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.get_json()["error"], "payment_already_exists")

    def test_webhook_moves_payment_to_escrow_and_issues_code(self) -> None:
        payment = self._create_payment()
        response = self._webhook(payment["external_reference"])
        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertFalse(payload["ignored"])
        self.assertEqual(payload["status"], "in_escrow")
        self.assertEqual(payload["payment_id"], payment["id"])
        self.assertTrue(payload["delivery_id"])
        self.assertTrue(payload["code_expires_at"])

        detail = self.client.get(f"/api/payments/{payment['id']}", headers=self.headers).get_json()
        self.assertEqual(detail["status"], "in_escrow")
        self.assertEqual(len(detail["confirmation"]["confirmation_code"]), 6)
        self.assertEqual(detail["delivery"]["status"], "scheduled")
        transaction_types = [row["transaction_type"] for row in detail["transactions"]]
        self.assertIn("payment_received", transaction_types)

        repeated = self._webhook(payment["external_reference"])
        self.assertTrue(repeated.get_json()["ignored"])

    def test_webhook_token_and_payload_checks(self) -> None:
        payment = self._create_payment()
        self.assertEqual(self._webhook(payment["external_reference"], token=None).status_code, 401)
        self.assertEqual(self._webhook(payment["external_reference"], token="wrong").status_code, 401)

        unknown_event = self._webhook(payment["external_reference"], event="PAYMENT_CREATED")
        self.assertEqual(unknown_event.status_code, 200)
        self.assertTrue(unknown_event.get_json()["ignored"])

        unknown_ref = self._webhook("pay_tenant-x_999")
        self.assertEqual(unknown_ref.status_code, 404)

        malformed = self.client.post(
            "/api/webhooks/payments",
            headers={"X-Webhook-Token": WEBHOOK_TOKEN},
            json={"event": "PAYMENT_RECEIVED"},
        )
        self.assertEqual(malformed.status_code, 400)

    def test_confirm_delivery_releases_escrow_once(self) -> None:
        payment, code = self._payment_in_escrow()

        unconfirmed = self.client.post("/api/deliveries/confirm", headers=self.headers, json={"code": code})
        self.assertEqual(unconfirmed.status_code, 400)
        self.assertEqual(unconfirmed.get_json()["action"], "confirm_delivery")

        confirmed = self.client.post(
            "/api/deliveries/confirm", headers=self.headers, json={"code": code, "confirm": True}
        )
        self.assertEqual(confirmed.status_code, 200, confirmed.get_json())
        body = confirmed.get_json()
        self.assertTrue(body["success"])
        self.assertEqual(body["payment"]["status"], "completed")
        self.assertEqual(body["delivery_id"], payment["delivery"]["id"])

        reused = self.client.post(
            "/api/deliveries/confirm", headers=self.headers, json={"code": code, "confirm": True}
        )
        self.assertEqual(reused.status_code, 400)
        self.assertEqual(reused.get_json()["error"], "CODE_ALREADY_USED")

        detail = self.client.get(f"/api/payments/{payment['id']}", headers=self.headers).get_json()
        self.assertEqual(detail["delivery"]["status"], "delivered")
        transaction_types = [row["transaction_type"] for row in detail["transactions"]]
        self.assertIn("funds_released", transaction_types)

    def test_confirm_delivery_rejects_unknown_code_and_suppliers(self) -> None:
        payment, code = self._payment_in_escrow()

        unknown = self.client.post(
            "/api/deliveries/confirm", headers=self.headers, json={"code": "12", "confirm": True}
        )
        self.assertEqual(unknown.status_code, 404)
        self.assertEqual(unknown.get_json()["error"], "CODE_NOT_FOUND")

        self.login_supplier(payment["supplier_id"])
        supplier = self.client.post(
            "/api/deliveries/confirm", headers=self.headers, json={"code": code, "confirm": True}
        )
        self.assertEqual(supplier.status_code, 403)
        self.assertEqual(supplier.get_json()["error"], "PERMISSION_DENIED")

        supplier_view = self.client.get(f"/api/payments/{payment['id']}", headers=self.headers).get_json()
        self.assertNotIn("confirmation", supplier_view)

        self.login_manager()
        with self.client.session_transaction() as sess:
            sess["tenant_id"] = "tenant-elsewhere"
        other_tenant = self.client.post("/api/deliveries/confirm", json={"code": code, "confirm": True})
        self.assertEqual(other_tenant.status_code, 403)

        self.login_manager()
        still_open = self.client.get(f"/api/payments/{payment['id']}", headers=self.headers).get_json()
        self.assertEqual(still_open["status"], "in_escrow")

    def test_regenerated_code_confirms_delivery(self) -> None:
        payment, _ = self._payment_in_escrow()
        response = self.client.post(f"/api/payments/{payment['id']}/delivery-code", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        new_code = response.get_json()["confirmation_code"]

        confirmed = self.client.post(
            "/api/deliveries/confirm", headers=self.headers, json={"code": new_code, "confirm": True}
        )
        self.assertEqual(confirmed.status_code, 200)

    def test_expired_code_is_refused(self) -> None:
        payment, code = self._payment_in_escrow()
        with self.app.app_context():
            db = get_db()
            db.execute(
                "UPDATE delivery_confirmations SET expires_at = ? WHERE confirmation_code = ?",
                ("2001-01-01T00:00:00+00:00", code),
            )
            db.commit()

        expired = self.client.post(
            "/api/deliveries/confirm", headers=self.headers, json={"code": code, "confirm": True}
        )
        self.assertEqual(expired.status_code, 400)
        self.assertEqual(expired.get_json()["error"], "CODE_EXPIRED")
        self.assertEqual(expired.get_json()["expired_at"], "2001-01-01T00:00:00+00:00")

        detail = self.client.get(f"/api/payments/{payment['id']}", headers=self.headers).get_json()
        self.assertEqual(detail["status"], "in_escrow")

    def test_code_from_another_tenant_is_denied(self) -> None:
        _, code = self._payment_in_escrow()
        with self.client.session_transaction() as sess:
            sess["tenant_id"] = "tenant-vizinho"
        foreign = self.client.post("/api/deliveries/confirm", json={"code": code, "confirm": True})
        self.assertEqual(foreign.status_code, 403)
        self.assertEqual(foreign.get_json()["error"], "PERMISSION_DENIED")

    def test_failed_release_reverts_code_confirmation(self) -> None:
        payment, code = self._payment_in_escrow()
        with self.app.app_context():
            db = get_db()
            with patch.object(PaymentService, "_release_escrow", side_effect=RuntimeError("gateway fora")):
                with self.assertRaises(SystemError):
                    PaymentService().confirm_delivery(
                        db, tenant_id=self.tenant_id, actor=Actor(email=MANAGER_EMAIL, role="manager"), code=code
                    )
            row = db.execute(
                "SELECT is_used, used_at FROM delivery_confirmations WHERE confirmation_code = ?", (code,)
            ).fetchone()
            self.assertEqual(int(row["is_used"]), 0)
            self.assertIsNone(row["used_at"])
            db.rollback()

        with patch.object(PaymentService, "_release_escrow", side_effect=RuntimeError("gateway fora")):
            failed = self.client.post(
                "/api/deliveries/confirm", headers=self.headers, json={"code": code, "confirm": True}
            )
        self.assertEqual(failed.status_code, 500)
        self.assertEqual(failed.get_json()["error"], "escrow_release_failed")

        retried = self.client.post(
            "/api/deliveries/confirm", headers=self.headers, json={"code": code, "confirm": True}
        )
        self.assertEqual(retried.status_code, 200, retried.get_json())
        self.assertEqual(retried.get_json()["payment"]["id"], payment["id"])

    def test_overdue_and_refund_webhooks(self) -> None:
        payment = self._create_payment()
        reference = payment["external_reference"]

        overdue = self._webhook(reference, event="PAYMENT_OVERDUE")
        self.assertEqual(overdue.status_code, 200)
        self.assertEqual(overdue.get_json()["status"], "overdue")
        self.assertTrue(self._webhook(reference, event="PAYMENT_OVERDUE").get_json()["ignored"])

        paid_late = self._webhook(reference, event="PAYMENT_CONFIRMED")
        self.assertEqual(paid_late.get_json()["status"], "in_escrow")

        refunded = self._webhook(reference, event="PAYMENT_REFUNDED")
        self.assertEqual(refunded.status_code, 200)
        self.assertFalse(refunded.get_json()["ignored"])
        self.assertEqual(refunded.get_json()["status"], "refunded")

        detail = self.client.get(f"/api/payments/{payment['id']}", headers=self.headers).get_json()
        self.assertEqual(detail["status"], "refunded")
        self.assertIn("payment_refunded", [row["transaction_type"] for row in detail["transactions"]])
        self.assertTrue(self._webhook(reference, event="PAYMENT_REFUNDED").get_json()["ignored"])
        self.assertTrue(self._webhook(reference, event="PAYMENT_OVERDUE").get_json()["ignored"])

    def test_dispute_requires_reason_and_escrow(self) -> None:
        pending = self._create_payment()
        not_in_escrow = self.client.post(
            f"/api/payments/{pending['id']}/dispute", headers=self.headers, json={"reason": "Atraso"}
        )
        self.assertEqual(not_in_escrow.status_code, 409)

        self._webhook(pending["external_reference"])
        missing_reason = self.client.post(f"/api/payments/{pending['id']}/dispute", headers=self.headers, json={})
        self.assertEqual(missing_reason.status_code, 400)
        self.assertEqual(missing_reason.get_json()["error"], "dispute_reason_required")

        disputed = self.client.post(
            f"/api/payments/{pending['id']}/dispute", headers=self.headers, json={"reason": "Produto danificado"}
        )
        self.assertEqual(disputed.status_code, 200)
        self.assertEqual(disputed.get_json()["status"], "disputed")
        self.assertEqual(disputed.get_json()["dispute_reason"], "Produto danificado")

    def test_cancel_only_from_pending(self) -> None:
        payment = self._create_payment()
        unconfirmed = self.client.post(f"/api/payments/{payment['id']}/cancel", headers=self.headers, json={})
        self.assertEqual(unconfirmed.status_code, 400)
        self.assertEqual(unconfirmed.get_json()["error"], "confirmation_required")

        cancelled = self.client.post(
            f"/api/payments/{payment['id']}/cancel", headers=self.headers, json={"confirm": True}
        )
        self.assertEqual(cancelled.status_code, 200)
        self.assertEqual(cancelled.get_json()["status"], "cancelled")

        again = self.client.post(
            f"/api/payments/{payment['id']}/cancel", headers=self.headers, json={"confirm": True}
        )
        self.assertEqual(again.status_code, 409)

    def test_list_groups_amounts_by_status(self) -> None:
        self._create_payment()
        listing = self.client.get("/api/payments", headers=self.headers).get_json()
        self.assertEqual(listing["total"], 1)
        self.assertEqual(listing["summary"]["pending"], {"count": 1, "amount": 1500.0})
        self.assertEqual(listing["summary"]["completed"]["count"], 0)


class PaymentWebhookWithoutTokenTest(ApiTestCase):
    sandbox_prefix = "payment_no_token"
    config_overrides = {"PAYMENT_WEBHOOK_TOKEN": ""}

    def test_webhook_is_refused_when_no_token_is_configured(self) -> None:
        response = self.client.post(
            "/api/webhooks/payments",
            headers={"X-Webhook-Token": ""},
            json={"event": "PAYMENT_RECEIVED", "payment": {"externalReference": "pay_x_1"}},
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json()["error"], "webhook_unauthorized")


if __name__ == "__main__":
    unittest.main()
