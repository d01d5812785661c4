import unittest
from unittest.mock import patch

from cotacoes.application.quote_response_service import QuoteResponseService
from cotacoes.db import get_db
from cotacoes.email_client import mock_outbox
from cotacoes.errors import IntegrationClientError
from cotacoes.quoting.response_tokens import SHORT_CODE_ALPHABET, next_reminder_status, normalize_token
from cotacoes.scheduler import MaintenanceScheduler
from tests.helpers.api_case import ApiTestCase


class ResponseTokenTest(unittest.TestCase):
    def test_reminder_steps_stop_after_two(self) -> None:
        self.assertEqual(next_reminder_status("pending"), "reminded_once")
        self.assertEqual(next_reminder_status(None), "reminded_once")
        self.assertEqual(next_reminder_status("reminded_once"), "reminded_twice")
        self.assertIsNone(next_reminder_status("reminded_twice"))

    def test_short_codes_are_case_insensitive(self) -> None:
        self.assertEqual(normalize_token(" ab23cd45 "), "AB23CD45")
        long_token = "aBcD-1234_efgh5678ijkl9012mnop3456"
        self.assertEqual(normalize_token(long_token), long_token)
        self.assertNotIn("O", SHORT_CODE_ALPHABET)
        self.assertNotIn("1", SHORT_CODE_ALPHABET)


class QuickResponseSmokeTest(ApiTestCase):
    sandbox_prefix = "quick_response"
    tenant_id = "tenant-quick"

    def _links(self, quote_id: int) -> dict:
        detail = self.client.get(f"/api/quotes/{quote_id}", headers=self.headers).get_json()
        return {row["supplier_id"]: row for row in detail["suppliers"]}

    def _logout(self) -> None:
        with self.client.session_transaction() as sess:
            sess.clear()

    def test_send_issues_one_link_per_supplier(self) -> None:
        first = self.create_supplier("Hidraulica Um")
        second = self.create_supplier("Hidraulica Dois")
        quote_id = self.create_quote("Troca de registros")
        self.send_quote(quote_id, [first, second])

        links = self._links(quote_id)
        codes = {row["short_code"] for row in links.values()}
        self.assertEqual(len(codes), 2)
        for row in links.values():
            self.assertEqual(len(row["short_code"]), 8)
            self.assertEqual(row["reminder_status"], "pending")
            self.assertTrue(row["token_expires_at"])
            self.assertNotIn("response_token", row)

    def test_supplier_answers_through_the_link(self) -> None:
        supplier_id = self.create_supplier("Pintura Rapida")
        other_id = self.create_supplier("Pintura Lenta")
        quote_id = self.create_quote("Pintura da fachada")
        self.send_quote(quote_id, [supplier_id, other_id])
        code = self._links(quote_id)[supplier_id]["short_code"]
        self._logout()

        page = self.client.get(f"/api/resposta-rapida/{code.lower()}")
        self.assertEqual(page.status_code, 200, page.get_json())
        body = page.get_json()
        self.assertEqual(body["title"], "Pintura da fachada")
        self.assertEqual(body["supplier_name"], "Pintura Rapida")
        self.assertTrue(body["accepting_proposals"])
        self.assertIsNone(body["proposal"])
        self.assertEqual([item["description"] for item in body["items"]], ["Motor do portao"])
        self.assertNotIn("tenant_id", body)

        created = self.client.post(
            f"/api/resposta-rapida/{code}/proposta",
            json={"total_amount": 320, "delivery_time_days": 3, "supplier_id": other_id},
        )
        self.assertEqual(created.status_code, 201, created.get_json())
        self.assertEqual(created.get_json()["supplier_id"], supplier_id)

        updated = self.client.post(f"/api/resposta-rapida/{code}/proposta", json={"total_amount": 300})
        self.assertEqual(updated.status_code, 200, updated.get_json())
        self.assertEqual(updated.get_json()["total_amount"], 300)

        invalid = self.client.post(f"/api/resposta-rapida/{code}/proposta", json={"total_amount": "nan"})
        self.assertEqual(invalid.status_code, 400)
        self.assertEqual(invalid.get_json()["error"], "total_amount_invalid")

        self.login_manager()
        detail = self.client.get(f"/api/quotes/{quote_id}", headers=self.headers).get_json()
        self.assertEqual(detail["status"], "receiving")
        self.assertEqual([row["supplier_id"] for row in detail["responses"]], [supplier_id])
        self.assertEqual(self._links(quote_id)[supplier_id]["status"], "responded")

    def test_unknown_and_expired_links(self) -> None:
        missing = self.client.get("/api/resposta-rapida/ZZZZZZZZ")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.get_json()["error"], "quote_token_invalid")

        supplier_id = self.create_supplier()
        quote_id = self.create_quote()
        self.send_quote(quote_id, [supplier_id])
        code = self._links(quote_id)[supplier_id]["short_code"]
        with self.app.app_context():
            db = get_db()
            db.execute(
                "UPDATE quote_suppliers SET token_expires_at = ? WHERE quote_id = ?",
                ("2001-01-01T00:00:00Z", quote_id),
            )
            db.commit()

        expired = self.client.get(f"/api/resposta-rapida/{code}")
        self.assertEqual(expired.status_code, 410)
        self.assertEqual(expired.get_json()["error"], "quote_token_expired")
        refused = self.client.post(f"/api/resposta-rapida/{code}/proposta", json={"total_amount": 100})
        self.assertEqual(refused.status_code, 410)

    def test_link_is_closed_once_a_proposal_is_approved(self) -> None:
        quote_id, supplier_id, _ = self.approved_quote(amount=900.0)
        code = self._links(quote_id)[supplier_id]["short_code"]

        page = self.client.get(f"/api/resposta-rapida/{code}").get_json()
        self.assertFalse(page["accepting_proposals"])
        self.assertEqual(page["proposal"]["total_amount"], 900.0)

        closed = self.client.post(f"/api/resposta-rapida/{code}/proposta", json={"total_amount": 800})
        self.assertEqual(closed.status_code, 409)
        self.assertEqual(closed.get_json()["error"], "proposal_closed")


class QuoteReminderSmokeTest(ApiTestCase):
    sandbox_prefix = "quote_reminders"
    tenant_id = "tenant-reminders"

    def _reminder_statuses(self, quote_id: int) -> dict:
        detail = self.client.get(f"/api/quotes/{quote_id}", headers=self.headers).get_json()
        return {row["supplier_id"]: row["reminder_status"] for row in detail["suppliers"]}

    def _age(self, quote_id: int, column: str) -> None:
        with self.app.app_context():
            db = get_db()
            db.execute(
                f"UPDATE quote_suppliers SET {column} = ? WHERE quote_id = ? AND {column} IS NOT NULL",
                ("2001-01-01T00:00:00Z", quote_id),
            )
            db.commit()

    def _run_reminders(self) -> int:
        scheduler = MaintenanceScheduler(self.app, tasks={"quote_reminders": QuoteResponseService().send_due_reminders})
        return scheduler.run_once().get(self.tenant_id, {}).get("quote_reminders", 0)

    def _links_code(self, quote_id: int, supplier_id: int) -> str:
        detail = self.client.get(f"/api/quotes/{quote_id}", headers=self.headers).get_json()
        return next(row["short_code"] for row in detail["suppliers"] if row["supplier_id"] == supplier_id)

    def test_silent_suppliers_are_reminded_twice_at_most(self) -> None:
        silent = self.create_supplier("Vidracaria Calada", email="calada@vidros.test")
        answered = self.create_supplier("Vidracaria Ativa", email="ativa@vidros.test")
        quote_id = self.create_quote("Troca de vidros")
        self.send_quote(quote_id, [silent, answered])
        self.submit_proposal(quote_id, answered, 750.0)

        self.assertEqual(self._run_reminders(), 0)

        self._age(quote_id, "sent_at")
        self.assertEqual(self._run_reminders(), 1)
        outbox = mock_outbox()
        self.assertEqual([message["to"] for message in outbox], ["calada@vidros.test"])
        code = self._links_code(quote_id, silent)
        self.assertIn(f"http://cotacoes.test/s/{code}", outbox[0]["html"])
        self.assertIn("primeiro lembrete", outbox[0]["html"])
        self.assertEqual(self._reminder_statuses(quote_id), {silent: "reminded_once", answered: "pending"})

        self.assertEqual(self._run_reminders(), 0)

        self._age(quote_id, "last_reminder_at")
        self.assertEqual(self._run_reminders(), 1)
        self.assertIn("segundo lembrete", mock_outbox()[1]["html"])
        self.assertEqual(self._reminder_statuses(quote_id)[silent], "reminded_twice")

        self._age(quote_id, "last_reminder_at")
        self.assertEqual(self._run_reminders(), 0)
        self.assertEqual(len(mock_outbox()), 2)

    def test_staff_can_remind_right_away(self) -> None:
        supplier_id = self.create_supplier("Serralheria", email="serralheria@demo.test")
        quote_id = self.create_quote("Grade da garagem")
        self.send_quote(quote_id, [supplier_id])

        self.login_collaborator()
        reminded = self.client.post(f"/api/quotes/{quote_id}/reminders", headers=self.headers)
        self.assertEqual(reminded.status_code, 200, reminded.get_json())
        self.assertEqual(reminded.get_json()["reminders_sent"], 1)

        again = self.client.post(f"/api/quotes/{quote_id}/reminders", headers=self.headers)
        self.assertEqual(again.get_json()["reminders_sent"], 0)

        self.login_supplier(supplier_id)
        forbidden = self.client.post(f"/api/quotes/{quote_id}/reminders", headers=self.headers)
        self.assertEqual(forbidden.status_code, 403)

    def test_gateway_outage_keeps_reminder_pending(self) -> None:
        supplier_id = self.create_supplier("Eletrica", email="eletrica@demo.test")
        quote_id = self.create_quote("Quadro de energia")
        self.send_quote(quote_id, [supplier_id])

        outage = IntegrationClientError("Email HTTP 503: indisponivel", service="email", status_code=503)
        with patch("cotacoes.email_client.send_email", side_effect=outage):
            response = self.client.post(f"/api/quotes/{quote_id}/reminders", headers=self.headers)
        self.assertEqual(response.status_code, 200, response.get_json())
        body = response.get_json()
        self.assertEqual(body["reminders_sent"], 0)
        self.assertEqual(body["reminders_failed"][0]["supplier_id"], supplier_id)
        self.assertEqual(self._reminder_statuses(quote_id), {supplier_id: "pending"})

        retry = self.client.post(f"/api/quotes/{quote_id}/reminders", headers=self.headers)
        self.assertEqual(retry.get_json()["reminders_sent"], 1)

    def test_closed_quote_cannot_be_reminded(self) -> None:
        quote_id, _, _ = self.approved_quote()
        response = self.client.post(f"/api/quotes/{quote_id}/reminders", headers=self.headers)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()["error"], "proposal_closed")


if __name__ == "__main__":
    unittest.main()
