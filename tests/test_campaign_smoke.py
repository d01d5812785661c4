import unittest
from unittest.mock import patch

from cotacoes.email_client import mock_outbox
from cotacoes.errors import IntegrationClientError
from tests.helpers.api_case import ApiTestCase


SP_SEGMENT = [{"field": "state", "operator": "equals", "value": "SP"}]


class CampaignSmokeTest(ApiTestCase):
    sandbox_prefix = "campaign_smoke"
    tenant_id = "tenant-campaigns"

    def _contact(self, email: str, name: str, state: str = "SP", **extra) -> dict:
        body = {"email": email, "name": name, "state": state, "client_type": "sindico"}
        body.update(extra)
        response = self.client.post("/api/contacts", headers=self.headers, json=body)
        self.assertEqual(response.status_code, 201, response.get_json())
        return response.get_json()

    def _campaign(self, segment=None, **extra) -> dict:
        body = {
            "subject": "Novidades para {{recipient_name}}",
            "html_content": "<p>Ola {{recipient_name}}</p><a href=\"{{unsubscribe_url}}\">Sair</a>",
            "text_content": "Ola {{recipient_name}}. Sair: {{unsubscribe_url}}",
            "target_segment": SP_SEGMENT if segment is None else segment,
        }
        body.update(extra)
        response = self.client.post("/api/campaigns", headers=self.headers, json=body)
        self.assertEqual(response.status_code, 201, response.get_json())
        return response.get_json()

    def test_contacts_create_and_import(self) -> None:
        contact = self._contact("Ana@Demo.com", "Ana")
        self.assertEqual(contact["email"], "ana@demo.com")
        self.assertEqual(contact["status"], "active")

        duplicate = self.client.post("/api/contacts", headers=self.headers, json={"email": "ana@demo.com"})
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.get_json()["error"], "contact_email_duplicated")

        imported = self.client.post(
            "/api/contacts/import",
            headers=self.headers,
            json={"csv": "email;name;state\nbeto@demo.com;Beto;rj\nana@demo.com;Ana;SP\nnao-email;X;SP\nbeto@demo.com;Beto;RJ\n"},
        )
        self.assertEqual(imported.status_code, 200)
        body = imported.get_json()
        self.assertEqual(body["imported"], 1)
        self.assertEqual(body["skipped"], 2)
        self.assertEqual(body["errors"], [{"line": 4, "email": "nao-email", "error": "email_invalid"}])

        listing = self.client.get("/api/contacts?search=beto", headers=self.headers).get_json()
        self.assertEqual(listing["items"][0]["state"], "RJ")

        empty = self.client.post("/api/contacts/import", headers=self.headers, json={})
        self.assertEqual(empty.get_json()["error"], "import_file_required")

    def test_campaign_requires_subject_and_content(self) -> None:
        response = self.client.post("/api/campaigns", headers=self.headers, json={"subject": "Sem corpo"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "campaign_fields_required")

        bad_segment = self.client.post(
            "/api/campaigns",
            headers=self.headers,
            json={
                "subject": "Assunto",
                "html_content": "<p>x</p>",
                "target_segment": [{"field": "email", "operator": "equals", "value": "x"}],
            },
        )
        self.assertEqual(bad_segment.status_code, 400)
        self.assertEqual(bad_segment.get_json()["error"], "segment_criteria_invalid")

    def test_preview_counts_only_active_matching_contacts(self) -> None:
        self._contact("ana@demo.com", "Ana")
        self._contact("bia@demo.com", "Bia")
        self._contact("caio@demo.com", "Caio", state="MG")
        self.client.get("/unsubscribe/bia%40demo.com?tenant=tenant-campaigns")

        preview = self.client.post(
            "/api/campaigns/preview", headers=self.headers, json={"target_segment": SP_SEGMENT}
        ).get_json()
        self.assertEqual(preview["total"], 1)
        self.assertEqual([row["email"] for row in preview["sample"]], ["ana@demo.com"])

        everyone = self.client.post("/api/campaigns/preview", headers=self.headers, json={}).get_json()
        self.assertEqual(everyone["total"], 2)

    def test_send_renders_merge_tags_and_counts_bounces(self) -> None:
        self._contact("ana@demo.com", "Ana")
        self._contact("rui@bounce.test", "Rui")
        self._contact("caio@demo.com", "Caio", state="MG")
        campaign = self._campaign()
        self.assertEqual(campaign["status"], "draft")

        unconfirmed = self.client.post(f"/api/campaigns/{campaign['id']}/send", headers=self.headers, json={})
        self.assertEqual(unconfirmed.status_code, 400)
        self.assertEqual(unconfirmed.get_json()["action"], "send_campaign")

        sent = self.client.post(f"/api/campaigns/{campaign['id']}/send", headers=self.headers, json={"confirm": True})
        self.assertEqual(sent.status_code, 200, sent.get_json())
        body = sent.get_json()
        self.assertEqual((body["total"], body["delivered"], body["bounced"], body["failed"]), (2, 1, 1, 0))
        self.assertEqual(body["status"], "sent")
        self.assertEqual(float(body["bounce_rate"]), 50.0)

        outbox = mock_outbox()
        self.assertEqual(len(outbox), 1)
        self.assertEqual(outbox[0]["to"], "ana@demo.com")
        self.assertEqual(outbox[0]["subject"], "Novidades para Ana")
        self.assertIn("http://cotacoes.test/unsubscribe/ana%40demo.com?tenant=tenant-campaigns", outbox[0]["html"])

        contacts = self.client.get("/api/contacts?search=rui", headers=self.headers).get_json()
        self.assertEqual(contacts["items"][0]["status"], "bounced")

        detail = self.client.get(f"/api/campaigns/{campaign['id']}", headers=self.headers).get_json()
        self.assertEqual(sorted(row["status"] for row in detail["recipients"]), ["bounced", "delivered"])

        again = self.client.post(f"/api/campaigns/{campaign['id']}/send", headers=self.headers, json={"confirm": True})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.get_json()["error"], "campaign_already_sent")

    def test_send_without_audience(self) -> None:
        campaign = self._campaign(segment=[{"field": "state", "operator": "equals", "value": "AC"}])
        response = self.client.post(f"/api/campaigns/{campaign['id']}/send", headers=self.headers, json={"confirm": True})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "campaign_no_recipients")

    def test_gateway_outage_marks_campaign_failed(self) -> None:
        self._contact("ana@demo.com", "Ana")
        campaign = self._campaign()

        outage = IntegrationClientError("Email HTTP 503: indisponivel", service="email", status_code=503)
        with patch("cotacoes.email_client.send_email", side_effect=outage):
            response = self.client.post(
                f"/api/campaigns/{campaign['id']}/send", headers=self.headers, json={"confirm": True}
            )
        self.assertEqual(response.status_code, 502)
        body = response.get_json()
        self.assertEqual(body["error"], "email_unavailable")
        self.assertEqual(body["failed"], 1)

        detail = self.client.get(f"/api/campaigns/{campaign['id']}", headers=self.headers).get_json()
        self.assertEqual(detail["status"], "failed")

        contacts = self.client.get("/api/contacts", headers=self.headers).get_json()
        self.assertEqual(contacts["items"][0]["status"], "active")

        retried = self.client.post(
            f"/api/campaigns/{campaign['id']}/send", headers=self.headers, json={"confirm": True}
        )
        self.assertEqual(retried.status_code, 200, retried.get_json())
        self.assertEqual((retried.get_json()["delivered"], retried.get_json()["failed"]), (1, 0))

        detail = self.client.get(f"/api/campaigns/{campaign['id']}", headers=self.headers).get_json()
        self.assertEqual(detail["status"], "sent")
        self.assertEqual([row["status"] for row in detail["recipients"]], ["delivered"])
        self.assertEqual(len(mock_outbox()), 1)

    def test_merge_values_are_escaped_in_html_only(self) -> None:
        self._contact("ana@demo.com", "<b>Ana</b> & Cia")
        campaign = self._campaign()
        sent = self.client.post(f"/api/campaigns/{campaign['id']}/send", headers=self.headers, json={"confirm": True})
        self.assertEqual(sent.status_code, 200, sent.get_json())

        message = mock_outbox()[0]
        self.assertIn("<p>Ola &lt;b&gt;Ana&lt;/b&gt; &amp; Cia</p>", message["html"])
        self.assertEqual(message["subject"], "Novidades para <b>Ana</b> & Cia")
        self.assertIn("Ola <b>Ana</b> & Cia.", message["text"])


    def test_unsubscribe_is_public_and_idempotent(self) -> None:
        self._contact("ana@demo.com", "Ana")
        with self.client.session_transaction() as sess:
            sess.clear()

        first = self.client.post("/unsubscribe/ana@demo.com?tenant=tenant-campaigns")
        self.assertEqual(first.status_code, 200)
        second = self.client.get("/unsubscribe/ana@demo.com?tenant=tenant-campaigns")
        self.assertEqual(second.status_code, 200)

        unknown = self.client.get("/unsubscribe/ninguem@demo.com?tenant=tenant-campaigns")
        self.assertEqual(unknown.status_code, 404)

        self.login_manager()
        contacts = self.client.get("/api/contacts", headers=self.headers).get_json()
        self.assertEqual(contacts["items"][0]["status"], "unsubscribed")


if __name__ == "__main__":
    unittest.main()
