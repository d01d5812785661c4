import unittest

from cotacoes.ui_strings import error_message
from tests.helpers.api_case import ApiTestCase


class QuoteFlowSmokeTest(ApiTestCase):
    sandbox_prefix = "quote_smoke"
    tenant_id = "tenant-quotes"

    def test_happy_path_flow(self) -> None:
        supplier_a = self.create_supplier("Elevadores Alfa")
        supplier_b = self.create_supplier("Elevadores Beta")

        create_res = self.client.post(
            "/api/quotes",
            headers=self.headers,
            json={
                "title": "Manutencao dos elevadores",
                "budget": 5000,
                "items": [
                    {"description": "Revisao mensal", "quantity": 1},
                    {"description": "Troca de cabos", "quantity": 2, "unit": "M"},
                    {"description": "   ", "quantity": 3},
                ],
            },
        )
        self.assertEqual(create_res.status_code, 201)
        created = create_res.get_json()
        quote_id = created["id"]
        self.assertEqual(created["status"], "draft")
        self.assertEqual(created["items_created"], 2)
        self.assertTrue(created["local_code"].startswith("RFQ"))
        self.assertEqual(created["flow"]["primary_action"], "send_to_suppliers")

        sent = self.send_quote(quote_id, [supplier_a, supplier_b, 9999])
        self.assertEqual(sent["status"], "sent")
        self.assertEqual(sorted(sent["sent_to"]), sorted([supplier_a, supplier_b]))
        self.assertEqual(sent["skipped"], [9999])

        self.login_supplier(supplier_a)
        proposal_res = self.client.post(
            f"/api/quotes/{quote_id}/proposals",
            headers=self.headers,
            json={"total_amount": 4200, "delivery_time_days": 10, "payment_terms": "30 dias"},
        )
        self.assertEqual(proposal_res.status_code, 201)
        response_a = proposal_res.get_json()["id"]

        supplier_view = self.client.get(f"/api/quotes/{quote_id}", headers=self.headers).get_json()
        self.assertEqual([row["supplier_id"] for row in supplier_view["responses"]], [supplier_a])
        self.assertNotIn("history", supplier_view)

        self.login_manager()
        response_b = self.submit_proposal(quote_id, supplier_b, 3900)

        detail = self.client.get(f"/api/quotes/{quote_id}", headers=self.headers).get_json()
        self.assertEqual(detail["status"], "receiving")
        self.assertEqual(len(detail["items"]), 2)
        self.assertEqual(len(detail["responses"]), 2)
        self.assertEqual(detail["process_steps"][0]["state"], "current")
        history = [(row["from_status"], row["to_status"]) for row in detail["history"]]
        self.assertIn((None, "draft"), history)
        self.assertIn(("sent", "receiving"), history)

        compare = self.client.get(f"/api/quotes/{quote_id}/proposals/compare", headers=self.headers).get_json()
        lowest = [row for row in compare["proposals"] if row["is_lowest"]]
        self.assertEqual([row["id"] for row in lowest], [response_b])

        approve_res = self.client.post(f"/api/proposals/{response_b}/approve", headers=self.headers, json={"confirm": True})
        self.assertEqual(approve_res.status_code, 200)
        approved = approve_res.get_json()
        self.assertEqual(approved["quote"]["status"], "approved")
        self.assertEqual(approved["quote"]["supplier_id"], supplier_b)
        self.assertEqual(float(approved["quote"]["approved_amount"]), 3900.0)

        detail = self.client.get(f"/api/quotes/{quote_id}", headers=self.headers).get_json()
        statuses = {row["id"]: row["status"] for row in detail["responses"]}
        self.assertEqual(statuses, {response_a: "rejected", response_b: "approved"})

        self.login_supplier(supplier_a)
        notifications = self.client.get("/api/notifications", headers=self.headers).get_json()
        self.assertGreaterEqual(notifications["unread"], 2)

        self.login_manager()
        finalize_res = self.client.post(f"/api/quotes/{quote_id}/finalize", headers=self.headers)
        self.assertEqual(finalize_res.status_code, 200)
        self.assertEqual(finalize_res.get_json()["status"], "finalized")

    def test_list_filters_by_search_and_status(self) -> None:
        self.create_quote("Limpeza da piscina")
        self.create_quote("Pintura da fachada")

        all_res = self.client.get("/api/quotes", headers=self.headers).get_json()
        self.assertEqual(all_res["total"], 2)
        self.assertEqual(all_res["summary"], {"draft": 2})

        search_res = self.client.get("/api/quotes?search=PISCINA", headers=self.headers).get_json()
        self.assertEqual([item["title"] for item in search_res["items"]], ["Limpeza da piscina"])

        status_res = self.client.get("/api/quotes?status=sent", headers=self.headers).get_json()
        self.assertEqual(status_res["items"], [])

    def test_invalid_payloads(self) -> None:
        missing_title = self.client.post("/api/quotes", headers=self.headers, json={"items": []})
        self.assertEqual(missing_title.status_code, 400)
        self.assertEqual(missing_title.get_json()["error"], "title_required")

        no_items = self.client.post("/api/quotes", headers=self.headers, json={"title": "Sem itens", "items": []})
        self.assertEqual(no_items.status_code, 400)
        self.assertEqual(no_items.get_json()["error"], "items_required")

        bad_quantity = self.client.post(
            "/api/quotes",
            headers=self.headers,
            json={"title": "Quantidade", "items": [{"description": "Item", "quantity": 0}]},
        )
        self.assertEqual(bad_quantity.status_code, 400)
        self.assertEqual(bad_quantity.get_json()["line"], 1)

        for raw in ("inf", "nan", "-Infinity"):
            not_finite = self.client.post(
                "/api/quotes",
                headers=self.headers,
                json={"title": "Quantidade", "items": [{"description": "Item", "quantity": raw}]},
            )
            self.assertEqual(not_finite.status_code, 400, raw)
            self.assertEqual(not_finite.get_json()["error"], "quantity_invalid")

        unknown_category = self.client.post(
            "/api/quotes",
            headers=self.headers,
            json={"title": "Categoria", "items": [{"description": "Item", "quantity": 1, "category_id": 999}]},
        )
        self.assertEqual(unknown_category.status_code, 404)

    def test_send_requires_active_suppliers(self) -> None:
        pending_supplier = self.create_supplier("Fornecedor Pendente", activate=False)
        quote_id = self.create_quote()

        response = self.client.post(
            f"/api/quotes/{quote_id}/send",
            headers=self.headers,
            json={"supplier_ids": [pending_supplier]},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "suppliers_not_found")

        empty = self.client.post(f"/api/quotes/{quote_id}/send", headers=self.headers, json={})
        self.assertEqual(empty.get_json()["error"], "supplier_ids_required")

    def test_proposal_rules(self) -> None:
        supplier_id = self.create_supplier()
        outsider = self.create_supplier("Fornecedor Fora")
        quote_id = self.create_quote()

        closed = self.client.post(
            f"/api/quotes/{quote_id}/proposals",
            headers=self.headers,
            json={"supplier_id": supplier_id, "total_amount": 100},
        )
        self.assertEqual(closed.status_code, 409)
        self.assertEqual(closed.get_json()["error"], "proposal_closed")

        self.send_quote(quote_id, [supplier_id])
        not_invited = self.client.post(
            f"/api/quotes/{quote_id}/proposals",
            headers=self.headers,
            json={"supplier_id": outsider, "total_amount": 100},
        )
        self.assertEqual(not_invited.status_code, 403)

        zero = self.client.post(
            f"/api/quotes/{quote_id}/proposals",
            headers=self.headers,
            json={"supplier_id": supplier_id, "total_amount": 0},
        )
        self.assertEqual(zero.get_json()["error"], "total_amount_invalid")

        for raw in ("nan", "inf", "1e400"):
            not_finite = self.client.post(
                f"/api/quotes/{quote_id}/proposals",
                headers=self.headers,
                json={"supplier_id": supplier_id, "total_amount": raw},
            )
            self.assertEqual(not_finite.status_code, 400, raw)
            self.assertEqual(not_finite.get_json()["error"], "total_amount_invalid")

        response_id = self.submit_proposal(quote_id, supplier_id, 800)
        resubmit = self.client.post(
            f"/api/quotes/{quote_id}/proposals",
            headers=self.headers,
            json={"supplier_id": supplier_id, "total_amount": 750},
        )
        self.assertEqual(resubmit.status_code, 200)
        self.assertEqual(resubmit.get_json()["id"], response_id)
        self.assertEqual(float(resubmit.get_json()["total_amount"]), 750.0)

        reject_res = self.client.post(f"/api/proposals/{response_id}/reject", headers=self.headers, json={})
        self.assertEqual(reject_res.status_code, 200)
        again = self.client.post(f"/api/proposals/{response_id}/reject", headers=self.headers, json={})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.get_json()["error"], "proposal_already_decided")

    def test_approve_requires_confirmation_and_manager(self) -> None:
        supplier_id = self.create_supplier()
        quote_id = self.create_quote()
        self.send_quote(quote_id, [supplier_id])
        response_id = self.submit_proposal(quote_id, supplier_id, 500)

        unconfirmed = self.client.post(f"/api/proposals/{response_id}/approve", headers=self.headers, json={})
        self.assertEqual(unconfirmed.status_code, 400)
        payload = unconfirmed.get_json()
        self.assertEqual(payload["error"], "confirmation_required")
        self.assertEqual(payload["action"], "approve_proposal")
        self.assertTrue(payload["confirmation"]["confirm_message"])

        self.login_collaborator()
        forbidden = self.client.post(
            f"/api/proposals/{response_id}/approve",
            headers={**self.headers, "X-Confirm": "1"},
        )
        self.assertEqual(forbidden.status_code, 403)
        self.assertEqual(forbidden.get_json()["message"], error_message("permission_denied"))

        self.login_manager()
        confirmed = self.client.post(f"/api/proposals/{response_id}/approve?confirm=1", headers=self.headers)
        self.assertEqual(confirmed.status_code, 200)

    def test_delete_draft_and_cancel_sent_quote(self) -> None:
        draft_id = self.create_quote("Rascunho descartado")
        unconfirmed = self.client.delete(f"/api/quotes/{draft_id}", headers=self.headers)
        self.assertEqual(unconfirmed.status_code, 400)
        self.assertEqual(unconfirmed.get_json()["action"], "delete_quote")

        deleted = self.client.delete(f"/api/quotes/{draft_id}", headers=self.headers, json={"confirm": True})
        self.assertEqual(deleted.status_code, 200)
        self.assertTrue(deleted.get_json()["deleted"])
        self.assertEqual(self.client.get(f"/api/quotes/{draft_id}", headers=self.headers).status_code, 404)

        supplier_id = self.create_supplier()
        sent_id = self.create_quote("Cotacao enviada")
        self.send_quote(sent_id, [supplier_id])

        no_reason = self.client.delete(f"/api/quotes/{sent_id}", headers=self.headers, json={"confirm": True})
        self.assertEqual(no_reason.status_code, 400)
        self.assertEqual(no_reason.get_json()["error"], "cancellation_reason_required")

        cancelled = self.client.delete(
            f"/api/quotes/{sent_id}",
            headers=self.headers,
            json={"confirm": True, "reason": "Escopo alterado"},
        )
        self.assertEqual(cancelled.status_code, 200)
        self.assertEqual(cancelled.get_json()["status"], "cancelled")

        again = self.client.delete(
            f"/api/quotes/{sent_id}",
            headers=self.headers,
            json={"confirm": True, "reason": "De novo"},
        )
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.get_json()["error"], "action_not_allowed_for_status")

    def test_status_transitions_are_enforced(self) -> None:
        quote_id = self.create_quote()
        invalid = self.client.post(f"/api/quotes/{quote_id}/status", headers=self.headers, json={"status": "approved"})
        self.assertEqual(invalid.status_code, 409)
        self.assertEqual(invalid.get_json()["error"], "status_transition_invalid")

        unknown = self.client.post(f"/api/quotes/{quote_id}/status", headers=self.headers, json={"status": "xyz"})
        self.assertEqual(unknown.status_code, 400)

    def test_status_endpoint_cannot_skip_approval(self) -> None:
        supplier_id = self.create_supplier()
        quote_id = self.create_quote()
        self.send_quote(quote_id, [supplier_id])
        self.submit_proposal(quote_id, supplier_id, 900)
        self.login_collaborator()

        for target in ("approved", "under_review"):
            response = self.client.post(
                f"/api/quotes/{quote_id}/status", headers=self.headers, json={"status": target}
            )
            self.assertEqual(response.status_code, 409, target)
            self.assertEqual(response.get_json()["error"], "status_requires_workflow")

        detail = self.client.get(f"/api/quotes/{quote_id}", headers=self.headers).get_json()
        self.assertEqual(detail["status"], "receiving")
        self.assertIsNone(detail.get("approved_amount"))

        received = self.client.post(
            f"/api/quotes/{quote_id}/status", headers=self.headers, json={"status": "received"}
        )
        self.assertEqual(received.status_code, 200, received.get_json())
        self.assertEqual(received.get_json()["status"], "received")

    def test_quotes_are_isolated_per_tenant(self) -> None:
        quote_id = self.create_quote()
        with self.client.session_transaction() as sess:
            sess["tenant_id"] = "tenant-other"

        self.assertEqual(self.client.get(f"/api/quotes/{quote_id}").status_code, 404)
        self.assertEqual(self.client.get("/api/quotes").get_json()["total"], 0)


class ApprovalFlowSmokeTest(ApiTestCase):
    sandbox_prefix = "approval_smoke"
    tenant_id = "tenant-approvals"

    def _quote_with_proposal(self, amount: float) -> tuple[int, int]:
        supplier_id = self.create_supplier()
        quote_id = self.create_quote()
        self.send_quote(quote_id, [supplier_id])
        return quote_id, self.submit_proposal(quote_id, supplier_id, amount)

    def test_without_level_the_proposal_is_auto_approved(self) -> None:
        quote_id, response_id = self._quote_with_proposal(300)
        response = self.client.post(f"/api/quotes/{quote_id}/approval", headers=self.headers, json={"response_id": response_id})
        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertTrue(payload["auto_approved"])
        self.assertEqual(payload["quote"]["status"], "approved")

    def test_level_routes_approval_to_its_approvers(self) -> None:
        level_res = self.client.post(
            "/api/approval-levels",
            headers=self.headers,
            json={"name": "Conselho", "amount_threshold": 1000, "approvers": ["conselheiro@demo.com"]},
        )
        self.assertEqual(level_res.status_code, 201)
        self.assertEqual(level_res.get_json()["approvers"], ["conselheiro@demo.com"])

        quote_id, response_id = self._quote_with_proposal(2500)
        self.login_collaborator()
        request_res = self.client.post(
            f"/api/quotes/{quote_id}/approval", headers=self.headers, json={"response_id": response_id}
        )
        self.assertEqual(request_res.status_code, 201)
        approval = request_res.get_json()["approval"]
        self.assertFalse(approval["can_decide"])
        approval_id = approval["id"]

        quote = self.client.get(f"/api/quotes/{quote_id}", headers=self.headers).get_json()
        self.assertEqual(quote["status"], "under_review")

        forbidden = self.client.post(
            f"/api/approvals/{approval_id}/decision", headers=self.headers, json={"status": "approved"}
        )
        self.assertEqual(forbidden.status_code, 403)

        self.login_as("collaborator", "conselheiro@demo.com")
        pending = self.client.get("/api/approvals", headers=self.headers).get_json()
        self.assertEqual(pending["pending"], 1)
        self.assertTrue(pending["items"][0]["can_decide"])

        needs_comment = self.client.post(
            f"/api/approvals/{approval_id}/decision", headers=self.headers, json={"status": "rejected"}
        )
        self.assertEqual(needs_comment.status_code, 400)
        self.assertEqual(needs_comment.get_json()["error"], "approval_comments_required")

        decided = self.client.post(
            f"/api/approvals/{approval_id}/decision", headers=self.headers, json={"status": "approved"}
        )
        self.assertEqual(decided.status_code, 200)
        self.assertEqual(decided.get_json()["status"], "approved")

        quote = self.client.get(f"/api/quotes/{quote_id}", headers=self.headers).get_json()
        self.assertEqual(quote["status"], "approved")
        self.assertEqual(quote["responses"][0]["status"], "approved")

        twice = self.client.post(
            f"/api/approvals/{approval_id}/decision", headers=self.headers, json={"status": "approved"}
        )
        self.assertEqual(twice.status_code, 409)

    def test_rejected_approval_moves_quote_to_rejected(self) -> None:
        self.client.post(
            "/api/approval-levels",
            headers=self.headers,
            json={"name": "Sindico", "amount_threshold": 0, "approvers": "sindico@demo.com"},
        )
        quote_id, response_id = self._quote_with_proposal(900)
        approval_id = self.client.post(
            f"/api/quotes/{quote_id}/approval", headers=self.headers, json={"response_id": response_id}
        ).get_json()["approval"]["id"]

        rejected = self.client.post(
            f"/api/approvals/{approval_id}/decision",
            headers=self.headers,
            json={"status": "rejected", "comments": "Valor acima do mercado"},
        )
        self.assertEqual(rejected.status_code, 200)

        quote = self.client.get(f"/api/quotes/{quote_id}", headers=self.headers).get_json()
        self.assertEqual(quote["status"], "rejected")
        self.assertEqual(quote["responses"][0]["status"], "pending")
        self.assertIn("reopen_quote", quote["flow"]["allowed_actions"])

    def test_level_validation(self) -> None:
        bad_email = self.client.post(
            "/api/approval-levels",
            headers=self.headers,
            json={"name": "Nivel", "amount_threshold": 10, "approvers": ["nao-e-email"]},
        )
        self.assertEqual(bad_email.status_code, 400)
        self.assertEqual(bad_email.get_json()["error"], "email_invalid")

        for raw in ("nan", "inf"):
            bad_threshold = self.client.post(
                "/api/approval-levels",
                headers=self.headers,
                json={"name": "Nivel", "amount_threshold": raw, "approvers": ["a@demo.com"]},
            )
            self.assertEqual(bad_threshold.status_code, 400, raw)
            self.assertEqual(bad_threshold.get_json()["error"], "approval_level_threshold_invalid")

        self.login_collaborator()
        forbidden = self.client.post(
            "/api/approval-levels",
            headers=self.headers,
            json={"name": "Nivel", "amount_threshold": 10, "approvers": ["a@demo.com"]},
        )
        self.assertEqual(forbidden.status_code, 403)


if __name__ == "__main__":
    unittest.main()
