import unittest
from unittest.mock import patch

from cotacoes import create_app
from cotacoes.config import Config
from cotacoes.db import close_db, init_db
from cotacoes.errors import IntegrationClientError
from cotacoes.quoting.cnpj import build_cnpj
from cotacoes.routes import quote_routes
from cotacoes.ui_strings import error_message
from tests.helpers.api_case import ApiTestCase
from tests.helpers.temp_db import TempDbSandbox


def _build_temp_app(temp_db: TempDbSandbox, **overrides):
    attrs = {
        "PROPAGATE_EXCEPTIONS": False,
        "DB_AUTO_INIT": False,
    }
    attrs.update(overrides)
    app = create_app(temp_db.make_config(Config, **attrs))
    with app.app_context():
        init_db()
    return app


class ErrorPermissionTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_perm")
        self.app = _build_temp_app(
            self._temp_db,
            TESTING=False,
            AUTH_ENABLED=True,
            RATE_LIMIT_ENABLED=False,
        )
        self.client = self.app.test_client()
        self.headers = {"X-Tenant-Id": "tenant-perm"}

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_permission_error_for_unauthenticated_api(self) -> None:
        response = self.client.get("/api/quotes", headers=self.headers)
        self.assertEqual(response.status_code, 401)

        payload = response.get_json()
        self.assertEqual(payload.get("error"), "auth_required")
        self.assertEqual(payload.get("message"), error_message("auth_required"))
        self.assertTrue((payload.get("request_id") or "").strip())
        self.assertNotIn("Traceback", response.get_data(as_text=True))

    def test_public_paths_skip_login(self) -> None:
        self.assertEqual(self.client.get("/health").status_code, 200)

        invitation = self.client.get("/api/convites/token-inexistente")
        self.assertEqual(invitation.status_code, 404)
        self.assertEqual(invitation.get_json()["error"], "invitation_token_invalid")

        webhook = self.client.post("/api/webhooks/payments", json={})
        self.assertNotEqual(webhook.status_code, 200)
        self.assertNotEqual(webhook.get_json()["error"], "auth_required")

    def test_session_login_unlocks_api(self) -> None:
        with self.client.session_transaction() as sess:
            sess["user_email"] = "gestor@demo.com"
            sess["user_role"] = "manager"
            sess["tenant_id"] = "tenant-perm"
        response = self.client.get("/api/quotes", headers=self.headers)
        self.assertEqual(response.status_code, 200)


class ErrorHandlingApiTest(ApiTestCase):
    sandbox_prefix = "error_api"
    tenant_id = "tenant-error-api"

    def test_validation_error_for_invalid_flow_action(self) -> None:
        quote_id = self.create_quote()

        finalize_res = self.client.post(f"/api/quotes/{quote_id}/finalize", headers=self.headers)
        self.assertEqual(finalize_res.status_code, 409)
        payload = finalize_res.get_json()
        self.assertEqual(payload.get("error"), "action_not_allowed_for_status")
        self.assertEqual(payload.get("message"), error_message("action_not_allowed_for_status"))
        self.assertEqual(payload.get("status"), "draft")
        self.assertIn("send_to_suppliers", payload.get("allowed_actions") or [])
        self.assertTrue((payload.get("request_id") or "").strip())

    def test_not_found_uses_localized_message(self) -> None:
        response = self.client.get("/api/quotes/4242", headers=self.headers)
        self.assertEqual(response.status_code, 404)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "quote_not_found")
        self.assertEqual(payload.get("message"), error_message("quote_not_found"))

    def test_unexpected_error_is_sanitized(self) -> None:
        with patch.object(quote_routes._QUOTE_SERVICE, "list_quotes", side_effect=RuntimeError("db exploded")):
            response = self.client.get("/api/quotes", headers=self.headers)

        self.assertEqual(response.status_code, 500)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "unexpected_error")
        self.assertEqual(payload.get("message"), error_message("unexpected_error"))
        body = response.get_data(as_text=True)
        self.assertNotIn("Traceback", body)
        self.assertNotIn("db exploded", body)

    def test_cnpj_outage_maps_to_integration_error(self) -> None:
        failure = IntegrationClientError("CNPJ lookup HTTP 503: indisponivel", service="cnpj", status_code=503)
        with patch("cotacoes.cnpj_client.fetch_company", side_effect=failure):
            response = self.client.get(f"/api/cnpj/{build_cnpj('112223330001')}", headers=self.headers)

        self.assertEqual(response.status_code, 502)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "cnpj_lookup_unavailable")
        self.assertEqual(payload.get("message"), error_message("cnpj_lookup_unavailable"))
        self.assertEqual(payload.get("service"), "cnpj")

    def test_cnpj_rate_limit_maps_to_503(self) -> None:
        failure = IntegrationClientError("CNPJ lookup HTTP 429: too many", service="cnpj", status_code=429)
        with patch("cotacoes.cnpj_client.fetch_company", side_effect=failure):
            response = self.client.get(f"/api/cnpj/{build_cnpj('112223330001')}", headers=self.headers)

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.get_json().get("error"), "cnpj_lookup_rate_limited")


if __name__ == "__main__":
    unittest.main()
