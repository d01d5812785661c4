import unittest

from tests.helpers.api_case import ApiTestCase


APP_USERS = (
    "admin@demo.com:admin123:tenant-demo:Administrador:admin,"
    "compras@demo.com:compras123:tenant-demo:Compras:collaborator,"
    "fornecedor@demo.com:forn123:tenant-demo:Fornecedor:supplier:7"
)


class AuthSmokeTest(ApiTestCase):
    sandbox_prefix = "auth_smoke"
    tenant_id = "tenant-demo"
    config_overrides = {"APP_USERS": APP_USERS}

    def setUp(self) -> None:
        super().setUp()
        with self.client.session_transaction() as sess:
            sess.clear()

    def _login(self, email: str, password: str):
        return self.client.post("/api/auth/login", json={"email": email, "password": password})

    def test_login_me_and_logout(self) -> None:
        response = self._login("Admin@Demo.com", "admin123")
        self.assertEqual(response.status_code, 200)
        user = response.get_json()["user"]
        self.assertEqual(user["email"], "admin@demo.com")
        self.assertEqual(user["role"], "admin")
        self.assertEqual(user["tenant_id"], "tenant-demo")
        self.assertEqual(user["display_name"], "Administrador")

        me = self.client.get("/api/auth/me").get_json()["user"]
        self.assertEqual(me["email"], "admin@demo.com")

        self.client.post("/api/auth/logout")
        me = self.client.get("/api/auth/me").get_json()["user"]
        self.assertIsNone(me["email"])

    def test_login_failures(self) -> None:
        missing = self._login("admin@demo.com", "")
        self.assertEqual(missing.status_code, 400)
        self.assertEqual(missing.get_json()["error"], "auth_missing_credentials")

        wrong = self._login("admin@demo.com", "errada")
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(wrong.get_json()["error"], "auth_invalid_credentials")

    def test_supplier_login_carries_supplier_id(self) -> None:
        user = self._login("fornecedor@demo.com", "forn123").get_json()["user"]
        self.assertEqual(user["role"], "supplier")
        self.assertEqual(user["supplier_id"], 7)

    def test_tenant_switch_is_admin_only(self) -> None:
        self._login("compras@demo.com", "compras123")
        forbidden = self.client.post("/api/auth/tenant", json={"tenant_id": "tenant-demo"})
        self.assertEqual(forbidden.status_code, 403)

        self._login("admin@demo.com", "admin123")
        unknown = self.client.post("/api/auth/tenant", json={"tenant_id": "tenant-fantasma"})
        self.assertEqual(unknown.status_code, 404)
        self.assertEqual(unknown.get_json()["error"], "tenant_not_found")

        switched = self.client.post("/api/auth/tenant", json={"tenant_id": "tenant-demo"})
        self.assertEqual(switched.status_code, 200)
        self.assertEqual(switched.get_json()["user"]["tenant_id"], "tenant-demo")


class NotificationSmokeTest(ApiTestCase):
    sandbox_prefix = "notification_smoke"
    tenant_id = "tenant-notifications"

    def _supplier_with_quote(self) -> int:
        supplier_id = self.create_supplier()
        quote_id = self.create_quote("Pintura das garagens")
        self.send_quote(quote_id, [supplier_id])
        self.submit_proposal(quote_id, supplier_id, 700)
        return supplier_id

    def test_supplier_inbox_read_and_read_all(self) -> None:
        supplier_id = self._supplier_with_quote()

        self.login_supplier(supplier_id)
        inbox = self.client.get("/api/notifications", headers=self.headers).get_json()
        self.assertEqual(inbox["unread"], 1)
        notification = inbox["items"][0]
        self.assertEqual(notification["notification_type"], "quote_received")
        self.assertIn("Pintura das garagens", notification["message"])

        read = self.client.post(f"/api/notifications/{notification['id']}/read", headers=self.headers)
        self.assertEqual(read.status_code, 200)
        self.assertEqual(read.get_json()["unread"], 0)

        unread_only = self.client.get("/api/notifications?unread=1", headers=self.headers).get_json()
        self.assertEqual(unread_only["items"], [])

    def test_owner_is_notified_of_proposals(self) -> None:
        self._supplier_with_quote()
        inbox = self.client.get("/api/notifications", headers=self.headers).get_json()
        types = [row["notification_type"] for row in inbox["items"]]
        self.assertIn("proposal_received", types)
        self.assertTrue(any("R$ 700,00" in row["message"] for row in inbox["items"]))

        cleared = self.client.post("/api/notifications/read-all", headers=self.headers)
        self.assertEqual(cleared.status_code, 200)
        self.assertGreaterEqual(cleared.get_json()["updated"], 1)
        self.assertEqual(self.client.get("/api/notifications", headers=self.headers).get_json()["unread"], 0)

    def test_other_inbox_is_not_readable(self) -> None:
        supplier_id = self._supplier_with_quote()
        self.login_supplier(supplier_id)
        notification_id = self.client.get("/api/notifications", headers=self.headers).get_json()["items"][0]["id"]

        self.login_collaborator()
        response = self.client.post(f"/api/notifications/{notification_id}/read", headers=self.headers)
        self.assertEqual(response.status_code, 404)

    def test_audit_log_is_manager_only(self) -> None:
        self.create_quote()
        logs = self.client.get("/api/audit-logs?entity=quote", headers=self.headers).get_json()
        self.assertEqual(logs["items"][0]["action"], "create")
        self.assertEqual(logs["items"][0]["user_email"], "gestor@demo.com")

        self.login_collaborator()
        forbidden = self.client.get("/api/audit-logs", headers=self.headers)
        self.assertEqual(forbidden.status_code, 403)
        self.assertEqual(forbidden.get_json()["error"], "permission_denied")


if __name__ == "__main__":
    unittest.main()
