import unittest

from cotacoes.quoting.critical_actions import CRITICAL_ACTIONS
from cotacoes.ui_strings import (
    DOCUMENT_TYPE_LABELS,
    MESSAGES,
    STATUS_GROUPS,
    confirm_message,
    error_message,
    frontend_bundle,
    status_label,
)


class UiStringsStatusGroupsTest(unittest.TestCase):
    def test_required_status_groups_exist(self) -> None:
        required_groups = {"cotacao", "proposta", "aprovacao", "pagamento", "entrega", "documento"}
        self.assertTrue(required_groups.issubset(set(STATUS_GROUPS.keys())))

    def test_status_labels_and_descriptions_are_not_empty(self) -> None:
        for group_name, statuses in STATUS_GROUPS.items():
            self.assertTrue(statuses, f"grupo vazio: {group_name}")
            for status in statuses:
                self.assertTrue((status.get("label") or "").strip(), f"label vazio em {group_name}:{status.get('key')}")
                self.assertTrue(
                    (status.get("description") or "").strip(),
                    f"descricao vazia em {group_name}:{status.get('key')}",
                )

    def test_status_label_fallbacks(self) -> None:
        self.assertEqual(status_label("pagamento", "in_escrow"), "Em custodia")
        self.assertEqual(status_label("pagamento", "desconhecido"), "desconhecido")
        self.assertEqual(status_label("pagamento", "desconhecido", "-"), "-")

    def test_every_critical_action_has_a_confirmation_text(self) -> None:
        for action_key, meta in CRITICAL_ACTIONS.items():
            self.assertIn(meta["confirm_message_key"], MESSAGES["confirm"], f"confirmacao ausente: {action_key}")
            self.assertNotEqual(confirm_message(meta["confirm_message_key"]), meta["confirm_message_key"])

    def test_error_message_fallback(self) -> None:
        self.assertTrue(error_message("unexpected_error"))
        self.assertEqual(error_message("chave_inexistente", "padrao"), "padrao")

    def test_frontend_bundle_exposes_labels(self) -> None:
        bundle = frontend_bundle()
        self.assertEqual(set(bundle["status_groups"].keys()), set(STATUS_GROUPS.keys()))
        self.assertEqual(len(bundle["document_types"]), len(DOCUMENT_TYPE_LABELS))
        self.assertIn("error", bundle["messages"])


if __name__ == "__main__":
    unittest.main()
