import unittest
from datetime import date, datetime, timedelta, timezone

from cotacoes.quoting.documents import (
    days_until_expiry,
    eligibility_status,
    file_extension,
    is_eligible,
    is_expired,
    is_expiring_soon,
    safe_filename,
    storage_key,
    summarize_documents,
)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _iso(value: datetime) -> str:
    return value.isoformat()


class DocumentHelpersTest(unittest.TestCase):
    def test_file_names(self) -> None:
        self.assertEqual(file_extension("Contrato.PDF"), "pdf")
        self.assertEqual(file_extension("sem_extensao"), "")
        self.assertEqual(safe_filename("../../etc/passwd"), "passwd")
        self.assertEqual(safe_filename("certidão negativa.pdf"), "certid_o_negativa.pdf")
        self.assertEqual(safe_filename(""), "documento")

    def test_storage_key_is_relative_to_supplier(self) -> None:
        key = storage_key(7, "cnpj", "pdf", now=NOW)
        self.assertEqual(key, f"7/cnpj_{int(NOW.timestamp() * 1000)}.pdf")

    def test_expiry_helpers(self) -> None:
        soon = {"status": "validated", "expiry_date": _iso(NOW + timedelta(days=10))}
        late = {"status": "validated", "expiry_date": _iso(NOW + timedelta(days=90))}
        past = {"status": "validated", "expiry_date": _iso(NOW - timedelta(days=1))}

        self.assertEqual(days_until_expiry(soon, now=NOW), 10)
        self.assertIsNone(days_until_expiry({}, now=NOW))
        self.assertTrue(is_expiring_soon(soon, 30, now=NOW))
        self.assertFalse(is_expiring_soon(late, 30, now=NOW))
        self.assertFalse(is_expiring_soon({**soon, "status": "pending"}, 30, now=NOW))
        self.assertTrue(is_expired(past, now=NOW))
        self.assertFalse(is_expired(soon, now=NOW))
        self.assertFalse(is_expired({"status": "validated"}, now=NOW))

    def test_date_only_expiry_lasts_the_whole_day(self) -> None:
        today = {"status": "validated", "expiry_date": "2026-03-01"}
        yesterday = {"status": "validated", "expiry_date": "2026-02-28"}
        self.assertFalse(is_expired(today, now=NOW))
        self.assertFalse(is_expired(today, now=datetime(2026, 3, 1, 23, 59, tzinfo=timezone.utc)))
        self.assertTrue(is_expired(today, now=datetime(2026, 3, 2, 0, 1, tzinfo=timezone.utc)))
        self.assertTrue(is_expired(yesterday, now=NOW))
        self.assertTrue(is_expired({"expiry_date": date(2026, 2, 28)}, now=NOW))
        self.assertEqual(days_until_expiry(today, now=NOW), 0)
        self.assertTrue(is_expiring_soon(today, 30, now=NOW))

    def test_summary_and_eligibility(self) -> None:
        documents = [{"status": "validated"}, {"status": "validated"}, {"status": "pending"}]
        summary = summarize_documents(documents)
        self.assertEqual(summary["total"], 3)
        self.assertEqual(summary["validated"], 2)
        self.assertEqual(eligibility_status(documents), "pending")

        self.assertEqual(eligibility_status([]), "not_checked")
        self.assertEqual(eligibility_status([{"status": "validated"}, {"status": "expired"}]), "ineligible")
        self.assertTrue(is_eligible([{"status": "validated"}]))
        self.assertFalse(is_eligible([{"status": "rejected"}]))


if __name__ == "__main__":
    unittest.main()
