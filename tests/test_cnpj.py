import unittest

from cotacoes.quoting.cnpj import build_cnpj, format_cnpj, is_valid_cnpj, normalize_cnpj


class CnpjTest(unittest.TestCase):
    def test_valid_cnpj_with_and_without_mask(self) -> None:
        self.assertTrue(is_valid_cnpj("11222333000181"))
        self.assertTrue(is_valid_cnpj("11.222.333/0001-81"))

    def test_wrong_check_digits_are_rejected(self) -> None:
        self.assertFalse(is_valid_cnpj("11222333000182"))
        self.assertFalse(is_valid_cnpj("11222333000191"))

    def test_repeated_digits_and_wrong_length_are_rejected(self) -> None:
        self.assertFalse(is_valid_cnpj("00000000000000"))
        self.assertFalse(is_valid_cnpj("11111111111111"))
        self.assertFalse(is_valid_cnpj("1122233300018"))
        self.assertFalse(is_valid_cnpj(""))
        self.assertFalse(is_valid_cnpj(None))

    def test_normalize_and_format(self) -> None:
        self.assertEqual(normalize_cnpj("11.222.333/0001-81"), "11222333000181")
        self.assertEqual(format_cnpj("11222333000181"), "11.222.333/0001-81")
        self.assertEqual(format_cnpj("123"), "123")

    def test_build_appends_check_digits(self) -> None:
        self.assertEqual(build_cnpj("112223330001"), "11222333000181")
        self.assertTrue(is_valid_cnpj(build_cnpj("123456780001")))
        with self.assertRaises(ValueError):
            build_cnpj("1234")


if __name__ == "__main__":
    unittest.main()
