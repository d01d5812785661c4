"""CNPJ (Cadastro Nacional da Pessoa Juridica) helpers.

A CNPJ has 12 base digits followed by two check digits, each computed as a
weighted sum modulo 11 over the preceding digits.
"""

from __future__ import annotations

import re


_NON_DIGITS = re.compile(r"\D")

FIRST_CHECK_WEIGHTS = (5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)
SECOND_CHECK_WEIGHTS = (6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)


def normalize_cnpj(value: object) -> str:
    return _NON_DIGITS.sub("", str(value or ""))


def _check_digit(digits: str, weights: tuple[int, ...]) -> int:
    total = sum(int(digit) * weight for digit, weight in zip(digits, weights))
    remainder = total % 11
    return 0 if remainder < 2 else 11 - remainder


def is_valid_cnpj(value: object) -> bool:
    digits = normalize_cnpj(value)
    if len(digits) != 14:
        return False
    if digits == digits[0] * 14:
        return False

    first = _check_digit(digits[:12], FIRST_CHECK_WEIGHTS)
    if first != int(digits[12]):
        return False
    second = _check_digit(digits[:13], SECOND_CHECK_WEIGHTS)
    return second == int(digits[13])


def format_cnpj(value: object) -> str:
    digits = normalize_cnpj(value)
    if len(digits) != 14:
        return digits
    return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-{digits[12:]}"


def build_cnpj(base: str) -> str:
    """Appends both check digits to a 12-digit base."""
    digits = normalize_cnpj(base)
    if len(digits) != 12:
        raise ValueError("CNPJ base must have 12 digits")
    digits += str(_check_digit(digits, FIRST_CHECK_WEIGHTS))
    digits += str(_check_digit(digits, SECOND_CHECK_WEIGHTS))
    return digits
