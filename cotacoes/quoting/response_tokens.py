from __future__ import annotations

import secrets


# Sem 0/O e 1/I: o codigo curto e digitado a partir de mensagens.
SHORT_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
SHORT_CODE_LENGTH = 8

REMINDER_STEPS = {"pending": "reminded_once", "reminded_once": "reminded_twice"}


def new_response_token() -> tuple[str, str]:
    """Returns ``(full_token, short_code)`` for a supplier invited to a quote."""
    short_code = "".join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(SHORT_CODE_LENGTH))
    return secrets.token_urlsafe(24), short_code


def normalize_token(value) -> str:
    token = str(value or "").strip()
    if len(token) == SHORT_CODE_LENGTH:
        return token.upper()
    return token


def next_reminder_status(status: str | None) -> str | None:
    """``pending`` -> ``reminded_once`` -> ``reminded_twice``; None once reminders are exhausted."""
    return REMINDER_STEPS.get(str(status or "pending"))
