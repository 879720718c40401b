"""Sender address parsing and normalization."""

import re

_ANGLE_ADDR = re.compile(r"<\s*([^>\s]+@[^>\s]+)\s*>")
_BARE_ADDR = re.compile(r"([A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,})", re.IGNORECASE)
_WRAPPED = re.compile(r"<([^>]+)>")


def normalize_from_email(value: str | None) -> str | None:
    """Normalize a sender address.

    Accepts ``addr`` or ``Name <addr>``. Returns the lower-cased address, or
    None when the input is empty, has no ``@``, or contains whitespace.
    """
    if not value:
        return None
    s = value.strip()
    m = _WRAPPED.search(s)
    email = (m.group(1) if m else s).strip().lower()
    if not email or "@" not in email or any(ch.isspace() for ch in email):
        return None
    return email


def extract_from_email(header: str | None) -> str | None:
    """Pull the sender address out of a raw ``From`` header.

    Handles ``"Display Name" <a@b.c>``, encoded display names
    (``=?UTF-8?B?...?= <a@b.c>``) and bare addresses.
    """
    if not header:
        return None
    s = header.strip()
    if not s:
        return None
    angle = _ANGLE_ADDR.search(s)
    if angle:
        return normalize_from_email(angle.group(1))
    token = _BARE_ADDR.search(s)
    if token:
        return normalize_from_email(token.group(1))
    return None


def extract_from_domain(email: str | None) -> str | None:
    """Return the domain part of a sender address, or None."""
    normalized = normalize_from_email(email)
    if not normalized:
        return None
    domain = normalized.rsplit("@", 1)[1]
    return domain or None
