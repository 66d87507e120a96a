"""
Chapterwatch - Pairing Codes
Format of the single-use codes that admit new users.

A code is eight uppercase hex digits split by a dash ("3F9A-07C2").
Input is forgiving about case and spaces; anything else is malformed.
"""

import re
import secrets
from typing import Optional

PAIRING_CODE_PATTERN = re.compile(r"^[0-9A-F]{4}-[0-9A-F]{4}$")
PAIRING_CODE_FORMAT = "XXXX-XXXX"


def generate_pairing_code() -> str:
    """Random code from a cryptographic source."""
    digits = secrets.token_hex(4).upper()
    return f"{digits[:4]}-{digits[4:]}"


def normalize_pairing_code(text: Optional[str]) -> Optional[str]:
    """Canonical form of a typed code, or None when it is not a pairing code."""
    if not isinstance(text, str):
        return None
    raw = text.strip().upper().replace(" ", "")
    if PAIRING_CODE_PATTERN.match(raw) is None:
        return None
    return raw
