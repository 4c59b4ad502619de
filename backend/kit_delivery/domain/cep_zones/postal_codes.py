"""Brazilian postal code (CEP) normalization.

Every comparison against zone ranges happens on the canonical form produced here:
exactly eight ASCII digits, zero-padded on the left. Fixed width is what makes the
plain string comparison in ``ranges`` equivalent to numeric order.
"""

from __future__ import annotations

import re

from kit_delivery.domain.cep_zones.errors import InvalidPostalCode

CEP_LENGTH = 8

_CANONICAL_RE = re.compile(r"^[0-9]{8}$")


def _digits(raw: str) -> str:
    return "".join(ch for ch in raw if "0" <= ch <= "9")


def normalize_postal_code(raw: str | None, *, pad: bool = False) -> str:
    """Return the canonical 8-digit form of ``raw``.

    Customer input must carry all eight digits once punctuation is removed, so
    ``"58.083-000"`` is accepted and ``"583000"`` is not. With ``pad=True`` shorter
    values are left-padded with zeros; stored range bounds use this because bounds
    saved as numbers lost their leading zeros.
    """
    if raw is None or not isinstance(raw, str):
        raise InvalidPostalCode(detail="CEP must be a string of 8 digits")
    digits = _digits(raw)
    if not digits:
        raise InvalidPostalCode(detail=f"CEP '{raw}' contains no digits")
    if pad:
        digits = digits.zfill(CEP_LENGTH)
    if not _CANONICAL_RE.match(digits):
        raise InvalidPostalCode(detail=f"CEP '{raw}' must have exactly {CEP_LENGTH} digits")
    return digits


def is_valid_postal_code(raw: str | None) -> bool:
    try:
        normalize_postal_code(raw)
    except InvalidPostalCode:
        return False
    return True


def format_postal_code(code: str) -> str:
    """Format a CEP for display as ``NNNNN-NNN``; malformed values are returned as-is."""
    try:
        canonical = normalize_postal_code(code)
    except InvalidPostalCode:
        return code
    return f"{canonical[:5]}-{canonical[5:]}"
