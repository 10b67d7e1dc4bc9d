"""Sender identity normalization."""
import re

_NON_DIGITS = re.compile(r"\D")


def normalize_sender_id(raw: str | int) -> str:
    """
    Normalize an external sender handle to a canonical digit string.

    Strips every non-digit character. Brazilian mobile numbers that arrive
    without the ninth digit (55 + two-digit area code + 8 digits) get the
    leading 9 restored so both forms map to the same sender.

    Args:
        raw: Phone number or numeric account ID, in any formatting

    Returns:
        Canonical digit string (may be empty if the input had no digits)
    """
    clean = _NON_DIGITS.sub("", str(raw))

    if clean.startswith("55") and len(clean) == 12:
        country_code = clean[:2]
        area_code = clean[2:4]
        number = clean[4:]
        return f"{country_code}{area_code}9{number}"

    return clean
