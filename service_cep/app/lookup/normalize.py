"""
CEP normalization helpers.
"""

from shared.errors import InvalidCepError

CEP_LENGTH = 8


def normalize_cep(value: str) -> str:
    """Strip every non-digit character and require exactly 8 digits."""
    digits = "".join(ch for ch in value or "" if "0" <= ch <= "9")
    if len(digits) != CEP_LENGTH:
        raise InvalidCepError(details={"value": value})
    return digits


def format_cep(value: str) -> str:
    """Add the canonical hyphen to an 8-digit CEP (12345678 -> 12345-678)."""
    if len(value) != CEP_LENGTH:
        return value
    return f"{value[:5]}-{value[5:]}"
