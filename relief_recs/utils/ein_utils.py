"""
EIN (Employer Identification Number) utilities.

Provides consistent formatting and validation for EIN numbers, and the
stable identifier rule for directory records: the tax registration number
when present, otherwise the provider slug.
EIN format: XX-XXXXXXX (9 digits with hyphen after first 2)
"""

import re
from typing import Optional


def normalize_ein(ein: Optional[str]) -> Optional[str]:
    """
    Normalize EIN to standard XX-XXXXXXX format.

    Args:
        ein: EIN string in any format (with or without hyphen)

    Returns:
        Normalized EIN in XX-XXXXXXX format, or None if invalid

    Examples:
        >>> normalize_ein("123456789")
        '12-3456789'
        >>> normalize_ein("12-3456789")
        '12-3456789'
        >>> normalize_ein("12 3456789")
        '12-3456789'
        >>> normalize_ein("invalid")
        None
    """
    if not ein:
        return None

    # Remove all non-digit characters
    digits = re.sub(r"\D", "", str(ein))

    # Must be exactly 9 digits
    if len(digits) != 9:
        return None

    # Valid IRS prefixes are 01-99
    prefix = int(digits[:2])
    if prefix < 1 or prefix > 99:
        return None

    # Placeholder values the directory sometimes carries
    if len(set(digits)) == 1:
        return None

    return f"{digits[:2]}-{digits[2:]}"


def ein_to_digits(ein: Optional[str]) -> Optional[str]:
    """
    Convert EIN to digits-only format (for API calls).

    Args:
        ein: EIN in any format

    Returns:
        9-digit string without hyphen, or None if invalid
    """
    normalized = normalize_ein(ein)
    if normalized:
        return normalized.replace("-", "")
    return None


def normalize_slug(slug: Optional[str]) -> Optional[str]:
    """Lowercase and trim a provider slug; empty slugs become None."""
    if not slug:
        return None
    slug = str(slug).strip().lower()
    return slug or None


def resolve_identifier(ein: Optional[str], slug: Optional[str]) -> Optional[str]:
    """
    Stable identifier for a directory record.

    Prefers the normalized EIN; falls back to the provider slug so records
    without a tax registration number can still be deduplicated.

    Examples:
        >>> resolve_identifier("123456789", "red-cross")
        '12-3456789'
        >>> resolve_identifier(None, "Red-Cross")
        'red-cross'
        >>> resolve_identifier(None, None)
        None
    """
    return normalize_ein(ein) or normalize_slug(slug)
