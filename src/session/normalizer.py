"""Destination phone number normalization.

Maps a free-form phone string to the chat identifier the protocol client
routes on: ``<country code><subscriber digits>@c.us``. Normalization never
fails; whether the result names a real account is decided later by the
client's registration check.
"""

from __future__ import annotations

import re

DEFAULT_COUNTRY_CODE = "62"
TRUNK_PREFIX = "0"
CHAT_SUFFIX = "@c.us"

_NON_DIGITS = re.compile(r"[^0-9]")


def normalize_digits(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Return the country-prefixed digit string for ``raw``."""
    digits = _NON_DIGITS.sub("", raw)
    if digits.startswith(TRUNK_PREFIX):
        return country_code + digits[len(TRUNK_PREFIX):]
    if not digits.startswith(country_code):
        return country_code + digits
    return digits


def normalize(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Return the routable chat identifier for ``raw``.

    >>> normalize("0812-3456-7890")
    '6281234567890@c.us'
    """
    return normalize_digits(raw, country_code) + CHAT_SUFFIX
