"""Chilean RUT handling: normalization, format and mod-11 check digit."""

from __future__ import annotations

import re

_RUT_FORMAT = re.compile(r"^\d{7,8}-[\dK]$")
_COMPACT_BODY_ONLY = re.compile(r"^\d{7,8}$")
_COMPACT_WITH_DV = re.compile(r"^(\d{7,8})([\dK])$")


def compute_check_digit(body: str) -> str:
    total = 0
    multiplier = 2
    for digit in reversed(body):
        total += int(digit) * multiplier
        multiplier = 2 if multiplier == 7 else multiplier + 1
    remainder = 11 - (total % 11)
    if remainder == 11:
        return "0"
    if remainder == 10:
        return "K"
    return str(remainder)


def normalize_national_id(raw: str) -> str:
    compact = raw.strip().replace(".", "").replace(" ", "").upper()
    if "-" in compact:
        return compact
    match = _COMPACT_WITH_DV.match(compact)
    if match and not _COMPACT_BODY_ONLY.match(compact):
        return f"{match.group(1)}-{match.group(2)}"
    return compact


def is_valid_national_id(raw: str) -> bool:
    rut = normalize_national_id(raw)
    if not _RUT_FORMAT.match(rut):
        return False
    body, check_digit = rut.split("-")
    return compute_check_digit(body) == check_digit
