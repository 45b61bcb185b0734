"""
Apartment number normalization and validation.

Residents type their apartment number into a chat window, so the raw text
arrives in every imaginable shape ("a14-1", " A 14-1 ", "14f-1"). These
helpers turn that text into the canonical key stored in the database and
decide whether the result is a key we accept at all.

Accepted shapes (after normalization):
  14F-1    floor-unit form
  A-14-1   block-floor-unit form

Normalization never fails; validity is a separate question.
"""

import re
from typing import Optional

# "A14-1": block letter glued to the floor number
_MISSING_BLOCK_SEPARATOR_RE = re.compile(r"^([A-Z])(\d{1,2})-(\d{1,2})$", re.ASCII)

_FLOOR_UNIT_RE = re.compile(r"^(\d{1,2})F-(\d{1,2})$", re.ASCII)
_BLOCK_FLOOR_UNIT_RE = re.compile(r"^([A-Z])-(\d{1,2})-(\d{1,2})$", re.ASCII)

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_apartment_no(raw: Optional[str]) -> str:
    """
    Convert free-text input into a canonical apartment key.

    Examples:
        "a14-1"     -> "A-14-1"
        " A 14-1 "  -> "A-14-1"
        "14f-1"     -> "14F-1"
        "lobby"     -> "LOBBY"   (unchanged shape, just cleaned)
        None        -> ""
    """
    if raw is None:
        return ""

    s = _WHITESPACE_RE.sub("", str(raw).strip()).upper()

    m = _MISSING_BLOCK_SEPARATOR_RE.match(s)
    if m:
        return f"{m.group(1)}-{m.group(2)}-{m.group(3)}"

    return s


def is_valid_apartment_no(raw: Optional[str]) -> bool:
    """Return True if raw normalizes to one of the accepted key shapes."""
    s = normalize_apartment_no(raw)
    return bool(_FLOOR_UNIT_RE.match(s) or _BLOCK_FLOOR_UNIT_RE.match(s))


def apartment_sort_key(apartment_no: str) -> tuple:
    """
    Sort key ordering apartments by block, then floor, then unit.

    Floor and unit compare numerically so "A-10-1" sorts after "A-2-1".
    Floor-unit keys ("14F-1") have no block and sort ahead of lettered
    blocks. Keys that match neither shape sort after every well-formed key,
    falling back to plain string order.
    """
    m = _BLOCK_FLOOR_UNIT_RE.match(apartment_no)
    if m:
        return (0, m.group(1), int(m.group(2)), int(m.group(3)), apartment_no)

    m = _FLOOR_UNIT_RE.match(apartment_no)
    if m:
        return (0, "", int(m.group(1)), int(m.group(2)), apartment_no)

    return (1, "", 0, 0, apartment_no)
