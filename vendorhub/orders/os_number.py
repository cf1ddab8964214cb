# vendorhub/orders/os_number.py
"""
Extract the canonical ``OS-<digits>`` order reference from free-form text.

Reference codes are typed by people, often on Japanese-locale systems, so the
same code shows up as ``(OS-01115463)``, ``OS01115463``, ``OS 01115463`` or in
full-width form ``（ｏｓ－０１１１５４６３）``.
"""
from __future__ import annotations

import re
from typing import Iterable, Optional

# hyphen-like characters people type between "OS" and the digits
_SEPARATORS = (
    "-"        # hyphen-minus
    "_"
    "‐"   # hyphen
    "‑"   # non-breaking hyphen
    "‒"   # figure dash
    "–"   # en dash
    "—"   # em dash
    "―"   # horizontal bar
    "−"   # minus sign
    "ー"   # katakana prolonged sound mark
    "﹣"   # small hyphen-minus
)

OS_NUMBER_RE = re.compile(
    r"(?:^|[^A-Z0-9])O\s*S[\s" + re.escape(_SEPARATORS) + r"]*?([0-9]+)(?=$|[^A-Z0-9])"
)

_FULLWIDTH_START = 0xFF01  # ！
_FULLWIDTH_END = 0xFF5E    # ～
_FULLWIDTH_OFFSET = 0xFEE0


def to_half_width(value: str) -> str:
    """Map full-width ASCII variants (U+FF01..U+FF5E) and the ideographic space to ASCII."""
    out = []
    for ch in value:
        cp = ord(ch)
        if _FULLWIDTH_START <= cp <= _FULLWIDTH_END:
            out.append(chr(cp - _FULLWIDTH_OFFSET))
        elif cp == 0x3000:
            out.append(" ")
        else:
            out.append(ch)
    return "".join(out)


def extract_os_number(value: Optional[str]) -> Optional[str]:
    """
    Return ``OS-<digits>`` for the first reference found in ``value``, else None.

    >>> extract_os_number("(OS-01115463)")
    'OS-01115463'
    >>> extract_os_number("千葉県 白井市中 149-1MT2F バース16") is None
    True
    """
    if not value:
        return None
    normalized = to_half_width(value).upper()
    m = OS_NUMBER_RE.search(normalized)
    if not m:
        return None
    return f"OS-{m.group(1)}"


def extract_os_number_from_parts(values: Iterable[Optional[str]]) -> Optional[str]:
    """First successful extraction in input order; None/empty entries are skipped."""
    for value in values:
        found = extract_os_number(value)
        if found:
            return found
    return None
