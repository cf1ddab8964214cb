from __future__ import annotations

import re

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def normalize_shop_domain(shop_domain: str | None) -> str | None:
    """'https://Foo.myshopify.com/' -> 'foo.myshopify.com'."""
    if not shop_domain:
        return None
    return _SCHEME_RE.sub("", shop_domain).strip().strip("/").lower() or None
