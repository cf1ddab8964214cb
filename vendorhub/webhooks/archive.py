# vendorhub/webhooks/archive.py
from __future__ import annotations
import base64, json, time
from pathlib import Path
from typing import Mapping, Any

from vendorhub.webhooks.verification import HMAC_HEADER


def _redact(headers: Mapping[str, str]) -> dict[str, str]:
    out = {}
    for k, v in headers.items():
        out[k] = "<redacted>" if k.lower() == HMAC_HEADER.lower() else v
    return out


def _safe(part: str | None) -> str:
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in (part or ""))


def archive_ingress(base_dir: str | Path, headers: Mapping[str, str], body: bytes, *,
                    webhook_id: str | None, topic: str | None, shop_domain: str | None) -> str:
    """
    Persist a raw delivery (headers + body) under ``base_dir``.
    Files are named <yymmdd>-<topic>-<n>.json. Returns the path written.
    """
    root = Path(base_dir)
    root.mkdir(parents=True, exist_ok=True)
    ts_short = time.strftime("%y%m%d", time.gmtime())
    base_pattern = f"{ts_short}-{_safe((topic or 'unknown').replace('/', '.'))}"

    seq = 1
    nums = []
    for f in root.glob(f"{base_pattern}-*.json"):
        tail = f.stem.rsplit("-", 1)[-1]
        if tail.isdigit():
            nums.append(int(tail))
    if nums:
        seq = max(nums) + 1

    path = root / f"{base_pattern}-{seq}.json"
    doc: dict[str, Any] = {
        "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "shop_domain": shop_domain,
        "topic": topic,
        "webhook_id": webhook_id,
        "headers": _redact(dict(headers)),
        "body_len": len(body or b""),
        "body_preview": (body[:256].decode("utf-8", "ignore") if body else ""),
        "body_b64": base64.b64encode(body or b"").decode("ascii"),
    }
    path.write_text(json.dumps(doc, ensure_ascii=False, indent=2), encoding="utf-8")
    return str(path)
