# --- Global log sanitizer: keep signatures and bearer tokens out of logs --------
import logging, re

_HMAC_RE   = re.compile(r'(?i)(x-shopify-hmac-sha256[\'"]?\s*[:=]\s*[\'"]?)([A-Za-z0-9+/=]+)')
_BEARER_RE = re.compile(r'(?i)(bearer\s+)([A-Za-z0-9._~+/=-]+)')


def redact(s: str) -> str:
    s = _HMAC_RE.sub(r'\1<redacted>', s)
    return _BEARER_RE.sub(r'\1<redacted>', s)


class _SecretRedactFilter(logging.Filter):
    """If a log message carries a webhook signature or bearer token, mask it."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            return True
        if isinstance(msg, str):
            cleaned = redact(msg)
            if cleaned != msg:
                record.msg = cleaned
                record.args = ()
        return True


def install() -> None:
    """Attach the filter once to root, the uvicorn loggers and the root handlers."""
    targets: list = [logging.getLogger(n) for n in ("", "uvicorn", "uvicorn.error", "uvicorn.access")]
    # records propagated from child loggers only pass through handler filters
    targets.extend(logging.getLogger().handlers)
    for t in targets:
        if not any(isinstance(f, _SecretRedactFilter) for f in t.filters):
            t.addFilter(_SecretRedactFilter())
# --------------------------------------------------------------------------------
