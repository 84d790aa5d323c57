# --- Global log sanitizer: keep partner credentials out of the logs --------------
import logging, re

_BEARER_RE = re.compile(r'(?i)(bearer\s+)[A-Za-z0-9._~+/=-]+')
_SECRET_RE = re.compile(r'(?i)((?:clientSecret|client_secret|accessToken|access_token)["\']?\s*[=:]\s*["\']?)[^&"\'\s,}]+')

def redact(s: str) -> str:
    s = _BEARER_RE.sub(r'\1<redacted>', s)
    return _SECRET_RE.sub(r'\1<redacted>', s)

class _SecretRedactFilter(logging.Filter):
    """Rewrite records that carry a bearer token or client secret."""
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
    # install once on common loggers (root + uvicorn family)
    for _name in ("", "uvicorn", "uvicorn.error"):
        lg = logging.getLogger(_name)
        if not any(isinstance(f, _SecretRedactFilter) for f in lg.filters):
            lg.addFilter(_SecretRedactFilter())

install()
# --------------------------------------------------------------------------------
