# --- Log sanitizer: collapse remote error pages and oversized bodies ------------
# Failed pushes/pulls and printer errors often carry a full HTML error page from a
# proxy or captive portal; keep one readable line in the log instead.
import logging, re

_HTML_SIG_RE = re.compile(r'(?is)<!DOCTYPE html|<html[^>]*>')
_TITLE_RE    = re.compile(r'(?is)<title[^>]*>(.*?)</title>')
_TAG_RE      = re.compile(r'(?is)<[^>]+>')
_SCRIPT_RE   = re.compile(r'(?is)<(script|style)[^>]*>.*?</\1>')

MAX_MESSAGE_CHARS = 4000


def _strip_tags(s: str) -> str:
    s = _SCRIPT_RE.sub('', s)
    s = _TAG_RE.sub(' ', s)
    return re.sub(r'\s+', ' ', s).strip()


def summarize_html(s: str, limit: int = 200) -> str:
    title = None
    m = _TITLE_RE.search(s)
    if m:
        title = _strip_tags(m.group(1))
    preview = title or _strip_tags(s)[:limit]
    return f"{preview} [HTML {len(s)} chars trimmed]"


class RemoteBodyTrimFilter(logging.Filter):
    """Replace HTML blobs with a summary and cap anything longer than MAX_MESSAGE_CHARS."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except Exception:
            return True
        if not isinstance(msg, str) or len(msg) <= 200:
            return True
        if _HTML_SIG_RE.search(msg):
            record.msg = summarize_html(msg)
            record.args = ()
        elif len(msg) > MAX_MESSAGE_CHARS:
            record.msg = f"{msg[:MAX_MESSAGE_CHARS]} [{len(msg) - MAX_MESSAGE_CHARS} chars trimmed]"
            record.args = ()
        return True


def install(names=("", "uvicorn", "uvicorn.error")) -> RemoteBodyTrimFilter:
    flt = RemoteBodyTrimFilter()
    for name in names:
        logger = logging.getLogger(name)
        if not any(isinstance(f, RemoteBodyTrimFilter) for f in logger.filters):
            logger.addFilter(flt)
    return flt


# install once on common loggers (root + uvicorn family)
install()
# --------------------------------------------------------------------------------
