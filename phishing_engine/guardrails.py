
# guardrails.py
# Runtime limits, input sanitisation, outbound HTTP and log redaction
# shared by every signal module.

import os
import re
import time
import json
import logging
import threading
import html
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Tuple, Union
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# =========================
# Global policy knobs
# =========================
@dataclass
class SafetyPolicy:
    # Per-email workload caps
    MAX_URLS_PER_EMAIL: int = 20
    MAX_ATTS_PER_EMAIL: int = 10
    MAX_HEADER_VALUE_LEN: int = 4096

    # Outbound HTTP
    MAX_REDIRECT_HOPS: int = 6
    REQ_TIMEOUT_SEC: int = 30
    TOTAL_DOWNLOAD_CAP_BYTES: int = 2_000_000
    HTTP_RETRIES: int = 3

    # Registry / DNS / scanner bounds
    WHOIS_TIMEOUT_SEC: int = 10
    DNS_LIFETIME_SEC: float = 5.0
    ATTACHMENT_POLL_ATTEMPTS: int = 15
    ATTACHMENT_POLL_INTERVAL_SEC: float = 4.0
    ATTACHMENT_REQ_TIMEOUT_SEC: int = 60

    # Whole-analysis bound
    ANALYSIS_TIMEOUT_SEC: int = 180

    # Per-run cache TTLs
    whois_ttl: int = 86400
    dns_ttl: int = 3600

    # What gets masked in logs and printed reports
    REDACT_EMAIL: bool = True
    REDACT_URL: bool = True
    REDACT_IP: bool = True

    SUPPORTED_EXTENSIONS: Tuple[str, ...] = (".eml", ".msg")

    # PhishStats breaker
    CB_FAILURE_THRESHOLD: int = 5
    CB_RESET_TIMEOUT_SEC: int = 60

POLICY = SafetyPolicy()

# =========================
# PII redaction
# =========================
URL_RE = re.compile(r'https?://[^\s"\'<>]+', re.I)
EMAIL_RE = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
IP_RE = re.compile(r'\b(?:\d{1,3}\.){3}\d{1,3}\b')
CC_RE = re.compile(r'\b(?:\d[ -]*?){13,19}\b')
PHONE_RE = re.compile(r'\+?\d[\d -]{7,}\d')

# (policy toggle, pattern, mask); URLs go first so their hosts are not half-masked
REDACTIONS = (
    ("REDACT_URL", URL_RE, "[url_redacted]"),
    ("REDACT_EMAIL", EMAIL_RE, "[email_redacted]"),
    ("REDACT_IP", IP_RE, "[ip_redacted]"),
    (None, CC_RE, "[card_redacted]"),
    (None, PHONE_RE, "[phone_redacted]"),
)

def redact_pii(text: str, policy: SafetyPolicy = POLICY) -> str:
    if not text:
        return text
    for toggle, pattern, mask in REDACTIONS:
        if toggle is None or getattr(policy, toggle):
            text = pattern.sub(mask, text)
    return text

def redact_report_text(report: str) -> str:
    return redact_pii(report or "")

# =========================
# Email text sanitisation
# =========================
SCRIPT_TAG_RE = re.compile(r'(?is)<script.*?>.*?</script>')
STYLE_TAG_RE = re.compile(r'(?is)<style.*?>.*?</style>')
HTML_TAG_RE = re.compile(r'(?s)<[^>]+>')
CONTROL_CHARS_RE = re.compile(r'[\x00-\x08\x0B\x0C\x0E-\x1F]')

def sanitize_text(text: str) -> str:
    """Visible text of an HTML body: no scripts, styles or tags, entities decoded."""
    if not text:
        return ""
    for pattern in (SCRIPT_TAG_RE, STYLE_TAG_RE, HTML_TAG_RE):
        text = pattern.sub(" ", text)
    return " ".join(html.unescape(text).split())

def sanitize_headers(headers: Dict[str, Any], policy: SafetyPolicy = POLICY) -> Dict[str, str]:
    clean = {}
    for name, value in (headers or {}).items():
        value = CONTROL_CHARS_RE.sub("", str(value or "")).strip()
        clean[name] = value[:policy.MAX_HEADER_VALUE_LEN]
    return clean

def validate_url(url: str) -> bool:
    """Only absolute http(s) URLs with a host are ever fetched or looked up."""
    try:
        parsed = urlparse(url or "")
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)

def cap_list(items: List[Any], cap: int) -> List[Any]:
    items = list(items or [])
    return items[:cap] if cap > 0 else items

# =========================
# Outbound HTTP
# =========================
class SafeHTTPClient:
    """
    requests session with retries on idempotent calls, a fixed timeout,
    a redirect-chain cap and a response-size cap.
    """

    def __init__(self, timeout_sec: int = POLICY.REQ_TIMEOUT_SEC,
                 max_redirects: int = POLICY.MAX_REDIRECT_HOPS,
                 max_bytes: int = POLICY.TOTAL_DOWNLOAD_CAP_BYTES):
        self.timeout = timeout_sec
        self.max_redirects = max_redirects
        self.max_bytes = max_bytes
        self.session = requests.Session()
        self.session.headers["User-Agent"] = "phishing-detection-engine/0.1"
        retry = Retry(
            total=POLICY.HTTP_RETRIES,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=("GET", "HEAD"),
        )
        adapter = HTTPAdapter(max_retries=retry)
        for prefix in ("https://", "http://"):
            self.session.mount(prefix, adapter)

    def get(self, url: str, **kwargs) -> requests.Response:
        return self._request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> requests.Response:
        # uploads are not retried by the adapter
        return self._request("POST", url, **kwargs)

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        if not validate_url(url):
            raise ValueError(f"invalid_url: {url!r}")
        resp = self.session.request(method, url, timeout=self.timeout, allow_redirects=True, **kwargs)
        if len(resp.history) > self.max_redirects:
            raise RuntimeError(f"too_many_redirects({len(resp.history)})")
        length = resp.headers.get("Content-Length")
        if length and length.isdigit() and int(length) > self.max_bytes:
            raise RuntimeError(f"response_too_large({length})")
        return resp

# =========================
# Circuit breaker
# =========================
class CircuitBreaker:
    """Opens after ``failure_threshold`` consecutive failures for ``reset_timeout`` seconds."""

    def __init__(self, failure_threshold: int = POLICY.CB_FAILURE_THRESHOLD,
                 reset_timeout: float = POLICY.CB_RESET_TIMEOUT_SEC,
                 clock=time.monotonic):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.clock = clock
        self.failures = 0
        self._open_until: Optional[float] = None
        self._lock = threading.Lock()

    def allow(self) -> bool:
        with self._lock:
            if self._open_until is None:
                return True
            if self.clock() >= self._open_until:
                # half-open: let the next call through, reopen on its failure
                self._open_until = None
                self.failures = self.failure_threshold - 1
                return True
            return False

    def record_success(self):
        with self._lock:
            self.failures = 0
            self._open_until = None

    def record_failure(self):
        with self._lock:
            self.failures += 1
            if self.failures >= self.failure_threshold:
                self._open_until = self.clock() + self.reset_timeout

# =========================
# Logging with redaction
# =========================
class RedactionFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, (dict, list)):
            try:
                record.msg = json.dumps(record.msg, ensure_ascii=False, default=str)
            except (TypeError, ValueError):
                record.msg = "[redacted]"
        if isinstance(record.msg, str):
            # render args first so they are masked too
            record.msg = redact_pii(record.getMessage())
            record.args = None
        return True

def setup_safe_logging(level: Union[int, str] = logging.INFO) -> logging.Logger:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
    for handler in root.handlers:
        if not any(isinstance(f, RedactionFilter) for f in handler.filters):
            handler.addFilter(RedactionFilter())

    for noisy in ("urllib3", "whois"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return root

# =========================
# Secrets (environment / .env)
# =========================
def get_secret(name: str, required: bool = True, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name) or default
    if required and not value:
        raise RuntimeError(f"missing_secret:{name}")
    return value
