import re
import time
import logging
import mimetypes

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlparse

import requests
import extract_msg

from .guardrails import (
    POLICY,
    SafeHTTPClient,
    CircuitBreaker,
    sanitize_text,
    sanitize_headers,
    cap_list,
    validate_url,
    get_secret,
)

logger = logging.getLogger(__name__)

# =========================================================
# Utility
# =========================================================

def clamp(x, lo=0, hi=100):
    return max(lo, min(hi, x))


def dedupe_flags(flags) -> List[str]:
    """Drop exact-string duplicates, keeping first-seen order."""
    return list(dict.fromkeys(flags or []))


# =========================================================
# Data Model
# =========================================================

@dataclass(frozen=True)
class EmailAttachment:
    file_name: str
    content_type: str
    size: int
    content: Optional[bytes] = field(default=None, repr=False)


@dataclass(frozen=True)
class ParsedEmail:
    """
    Structured email handed to every signal module.

    Immutable once produced; each analysis request owns its own instance.
    """
    subject: str = ""
    from_address: str = ""
    to_address: str = ""
    text_body: str = ""
    html_body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    attachments: Tuple[EmailAttachment, ...] = ()


@dataclass
class DetectionResult:
    """
    Score (0-100) plus ordered, de-duplicated explanatory flags.

    Produced once per signal module and once more by the orchestrator
    for the fused verdict.
    """
    email_subject: str
    percentage: int = 0
    flags: List[str] = field(default_factory=list)
    scanned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not 0 <= self.percentage <= 100:
            raise ValueError(f"percentage out of range: {self.percentage}")
        self.flags = dedupe_flags(self.flags)

    def to_dict(self) -> dict:
        return {
            "email_subject": self.email_subject,
            "percentage": self.percentage,
            "flags": list(self.flags),
            "scanned_at": self.scanned_at.isoformat(),
        }


def subject_of(email: Optional[ParsedEmail]) -> str:
    return (email.subject if email is not None else "") or "No subject"


# =========================================================
# Cache (Memory Only)
# =========================================================

@dataclass
class CacheConfig:
    default_ttl: int = 3600
    whois_ttl: int = POLICY.whois_ttl
    dns_ttl: int = POLICY.dns_ttl


class Cache:
    def __init__(self, cfg: CacheConfig):
        self.cfg = cfg
        self._store = {}
        self._expiry = {}

    def __contains__(self, key: str) -> bool:
        return key in self._store and self._expiry.get(key, 0) > time.time()

    def get(self, key: str):
        now = time.time()
        if key in self._store and self._expiry.get(key, 0) > now:
            return self._store[key]
        self._store.pop(key, None)
        self._expiry.pop(key, None)
        return None

    def set(self, key: str, value, ttl: int):
        self._store[key] = value
        self._expiry[key] = time.time() + ttl


# =========================================================
# Signal Module Contract
# =========================================================

class SignalModule:
    """
    Base class for every signal module.

    Subclasses implement ``_analyze``. Callers use ``analyze``, which never
    raises: any failure is turned into a zero-score result carrying a flag
    that names the module and the error.
    """

    name = "Signal"

    def analyze(self, email: ParsedEmail) -> DetectionResult:
        try:
            return self._analyze(email)
        except Exception as e:
            logger.exception("%s module failed", self.name)
            return module_failure(self.name, email, e)

    def _analyze(self, email: ParsedEmail) -> DetectionResult:
        raise NotImplementedError


def module_failure(name: str, email: Optional[ParsedEmail], error: Exception) -> DetectionResult:
    return DetectionResult(
        email_subject=subject_of(email),
        percentage=0,
        flags=[f"{name} analysis failed: {error}"],
    )


# =========================================================
# Email Ingestion
# =========================================================

from email import policy
from email.parser import BytesParser


class UnsupportedEmailFormat(ValueError):
    pass


class EmailIngestionAgent:
    def parse_path(self, path) -> ParsedEmail:
        path = Path(path)
        return self.parse(path.name, path.read_bytes())

    def parse(self, file_name: str, data: bytes) -> ParsedEmail:
        if not file_name:
            raise ValueError("file_name is required")

        extension = Path(file_name).suffix.lower()
        if extension not in POLICY.SUPPORTED_EXTENSIONS:
            raise UnsupportedEmailFormat(f"Unsupported email format: {extension or file_name}")

        if extension == ".msg":
            return self._parse_msg(data)
        return self._parse_eml(data)

    def _parse_eml(self, data: bytes) -> ParsedEmail:
        msg = BytesParser(policy=policy.default).parsebytes(data)

        headers = sanitize_headers({k: str(v) for k, v in msg.items()})

        text_part = msg.get_body(preferencelist=("plain",))
        html_part = msg.get_body(preferencelist=("html",))

        attachments = []
        for part in msg.walk():
            if part.is_multipart() or part.get_content_disposition() != "attachment":
                continue
            payload = part.get_payload(decode=True) or b""
            attachments.append(EmailAttachment(
                file_name=part.get_filename() or "attachment",
                content_type=part.get_content_type() or "application/octet-stream",
                size=len(payload),
                content=payload,
            ))

        return ParsedEmail(
            subject=str(msg.get("Subject", "") or ""),
            from_address=str(msg.get("From", "") or ""),
            to_address=str(msg.get("To", "") or ""),
            text_body=text_part.get_content() if text_part is not None else "",
            html_body=html_part.get_content() if html_part is not None else "",
            headers=headers,
            attachments=tuple(attachments),
        )

    def _parse_msg(self, data: bytes) -> ParsedEmail:
        msg = extract_msg.openMsg(data)
        try:
            html_body = msg.htmlBody or b""
            if isinstance(html_body, bytes):
                html_body = html_body.decode("utf-8", errors="replace")

            headers = {"MessageId": msg.messageId or ""}
            if msg.date:
                headers["SentOn"] = str(msg.date)

            attachments = []
            for att in msg.attachments or []:
                content = att.data if isinstance(att.data, bytes) else b""
                name = att.longFilename or att.shortFilename or "attachment"
                attachments.append(EmailAttachment(
                    file_name=name,
                    content_type=mimetypes.guess_type(name)[0] or "application/octet-stream",
                    size=len(content),
                    content=content,
                ))

            return ParsedEmail(
                subject=msg.subject or "",
                from_address=msg.sender or "",
                to_address=", ".join(p.strip() for p in (msg.to or "").split(";") if p.strip()),
                text_body=msg.body or "",
                html_body=html_body,
                headers=sanitize_headers(headers),
                attachments=tuple(attachments),
            )
        finally:
            msg.close()


# =========================================================
# Content Analyzer
# =========================================================

HIGHLY_SUSPICIOUS_WORDS = (
    "mobiele nummer", "WhatsApp-nummer", "WhatsApp", "mobile number", "telefoonnummer",
)

SUSPICIOUS_WORDS_DUTCH = (
    "bankgegevens", "inloggegevens",
    "wachtwoord", "beveiligingscode", "verificatiecode", "sms code",
    "authenticatie", "account", "betaalgegevens", "creditcard",
    "pin code", "identiteitsbewijs", "bsn", "bsn nummer", "sofi nummer",
    "herinnering", "dringend", "onmiddellijk", "dringende actie",
    "bevestiging", "update", "onderhoud", "probleem",
    "verdacht", "ongebruikelijk", "activiteit", "inbreuk",
    "beveiliging", "veiligheid", "opschorten", "blokkeren",
    "verlopen", "aankoop", "factuur",
    "betaling", "transactie", "overschrijving", "limiet",
    "premie", "korting", "aanbieding", "winnaar",
    "prijs", "lottery", "geluksvogel", "gratis",
    "urgent", "belangrijk", "aandacht", "waarschuwing",
)

SUSPICIOUS_WORDS_ENGLISH = (
    "login", "verification", "password", "credentials",
    "account", "security", "verify", "authentication",
    "confirmation", "update", "maintenance", "problem",
    "suspicious", "unusual", "activity", "breach",
    "safety", "suspend", "block",
    "expire", "expired", "purchase", "invoice",
    "payment", "transaction", "transfer", "limit",
    "premium", "discount", "offer", "winner",
    "prize", "lottery", "lucky", "free",
    "urgent", "important", "attention", "warning",
    "immediately", "action required", "click here", "update now",
    "confirm your", "validate your", "secure your", "protect your",
    "banking", "financial", "personal information", "social security",
    "credit card", "debit card", "paypal", "bitcoin",
    "crypto", "password reset", "account recovery", "unlock account",
    "activate", "accept", "awards", "award",
    "start",
)

URGENT_ACTION_WORDS = (
    "immediately", "urgent", "now", "right away",
    "instant", "quick", "fast", "hurry",
    "deadline", "limited time", "last chance", "final warning",
    "action required", "immediate action", "respond now", "click immediately",
    "dringend", "onmiddellijk", "nu handelen", "spoed",
)

SECURITY_TERMS = (
    "security", "verification", "authentication", "validation",
    "confirm", "verify", "authenticate", "validate",
    "password", "pin", "code", "token",
    "2fa", "two factor", "multi factor", "biometric",
    "encryption", "secure", "protected", "safety", "securing",
    "wachtwoord", "inlog", "login",
)

PHONE_PATTERNS = (
    re.compile(r"(?:\+|00)\d{2}\s*(?:\(\s*0\s*\))?\s*[\d\-\s]{6,}", re.I),
    re.compile(r"\b0\d{1,3}[\s\-]?\d{6,8}\b", re.I),
    re.compile(r"\b\d{10,}\b", re.I),
)


def find_matches(text: str, phrases) -> List[str]:
    """Case-insensitive substring matches, in list order, without duplicates."""
    if not text or not text.strip():
        return []
    lowered = text.lower()
    seen, matches = set(), []
    for phrase in phrases:
        key = phrase.lower()
        if key in lowered and key not in seen:
            seen.add(key)
            matches.append(phrase)
    return matches


def contains_phone_number(text: str) -> bool:
    if not text or not text.strip():
        return False
    return any(p.search(text) for p in PHONE_PATTERNS)


@dataclass
class ContentMatches:
    has_phone_number: bool
    highly_suspicious: List[str]
    urgent: List[str]
    security: List[str]
    dutch: List[str]
    english: List[str]

    @property
    def has_any(self) -> bool:
        return self.has_phone_number or bool(
            self.highly_suspicious or self.urgent or self.security or self.dutch or self.english
        )


class ContentAnalyzerAgent(SignalModule):
    name = "Content"

    def _analyze(self, email):
        subject = subject_of(email)

        if email is None or (not (email.text_body or "").strip() and not (email.subject or "").strip()):
            return DetectionResult(subject, 0, ["No email content to analyze."])

        text = " ".join(
            s for s in (email.subject, sanitize_text(email.html_body), email.text_body)
            if s and s.strip()
        )

        matches = ContentMatches(
            has_phone_number=contains_phone_number(text),
            highly_suspicious=find_matches(text, HIGHLY_SUSPICIOUS_WORDS),
            urgent=find_matches(text, URGENT_ACTION_WORDS),
            security=find_matches(text, SECURITY_TERMS),
            dutch=find_matches(text, SUSPICIOUS_WORDS_DUTCH),
            english=find_matches(text, SUSPICIOUS_WORDS_ENGLISH),
        )

        return DetectionResult(subject, self.score(matches), self.flags(matches))

    @staticmethod
    def flags(m: ContentMatches) -> List[str]:
        if not m.has_any:
            return ["No suspicious words, phrases or patterns detected."]

        flags = []
        if m.has_phone_number:
            flags.append("HIGH RISK: Phone number detected in the email content.")
        if m.highly_suspicious:
            flags.append("Highly suspicious contact-related wording detected: " + ", ".join(m.highly_suspicious))
        if m.urgent:
            flags.append("Urgent / pressure language detected: " + ", ".join(m.urgent))
        if m.security:
            flags.append("Security / access related terms detected: " + ", ".join(m.security))
        if m.dutch:
            flags.append("Suspicious Dutch terms detected: " + ", ".join(m.dutch))
        if m.english:
            flags.append("Suspicious English terms detected: " + ", ".join(m.english))
        return flags

    @staticmethod
    def score(m: ContentMatches) -> int:
        if m.has_phone_number:
            return 100

        high = {w.lower() for w in m.highly_suspicious}
        urgent = {w.lower() for w in m.urgent}
        normal = {w.lower() for w in m.security + m.dutch + m.english} - high - urgent

        if not (normal or high or urgent):
            return 0

        score = 20
        if urgent or high:
            score += 30
        score += max(0, len(normal) - 1) * 5
        if len(high) > 1:
            score += (len(high) - 1) * 10
        return min(score, 100)


# =========================================================
# URL Reputation
# =========================================================

URL_PATTERN = re.compile(r"https?://[^\s/$.?#].[^\s\"'<>\)\]\[{}|\\^`]*", re.I)

KNOWN_SAFE_URLS = frozenset({
    "http://schemas.microsoft.com/office/2004/12/omml",
    "http://www.w3.org/TR/REC-html40",
})

PHISHSTATS_API_URL = "https://api.phishstats.info/api/phishing"


def normalize_url(url: str) -> str:
    try:
        return urlparse(url)._replace(fragment="").geturl()
    except ValueError:
        return url


def extract_urls(email: ParsedEmail) -> List[str]:
    if email is None:
        return []
    found = []
    for text in (email.subject, email.text_body, email.html_body):
        if text and text.strip():
            found.extend(URL_PATTERN.findall(text))
    return dedupe_flags(normalize_url(u) for u in found if u)


class UrlReputationAgent(SignalModule):
    name = "URL"

    def __init__(self, http: Optional[SafeHTTPClient] = None,
                 breaker: Optional[CircuitBreaker] = None,
                 api_url: str = PHISHSTATS_API_URL):
        self.http = http or SafeHTTPClient()
        self.breaker = breaker or CircuitBreaker()
        self.api_url = api_url

    def _analyze(self, email):
        subject = subject_of(email)

        urls = cap_list(
            [u for u in extract_urls(email) if validate_url(u) and u not in KNOWN_SAFE_URLS],
            POLICY.MAX_URLS_PER_EMAIL,
        )
        if not urls:
            return DetectionResult(subject, 0, ["No URLs to scan"])

        if not self.breaker.allow():
            logger.warning("PhishStats circuit open, skipping %d URL(s)", len(urls))
            return DetectionResult(subject, 0, ["URL reputation lookups temporarily disabled"])

        flags, listed = [], []
        for url in urls:
            try:
                hit = self.is_listed(url)
            except (requests.RequestException, RuntimeError, ValueError) as e:
                logger.warning("PhishStats lookup failed: %s", e)
                flags.append(f"PhishStats lookup failed for {url}: {e}")
                continue
            if hit:
                listed.append(url)
                flags.append(f"Phishing confirmed by PhishStats: {url}")
            else:
                flags.append(f"Not present in PhishStats database, possibly phishing: {url}")

        flags.append(f"Scanned {len(urls)} URL(s) using PhishStats")

        if listed:
            flags.append(f"Phishing detected by PhishStats: {len(listed)} URL(s) flagged")
            return DetectionResult(subject, 100, flags)

        flags.append("No phishing URLs detected in PhishStats database")
        return DetectionResult(subject, 50, flags)

    def is_listed(self, url: str) -> bool:
        try:
            resp = self.http.get(self.api_url, params={"_where": f"(url,eq,{url})"})
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, RuntimeError, ValueError):
            self.breaker.record_failure()
            raise
        self.breaker.record_success()
        return isinstance(data, list) and len(data) > 0


# =========================================================
# Attachment Scanner (VirusTotal)
# =========================================================

VIRUSTOTAL_API_BASE = "https://www.virustotal.com/api/v3"


@dataclass
class VirusTotalVerdict:
    completed: bool
    malicious_count: int = 0
    suspicious_count: int = 0

    @property
    def is_malicious(self) -> bool:
        return self.malicious_count > 0 or self.suspicious_count > 0


def parse_analysis(payload: dict) -> VirusTotalVerdict:
    attributes = ((payload or {}).get("data") or {}).get("attributes")
    if not isinstance(attributes, dict):
        raise RuntimeError("VirusTotal analysis response missing attributes.")

    stats = attributes.get("stats") or {}
    return VirusTotalVerdict(
        completed=str(attributes.get("status", "")).lower() == "completed",
        malicious_count=int(stats.get("malicious", 0) or 0),
        suspicious_count=int(stats.get("suspicious", 0) or 0),
    )


class AttachmentScanAgent(SignalModule):
    name = "Attachment"

    def __init__(self, api_key: Optional[str] = None,
                 http: Optional[SafeHTTPClient] = None,
                 poll_attempts: int = POLICY.ATTACHMENT_POLL_ATTEMPTS,
                 poll_interval: float = POLICY.ATTACHMENT_POLL_INTERVAL_SEC,
                 sleep=time.sleep):
        self.api_key = api_key if api_key is not None else get_secret("VIRUSTOTAL_API_KEY", required=False)
        self.http = http or SafeHTTPClient(timeout_sec=POLICY.ATTACHMENT_REQ_TIMEOUT_SEC)
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self.sleep = sleep

    def _analyze(self, email):
        subject = subject_of(email)

        attachments = cap_list(list(email.attachments) if email else [], POLICY.MAX_ATTS_PER_EMAIL)
        if not attachments:
            return DetectionResult(subject, 0, ["No attachments to scan"])
        if not self.api_key:
            return DetectionResult(subject, 0, ["VirusTotal API key not configured"])

        flags, malicious_found = [], False
        for att in attachments:
            try:
                verdict = self.scan(att)
            except (requests.RequestException, RuntimeError, ValueError) as e:
                logger.warning("Attachment scan failed for %s: %s", att.file_name, e)
                flags.append(f"Error scanning attachment {att.file_name or 'unknown'}: {e}")
                continue

            if verdict.is_malicious:
                malicious_found = True
                flags.append(f"Malicious attachment detected by VirusTotal: {att.file_name}")
            else:
                flags.append(f"Attachment clean (VirusTotal): {att.file_name}")

        if malicious_found:
            flags.append("Malicious attachment content detected")
            return DetectionResult(subject, 100, flags)

        flags.append("No malicious attachments were found")
        return DetectionResult(subject, 0, flags)

    def _headers(self) -> dict:
        return {"x-apikey": self.api_key}

    def scan(self, attachment: EmailAttachment) -> VirusTotalVerdict:
        if not attachment.content:
            raise ValueError("Attachment content is empty.")

        files = {
            "file": (
                attachment.file_name or "attachment.bin",
                attachment.content,
                attachment.content_type or "application/octet-stream",
            )
        }
        resp = self.http.post(f"{VIRUSTOTAL_API_BASE}/files", headers=self._headers(), files=files)
        resp.raise_for_status()

        analysis_id = ((resp.json() or {}).get("data") or {}).get("id")
        if not analysis_id:
            raise RuntimeError("VirusTotal did not return an analysis id.")

        for _ in range(self.poll_attempts):
            poll = self.http.get(f"{VIRUSTOTAL_API_BASE}/analyses/{analysis_id}", headers=self._headers())
            poll.raise_for_status()
            verdict = parse_analysis(poll.json())
            if verdict.completed:
                return verdict
            self.sleep(self.poll_interval)

        raise RuntimeError("VirusTotal analysis did not complete in time.")
