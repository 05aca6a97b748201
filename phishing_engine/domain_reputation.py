"""
Sender-domain reputation.

Resolves the sender domain against the registry (WHOIS) and DNS, walks the
subdomain/root-domain fallback chain when the domain itself has no registry
record, and accumulates a bounded risk score from independent heuristics.
"""

import re
import logging
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, List, Optional, Tuple

import dns.resolver
import dns.exception
import whois
from whois.exceptions import PywhoisError

from .detector import (
    Cache,
    CacheConfig,
    DetectionResult,
    ParsedEmail,
    SignalModule,
    clamp,
    subject_of,
)
from .guardrails import POLICY

logger = logging.getLogger(__name__)


# =========================================================
# Tunable weights
# =========================================================

@dataclass(frozen=True)
class DomainRiskWeights:
    # Fallback chain
    lookup_failed: int = 40
    domain_missing: int = 80
    root_missing: int = 80
    subdomain_unresolved: int = 30
    ip_mismatch: int = 50
    ip_match: int = -10
    subdomain_keyword: int = 40
    root_missing_but_resolves: int = 10

    # Subdomain shape
    subdomain_high_risk_pattern: int = 20
    subdomain_medium_risk_pattern: int = 10
    subdomain_common_pattern: int = 0
    subdomain_random: int = 10
    subdomain_long: int = 10
    subdomain_levels: int = 10

    # Domain age
    age_unknown: int = 10
    age_under_30_days: int = 40
    age_under_1_year: int = 20
    age_established: int = -10

    # Expiration
    expires_within_week: int = 15
    expires_within_month: int = 5

    # Registrar
    registrar_hidden: int = 15
    registrar_token: int = 10
    registrar_short: int = 10

    # WHOIS privacy
    privacy_enabled: int = 20

    # Domain status
    status_missing: int = 5
    status_hold: int = 40
    status_pending_delete: int = 60
    status_inactive: int = 10
    status_active: int = -5

    # TLD
    tld_uncommon: int = 5
    tld_long: int = 10
    tld_digits: int = 15
    tld_high_risk: int = 15

    # Domain label patterns
    hyphen_keyword: int = 20
    hyphen_joined: int = 5
    excessive_hyphens: int = 10
    brand_impersonation: int = 30
    random_label: int = 10
    excessive_digits: int = 10

    # Name servers
    name_servers_missing: int = 10
    name_server_budget: int = 10
    name_server_short: int = 5
    name_server_providers: int = 10

    # Contacts
    generic_contact: int = 10
    organization_missing: int = 5


DEFAULT_WEIGHTS = DomainRiskWeights()


# =========================================================
# Word lists
# =========================================================

GENERIC_SLD_PREFIXES = frozenset({"co", "com", "net", "org", "ac", "edu", "gov"})
MULTIPART_COUNTRY_CODES = frozenset({"uk", "au", "nz", "jp", "br", "in", "sg"})

SUBDOMAIN_RISK_KEYWORDS = (
    "login", "security", "verify", "account", "update",
    "secure", "auth", "signin", "password", "confirm",
)

SUBDOMAIN_HIGH_RISK_PATTERNS = (
    "login", "security", "verify", "account", "update",
    "secure", "auth", "signin", "password", "confirm",
    "validation", "activation", "recovery", "reset",
    "admin", "portal", "office365", "sharepoint", "microsoft",
    "paypal", "banking", "financial", "irs", "tax",
)

SUBDOMAIN_MEDIUM_RISK_PATTERNS = (
    "service", "services", "client", "customers", "user",
    "members", "dashboard", "myaccount", "profile",
    "billing", "invoice", "payment", "securelogin",
)

SUBDOMAIN_COMMON_PATTERNS = frozenset({
    "www", "mail", "email", "smtp", "imap", "pop", "ftp",
    "api", "cdn", "static", "assets", "img", "images",
    "blog", "news", "info", "support", "help", "contact",
    "careers", "jobs", "about", "team", "status", "uptime",
    "feedback", "newsletter", "media", "download", "docs",
})

REPUTABLE_REGISTRARS = ("markmonitor", "csc", "corporation service", "cloudflare")

SUSPICIOUS_LABEL_KEYWORDS = frozenset({
    "login", "security", "verify", "account", "update",
    "secure", "service", "support", "admin", "mail",
    "auth", "signin", "password", "confirm",
})

COMMON_BRANDS = (
    "microsoft", "google", "apple", "amazon", "paypal",
    "netflix", "facebook", "instagram", "twitter", "linkedin",
    "bankofamerica", "wellsfargo", "chase", "citibank",
)

SUSPICIOUS_REGISTRAR_TOKENS = ("cheap", "free", "privacy", "anonymous")

PRIVACY_INDICATORS = (
    "privacy", "redacted", "whois", "data protected",
    "contact privacy", "domain admin", "protected", "anonymized",
    "whoisguard", "identity protect", "privacy service",
)

REPUTABLE_TLDS = frozenset({"com", "org", "net", "edu", "gov", "mil", "int"})

HIGH_RISK_TLDS = frozenset({
    "xyz", "top", "loan", "win", "club", "site", "online",
    "click", "link", "stream", "download", "gq", "ml", "ga", "cf", "tk",
})

BUDGET_NAME_SERVER_TOKENS = ("free", "cheap")

GENERIC_CONTACT_TOKENS = ("@", "contact", "info", "admin", "privacy", "whois")

CONSONANTS = frozenset("bcdfghjklmnpqrstvwxyz")
VOWELS = frozenset("aeiou")


# =========================================================
# Sender domain extraction
# =========================================================

SENDER_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")


def extract_sender_domain(sender: str) -> str:
    """Return the lower-cased domain of the sender address, or ``""``."""
    if not sender or not sender.strip():
        return ""

    match = SENDER_RE.search(sender)
    if match:
        address = match.group(0)
        at = address.index("@")
        if 0 < at < len(address) - 1:
            return address[at + 1:].lower()

    return _extract_domain_manually(sender)


def _extract_domain_manually(sender: str) -> str:
    cleaned = sender.strip()

    # "Name <user@domain>"
    start, end = cleaned.find("<"), cleaned.rfind(">")
    if start >= 0 and end > start:
        cleaned = cleaned[start + 1:end]

    cleaned = cleaned.strip().lstrip("<").rstrip(">").strip()

    at = cleaned.rfind("@")
    if 0 < at < len(cleaned) - 1:
        domain = cleaned[at + 1:].strip()
        if domain:
            return domain.lower()
    return ""


# =========================================================
# Root-domain decomposition
# =========================================================

@dataclass(frozen=True)
class RootDomainComponents:
    subdomain: str
    root: str


def get_root_domain(domain: str) -> str:
    """
    Registrable root of ``domain``.

    A finite allow-list of generic-prefix + country-code pairs (``co.uk``,
    ``com.au``, ...) keeps three labels when at least four exist; every
    other domain with three or more labels keeps its last two.
    """
    parts = domain.split(".")
    if len(parts) < 3:
        return domain

    prefix, country = parts[-2], parts[-1]
    if prefix in GENERIC_SLD_PREFIXES and country in MULTIPART_COUNTRY_CODES and len(parts) >= 4:
        return ".".join(parts[-3:])
    return ".".join(parts[-2:])


def split_root_domain(domain: str) -> RootDomainComponents:
    root = get_root_domain(domain)
    if root == domain:
        return RootDomainComponents(subdomain="", root=root)
    return RootDomainComponents(subdomain=domain[:-(len(root) + 1)], root=root)


def match_subdomain_keyword(subdomain: str) -> Optional[str]:
    label = (subdomain or "").lower()
    for keyword in SUBDOMAIN_RISK_KEYWORDS:
        if keyword in label:
            return keyword
    return None


def _anchored(label: str, pattern: str, inner: bool = True) -> bool:
    return (
        label == pattern
        or label.startswith(pattern + "-")
        or label.endswith("-" + pattern)
        or (inner and f"-{pattern}-" in label)
    )


def classify_subdomain(subdomain: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Risk tier of a subdomain: ``("high" | "medium" | "low", pattern)`` or ``(None, None)``.

    Patterns match the whole subdomain or a hyphen-delimited part of it,
    so ``reset-portal`` is high risk while ``presetting`` is not.
    """
    label = (subdomain or "").lower()
    for pattern in SUBDOMAIN_HIGH_RISK_PATTERNS:
        if _anchored(label, pattern):
            return "high", pattern
    for pattern in SUBDOMAIN_MEDIUM_RISK_PATTERNS:
        if _anchored(label, pattern, inner=False):
            return "medium", pattern
    if label in SUBDOMAIN_COMMON_PATTERNS:
        return "low", label
    return None, None


def is_random_label(label: str) -> bool:
    if len(label) < 10:
        return False
    lowered = label.lower()
    consonants = sum(1 for c in lowered if c in CONSONANTS)
    vowels = sum(1 for c in lowered if c in VOWELS)
    return consonants > vowels * 2.5 or vowels > consonants * 2.5


# =========================================================
# Registry lookup (WHOIS)
# =========================================================

class LookupStatus(Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(frozen=True)
class WhoisRecord:
    domain: str
    registered: Optional[datetime] = None
    expiration: Optional[datetime] = None
    registrar: str = ""
    name_servers: Tuple[str, ...] = ()
    domain_status: Tuple[str, ...] = ()
    registrant_name: str = ""
    registrant_email: str = ""
    registrant_organization: str = ""
    admin_email: str = ""


@dataclass(frozen=True)
class DomainLookupOutcome:
    status: LookupStatus
    record: Optional[WhoisRecord] = None
    error: str = ""

    @classmethod
    def found(cls, record: WhoisRecord) -> "DomainLookupOutcome":
        return cls(LookupStatus.FOUND, record=record)

    @classmethod
    def not_found(cls) -> "DomainLookupOutcome":
        return cls(LookupStatus.NOT_FOUND)

    @classmethod
    def failed(cls, error: str) -> "DomainLookupOutcome":
        return cls(LookupStatus.FAILED, error=error)


def _first(value):
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _as_datetime(value) -> Optional[datetime]:
    value = _first(value)
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _as_str(value) -> str:
    value = _first(value)
    return str(value).strip() if value else ""


def _as_tuple(value) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value if v)


def record_from_entry(domain: str, entry) -> Optional[WhoisRecord]:
    """Normalise a python-whois entry; ``None`` when it carries no registration data."""
    if not entry:
        return None

    get = entry.get
    if not (get("domain_name") or get("creation_date") or get("registrar")):
        return None

    return WhoisRecord(
        domain=domain,
        registered=_as_datetime(get("creation_date")),
        expiration=_as_datetime(get("expiration_date")),
        registrar=_as_str(get("registrar")),
        name_servers=_as_tuple(get("name_servers")),
        domain_status=_as_tuple(get("status")),
        registrant_name=_as_str(get("registrant_name") or get("name")),
        registrant_email=_as_str(get("registrant_email") or get("emails")),
        registrant_organization=_as_str(get("registrant_org") or get("org")),
        admin_email=_as_str(get("admin_email")),
    )


def _is_not_found_error(error: PywhoisError) -> bool:
    if type(error).__name__ == "WhoisDomainNotFoundError":
        return True
    text = str(error).lower()
    return "no match" in text or "not found" in text or "no data found" in text


def answers_for(domain: str, entry) -> bool:
    """
    Whether a WHOIS entry describes ``domain`` itself.

    python-whois reduces a hostname to its registrable domain before it
    queries, so ``login.example.com`` comes back as ``example.com``.
    Entries without a domain name are taken at face value.
    """
    names = {n.lower().rstrip(".") for n in _as_tuple(entry.get("domain_name"))}
    return not names or domain.lower().rstrip(".") in names


class WhoisTool:
    def __init__(self, cache: Optional[Cache] = None,
                 timeout_sec: float = POLICY.WHOIS_TIMEOUT_SEC,
                 query: Optional[Callable] = None):
        self.cache = cache or Cache(CacheConfig())
        self.timeout = timeout_sec
        self._query = query or whois.whois

    def lookup(self, domain: str) -> DomainLookupOutcome:
        key = f"whois:{domain}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        outcome = self._lookup(domain)
        logger.debug("WHOIS %s -> %s", domain, outcome.status.value)
        # failures are transient, only registry answers are kept
        if outcome.status is not LookupStatus.FAILED:
            self.cache.set(key, outcome, self.cache.cfg.whois_ttl)
        return outcome

    def _lookup(self, domain: str) -> DomainLookupOutcome:
        # the socket timeout covers each read; the future bounds the whole referral chain
        executor = ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(self._query, domain, timeout=self.timeout)
            entry = future.result(timeout=self.timeout * 2)
        except FutureTimeout:
            return DomainLookupOutcome.failed(f"timed out after {self.timeout}s")
        except PywhoisError as e:
            if _is_not_found_error(e):
                return DomainLookupOutcome.not_found()
            return DomainLookupOutcome.failed(str(e).strip().splitlines()[0] if str(e).strip() else type(e).__name__)
        except Exception as e:
            logger.warning("WHOIS lookup for %s failed: %s", domain, e)
            return DomainLookupOutcome.failed(str(e) or type(e).__name__)
        finally:
            executor.shutdown(wait=False)

        if entry and not answers_for(domain, entry):
            logger.debug("WHOIS for %s answered for %s", domain, entry.get("domain_name"))
            return DomainLookupOutcome.not_found()

        record = record_from_entry(domain, entry)
        if record is None:
            return DomainLookupOutcome.not_found()
        return DomainLookupOutcome.found(record)


# =========================================================
# DNS resolution
# =========================================================

class DNSResolver:
    def __init__(self, cache: Optional[Cache] = None, lifetime: float = POLICY.DNS_LIFETIME_SEC):
        self.cache = cache or Cache(CacheConfig())
        self.lifetime = lifetime

    def resolve(self, hostname: str) -> Optional[List[str]]:
        """Addresses for ``hostname`` in answer order, or ``None`` when it does not resolve."""
        key = f"dns:addr:{hostname}"
        if key in self.cache:
            return self.cache.get(key)

        addresses = None
        for rtype in ("A", "AAAA"):
            try:
                answer = dns.resolver.resolve(hostname, rtype, lifetime=self.lifetime)
            except dns.exception.DNSException as e:
                logger.debug("DNS %s %s failed: %s", rtype, hostname, e)
                continue
            addresses = [r.to_text() for r in answer] or None
            if addresses:
                break

        self.cache.set(key, addresses, self.cache.cfg.dns_ttl)
        return addresses


# =========================================================
# Risk accumulation
# =========================================================

@dataclass
class RiskAccumulator:
    flags: List[str] = field(default_factory=list)
    total: int = 0

    def add(self, delta: int, flag: str):
        self.total += delta
        self.flags.append(flag)

    def note(self, flag: str):
        self.flags.append(flag)

    @property
    def score(self) -> int:
        return clamp(self.total)


class DomainHeuristics:
    """
    Heuristic battery run against one registered domain.

    Each check appends its flags and a signed delta; nothing is clamped here.
    """

    def __init__(self, weights: DomainRiskWeights = DEFAULT_WEIGHTS):
        self.w = weights

    def run(self, record: WhoisRecord, domain: str, acc: RiskAccumulator, now: datetime):
        self.check_age(record, acc, now)
        self.check_expiration(record, acc, now)
        self.check_registrar(record, acc)
        self.check_privacy(record, acc)
        self.check_status(record, acc)
        self.check_tld(domain, acc)
        self.check_patterns(domain, acc)
        self.check_name_servers(record, acc)
        self.check_contacts(record, acc)

    def check_age(self, record, acc, now):
        if record.registered is None:
            acc.add(self.w.age_unknown, "Domain registration date unknown")
            return

        days = (now - record.registered).days
        if days < 30:
            acc.add(self.w.age_under_30_days, f"Domain is very new (less than 30 days): {days} days old")
        elif days < 365:
            acc.add(self.w.age_under_1_year, f"Domain is relatively new: {days} days old")
        else:
            acc.add(self.w.age_established, "Domain appears older than a year old")

    def check_expiration(self, record, acc, now):
        if record.expiration is None:
            return
        days_left = (record.expiration - now).total_seconds() / 86400
        if days_left < 7:
            acc.add(self.w.expires_within_week, f"Domain expires very soon: {days_left:.0f} days")
        elif days_left < 30:
            acc.add(self.w.expires_within_month, f"Domain expires soon: {days_left:.0f} days")

    def check_registrar(self, record, acc):
        name = record.registrar.strip()
        if not name:
            acc.add(self.w.registrar_hidden, "Registrar information hidden or unavailable")
            return

        lowered = name.lower()
        tokens = [t for t in SUSPICIOUS_REGISTRAR_TOKENS if t in lowered]
        if tokens:
            acc.add(self.w.registrar_token * len(tokens),
                    f"Registrar suggests budget or anonymous service: {name}")
        if len(name) < 4:
            acc.add(self.w.registrar_short, f"Registrar name is unusually short: {name}")

    def check_privacy(self, record, acc):
        name = record.registrant_name.lower()
        org = record.registrant_organization.lower()
        if any(i in name or i in org for i in PRIVACY_INDICATORS):
            acc.add(self.w.privacy_enabled, "WHOIS privacy protection enabled")

    def check_status(self, record, acc):
        statuses = [s.lower() for s in record.domain_status if s.strip()]
        if not statuses:
            acc.add(self.w.status_missing, "No domain status information available")
            return

        if any("clienthold" in s or "serverhold" in s for s in statuses):
            acc.add(self.w.status_hold, "Domain has hold status - may be suspended")
        if any("pendingdelete" in s or "redemption" in s for s in statuses):
            acc.add(self.w.status_pending_delete, "Domain in pending delete or redemption status")
        if any("inactive" in s for s in statuses):
            acc.add(self.w.status_inactive, "Domain status: Inactive")
        # status lines look like "clientTransferProhibited https://icann.org/epp#..."
        if any(s.split()[0] in ("ok", "active") for s in statuses):
            acc.add(self.w.status_active, "Domain status: Active")

    def check_tld(self, domain, acc):
        if "." not in domain:
            return
        tld = domain.rsplit(".", 1)[-1].lower()
        if tld in REPUTABLE_TLDS:
            acc.note(f"Uses established TLD: .{tld}")
            return

        delta = self.w.tld_uncommon
        if len(tld) >= 4:
            delta += self.w.tld_long
        if any(c.isdigit() for c in tld):
            delta += self.w.tld_digits
        if tld in HIGH_RISK_TLDS:
            delta += self.w.tld_high_risk
            acc.add(delta, f"Uses high-risk TLD: .{tld}")
        else:
            acc.add(delta, f"Uses uncommon TLD: .{tld}")

    def check_patterns(self, domain, acc):
        label = domain.split(".")[0].lower()

        parts = [p for p in label.split("-") if p]
        if "-" in label and len(parts) >= 2:
            keywords = [p for p in parts if p in SUSPICIOUS_LABEL_KEYWORDS]
            if keywords:
                acc.add(self.w.hyphen_keyword, f"Domain uses suspicious hyphenated keyword: '{keywords[0]}'")
            else:
                acc.add(self.w.hyphen_joined, f"Domain name is hyphen-joined: '{label}'")

        hyphens = label.count("-")
        if hyphens >= 3:
            acc.add(self.w.excessive_hyphens, f"Domain has excessive hyphens: {hyphens}")

        for brand in COMMON_BRANDS:
            if brand in label:
                if domain != f"{brand}.com" and not domain.endswith(f".{brand}.com"):
                    acc.add(self.w.brand_impersonation, f"Possible brand impersonation: {brand}")
                break

        if is_random_label(label):
            acc.add(self.w.random_label, "Domain appears to use random characters")

        digits = sum(1 for c in label if c.isdigit())
        if digits >= 3:
            acc.add(self.w.excessive_digits, f"Domain has excessive numbers: {digits}")

    def check_name_servers(self, record, acc):
        servers = [ns.lower().rstrip(".") for ns in record.name_servers if ns.strip()]
        if not servers:
            acc.add(self.w.name_servers_missing, "No name server information available")
            return

        budget = [ns for ns in servers if any(t in ns for t in BUDGET_NAME_SERVER_TOKENS)]
        if budget:
            acc.add(self.w.name_server_budget * len(budget), "Name servers use free or budget hosting")

        short = [ns for ns in servers if len(ns) < 8]
        if short:
            acc.add(self.w.name_server_short * len(short), f"Unusually short name server names: {', '.join(short)}")

        providers = {".".join(ns.split(".")[-2:]) for ns in servers}
        if len(providers) > 3:
            acc.add(self.w.name_server_providers, f"Name servers span {len(providers)} different providers")

    def check_contacts(self, record, acc):
        for address in (record.registrant_email, record.admin_email):
            lowered = address.lower()
            if lowered and sum(1 for t in GENERIC_CONTACT_TOKENS if t in lowered) >= 2:
                acc.add(self.w.generic_contact, "Generic or privacy-protected contact email")
                break

        if not record.registrant_organization:
            acc.add(self.w.organization_missing, "No organization information provided")

    def check_root_characteristics(self, record, acc, now):
        """Legitimacy notes for the root of a subdomain; scoring is left to ``run``."""
        if record.registered is not None:
            days = (now - record.registered).days
            if days > 365:
                acc.note(f"Root domain is established ({days} days old)")
            elif days < 30:
                acc.note(f"Root domain is very new ({days} days old)")

        registrar = record.registrar.lower()
        if registrar and any(r in registrar for r in REPUTABLE_REGISTRARS):
            acc.note("Root domain uses reputable corporate registrar")

    def check_subdomain(self, subdomain, acc, keyword_scored=False):
        """
        Tier and shape of the subdomain part.

        A high-risk tier only adds weight when the substring keyword check
        has not already scored the same subdomain.
        """
        label = subdomain.lower()
        tier, pattern = classify_subdomain(label)
        if tier == "high":
            flag = f"HIGH RISK: Subdomain matches high-risk pattern '{pattern}'"
            if keyword_scored:
                acc.note(flag)
            else:
                acc.add(self.w.subdomain_high_risk_pattern, flag)
        elif tier == "medium":
            acc.add(self.w.subdomain_medium_risk_pattern,
                    f"MEDIUM RISK: Questionable subdomain pattern '{label}'")
        elif tier == "low":
            acc.add(self.w.subdomain_common_pattern,
                    f"LOW RISK: Common legitimate subdomain pattern '{label}'")

        if is_random_label(label):
            acc.add(self.w.subdomain_random, "Subdomain appears to use random characters")
        if len(label) > 30:
            acc.add(self.w.subdomain_long, f"Subdomain is unusually long ({len(label)} characters)")
        levels = len(label.split("."))
        if levels > 2:
            acc.add(self.w.subdomain_levels, f"Multiple subdomain levels detected ({levels})")


# =========================================================
# Domain Reputation Module
# =========================================================

class DomainReputationAgent(SignalModule):
    name = "Domain"

    def __init__(self, whois_tool: Optional[WhoisTool] = None,
                 resolver: Optional[DNSResolver] = None,
                 weights: DomainRiskWeights = DEFAULT_WEIGHTS,
                 clock: Optional[Callable[[], datetime]] = None):
        self.whois = whois_tool or WhoisTool()
        self.resolver = resolver or DNSResolver()
        self.w = weights
        self.heuristics = DomainHeuristics(weights)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _analyze(self, email: ParsedEmail) -> DetectionResult:
        subject = subject_of(email)

        domain = extract_sender_domain(email.from_address if email is not None else "")
        if not domain:
            return DetectionResult(subject, 0, ["No valid domain found!"])

        acc = RiskAccumulator()
        self.assess(domain, acc)
        return DetectionResult(subject, acc.score, acc.flags)

    def assess(self, domain: str, acc: RiskAccumulator):
        now = self.clock()
        outcome = self.whois.lookup(domain)

        if outcome.status is LookupStatus.FAILED:
            acc.add(self.w.lookup_failed, f"WHOIS lookup failed for {domain}: {outcome.error}")
            acc.note("Domain registration could not be verified - assuming elevated risk")
            return

        if outcome.status is LookupStatus.FOUND:
            acc.note("Domain exists in WHOIS database")
            self.heuristics.run(outcome.record, domain, acc, now)
            return

        parts = split_root_domain(domain)
        if parts.root == domain:
            acc.add(self.w.domain_missing, f"Domain does not exist: {domain}")
            acc.note("High probability of phishing using non-existent domain")
            return

        self._assess_subdomain(domain, parts, acc, now)

    def _assess_subdomain(self, domain: str, parts: RootDomainComponents, acc: RiskAccumulator, now: datetime):
        acc.note(f"Subdomain detected: {domain}")

        root_outcome = self.whois.lookup(parts.root)
        if root_outcome.status is not LookupStatus.FOUND:
            if root_outcome.status is LookupStatus.FAILED:
                acc.note(f"Could not verify root domain {parts.root}: {root_outcome.error}")
            acc.add(self.w.root_missing, f"Root domain {parts.root} also appears invalid")
            acc.note("Very high probability of phishing")
            if self.resolver.resolve(domain):
                acc.add(self.w.root_missing_but_resolves,
                        "Suspicious: Domain doesn't exist but DNS resolves - possible cache poisoning")
            self.heuristics.check_subdomain(parts.subdomain, acc)
            return

        acc.note(f"Root domain exists: {parts.root}")
        self.heuristics.check_root_characteristics(root_outcome.record, acc, now)
        self.heuristics.run(root_outcome.record, parts.root, acc, now)

        sub_addresses = self.resolver.resolve(domain)
        if not sub_addresses:
            acc.add(self.w.subdomain_unresolved, "Subdomain does not resolve in DNS - suspicious")
        else:
            acc.note("Subdomain resolves in DNS")
            root_addresses = self.resolver.resolve(parts.root)
            if not root_addresses or sub_addresses[0] != root_addresses[0]:
                acc.add(self.w.ip_mismatch,
                        f"Subdomain IP differs from root domain {parts.root} - possible compromise")
            else:
                acc.add(self.w.ip_match, "Subdomain shares the root domain IP address")

        keyword = match_subdomain_keyword(parts.subdomain)
        if keyword:
            acc.add(self.w.subdomain_keyword,
                    f"HIGH RISK: Suspicious subdomain pattern '{parts.subdomain}' ({keyword})")

        self.heuristics.check_subdomain(parts.subdomain, acc, keyword_scored=keyword is not None)
