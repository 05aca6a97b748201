import time
from datetime import datetime, timezone

import dns.resolver
from whois import NICClient
from whois.exceptions import PywhoisError

from fakes import NOW, FakeResolver
from phishing_engine.detector import Cache, CacheConfig, ParsedEmail
from phishing_engine.domain_reputation import DNSResolver, DomainReputationAgent, LookupStatus, WhoisTool


def test_whois_entry_is_normalised():
    entry = {
        "domain_name": ["EXAMPLE.COM", "example.com"],
        "creation_date": [datetime(1995, 8, 14, 4, 0), datetime(1995, 8, 14, 4, 0, 1)],
        "expiration_date": datetime(2030, 8, 13, tzinfo=timezone.utc),
        "registrar": "RESERVED-Internet Assigned Numbers Authority",
        "name_servers": ["A.IANA-SERVERS.NET", "B.IANA-SERVERS.NET"],
        "status": "clientDeleteProhibited https://icann.org/epp#clientDeleteProhibited",
        "emails": ["abuse@iana.org"],
        "org": "Internet Assigned Numbers Authority",
    }
    tool = WhoisTool(query=lambda d, **kw: entry)

    outcome = tool.lookup("example.com")

    assert outcome.status is LookupStatus.FOUND
    record = outcome.record
    assert record.registered == datetime(1995, 8, 14, 4, 0, tzinfo=timezone.utc)
    assert record.name_servers == ("A.IANA-SERVERS.NET", "B.IANA-SERVERS.NET")
    assert record.domain_status == ("clientDeleteProhibited https://icann.org/epp#clientDeleteProhibited",)
    assert record.registrant_email == "abuse@iana.org"
    assert record.registrant_organization == "Internet Assigned Numbers Authority"


def test_whois_not_found_error_maps_to_not_found():
    def query(domain, **kwargs):
        raise PywhoisError('No match for "NOPE-EXAMPLE.COM".')

    assert WhoisTool(query=query).lookup("nope-example.com").status is LookupStatus.NOT_FOUND


def test_whois_empty_entry_maps_to_not_found():
    tool = WhoisTool(query=lambda d, **kw: {"domain_name": None, "creation_date": None, "registrar": None})

    assert tool.lookup("nope.example").status is LookupStatus.NOT_FOUND


def test_whois_transport_error_maps_to_failed():
    def query(domain, **kwargs):
        raise ConnectionResetError("connection reset by peer")

    outcome = WhoisTool(query=query).lookup("example.com")

    assert outcome.status is LookupStatus.FAILED
    assert "connection reset" in outcome.error


def test_whois_timeout_maps_to_failed():
    def slow(domain, **kwargs):
        time.sleep(0.3)
        return {"domain_name": "example.com"}

    outcome = WhoisTool(query=slow, timeout_sec=0.01).lookup("example.com")

    assert outcome.status is LookupStatus.FAILED
    assert "timed out" in outcome.error


def test_whois_results_are_cached():
    calls = []

    def query(domain, **kwargs):
        calls.append(domain)
        return {"domain_name": domain}

    tool = WhoisTool(cache=Cache(CacheConfig()), query=query)
    tool.lookup("example.com")
    tool.lookup("example.com")

    assert calls == ["example.com"]


def test_whois_timeout_is_passed_to_the_client():
    seen = []

    def query(domain, **kwargs):
        seen.append(kwargs)
        return {"domain_name": domain}

    WhoisTool(query=query, timeout_sec=3).lookup("example.com")

    assert seen == [{"timeout": 3}]


def test_whois_failures_are_not_cached():
    calls = []

    def query(domain, **kwargs):
        calls.append(domain)
        if len(calls) == 1:
            raise ConnectionResetError("connection reset by peer")
        return {"domain_name": domain}

    tool = WhoisTool(cache=Cache(CacheConfig()), query=query)

    assert tool.lookup("example.com").status is LookupStatus.FAILED
    assert tool.lookup("example.com").status is LookupStatus.FOUND
    assert calls == ["example.com", "example.com"]


def test_whois_not_found_is_cached():
    calls = []

    def query(domain, **kwargs):
        calls.append(domain)
        raise PywhoisError('No match for "NOPE-EXAMPLE.COM".')

    tool = WhoisTool(cache=Cache(CacheConfig()), query=query)
    tool.lookup("nope-example.com")
    tool.lookup("nope-example.com")

    assert calls == ["nope-example.com"]


EXAMPLE_COM_WHOIS = """\
   Domain Name: EXAMPLE.COM
   Registrar: RESERVED-Internet Assigned Numbers Authority
   Updated Date: 2024-08-14T07:01:34Z
   Creation Date: 1995-08-14T04:00:00Z
   Registry Expiry Date: 2030-08-13T04:00:00Z
   Domain Status: clientDeleteProhibited https://icann.org/epp#clientDeleteProhibited
   Name Server: A.IANA-SERVERS.NET
   Name Server: B.IANA-SERVERS.NET
"""


def patch_registry(mocker, text=EXAMPLE_COM_WHOIS):
    queried = []

    def whois_lookup(options, query, flags=0, **kwargs):
        queried.append(query.decode() if isinstance(query, bytes) else query)
        return text

    mocker.patch.object(NICClient, "whois_lookup", side_effect=whois_lookup)
    return queried


def test_registrable_domain_answer_is_not_taken_for_subdomain(mocker):
    queried = patch_registry(mocker)
    tool = WhoisTool()

    sub = tool.lookup("phish-login.example.com")
    root = tool.lookup("example.com")

    # python-whois asks the registry about the registrable domain both times
    assert queried == ["example.com", "example.com"]
    assert sub.status is LookupStatus.NOT_FOUND
    assert root.status is LookupStatus.FOUND
    assert root.record.registrar == "RESERVED-Internet Assigned Numbers Authority"


def test_subdomain_branch_runs_with_real_whois_client(mocker):
    patch_registry(mocker)
    resolver = FakeResolver({"phish-login.example.com": ["203.0.113.7"], "example.com": ["93.184.216.34"]})
    agent = DomainReputationAgent(whois_tool=WhoisTool(), resolver=resolver, clock=lambda: NOW)

    out = agent.analyze(ParsedEmail(subject="Notice", from_address="alert@phish-login.example.com"))

    assert out.flags[0] == "Subdomain detected: phish-login.example.com"
    assert "Root domain exists: example.com" in out.flags
    assert "Subdomain IP differs from root domain example.com - possible compromise" in out.flags
    assert "Domain exists in WHOIS database" not in out.flags


class FakeRdata:
    def __init__(self, address):
        self.address = address

    def to_text(self):
        return self.address


def test_dns_resolver_returns_addresses_in_order(mocker):
    resolve = mocker.patch(
        "phishing_engine.domain_reputation.dns.resolver.resolve",
        return_value=[FakeRdata("93.184.216.34"), FakeRdata("93.184.216.35")],
    )

    addresses = DNSResolver(lifetime=2.0).resolve("example.com")

    assert addresses == ["93.184.216.34", "93.184.216.35"]
    resolve.assert_called_once_with("example.com", "A", lifetime=2.0)


def test_dns_failure_is_none_and_cached(mocker):
    resolve = mocker.patch(
        "phishing_engine.domain_reputation.dns.resolver.resolve",
        side_effect=dns.resolver.NXDOMAIN(),
    )
    resolver = DNSResolver()

    assert resolver.resolve("nope.example") is None
    assert resolver.resolve("nope.example") is None
    # A then AAAA on the first call only
    assert resolve.call_count == 2
