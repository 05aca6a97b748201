from datetime import timedelta

from fakes import NOW, established_record
from phishing_engine.domain_reputation import (
    DomainHeuristics,
    RiskAccumulator,
    WhoisRecord,
    classify_subdomain,
    is_random_label,
)


def run_check(check, *args):
    acc = RiskAccumulator()
    check(*args, acc)
    return acc


def test_age_bands():
    h = DomainHeuristics()

    def age(days):
        acc = RiskAccumulator()
        h.check_age(established_record(registered=NOW - timedelta(days=days)), acc, NOW)
        return acc.total

    assert age(3) == 40
    assert age(200) == 20
    assert age(800) == -10

    acc = RiskAccumulator()
    h.check_age(established_record(registered=None), acc, NOW)
    assert acc.total == 10
    assert acc.flags == ["Domain registration date unknown"]


def test_expiration_window():
    h = DomainHeuristics()
    acc = RiskAccumulator()

    h.check_expiration(established_record(expiration=NOW + timedelta(days=3)), acc, NOW)

    assert acc.total == 15


def test_registrar_tokens_scale():
    h = DomainHeuristics()

    assert run_check(h.check_registrar, established_record(registrar="")).total == 15
    assert run_check(h.check_registrar, established_record(registrar="Free Anonymous Names")).total == 20
    assert run_check(h.check_registrar, established_record(registrar="XYZ")).total == 10


def test_status_checks():
    h = DomainHeuristics()

    assert run_check(h.check_status, established_record(domain_status=())).total == 5
    assert run_check(h.check_status, established_record(domain_status=("clientHold",))).total == 40
    assert run_check(h.check_status, established_record(domain_status=("redemptionPeriod",))).total == 60
    assert run_check(h.check_status, established_record(domain_status=("ok https://icann.org/epp#ok",))).total == -5
    # keyword match only: "lookup" is not "ok"
    assert run_check(h.check_status, established_record(domain_status=("lookup",))).total == 0


def test_tld_penalties():
    h = DomainHeuristics()

    assert run_check(h.check_tld, "example.com").total == 0
    assert run_check(h.check_tld, "example.io").total == 5
    assert run_check(h.check_tld, "example.tk").total == 20
    assert run_check(h.check_tld, "example.online").total == 30


def test_brand_impersonation():
    h = DomainHeuristics()

    assert run_check(h.check_patterns, "google.com").total == 0
    assert run_check(h.check_patterns, "accounts.google.com").total == 0

    acc = run_check(h.check_patterns, "google-login.net")
    assert acc.total == 50
    assert "Possible brand impersonation: google" in acc.flags


def test_label_shape_checks():
    h = DomainHeuristics()

    assert run_check(h.check_patterns, "best-deals.com").total == 5
    assert run_check(h.check_patterns, "shop123.com").total == 10
    assert is_random_label("xkcdqwrtzpl")
    assert not is_random_label("wikipedia")


def test_name_servers():
    h = DomainHeuristics()

    assert run_check(h.check_name_servers, established_record(name_servers=())).total == 10

    spread = established_record(name_servers=(
        "ns1.alpha-dns.com", "ns1.beta-dns.net", "ns1.gamma-dns.org", "ns1.delta-dns.io",
    ))
    assert run_check(h.check_name_servers, spread).total == 10

    budget = established_record(name_servers=("ns1.freedns-host.com", "ns2.freedns-host.com"))
    assert run_check(h.check_name_servers, budget).total == 20


def test_contacts():
    h = DomainHeuristics()
    record = WhoisRecord(domain="x.com", registrant_email="contact@privacy-guard.net")

    acc = run_check(h.check_contacts, record)

    assert acc.total == 15
    assert acc.flags == ["Generic or privacy-protected contact email", "No organization information provided"]


def test_accumulator_clamps_only_on_read():
    acc = RiskAccumulator()
    acc.add(-30, "a")
    acc.add(10, "b")

    assert acc.total == -20
    assert acc.score == 0


def test_subdomain_tiers_match_whole_hyphen_parts():
    assert classify_subdomain("login") == ("high", "login")
    assert classify_subdomain("reset-portal") == ("high", "reset")
    assert classify_subdomain("my-paypal-help") == ("high", "paypal")
    assert classify_subdomain("presetting") == (None, None)
    assert classify_subdomain("billing") == ("medium", "billing")
    assert classify_subdomain("user-area") == ("medium", "user")
    assert classify_subdomain("superuser") == (None, None)
    assert classify_subdomain("WWW") == ("low", "www")
    assert classify_subdomain("") == (None, None)


def test_root_characteristics_are_flag_only():
    h = DomainHeuristics()
    acc = RiskAccumulator()

    h.check_root_characteristics(established_record(registrar="CSC Corporate Domains, Inc."), acc, NOW)

    assert acc.flags == [
        "Root domain is established (3650 days old)",
        "Root domain uses reputable corporate registrar",
    ]
    assert acc.total == 0


def test_high_tier_is_not_scored_twice():
    h = DomainHeuristics()
    scored, fresh = RiskAccumulator(), RiskAccumulator()

    h.check_subdomain("secure", scored, keyword_scored=True)
    h.check_subdomain("secure", fresh)

    assert scored.total == 0
    assert fresh.total == 20
    assert scored.flags == fresh.flags == ["HIGH RISK: Subdomain matches high-risk pattern 'secure'"]
