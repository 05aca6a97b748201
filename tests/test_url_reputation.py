import requests

from phishing_engine.detector import ParsedEmail, UrlReputationAgent, extract_urls
from phishing_engine.guardrails import CircuitBreaker


class FakeResponse:
    def __init__(self, data, status=200):
        self._data = data
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._data


class FakeHTTP:
    def __init__(self, listed=(), fail=False):
        self.listed = set(listed)
        self.fail = fail
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append(kwargs["params"]["_where"])
        if self.fail:
            raise requests.ConnectionError("unreachable")
        target = kwargs["params"]["_where"][len("(url,eq,"):-1]
        return FakeResponse([{"url": target}] if target in self.listed else [])


def test_extract_urls_dedupes_and_strips_fragment():
    email = ParsedEmail(
        subject="Check http://evil.example/login#top",
        text_body="go to http://evil.example/login and https://ok.example/a",
    )

    assert extract_urls(email) == ["http://evil.example/login", "https://ok.example/a"]


def test_no_urls_scores_zero():
    agent = UrlReputationAgent(http=FakeHTTP())

    out = agent.analyze(ParsedEmail(subject="Hi", text_body="no links here"))

    assert out.percentage == 0
    assert out.flags == ["No URLs to scan"]


def test_listed_url_scores_100():
    http = FakeHTTP(listed={"http://evil.example/login"})
    agent = UrlReputationAgent(http=http)

    out = agent.analyze(ParsedEmail(text_body="http://evil.example/login https://ok.example/"))

    assert out.percentage == 100
    assert "Phishing confirmed by PhishStats: http://evil.example/login" in out.flags
    assert len(http.calls) == 2


def test_unlisted_urls_score_50():
    agent = UrlReputationAgent(http=FakeHTTP())

    out = agent.analyze(ParsedEmail(text_body="visit https://ok.example/"))

    assert out.percentage == 50
    assert "No phishing URLs detected in PhishStats database" in out.flags


def test_lookup_failures_trip_the_breaker():
    breaker = CircuitBreaker(failure_threshold=1, reset_timeout=60)
    agent = UrlReputationAgent(http=FakeHTTP(fail=True), breaker=breaker)

    first = agent.analyze(ParsedEmail(text_body="https://ok.example/"))
    assert any(f.startswith("PhishStats lookup failed") for f in first.flags)

    second = agent.analyze(ParsedEmail(text_body="https://ok.example/"))
    assert second.percentage == 0
    assert second.flags == ["URL reputation lookups temporarily disabled"]
