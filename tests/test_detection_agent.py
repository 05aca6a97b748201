from phishing_engine.agents.detection_agent import DetectionAgent, build_default_modules
from phishing_engine.detector import DetectionResult, ParsedEmail, SignalModule


class FixedModule(SignalModule):
    def __init__(self, name, score):
        self.name = name
        self.fixed = score

    def _analyze(self, email):
        return DetectionResult(email.subject, self.fixed, [f"{self.name} ran"])


def test_default_modules_are_in_configured_order(monkeypatch):
    monkeypatch.delenv("VIRUSTOTAL_API_KEY", raising=False)

    names = [m.name for m in build_default_modules()]

    assert names == ["Content", "URL", "Attachment", "Domain"]


def test_default_modules_get_fresh_caches():
    first = build_default_modules()[-1]
    second = build_default_modules()[-1]

    assert first.whois.cache is not second.whois.cache


def test_detection_agent_runs_configured_modules():
    agent = DetectionAgent(modules=[FixedModule("A", 30), FixedModule("B", 40)])

    out = agent.run(ParsedEmail(subject="Hello"))

    assert out.percentage == 43
    assert out.flags == ["A ran", "B ran"]
