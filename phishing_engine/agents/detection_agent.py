"""
Detection Agent
Builds the signal modules for one analysis run and fans the email out to them.
"""

from typing import List, Optional

from phishing_engine.detector import (
    Cache,
    CacheConfig,
    ContentAnalyzerAgent,
    UrlReputationAgent,
    AttachmentScanAgent,
    DetectionResult,
    ParsedEmail,
    SignalModule,
)
from phishing_engine.domain_reputation import (
    DomainReputationAgent,
    DNSResolver,
    WhoisTool,
)
from phishing_engine.orchestrator import DetectionOrchestrator


def build_default_modules() -> List[SignalModule]:
    """Content, URL, attachment and domain modules, each run with fresh caches."""
    cache_cfg = CacheConfig()
    return [
        ContentAnalyzerAgent(),
        UrlReputationAgent(),
        AttachmentScanAgent(),
        DomainReputationAgent(
            whois_tool=WhoisTool(cache=Cache(cache_cfg)),
            resolver=DNSResolver(cache=Cache(cache_cfg)),
        ),
    ]


class DetectionAgent:
    """
    Multi-module phishing detection agent.
    """

    def __init__(self, modules: Optional[List[SignalModule]] = None):
        self.modules = modules

    def run(self, email: ParsedEmail) -> DetectionResult:
        modules = self.modules if self.modules is not None else build_default_modules()
        return DetectionOrchestrator(modules).analyze_email(email)
