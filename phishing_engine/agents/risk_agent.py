"""
Risk Scoring Agent
Maps the fused detection percentage to severity, action and verdict.
"""

from typing import Optional

from phishing_engine.detector import DetectionResult
from phishing_engine.orchestrator import RiskConfig, RiskOutput, RiskScorerAgent


class RiskAgent:
    """
    Determines phishing risk and final action.
    """

    def __init__(self, cfg: Optional[RiskConfig] = None):
        self.cfg = cfg or RiskConfig()

    def run(self, detection_result: DetectionResult) -> RiskOutput:
        return RiskScorerAgent().run(detection_result, self.cfg)
