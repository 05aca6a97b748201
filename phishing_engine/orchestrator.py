import math
import logging

from dataclasses import dataclass
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import List, Sequence

from .detector import (
    DetectionResult,
    ParsedEmail,
    SignalModule,
    clamp,
    dedupe_flags,
    module_failure,
    subject_of,
)

logger = logging.getLogger(__name__)


# =========================================================
# Score fusion
# =========================================================

def fuse_scores(scores: Sequence[int]) -> int:
    """
    Sharpened noisy-OR over module percentages.

    ``raw = 1 - prod(1 - s/100)`` is raised to ``1 + raw`` before scaling,
    which pulls mid-range aggregates down while 0 and 100 stay fixed.
    """
    product = 1.0
    for s in scores:
        product *= 1 - clamp(s) / 100.0

    raw = 1 - product
    final = raw ** (1 + raw)
    return clamp(math.ceil(final * 100))


def merge_flags(results: Sequence[DetectionResult]) -> List[str]:
    return dedupe_flags(f for r in results for f in r.flags)


# =========================================================
# Detection Orchestrator
# =========================================================

class DetectionOrchestrator:
    """
    Fans one email out to every configured module and fuses the results.

    Module order is the configured order; completion order never affects
    the fused score or the flag order.
    """

    def __init__(self, modules: Sequence[SignalModule]):
        self.modules = list(modules)

    def analyze_email(self, email: ParsedEmail) -> DetectionResult:
        results = self._run_modules(email)

        scores = [clamp(r.percentage) for r in results]
        overall = fuse_scores(scores)
        logger.info("Fused %d module scores %s -> %d", len(scores), scores, overall)

        return DetectionResult(
            email_subject=subject_of(email),
            percentage=overall,
            flags=merge_flags(results),
            scanned_at=datetime.now(timezone.utc),
        )

    def _run_modules(self, email: ParsedEmail) -> List[DetectionResult]:
        if not self.modules:
            return []

        # one thread per module so none waits behind a slow lookup
        workers = len(self.modules)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [(m, executor.submit(m.analyze, email)) for m in self.modules]

            results = []
            for module, future in futures:
                try:
                    results.append(future.result())
                except Exception as e:
                    # analyze() already guards _analyze; this covers modules that bypass it
                    logger.warning("%s module raised past its boundary: %s", _module_name(module), e)
                    results.append(module_failure(_module_name(module), email, e))
        return results


def _module_name(module) -> str:
    return getattr(module, "name", None) or type(module).__name__


# =========================================================
# Risk Scoring
# =========================================================

@dataclass
class RiskConfig:
    block_threshold: int = 85
    quarantine_threshold: int = 70
    flag_threshold: int = 50
    phishing_verdict_threshold: int = 70


@dataclass
class RiskOutput:
    score: int
    severity: str
    action: str
    verdict: str


class RiskScorerAgent:
    def run(self, result: DetectionResult, cfg: RiskConfig) -> RiskOutput:
        score = clamp(result.percentage)
        verdict = "Likely Phishing" if score >= cfg.phishing_verdict_threshold else "Likely Safe"

        if score >= cfg.block_threshold:
            return RiskOutput(score, "High", "Block", verdict)
        if score >= cfg.quarantine_threshold:
            return RiskOutput(score, "Medium", "Quarantine", verdict)
        if score >= cfg.flag_threshold:
            return RiskOutput(score, "Low", "Flag", verdict)
        return RiskOutput(score, "Info", "Allow", verdict)
