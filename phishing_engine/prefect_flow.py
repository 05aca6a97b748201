"""
Phishing Detection Flow

Stages:
1. Ingestion – parse the uploaded .eml/.msg file
2. Detection Agent – runs every signal module and fuses the scores
3. Risk Agent – severity, action & verdict
4. Report – plain-text summary, redacted before printing

Orchestrated using Prefect workflow.
"""

import os
import logging
import argparse

from prefect import flow, task
from dotenv import load_dotenv

from phishing_engine.agents.detection_agent import DetectionAgent
from phishing_engine.agents.risk_agent import RiskAgent
from phishing_engine.detector import EmailIngestionAgent, DetectionResult, ParsedEmail
from phishing_engine.orchestrator import RiskOutput
from phishing_engine.guardrails import POLICY, setup_safe_logging, redact_report_text

logger = logging.getLogger(__name__)


# ================= TASKS =================

@task
def ingest_email(eml_path: str) -> ParsedEmail:
    email = EmailIngestionAgent().parse_path(eml_path)
    print("✅ Email ingestion complete")
    return email


@task(timeout_seconds=POLICY.ANALYSIS_TIMEOUT_SEC)
def detect(email: ParsedEmail) -> DetectionResult:
    result = DetectionAgent().run(email)
    print("✅ Detection complete")
    return result


@task
def score_risk(result: DetectionResult) -> RiskOutput:
    risk_out = RiskAgent().run(result)
    print("✅ Risk scoring complete")
    return risk_out


# ================= REPORTING =================

SUMMARY_BY_SEVERITY = {
    "High": "Strong phishing indicators were found in this email.",
    "Medium": "Several suspicious signals were found; treat this email with caution.",
    "Low": "A few weak phishing signals were found.",
    "Info": "No significant phishing indicators were found.",
}

ADVICE_BY_ACTION = {
    "Block": "Do NOT interact with this email. Block the sender and report it to security.",
    "Quarantine": "Hold the email for review. Do not open links or attachments until it is cleared.",
    "Flag": "Proceed with caution and verify the sender through another channel.",
    "Allow": "No action required.",
}


def build_text_report(email: ParsedEmail, result: DetectionResult, risk_out: RiskOutput) -> str:
    """
    Plain-text report: summary, verdict, score, findings, evidence and advice.
    The caller redacts it before printing.
    """
    findings = [f"- {f}" for f in result.flags] or ["- No findings"]

    sections = [
        ("1️⃣ SUMMARY", [SUMMARY_BY_SEVERITY.get(risk_out.severity, "")]),
        ("2️⃣ VERDICT", [f"Verdict: {risk_out.verdict}", f"Decision: {risk_out.action}"]),
        ("3️⃣ RISK SCORE", [f"Score: {risk_out.score}/100", f"Severity: {risk_out.severity}"]),
        ("4️⃣ FINDINGS", findings),
        ("5️⃣ EVIDENCE", [
            f"Subject: {result.email_subject}",
            f"From: {email.from_address or 'unknown'}",
            f"Attachments: {len(email.attachments)}",
            f"Scanned at: {result.scanned_at.isoformat()}",
        ]),
        ("6️⃣ SUGGESTED ACTION", [ADVICE_BY_ACTION.get(risk_out.action, "")]),
    ]

    lines = []
    for heading, body in sections:
        lines.append(heading)
        lines.extend(body)
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


@task
def generate_report(email: ParsedEmail, result: DetectionResult, risk_out: RiskOutput) -> str:
    return build_text_report(email, result, risk_out)


# ================= FLOW =================

@flow(name="phishing-detection-flow")
def phishing_analyzer_flow(eml_path: str):
    print("🚀 Starting phishing analysis")

    email = ingest_email(eml_path)
    result = detect(email)
    risk_out = score_risk(result)
    logger.info("Verdict %s: score %d, action %s", risk_out.verdict, risk_out.score, risk_out.action)
    report_text = generate_report(email, result, risk_out)

    return {
        "result": result.to_dict(),
        "risk": {
            "score": risk_out.score,
            "severity": risk_out.severity,
            "action": risk_out.action,
            "verdict": risk_out.verdict,
        },
        "report": report_text,
    }


# ================= MAIN =================

def main(argv=None):
    load_dotenv()
    setup_safe_logging(os.getenv("LOG_LEVEL", "INFO"))

    parser = argparse.ArgumentParser(description="Analyze an .eml or .msg file for phishing signals.")
    parser.add_argument("email_path", help="path to the email file")
    args = parser.parse_args(argv)

    output = phishing_analyzer_flow(args.email_path)

    print("\n================ FINAL REPORT ================\n")
    print(redact_report_text(output["report"]))
    return output


if __name__ == "__main__":
    main()
