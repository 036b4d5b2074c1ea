"""Prompts for the optional report narrative.

Kept in one place so they can be reviewed and tuned without touching the
narration code.
"""

from .models import ComplianceReport


def build_system_prompt() -> str:
    return f"""{SYSTEM_IDENTITY}

{INSTRUCTIONS}

{RESPONSE_FORMAT}"""


def build_user_message(report: ComplianceReport) -> str:
    """List the findings the model may talk about, and nothing else."""
    lines = []
    for f in report.findings:
        where = "clause missing" if f.is_missing_clause else f'text: "{f.problematic_text}"'
        if f.policy_reference:
            where += f"; see {f.policy_reference}"
        lines.append(f"- [{f.severity}] {f.citation or f.rule_id}: {f.description} ({where})")
    findings_block = "\n".join(lines) or "- (no findings)"

    return f"""{USER_INSTRUCTION}

OVERALL RISK: {report.overall_risk}
RISK SCORE: {report.risk_score:.1f} / 10
COMPLIANCE SCORE: {report.compliance_score} / 100

FINDINGS:
===
{findings_block}
===

Return the JSON object now."""


# ---------------------------------------------------------------------------
# Prompt Components
# ---------------------------------------------------------------------------

SYSTEM_IDENTITY = """You are a contracts officer at a university research office reviewing
sponsored-research and procurement agreements for compliance with the Federal
Acquisition Regulation (FAR) and institutional policy."""

INSTRUCTIONS = """INSTRUCTIONS:
1. Summarize the review for a human reviewer in one short paragraph.
2. Mention the most severe findings first and say what the reviewer should negotiate.
3. Only discuss the findings you are given. Do not invent clauses, citations or findings.
4. This is an assist, not legal advice. Do not state conclusions as legal opinions."""

RESPONSE_FORMAT = """RESPONSE FORMAT:
Return ONLY a JSON object, no markdown fences:
{"narrative": "One paragraph, at most 120 words"}"""

USER_INSTRUCTION = "Write the reviewer summary for this automated compliance report."
