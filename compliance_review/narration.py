"""Optional LLM narrative for a finished report.

The narrative is decoration: it never adds or removes findings, and any
failure here is logged and leaves the report without one.
"""

import dataclasses
import json
import logging

from .config import ANTHROPIC_API_KEY, LLM_MAX_TOKENS, LLM_MODEL
from .models import ComplianceReport
from .prompts import build_system_prompt, build_user_message

logger = logging.getLogger(__name__)


def _default_client():
    import anthropic
    return anthropic.Anthropic(api_key=ANTHROPIC_API_KEY)


def _parse_narrative(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        _, _, body = text.partition("\n")
        text = body.rsplit("```", 1)[0].strip()
    if not text:
        return ""
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        # Plain prose is acceptable too.
        return text
    if isinstance(data, dict):
        return str(data.get("narrative") or "").strip()
    return ""


def narrate_report(report: ComplianceReport, client=None) -> str:
    """Ask the model for a short reviewer-facing summary; "" on any failure."""
    if client is None:
        if not ANTHROPIC_API_KEY:
            logger.info("ANTHROPIC_API_KEY not configured; skipping narrative")
            return ""
        client = _default_client()

    try:
        text = ""
        with client.messages.stream(
            model=LLM_MODEL,
            max_tokens=LLM_MAX_TOKENS,
            system=build_system_prompt(),
            messages=[{"role": "user", "content": build_user_message(report)}],
        ) as stream:
            for chunk in stream.text_stream:
                text += chunk
        return _parse_narrative(text)
    except Exception as e:
        logger.warning("Narrative generation failed: %s", e)
        return ""


def with_narrative(report: ComplianceReport, client=None) -> ComplianceReport:
    return dataclasses.replace(report, narrative=narrate_report(report, client))
