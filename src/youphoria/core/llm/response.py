"""Post-processing of model output: guardrails and JSON payload recovery."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

REDACTION_NOTE = "[Removed: contains prohibited health guidance]"

# Heuristic phrase lists; the assistant gives wellness information, not care.
PROHIBITED_PATTERNS: dict[str, tuple[str, ...]] = {
    "making medical diagnoses": (
        "you have been diagnosed",
        "you are suffering from",
        "you have a condition",
        "you definitely have",
    ),
    "prescribing treatments": (
        "take this medication",
        "stop taking your medication",
        "i prescribe",
        "increase your dose",
    ),
    "making disease predictions": (
        "you will develop",
        "you are at high risk of dying",
        "guaranteed to cure",
    ),
}

ESCALATION_TERMS: tuple[str, ...] = (
    "chest pain",
    "suicidal",
    "can't breathe",
    "cannot breathe",
    "stroke",
    "overdose",
)

EMERGENCY_NOTE = (
    "If this is an emergency or you feel unsafe, call your local emergency number "
    "or go to the nearest emergency room."
)


@dataclass
class GuardrailCheck:
    """Result of screening model output."""

    passed: bool
    flags: list[str] = field(default_factory=list)
    matched_phrases: list[str] = field(default_factory=list)


def check_guardrails(content: str) -> GuardrailCheck:
    """Flag prohibited diagnosis/prescription phrasing in model output."""
    content_lower = content.lower()
    flags: list[str] = []
    matched: list[str] = []

    for action, patterns in PROHIBITED_PATTERNS.items():
        for pattern in patterns:
            if pattern in content_lower:
                flags.append(f"prohibited_pattern_detected: {action} ('{pattern}')")
                matched.append(pattern)

    if flags:
        logger.warning("Guardrail flags on model output: %s", flags)
    return GuardrailCheck(passed=not matched, flags=flags, matched_phrases=matched)


def sanitize_content(content: str, guardrail_check: GuardrailCheck) -> str:
    """Replace each sentence containing a prohibited phrase with a redaction note."""
    if guardrail_check.passed:
        return content

    sanitized = content
    for phrase in guardrail_check.matched_phrases:
        pattern = re.compile(
            r"[^.!?\n]*" + re.escape(phrase) + r"[^.!?\n]*[.!?]?",
            re.IGNORECASE,
        )
        sanitized = pattern.sub(REDACTION_NOTE, sanitized)
    return sanitized


def needs_escalation(user_message: str) -> bool:
    lowered = user_message.lower()
    return any(term in lowered for term in ESCALATION_TERMS)


def append_emergency_note(content: str) -> str:
    if EMERGENCY_NOTE.lower() in content.lower():
        return content
    return f"{content}\n\n{EMERGENCY_NOTE}"


_FENCE = re.compile(r"^\s*```(?:json|JSON)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence, if present."""
    match = _FENCE.match(text)
    return match.group(1).strip() if match else text.strip()


def parse_json_payload(text: str) -> Any:
    """Parse JSON from model output that may be fenced or wrapped in prose.

    Raises:
        ValueError: If no JSON object can be recovered.
    """
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except ValueError:
        pass

    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("Model output contains no JSON object")
    return json.loads(cleaned[start : end + 1])
