"""
Guardrails: input/output validation layer.

Layers:
  1. Input validation for typed client text (length, format)
  2. Output checks on completed assistant turns (tone, sensitive data)

Output guardrails do not block audio that has already been spoken. A tripped
guardrail is reported as a session event and recorded in the transcript.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# ── Configuration ─────────────────────────────────────────────────────

MAX_MESSAGE_LENGTH = 2000        # Max typed input length

_INJECTION_PATTERNS = [
    r"ignore\s+(all\s+)?previous\s+instructions",
    r"ignore\s+(all\s+)?above",
    r"disregard\s+(all\s+)?previous",
    r"you\s+are\s+now\s+(?:a|an)\s+",
    r"system\s*:\s*",
    r"<\s*system\s*>",
]

_UNPROFESSIONAL_PATTERNS = [
    re.compile(r"\b(damn|hell|crap|stupid|dumb|idiot)\b", re.IGNORECASE),
    re.compile(r"\b(whatever|meh|ugh)\b", re.IGNORECASE),
]

_SENSITIVE_PATTERNS = [
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),                         # SSN
    re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),    # Card number
]


@dataclass
class GuardrailResult:
    """Result of a guardrail check."""
    allowed: bool
    reason: Optional[str] = None
    guardrail: Optional[str] = None


# ── Input Guardrails ──────────────────────────────────────────────────

def check_input(message: str, session_id: str = "") -> GuardrailResult:
    """
    Validate typed user input before it is sent to the engine.
    Returns GuardrailResult with allowed=False if blocked.
    """

    # 1. Empty message
    if not message or not message.strip():
        return GuardrailResult(allowed=False, reason="Message is empty.", guardrail="input_empty")

    # 2. Length check
    if len(message) > MAX_MESSAGE_LENGTH:
        return GuardrailResult(
            allowed=False,
            reason=f"Message too long ({len(message)} chars). Maximum is {MAX_MESSAGE_LENGTH}.",
            guardrail="input_length",
        )

    # 3. Injection detection: log only, the persona instructions handle it
    msg_lower = message.lower()
    for pattern in _INJECTION_PATTERNS:
        if re.search(pattern, msg_lower):
            logger.warning("Potential injection detected in session=%s: %s", session_id, message[:100])
            break

    return GuardrailResult(allowed=True)


# ── Output Guardrails ─────────────────────────────────────────────────

def check_output(response: str) -> GuardrailResult:
    """
    Check a completed assistant turn.
    """
    for pattern in _SENSITIVE_PATTERNS:
        if pattern.search(response):
            logger.warning("Sensitive data pattern in assistant output")
            return GuardrailResult(
                allowed=False,
                reason="Assistant output contains a sensitive number pattern.",
                guardrail="no_personal_data_leak",
            )

    for pattern in _UNPROFESSIONAL_PATTERNS:
        if pattern.search(response):
            logger.warning("Unprofessional language in assistant output")
            return GuardrailResult(
                allowed=False,
                reason="Assistant output failed the professional tone check.",
                guardrail="professional_tone",
            )

    return GuardrailResult(allowed=True)
