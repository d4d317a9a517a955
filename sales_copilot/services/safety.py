"""
Post-generation safety filter
"""
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog

from sales_copilot.services.classifiers import PatternRule, enforce_terminology
from sales_copilot.services.policy import escalation_message
from sales_copilot.services.scope import ScopeProfile
from sales_copilot.utils.metrics import track_safety

logger = structlog.get_logger()

# Numeric design guidance the assistant must never hand out
ENGINEERING_OUTPUT_RULES = (
    PatternRule("numeric_load", r"\b(\d+(\.\d+)?\s*(psf|kpa|kip|kips|lb|lbs|pounds|n|kn|mph))\b"),
    PatternRule(
        "numeric_spacing",
        r"\b(\d+(\.\d+)?\s*(inches|inch|in|ft|feet|foot|mm|cm|m))\b.*\b(o\.?c\.?|on\s*center)\b",
    ),
    PatternRule(
        "spacing_distance",
        r"\b(spacing|spaced|apart|every|between)\b[^.\n]{0,40}?\b\d+(\.\d+)?\s*(inches|inch|in|ft|feet|foot|mm|cm|m)\b"
        r"|\b\d+(\.\d+)?\s*(inches|inch|in|ft|feet|foot|mm|cm|m)\b[^.\n]{0,40}?\b(apart|spacing|spaced)\b",
    ),
    PatternRule(
        "anchor_count",
        r"\b(use|need|required|minimum)\b.*\b(\d+)\b.*\b(anchor|anchors|attachment|attachments)\b",
    ),
    PatternRule(
        "anchor_ratio",
        r"\b\d+\s*(u[-\s]?anchors?|anchors?|attachments?)\s+(per|each|every|for\s+each)\b",
    ),
)

SECTION_LABELS = re.compile(
    r"\b(applications|benefits|components|typical applications|sales view|main components|when to choose)\b",
    re.IGNORECASE,
)
BULLET_LINE = re.compile(r"^\s*[-•]", re.MULTILINE)
BULLET_LIMIT = 6

Rewriter = Callable[[str], Awaitable[Optional[str]]]


@dataclass
class SafetyOutcome:
    text: str
    escalated: bool = False
    rewritten: bool = False


def contains_engineering_output(answer: str) -> bool:
    t = (answer or "").lower()
    return any(rule.matches(t) for rule in ENGINEERING_OUTPUT_RULES)


def looks_templated(answer: str, profile: ScopeProfile) -> bool:
    """Heading-like opener, canned section labels, or a wall of bullets"""
    a = (answer or "").strip()
    if not a:
        return False
    if any(opener.search(a) for opener in profile.templated_openers):
        return True
    if SECTION_LABELS.search(a):
        return True
    return len(BULLET_LINE.findall(a)) >= BULLET_LIMIT


class SafetyFilter:
    """Hard-stop re-check, optional style rewrite, then terminology enforcement"""

    def __init__(self, profile: ScopeProfile):
        self.profile = profile

    async def apply(self, answer: str, rewrite: Rewriter) -> SafetyOutcome:
        if contains_engineering_output(answer):
            logger.warning("Generated answer contained engineering output, replacing")
            track_safety("engineering_output")
            return self.finalize(SafetyOutcome(text=escalation_message(self.profile), escalated=True))

        outcome = SafetyOutcome(text=answer)
        if looks_templated(answer, self.profile):
            track_safety("templated")
            rewritten = await rewrite(answer)
            if rewritten and rewritten.strip():
                if contains_engineering_output(rewritten):
                    logger.warning("Rewrite introduced engineering output, keeping draft")
                    track_safety("rewrite_rejected")
                else:
                    outcome = SafetyOutcome(text=rewritten.strip(), rewritten=True)
            else:
                logger.info("Rewrite unavailable, keeping original answer")

        return self.finalize(outcome)

    def finalize(self, outcome: SafetyOutcome) -> SafetyOutcome:
        outcome.text = enforce_terminology(outcome.text, self.profile)
        return outcome
