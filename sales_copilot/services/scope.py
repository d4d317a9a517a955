"""
Deployment scope profiles.

Each deployment answers for exactly one product family. A profile bundles the
product's allow-pattern, the deny-list of other product families, the folder
tag used for document lookups and the fixed user-facing wording.
"""
import re
from dataclasses import dataclass, field
from typing import Dict, Pattern, Tuple

from sales_copilot.services.classifiers import PatternRule

CONTACT_LINE = "Please contact Anchor Products at (888) 575-2131 or online at anchorp.com."


@dataclass(frozen=True)
class ScopeProfile:
    key: str
    product_name: str
    folder_tag: str
    scope_pattern: Pattern
    out_of_scope_rules: Tuple[PatternRule, ...]
    base_queries: Tuple[str, ...]
    templated_openers: Tuple[Pattern, ...]
    restricted_pattern: Pattern
    approved_phrase: str
    contact_line: str = CONTACT_LINE
    conversation_title: str = ""
    series_folder_root: str = ""
    solution_folders: Tuple[Tuple[str, Tuple[str, ...]], ...] = field(default_factory=tuple)

    @property
    def title(self) -> str:
        return self.conversation_title or self.product_name


SOLUTION_FOLDERS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("solutions/hvac", ("hvac", "rtu")),
    ("solutions/satellite-dish", ("satellite", "dish")),
    ("solutions/snow-retention/2pipe", ("2pipe", "two pipe")),
    ("solutions/snow-retention/snow-fence", ("snow fence",)),
    ("solutions/roof-guardrail", ("guardrail",)),
    ("solutions/roof-ladder", ("roof ladder", "ladder")),
    ("solutions/roof-box", ("roof box",)),
    ("solutions/solar", ("solar",)),
    ("solutions/lightning", ("lightning",)),
)

# Fall-protection wording is a liability claim the product does not carry
RESTRICTED_FALL_PROTECTION = re.compile(
    r"\b(?:fall[\s-]*(?:protection|arrest)[\s-]*anchors?"
    r"|tie[\s-]*off[\s-]*(?:anchors?|points?))\b",
    re.IGNORECASE,
)

U_ANCHORS = ScopeProfile(
    key="u-anchors",
    product_name="U-Anchors",
    folder_tag="anchor/u-anchors",
    scope_pattern=re.compile(r"\bu[-\s]?anchors?\b|\bu\d{4}\b", re.IGNORECASE),
    out_of_scope_rules=(
        PatternRule("snow_retention", r"\b(snow\s*fence|2pipe|two\s*pipe)\b"),
        PatternRule("guy_wire", r"\bguy\s*wires?\b"),
        PatternRule("stacks", r"\b(elevated\s*stacks?|smoke\s*stacks?|exhaust\s*stacks?)\b"),
        PatternRule("rooftop_structures", r"\b(walkways?|screens?|dunnage|pipe\s*supports?)\b"),
        PatternRule(
            "membrane_comparison",
            r"\b(difference|differences|compare|comparison|versus|vs\.?|better)\b"
            r"[^.?!]*\b(epdm|tpo|pvc|kee|sbs|modified\s+bitumen|coatings?)\b",
        ),
    ),
    base_queries=("u-anchor", "u anchor"),
    templated_openers=(
        re.compile(r"^\**\s*u[-\s]?anchors\b", re.IGNORECASE),
        re.compile(r"^what they are", re.IGNORECASE),
    ),
    restricted_pattern=RESTRICTED_FALL_PROTECTION,
    approved_phrase="U-Anchor™ rooftop attachment",
    conversation_title="U-Anchors",
    series_folder_root="anchor/u-anchors",
    solution_folders=SOLUTION_FOLDERS,
)

PROFILES: Dict[str, ScopeProfile] = {
    U_ANCHORS.key: U_ANCHORS,
}

DEFAULT_PROFILE = U_ANCHORS


def get_profile(key: str) -> ScopeProfile:
    """Look up a deployment profile, raising for unknown keys"""
    try:
        return PROFILES[(key or "").strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown scope profile: {key!r}") from None
