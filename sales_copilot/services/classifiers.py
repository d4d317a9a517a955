"""
Lexical intent classifiers for the latest user utterance.

Every predicate is a pure function of its input text. The pattern tables are
plain data so rules can be reviewed and extended without touching control
flow; the routing policy in services/policy.py composes the results.
"""
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, List, Pattern, Sequence, Tuple

from sales_copilot.models.chat import ClassificationResult

if TYPE_CHECKING:
    from sales_copilot.services.scope import ScopeProfile


@dataclass(frozen=True)
class PatternRule:
    """A tagged regex rule, matched case-insensitively"""
    tag: str
    pattern: str
    compiled: Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "compiled", re.compile(self.pattern, re.IGNORECASE))

    def matches(self, text: str) -> bool:
        return bool(self.compiled.search(text))


DOC_NOUN_RULES = (
    PatternRule(
        "doc_noun",
        r"\b(doc|docs|document|documents|pdf|file|files|sheet|sheets|sales\s*sheet|data\s*sheet"
        r"|submittal|spec|specs|manual|manuals|instructions|cad|dwg|stp"
        r"|drawing|drawings)\b",
    ),
)

ADVISORY_RULES = (
    PatternRule(
        "advisory",
        r"\b(how|why|difference|compare|recommend|which|best|should\s+i|what\s+do\s+i"
        r"|help\s+me\s+choose|tell\s+me\s+about|explain|compatible|compatibility|works?\s+(on|with)|matter)\b",
    ),
    # Questions that open with an interrogative; "do you" and "can you" stay requests
    PatternRule("question", r"^(is|are|does|will|would|what|when|where|why|can\s+i|could\s+i)\b"),
)

# Bare "code" does not escalate; only compliance phrasing does
ESCALATION_RULES = (
    PatternRule(
        "quantity_spacing",
        r"\b(how\s+many|quantity|qty|count|number\s+of|spacing|pattern|layout|o\.?c\.?|on\s*center)\b",
    ),
    PatternRule(
        "load_calculation",
        r"\b(load|loads|uplift|wind|seismic|psf|kpa|kip|lbs|pounds|newton|calculation|calc|calculate"
        r"|sizing|size\s+it)\b",
    ),
    PatternRule(
        "code_compliance",
        r"\b(code\s*compliance|compliant|meets\s+code|ibc|asce|fm\s*global|ul\s*(listed|classified)?"
        r"|approval|approved|pe\s*stamp|stamped|sealed)\b",
    ),
)

# Words stripped from an utterance to leave the subject used as a search query
QUERY_FILLER = re.compile(
    r"\b(doc|docs|document|documents|pdf|file|files|sheet|sheets|sales|data|submittal|spec|specs"
    r"|manual|manuals|installation|install|instructions|cad|dwg|step|stp|drawing|drawings|details"
    r"|video|videos|please|pls|send|share|give|get|show|find|need|want|me|my|the|a|an|for|of|on"
    r"|to|i|can|you|could|would|do|have|any|some|latest|link|links)\b",
    re.IGNORECASE,
)

SERIES_PATTERN = re.compile(r"\bu(\d{4})\b")

# Membrane / finish variants under an anchor series folder
MEMBRANE_VARIANTS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("epdm", ("epdm",)),
    ("kee", ("kee",)),
    ("pvc", ("pvc",)),
    ("tpo", ("tpo",)),
    ("app", ("app",)),
    ("sbs-torch", ("sbs torch", "torch")),
    ("sbs", ("sbs",)),
    ("coatings", ("coating", "coatings")),
    ("plate", ("plate",)),
)


def normalize(text: str) -> str:
    return (text or "").lower().strip()


def matching_tags(rules: Iterable[PatternRule], text: str) -> List[str]:
    """Tags of every rule that matches, in table order"""
    t = normalize(text)
    return [rule.tag for rule in rules if rule.matches(t)]


def _any(rules: Iterable[PatternRule], text: str) -> bool:
    t = normalize(text)
    return any(rule.matches(t) for rule in rules)


def looks_like_docs_only_request(text: str) -> bool:
    """A document fetch with no advisory language. Advisory wording always wins."""
    t = normalize(text)
    if not t:
        return False
    return _any(DOC_NOUN_RULES, t) and not _any(ADVISORY_RULES, t)


def is_in_scope(text: str, profile: "ScopeProfile") -> bool:
    return bool(profile.scope_pattern.search(normalize(text)))


def is_clearly_out_of_scope(text: str, profile: "ScopeProfile") -> bool:
    t = normalize(text)
    if is_in_scope(t, profile):
        return False
    return _any(profile.out_of_scope_rules, t)


def needs_engineering_escalation(text: str) -> bool:
    return _any(ESCALATION_RULES, text)


def mentions_restricted_terminology(text: str, profile: "ScopeProfile") -> bool:
    return bool(profile.restricted_pattern.search(text or ""))


def enforce_terminology(text: str, profile: "ScopeProfile") -> str:
    """Replace every restricted phrase with the approved wording"""
    if not text:
        return text
    return profile.restricted_pattern.sub(profile.approved_phrase, text)


def detect_folders(text: str, profile: "ScopeProfile", limit: int = 2) -> List[str]:
    """Folders implied by the utterance: an anchor series (plus variant) and a solution"""
    t = normalize(text)
    folders = []

    series = SERIES_PATTERN.search(t)
    if series and profile.series_folder_root:
        folder = f"{profile.series_folder_root}/u{series.group(1)}"
        for key, hits in MEMBRANE_VARIANTS:
            if any(re.search(rf"\b{re.escape(hit)}\b", t) for hit in hits):
                folder = f"{folder}/{key}"
                break
        folders.append(folder)

    for folder, hits in profile.solution_folders:
        if any(hit in t for hit in hits):
            folders.append(folder)
            break

    return folders[:limit]


def subject_terms(text: str) -> str:
    """The utterance with document nouns and filler words removed"""
    t = normalize(text)
    t = re.sub(r"[^\w\s-]", " ", t)
    t = QUERY_FILLER.sub(" ", t)
    return " ".join(t.split())


def classify(text: str, profile: "ScopeProfile") -> ClassificationResult:
    return ClassificationResult(
        is_docs_only_request=looks_like_docs_only_request(text),
        is_out_of_scope=is_clearly_out_of_scope(text, profile),
        needs_escalation=needs_engineering_escalation(text),
        mentions_restricted_term=mentions_restricted_terminology(text, profile),
        folders=detect_folders(text, profile),
    )


def build_queries(text: str, profile: "ScopeProfile") -> List[str]:
    """Free-text search queries for a turn, subject first, without duplicates"""
    subject = subject_terms(text)
    candidates: Sequence[str] = [subject, *profile.base_queries]
    if subject and profile.base_queries:
        candidates = [*candidates, f"{profile.base_queries[0]} {subject}"]

    queries = []
    for query in candidates:
        query = query.strip()
        if query and query not in queries:
            queries.append(query)
    return queries
