"""
Routing policy for a chat turn.

Branches are evaluated in a fixed priority order and every branch except
ANSWER is terminal:

    empty input -> docs-only -> out-of-scope -> escalation -> answer

Cheap, unambiguous checks run before any model call, and escalation is
decided before generation so a model response can never skip it.
"""
from typing import Dict

from sales_copilot.models.chat import Branch, ClassificationResult
from sales_copilot.services.scope import ScopeProfile

EMPTY_INPUT_MESSAGE = "I didn’t receive your message payload. Please refresh and try again."
GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again."
GENERATION_FAILED_MESSAGE = (
    "I couldn’t generate a response right now (temporary AI error). "
    "Please try again in a moment."
)

# Persisted meta.type per branch
MESSAGE_TYPES: Dict[Branch, str] = {
    Branch.DOCS_ONLY: "docs_only",
    Branch.OUT_OF_SCOPE: "out_of_scope",
    Branch.ESCALATE: "engineering_escalation",
}
SAFETY_ESCALATION_TYPE = "safety_escalation"


def decide_branch(user_text: str, docs_mode: bool, classification: ClassificationResult) -> Branch:
    if not (user_text or "").strip():
        return Branch.EMPTY_INPUT
    if docs_mode or classification.is_docs_only_request:
        return Branch.DOCS_ONLY
    if classification.is_out_of_scope:
        return Branch.OUT_OF_SCOPE
    if classification.needs_escalation:
        return Branch.ESCALATE
    return Branch.ANSWER


def answer_message_type(profile: ScopeProfile) -> str:
    """meta.type for a generated answer, e.g. u_anchors_answer"""
    slug = profile.key.replace("-", "_")
    return f"{slug}_answer" if slug else "assistant_with_docs"


def escalation_message(profile: ScopeProfile) -> str:
    return "\n".join([
        "For final design, sizing, quantities/spacing, loads, or code/compliance questions, "
        "this needs Anchor Engineering review.",
        profile.contact_line,
    ])


def out_of_scope_message(profile: ScopeProfile) -> str:
    return "\n".join([
        f"Right now I’m scoped to **{profile.product_name}** only.",
        f"If your question is about {profile.product_name}, tell me what you’re trying to secure "
        "and what roof type you’re on (if you know it).",
    ])


def build_system_policy(profile: ScopeProfile) -> Dict[str, str]:
    """The fixed behavioral policy, always the first system message"""
    name = profile.product_name
    lines = [
        f"You are an expert Anchor Products salesperson, currently scoped to ONE product: {name}.",
        "",
        "GOAL:",
        "- Answer like a natural conversation with an experienced customer.",
        "- Be specific to the question asked. Do NOT reuse a canned structure.",
        "",
        "STRICT SCOPE:",
        f"- Only discuss {name}. If asked about other products, say you're scoped to {name}.",
        "",
        "HARD LIMITS:",
        "- No calculations, loads/uplift/wind/seismic values.",
        "- No quantities, spacing, layouts, or 'how many anchors'.",
        "- No code/compliance guarantees or approvals claims.",
        "- No step-by-step installation instructions.",
        f"- Never describe the product as fall protection; call it a {profile.approved_phrase}.",
        "- If the user asks for any of the above, refer them to Anchor Engineering: "
        f"{profile.contact_line}",
        "",
        "GROUNDING RULE:",
        "- Use ONLY the provided doc titles/snippets as factual sources. "
        "If the snippet doesn't contain a detail, do not invent it.",
        "- If info is missing, ask 1–2 clarifying questions OR offer to share the specific sheet.",
        "",
        "STYLE (IMPORTANT):",
        "- No headings like 'Applications', 'Benefits', 'Components'.",
        "- Avoid long bullet lists unless the user asks for a list.",
        f"- Avoid re-defining {name} every reply. If the user is already talking about {name}, "
        "just answer the new question.",
        "- Vary phrasing across replies. Respond directly and conversationally.",
    ]
    return {"role": "system", "content": "\n".join(lines)}
