"""
Grounding payload assembly
"""
import json
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from sales_copilot.models.chat import RecommendedDocument, SiteSnippet

# Hard ceilings; settings can only lower them
DEFAULT_MAX_DOCS = 10
DEFAULT_MAX_SNIPPETS = 8


@dataclass
class GroundingPayload:
    """Bounded documents and excerpts injected as their own system message"""
    docs: List[RecommendedDocument] = field(default_factory=list)
    snippets: List[SiteSnippet] = field(default_factory=list)
    heading: str = "DOC RESULTS (titles + snippets):"

    def to_dict(self) -> Dict:
        return {
            "docs": [
                {
                    "title": d.title,
                    "doc_type": d.doc_type.value,
                    "path": d.path,
                    "url": d.url,
                }
                for d in self.docs
            ],
            "snippets": [
                {"title": s.title, "excerpt": s.excerpt}
                for s in self.snippets
            ],
        }

    def as_message(self) -> Dict[str, str]:
        return {
            "role": "system",
            "content": f"{self.heading}\n{json.dumps(self.to_dict(), indent=2, ensure_ascii=False)}",
        }


def build_context(
    retrieved_docs: Sequence[RecommendedDocument],
    snippets: Sequence[SiteSnippet],
    max_docs: int = DEFAULT_MAX_DOCS,
    max_snippets: int = DEFAULT_MAX_SNIPPETS,
    product_name: str = "",
) -> GroundingPayload:
    heading = "DOC RESULTS (titles + snippets):"
    if product_name:
        heading = f"{product_name.upper()} {heading}"
    return GroundingPayload(
        docs=list(retrieved_docs)[:max(0, min(max_docs, DEFAULT_MAX_DOCS))],
        snippets=list(snippets)[:max(0, min(max_snippets, DEFAULT_MAX_SNIPPETS))],
        heading=heading,
    )
