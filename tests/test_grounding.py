"""Tests for grounding payload assembly."""

import json

from sales_copilot.models.chat import RecommendedDocument, SiteSnippet
from sales_copilot.services.grounding import build_context


def make_docs(count):
    return [
        RecommendedDocument(title=f"Doc {i}", doc_type="sales_sheet", path=f"anchor/doc-{i}.pdf")
        for i in range(count)
    ]


def make_snippets(count):
    return [SiteSnippet(title=f"Snippet {i}", excerpt=f"text {i}") for i in range(count)]


def test_hard_ceilings_apply():
    payload = build_context(make_docs(15), make_snippets(12), max_docs=50, max_snippets=50)

    assert len(payload.docs) == 10
    assert len(payload.snippets) == 8


def test_settings_can_lower_bounds():
    payload = build_context(make_docs(15), make_snippets(12), max_docs=3, max_snippets=0)

    assert [d.title for d in payload.docs] == ["Doc 0", "Doc 1", "Doc 2"]
    assert payload.snippets == []


def test_as_message_is_system_message_with_json_body():
    payload = build_context(make_docs(2), make_snippets(1), product_name="U-Anchors")
    message = payload.as_message()

    assert message["role"] == "system"
    heading, body = message["content"].split("\n", 1)
    assert heading == "U-ANCHORS DOC RESULTS (titles + snippets):"

    data = json.loads(body)
    assert data["docs"][0] == {
        "title": "Doc 0",
        "doc_type": "sales_sheet",
        "path": "anchor/doc-0.pdf",
        "url": None,
    }
    assert data["snippets"] == [{"title": "Snippet 0", "excerpt": "text 0"}]


def test_empty_grounding():
    payload = build_context([], [])
    assert payload.to_dict() == {"docs": [], "snippets": []}
    assert payload.heading == "DOC RESULTS (titles + snippets):"
