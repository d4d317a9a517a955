"""Tests for chat pipeline orchestration."""

from unittest.mock import AsyncMock

from sales_copilot.models.chat import ChatTurn, Identity
from sales_copilot.services.pipeline import ChatPipeline
from sales_copilot.services.policy import (
    EMPTY_INPUT_MESSAGE,
    GENERIC_ERROR_MESSAGE,
    escalation_message,
)

USER = Identity(user_id="user-1", access_token="token")


def turn_for(text, **extra):
    payload = {"messages": [{"role": "user", "content": text}]}
    payload.update(extra)
    return ChatTurn.from_payload(payload)


def test_answer_turn(run, pipeline, llm, doc_search, store, sample_messages):
    turn = ChatTurn.from_payload({"messages": sample_messages, "conversationId": "c-1"})

    response = run(pipeline.handle(turn, identity=USER))

    assert response.answer == llm.answer
    assert response.conversation_id == "c-1"
    assert response.error is None
    assert response.folders_used == ["anchor/u-anchors", "anchor/u-anchors/u2400/tpo"]
    assert [d.path for d in response.recommended_docs] == [
        "anchor/u-anchors/u2400/u2400-sales-sheet.pdf",
        "anchor/u-anchors/u2600/u2600-sales-sheet.pdf",
        "anchor/u-anchors/u2400/install-manual.pdf",
    ]
    assert [s.title for s in response.site_snippets] == ["U2400 Sales Sheet"]
    assert doc_search.folders == ["anchor/u-anchors/u2400/tpo"]

    call = llm.generate_calls[0]
    assert call["system"]["role"] == "system"
    assert call["grounding"]["role"] == "system"
    assert "u2400-sales-sheet.pdf" in call["grounding"]["content"]
    assert call["history"][-1] == {"role": "user", "content": sample_messages[-1]["content"]}
    assert len(call["history"]) == 3


def test_answer_turn_persists_user_then_assistant(run, pipeline, store, sample_messages):
    turn = ChatTurn.from_payload({"messages": sample_messages, "conversationId": "c-1"})

    run(pipeline.handle(turn, identity=USER))

    assert [m.role for m in store.messages] == ["user", "assistant"]
    user_row, assistant_row = store.messages
    assert user_row.content == sample_messages[-1]["content"]
    assert user_row.conversation_id == "c-1"
    assert assistant_row.user_id == "user-1"
    assert assistant_row.meta["type"] == "u_anchors_answer"
    assert assistant_row.meta["foldersUsed"] == ["anchor/u-anchors", "anchor/u-anchors/u2400/tpo"]
    assert len(assistant_row.meta["recommendedDocs"]) == 3
    assert assistant_row.meta["siteSnippets"][0]["title"] == "U2400 Sales Sheet"


def test_docs_only_turn_skips_model(run, pipeline, llm, doc_search):
    response = run(pipeline.handle(turn_for("snow fence install sheet")))

    assert response.answer == ""
    assert llm.calls == 0
    assert response.folders_used == ["anchor/u-anchors", "solutions/snow-retention/snow-fence"]
    assert doc_search.folders == ["solutions/snow-retention/snow-fence"]
    assert "snow fence" in doc_search.queries
    assert "solutions/snow-retention/snow-fence/install-sheet.pdf" in [d.path for d in response.recommended_docs]


def test_docs_mode_persists_only_assistant(run, pipeline, llm, store):
    turn = turn_for("Does the U2400 work on TPO?", mode="docs", conversationId="c-9")

    response = run(pipeline.handle(turn, identity=USER))

    assert response.answer == ""
    assert llm.calls == 0
    assert [m.role for m in store.messages] == ["assistant"]
    assert store.messages[0].meta["type"] == "docs_only"


def test_out_of_scope_turn(run, pipeline, llm, doc_search):
    response = run(pipeline.handle(turn_for("What's the difference between EPDM and TPO?")))

    assert "scoped to **U-Anchors**" in response.answer
    assert llm.calls == 0
    assert response.folders_used[0] == "anchor/u-anchors"
    assert doc_search.queries


def test_escalation_turn_never_calls_model(run, pipeline, llm, profile, store):
    turn = turn_for("How many U-Anchors do I need for a 40x60 roof?", conversationId="c-2")

    response = run(pipeline.handle(turn, identity=USER))

    assert response.answer == escalation_message(profile)
    assert llm.calls == 0
    assert response.recommended_docs
    assert store.messages[-1].meta["type"] == "engineering_escalation"


def test_empty_turn(run, pipeline, llm, doc_search, store):
    response = run(pipeline.handle(ChatTurn.from_payload({"messages": []}), identity=USER))

    assert response.answer == EMPTY_INPUT_MESSAGE
    assert response.folders_used == ["anchor/u-anchors"]
    assert llm.calls == 0
    assert doc_search.queries == []
    assert store.messages == []


def test_unsafe_answer_is_replaced(run, pipeline, llm, profile, store):
    llm.answer = "You should use 6 anchors at 12 in o.c."

    response = run(pipeline.handle(turn_for("Does the U2400 work on TPO?", conversationId="c-3"), identity=USER))

    assert response.answer == escalation_message(profile)
    assert store.messages[-1].meta["type"] == "safety_escalation"


def test_spacing_answer_is_escalated_before_persisting(run, pipeline, llm, profile, store):
    llm.answer = "Space the U-Anchors 10 ft apart along the curb."

    response = run(pipeline.handle(turn_for("Does the U2400 work on TPO?", conversationId="c-7"), identity=USER))

    assert response.answer == escalation_message(profile)
    assert store.messages[-1].content == escalation_message(profile)
    assert store.messages[-1].meta["type"] == "safety_escalation"


def test_advisory_install_question_is_answered(run, pipeline, llm):
    response = run(pipeline.handle(turn_for("Can I install U-Anchors on a TPO roof?")))

    assert response.answer == llm.answer
    assert len(llm.generate_calls) == 1


def test_templated_answer_is_rewritten(run, pipeline, llm):
    llm.answer = "U-Anchors are rooftop attachments.\nApplications: HVAC, solar."
    llm.rewritten = "Yes, there's a TPO version of the U2400."

    response = run(pipeline.handle(turn_for("Does the U2400 work on TPO?")))

    assert response.answer == "Yes, there's a TPO version of the U2400."
    assert llm.rewrite_calls == [{"question": "Does the U2400 work on TPO?", "draft": llm.answer}]


def test_restricted_terminology_in_answer(run, pipeline, llm, profile):
    llm.answer = "It doubles as a fall protection anchor."

    response = run(pipeline.handle(turn_for("Does the U2400 work on TPO?")))

    assert response.answer == f"It doubles as a {profile.approved_phrase}."


def test_anonymous_turn_is_not_persisted(run, pipeline, store):
    run(pipeline.handle(turn_for("Does the U2400 work on TPO?", conversationId="c-4")))

    assert store.messages == []
    assert store.conversations == []


def test_conversation_created_for_authenticated_user(run, pipeline, store):
    response = run(pipeline.handle(turn_for("Does the U2400 work on TPO?"), identity=USER))

    assert response.conversation_id == "conv-new"
    assert store.conversations == [{"user_id": "user-1", "title": "U-Anchors"}]
    assert {m.conversation_id for m in store.messages} == {"conv-new"}


def test_persistence_failure_is_not_fatal(run, settings, doc_search, llm, profile, failing_store):
    pipeline = ChatPipeline(settings, doc_search, llm, failing_store, profile=profile)

    created = run(pipeline.handle(turn_for("Does the U2400 work on TPO?"), identity=USER))
    existing = run(pipeline.handle(turn_for("Does the U2400 work on TPO?", conversationId="c-5"), identity=USER))

    assert created.answer == llm.answer
    assert created.error is None
    assert created.conversation_id is None
    assert existing.answer == llm.answer
    assert existing.conversation_id == "c-5"


def test_search_failure_still_answers(run, pipeline, llm, doc_search):
    doc_search.fail = True

    response = run(pipeline.handle(turn_for("Does the U2400 work on TPO?")))

    assert response.answer == llm.answer
    assert response.recommended_docs == []


def test_unexpected_error_becomes_generic_response(run, pipeline, llm):
    llm.generate = AsyncMock(side_effect=RuntimeError("model client exploded"))

    response = run(pipeline.handle(turn_for("Does the U2400 work on TPO?", conversationId="c-6")))

    assert response.answer == GENERIC_ERROR_MESSAGE
    assert response.error == "model client exploded"
    assert response.conversation_id == "c-6"
    assert response.folders_used == ["anchor/u-anchors"]


def test_forwarded_headers_reach_search(run, pipeline, doc_search):
    run(pipeline.handle(turn_for("Does the U2400 work on TPO?"), forward_headers={"cookie": "sb=1"}))

    assert doc_search.headers == [{"cookie": "sb=1"}]
