"""Pytest fixtures for sales-copilot tests."""

import asyncio
import os
from typing import Dict, List, Optional

import pytest

# Set test environment before any settings are loaded
os.environ["ENVIRONMENT"] = "test"
os.environ["OPENAI_API_KEY"] = "test-key"
os.environ["OPENAI_BASE_URL"] = "http://llm.test/v1"
os.environ["DOCS_SEARCH_URL"] = "http://docs.test/api/docs"
os.environ["OTEL_ENABLED"] = "false"
os.environ["LOG_JSON"] = "false"
os.environ.pop("SUPABASE_URL", None)

from sales_copilot.models.chat import PersistedMessage, RecommendedDocument, SiteSnippet
from sales_copilot.services.config import Settings
from sales_copilot.services.persistence import ConversationStore
from sales_copilot.services.pipeline import ChatPipeline
from sales_copilot.services.scope import U_ANCHORS


def doc(path: str, title: Optional[str] = None, doc_type: str = "sales_sheet") -> RecommendedDocument:
    return RecommendedDocument(title=title or path, doc_type=doc_type, path=path, url=f"https://signed.test/{path}")


class FakeDocSearch:
    """Stands in for DocumentSearchClient; answers from canned tables"""

    def __init__(self):
        self.by_query: Dict[str, List[RecommendedDocument]] = {}
        self.by_folder: Dict[str, List[RecommendedDocument]] = {}
        self.snippet_results: List[SiteSnippet] = []
        self.queries: List[str] = []
        self.folders: List[str] = []
        self.headers: List[Optional[Dict[str, str]]] = []
        self.fail = False

    async def search(self, queries, limit_per_query=12, headers=None):
        if self.fail:
            raise RuntimeError("search exploded")
        self.queries.extend(queries)
        self.headers.append(headers)
        results = []
        seen = set()
        for q in queries:
            for d in self.by_query.get(q, []):
                if d.path not in seen:
                    seen.add(d.path)
                    results.append(d)
        return results

    async def search_folders(self, folders, limit_per_folder=12, headers=None):
        self.folders.extend(folders)
        return [d for f in folders for d in self.by_folder.get(f, [])]

    async def snippets(self, query, limit=8, headers=None):
        return list(self.snippet_results)

    async def close(self):
        pass


class FakeLLM:
    """Stands in for LLMService; records every call"""

    def __init__(self):
        self.answer = "The U2400 attaches through the membrane with a matching flashing kit."
        self.rewritten: Optional[str] = None
        self.generate_calls = []
        self.rewrite_calls = []

    async def generate(self, system_policy, grounding, history):
        self.generate_calls.append({"system": system_policy, "grounding": grounding, "history": history})
        return self.answer

    async def rewrite(self, system_policy, grounding, question, draft):
        self.rewrite_calls.append({"question": question, "draft": draft})
        return self.rewritten

    @property
    def calls(self) -> int:
        return len(self.generate_calls) + len(self.rewrite_calls)

    async def close(self):
        pass


class RecordingStore(ConversationStore):
    def __init__(self):
        self.messages: List[PersistedMessage] = []
        self.conversations: List[Dict[str, str]] = []

    async def create_conversation(self, user_id, title):
        self.conversations.append({"user_id": user_id, "title": title})
        return "conv-new"

    async def insert(self, message):
        self.messages.append(message)


class FailingStore(ConversationStore):
    async def create_conversation(self, user_id, title):
        raise RuntimeError("database unavailable")

    async def insert(self, message):
        raise RuntimeError("database unavailable")


@pytest.fixture
def run():
    """Drive a coroutine to completion"""
    return asyncio.run


@pytest.fixture
def settings():
    return Settings(
        OPENAI_API_KEY="test-key",
        OPENAI_BASE_URL="http://llm.test/v1",
        DOCS_SEARCH_URL="http://docs.test/api/docs",
        SUPABASE_URL=None,
        SUPABASE_SERVICE_KEY=None,
        LLM_TIMEOUT=2.0,
        DOCS_SEARCH_TIMEOUT=2.0,
        PERSIST_TIMEOUT=0.5,
    )


@pytest.fixture
def supabase_settings():
    return Settings(
        SUPABASE_URL="https://project.supabase.test/",
        SUPABASE_SERVICE_KEY="service-key",
        SUPABASE_ANON_KEY="anon-key",
    )


@pytest.fixture
def profile():
    return U_ANCHORS


@pytest.fixture
def doc_search():
    search = FakeDocSearch()
    search.by_query = {
        "u-anchor": [doc("anchor/u-anchors/u2400/u2400-sales-sheet.pdf"), doc("anchor/u-anchors/u2600/u2600-sales-sheet.pdf")],
        "u anchor": [doc("anchor/u-anchors/u2400/u2400-sales-sheet.pdf"), doc("anchor/u-anchors/u2400/install-manual.pdf", doc_type="install_manual")],
        "snow fence": [doc("solutions/snow-retention/snow-fence/install-sheet.pdf", doc_type="install_sheet")],
    }
    search.snippet_results = [
        SiteSnippet(title="U2400 Sales Sheet", url="https://signed.test/u2400.txt", excerpt="Rooftop attachment for EPDM."),
    ]
    return search


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def failing_store():
    return FailingStore()


@pytest.fixture
def pipeline(settings, doc_search, llm, store, profile):
    return ChatPipeline(settings, doc_search, llm, store, profile=profile)


@pytest.fixture
def sample_messages():
    """A short prior conversation ending with the user's question."""
    return [
        {"role": "user", "content": "Do U-Anchors work on EPDM roofs?"},
        {"role": "assistant", "content": "Yes, there is an EPDM-specific U-Anchor with a matching flashing."},
        {"role": "user", "content": "What about the U2400 on TPO, is there a version for that?"},
    ]
