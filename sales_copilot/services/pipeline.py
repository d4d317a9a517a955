"""
Chat pipeline orchestration.

    Start -> ClassifyAndRetrieve -> {DocsOnly | OutOfScope | Escalate | Generate}
          -> SafetyFilter -> Persist -> Respond

Only Generate and SafetyFilter call the model. Every path returns a
ChatResponse; unexpected errors are converted at this boundary.
"""
import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple

import structlog

from sales_copilot.models.chat import (
    Branch,
    ChatResponse,
    ChatTurn,
    ClassificationResult,
    Identity,
    PersistedMessage,
    RecommendedDocument,
    SiteSnippet,
)
from sales_copilot.services.classifiers import (
    ESCALATION_RULES,
    build_queries,
    classify,
    enforce_terminology,
    matching_tags,
)
from sales_copilot.services.config import Settings
from sales_copilot.services.doc_search import DocumentSearchClient, merge_documents
from sales_copilot.services.fallback import bounded
from sales_copilot.services.grounding import build_context
from sales_copilot.services.identity import ANONYMOUS
from sales_copilot.services.llm import LLMService, recent_history
from sales_copilot.services.persistence import ConversationStore
from sales_copilot.services.policy import (
    EMPTY_INPUT_MESSAGE,
    GENERATION_FAILED_MESSAGE,
    GENERIC_ERROR_MESSAGE,
    MESSAGE_TYPES,
    SAFETY_ESCALATION_TYPE,
    answer_message_type,
    build_system_policy,
    decide_branch,
    escalation_message,
    out_of_scope_message,
)
from sales_copilot.services.safety import SafetyFilter
from sales_copilot.services.scope import ScopeProfile, get_profile
from sales_copilot.utils.metrics import docs_recommended, generation_duration, track_branch

logger = structlog.get_logger()


class ChatPipeline:
    """Routes one chat turn through classification, retrieval and generation"""

    def __init__(
        self,
        settings: Settings,
        doc_search: DocumentSearchClient,
        llm: LLMService,
        store: ConversationStore,
        profile: Optional[ScopeProfile] = None,
    ):
        self.settings = settings
        self.doc_search = doc_search
        self.llm = llm
        self.store = store
        self.profile = profile or get_profile(settings.SCOPE_PROFILE)
        self.safety = SafetyFilter(self.profile)
        self.system_policy = build_system_policy(self.profile)

    async def handle(
        self,
        turn: ChatTurn,
        identity: Identity = ANONYMOUS,
        forward_headers: Optional[Dict[str, str]] = None,
    ) -> ChatResponse:
        try:
            return await self._handle(turn, identity, forward_headers)
        except Exception as e:
            logger.error("Chat pipeline failed", error=str(e), exc_info=True)
            track_branch("error")
            return ChatResponse(
                conversation_id=turn.conversation_id,
                answer=GENERIC_ERROR_MESSAGE,
                folders_used=[self.profile.folder_tag],
                error=str(e) or type(e).__name__,
            )

    async def _handle(
        self,
        turn: ChatTurn,
        identity: Identity,
        forward_headers: Optional[Dict[str, str]],
    ) -> ChatResponse:
        start_time = time.time()
        user_text = turn.user_text

        if not user_text:
            logger.info("Chat turn without user text")
            track_branch(Branch.EMPTY_INPUT.value)
            return ChatResponse(
                conversation_id=turn.conversation_id,
                answer=EMPTY_INPUT_MESSAGE,
                folders_used=[self.profile.folder_tag],
            )

        classification = classify(user_text, self.profile)
        branch = decide_branch(user_text, turn.is_docs_mode, classification)
        folders_used = self._folders_used(classification)

        logger.info(
            "Chat turn classified",
            branch=branch.value,
            docs_mode=turn.is_docs_mode,
            escalation_tags=matching_tags(ESCALATION_RULES, user_text),
            folders=classification.folders,
            restricted_term=classification.mentions_restricted_term,
        )

        conversation_id = await self._resolve_conversation(identity, turn.conversation_id)

        retrieval = self._retrieve(user_text, classification, forward_headers)
        if turn.is_docs_mode:
            docs, snippets = await retrieval
        else:
            (docs, snippets), _ = await asyncio.gather(
                retrieval,
                self._persist(identity, conversation_id, "user", user_text),
            )
        docs_recommended.observe(len(docs))

        if branch is Branch.DOCS_ONLY:
            answer, message_type = "", MESSAGE_TYPES[branch]
        elif branch is Branch.OUT_OF_SCOPE:
            answer = enforce_terminology(out_of_scope_message(self.profile), self.profile)
            message_type = MESSAGE_TYPES[branch]
        elif branch is Branch.ESCALATE:
            answer = enforce_terminology(escalation_message(self.profile), self.profile)
            message_type = MESSAGE_TYPES[branch]
        else:
            answer, message_type = await self._generate(turn, user_text, docs, snippets)

        await self._persist(
            identity,
            conversation_id,
            "assistant",
            answer,
            meta={
                "type": message_type,
                "recommendedDocs": [d.model_dump(mode="json") for d in docs],
                "foldersUsed": folders_used,
                "siteSnippets": [s.model_dump(mode="json") for s in snippets],
            },
        )

        track_branch(branch.value)
        logger.info(
            "Chat turn completed",
            branch=branch.value,
            message_type=message_type,
            docs=len(docs),
            snippets=len(snippets),
            total_time=time.time() - start_time,
        )

        return ChatResponse(
            conversation_id=conversation_id or turn.conversation_id,
            answer=answer,
            folders_used=folders_used,
            recommended_docs=docs,
            site_snippets=snippets,
        )

    def _folders_used(self, classification: ClassificationResult) -> List[str]:
        folders = [self.profile.folder_tag]
        for folder in classification.folders:
            if folder not in folders:
                folders.append(folder)
        return folders

    async def _retrieve(
        self,
        user_text: str,
        classification: ClassificationResult,
        headers: Optional[Dict[str, str]],
    ) -> Tuple[List[RecommendedDocument], List[SiteSnippet]]:
        """Concurrent folder, query and snippet lookups; each degrades to []"""
        queries = build_queries(user_text, self.profile)
        limit = self.settings.DOCS_LIMIT_PER_QUERY
        search_timeout = self.settings.DOCS_SEARCH_TIMEOUT * 2

        folder_docs, query_docs, snippets = await asyncio.gather(
            bounded(
                self.doc_search.search_folders(classification.folders, limit, headers=headers),
                timeout=search_timeout, default=[], label="doc_search_folders",
            ),
            bounded(
                self.doc_search.search(queries, limit, headers=headers),
                timeout=search_timeout, default=[], label="doc_search",
            ),
            bounded(
                self.doc_search.snippets(queries[0] if queries else "", self.settings.SNIPPET_LIMIT, headers=headers),
                timeout=search_timeout, default=[], label="doc_snippets",
            ),
        )
        return merge_documents(folder_docs, query_docs), snippets

    async def _generate(
        self,
        turn: ChatTurn,
        user_text: str,
        docs: List[RecommendedDocument],
        snippets: List[SiteSnippet],
    ) -> Tuple[str, str]:
        generation_start = time.time()
        grounding = build_context(
            docs,
            snippets,
            max_docs=self.settings.MAX_GROUNDING_DOCS,
            max_snippets=self.settings.MAX_GROUNDING_SNIPPETS,
            product_name=self.profile.product_name,
        ).as_message()
        history = recent_history(turn.messages, self.settings.HISTORY_LIMIT, user_text)

        draft = await self.llm.generate(self.system_policy, grounding, history)

        async def rewrite(text: str) -> Optional[str]:
            return await self.llm.rewrite(self.system_policy, grounding, user_text, text)

        outcome = await self.safety.apply(draft, rewrite)
        generation_duration.observe(time.time() - generation_start)

        answer = outcome.text or GENERATION_FAILED_MESSAGE
        message_type = SAFETY_ESCALATION_TYPE if outcome.escalated else answer_message_type(self.profile)
        logger.info(
            "Answer filtered",
            escalated=outcome.escalated,
            rewritten=outcome.rewritten,
            generation_time=time.time() - generation_start,
        )
        return answer, message_type

    async def _resolve_conversation(self, identity: Identity, conversation_id: Optional[str]) -> Optional[str]:
        if conversation_id or not identity.is_authenticated:
            return conversation_id
        return await bounded(
            self.store.create_conversation(identity.user_id, self.profile.title),
            timeout=self.settings.PERSIST_TIMEOUT,
            default=None,
            label="create_conversation",
        )

    async def _persist(
        self,
        identity: Identity,
        conversation_id: Optional[str],
        role: str,
        content: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Best-effort append; failures are logged and never surface"""
        if not identity.is_authenticated or not conversation_id:
            return
        message = PersistedMessage(
            conversation_id=conversation_id,
            user_id=identity.user_id,
            role=role,
            content=content,
            meta=meta or {},
        )
        await bounded(
            self.store.insert(message),
            timeout=self.settings.PERSIST_TIMEOUT,
            default=None,
            label="persist_message",
        )
