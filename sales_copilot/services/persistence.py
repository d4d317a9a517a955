"""
Conversation persistence gateway.

The store is append-only from this service's point of view: it creates
conversations and inserts message rows, and never reads them back within a
turn. Callers bound every call with a timeout and never let a failure reach
the user.
"""
from typing import Any, Dict, Optional

import httpx
import structlog

from sales_copilot.models.chat import PersistedMessage
from sales_copilot.services.config import Settings

logger = structlog.get_logger()


class ConversationStore:
    """Interface for the external conversation/message store"""

    async def create_conversation(self, user_id: str, title: str) -> Optional[str]:
        raise NotImplementedError

    async def insert(self, message: PersistedMessage) -> None:
        raise NotImplementedError

    async def close(self):
        pass


class NullConversationStore(ConversationStore):
    """Used when no store is configured; nothing is written"""

    async def create_conversation(self, user_id: str, title: str) -> Optional[str]:
        return None

    async def insert(self, message: PersistedMessage) -> None:
        logger.debug("Persistence disabled, dropping message", role=message.role)


class SupabaseConversationStore(ConversationStore):
    """Writes conversations and messages through Supabase's PostgREST API"""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.http_client = http_client or httpx.AsyncClient(
            timeout=settings.PERSIST_TIMEOUT,
            headers={
                "apikey": settings.SUPABASE_SERVICE_KEY,
                "Authorization": f"Bearer {settings.SUPABASE_SERVICE_KEY}",
                "Content-Type": "application/json",
            },
        )

    async def _insert_row(self, table: str, row: Dict[str, Any], returning: bool = False) -> Any:
        headers = {"Prefer": "return=representation" if returning else "return=minimal"}
        response = await self.http_client.post(
            self.settings.get_supabase_rest_url(table),
            json=row,
            headers=headers,
        )
        response.raise_for_status()
        return response.json() if returning else None

    async def create_conversation(self, user_id: str, title: str) -> Optional[str]:
        rows = await self._insert_row(
            "conversations",
            {"user_id": user_id, "title": title},
            returning=True,
        )
        if isinstance(rows, list) and rows:
            return str(rows[0].get("id") or "") or None
        if isinstance(rows, dict):
            return str(rows.get("id") or "") or None
        return None

    async def insert(self, message: PersistedMessage) -> None:
        await self._insert_row("messages", message.model_dump(mode="json"))

    async def close(self):
        await self.http_client.aclose()


def build_store(settings: Settings) -> ConversationStore:
    if settings.persistence_enabled:
        return SupabaseConversationStore(settings)
    logger.warning("Supabase not configured, conversation persistence disabled")
    return NullConversationStore()
