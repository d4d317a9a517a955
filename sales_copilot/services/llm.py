"""
LLM service for generating answers against an OpenAI-compatible API.

Two response shapes are supported: the Responses API (primary) and Chat
Completions (fallback). Each has an adapter into ModelAnswer so nothing
downstream depends on the provider's envelope.
"""
from typing import Any, Dict, List, Optional, Sequence
import httpx
import structlog

from sales_copilot.models.chat import ChatMessage, ModelAnswer
from sales_copilot.services.config import Settings
from sales_copilot.services.fallback import Attempt, first_success
from sales_copilot.services.policy import GENERATION_FAILED_MESSAGE

logger = structlog.get_logger()

HISTORY_ROLES = ("user", "assistant")

REWRITE_INSTRUCTION = (
    "Rewrite the assistant reply below to sound like a natural chat with an experienced customer. "
    "No headings, no canned sections, no long bullet lists. Keep it specific to the question and short."
)


def answer_from_responses(payload: Any) -> Optional[ModelAnswer]:
    """Adapter for the Responses API envelope"""
    if not isinstance(payload, dict):
        return None

    text = payload.get("output_text")
    if isinstance(text, str) and text.strip():
        return ModelAnswer(text=text.strip(), strategy="responses")

    parts = []
    for item in payload.get("output") or []:
        if not isinstance(item, dict) or item.get("type", "message") != "message":
            continue
        for content in item.get("content") or []:
            if isinstance(content, dict) and content.get("type") in ("output_text", "text"):
                parts.append(str(content.get("text") or ""))
    text = "".join(parts).strip()
    return ModelAnswer(text=text, strategy="responses") if text else None


def answer_from_chat_completion(payload: Any) -> Optional[ModelAnswer]:
    """Adapter for the Chat Completions envelope"""
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None

    content = (choices[0].get("message") or {}).get("content")
    if isinstance(content, list):
        content = "".join(
            str(part.get("text") or "") for part in content if isinstance(part, dict)
        )
    text = (content or "").strip() if isinstance(content, str) else ""
    return ModelAnswer(text=text, strategy="chat_completions") if text else None


def recent_history(messages: Sequence[ChatMessage], limit: int, current_text: str = "") -> List[Dict[str, str]]:
    """
    The last `limit` user/assistant turns as model messages.

    Older turns are dropped without summarization. The current utterance is
    always the final user message, even when it arrived outside `messages`.
    """
    kept = [
        {"role": m.role, "content": m.content}
        for m in messages
        if m.role in HISTORY_ROLES and m.content.strip()
    ]
    current_text = (current_text or "").strip()
    if current_text:
        last = kept[-1] if kept else None
        if not last or last["role"] != "user" or last["content"].strip() != current_text:
            kept.append({"role": "user", "content": current_text})
    return kept[-max(1, limit):]


class LLMService:
    """Service for answer generation with an ordered fallback chain"""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.base_url = settings.OPENAI_BASE_URL.rstrip("/")
        headers = {}
        if settings.OPENAI_API_KEY:
            headers["Authorization"] = f"Bearer {settings.OPENAI_API_KEY}"
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.LLM_TIMEOUT, headers=headers)

    async def _call_responses(self, messages: List[Dict[str, str]], temperature: Optional[float]) -> Optional[ModelAnswer]:
        payload = {
            "model": self.settings.MODEL_NAME,
            "input": messages,
            "max_output_tokens": self.settings.MAX_TOKENS,
        }
        if temperature is not None:
            payload["temperature"] = temperature

        response = await self.http_client.post(f"{self.base_url}/responses", json=payload)
        response.raise_for_status()
        return answer_from_responses(response.json())

    async def _call_chat_completions(self, messages: List[Dict[str, str]], temperature: Optional[float]) -> Optional[ModelAnswer]:
        payload = {
            "model": self.settings.MODEL_NAME,
            "messages": messages,
            "max_completion_tokens": self.settings.MAX_TOKENS,
        }
        if temperature is not None:
            payload["temperature"] = temperature

        response = await self.http_client.post(f"{self.base_url}/chat/completions", json=payload)
        response.raise_for_status()
        return answer_from_chat_completion(response.json())

    def attempts(self, messages: List[Dict[str, str]], temperature: Optional[float]) -> List[Attempt]:
        """Primary then fallback strategy, both against the same provider"""
        return [
            Attempt("responses", lambda: self._call_responses(messages, temperature)),
            Attempt("chat_completions", lambda: self._call_chat_completions(messages, temperature)),
        ]

    async def complete(self, messages: List[Dict[str, str]], temperature: Optional[float], label: str) -> Optional[ModelAnswer]:
        return await first_success(
            self.attempts(messages, temperature),
            default=None,
            timeout=self.settings.LLM_TIMEOUT,
            label=label,
        )

    async def generate(
        self,
        system_policy: Dict[str, str],
        grounding: Dict[str, str],
        history: List[Dict[str, str]],
    ) -> str:
        """
        Generate an answer. Never raises; degrades to a fixed apology.
        """
        messages = [system_policy, grounding, *history]
        answer = await self.complete(messages, self.settings.TEMPERATURE, label="generation")
        if answer is None:
            logger.error("All generation strategies failed")
            return GENERATION_FAILED_MESSAGE

        logger.info("Answer generated", strategy=answer.strategy, answer_length=len(answer.text))
        return answer.text

    async def rewrite(
        self,
        system_policy: Dict[str, str],
        grounding: Dict[str, str],
        question: str,
        draft: str,
    ) -> Optional[str]:
        """Conversational rewrite of a templated draft, None when it fails"""
        messages = [
            system_policy,
            grounding,
            {
                "role": "user",
                "content": f"{REWRITE_INSTRUCTION}\n\nQUESTION:\n{question}\n\nDRAFT ANSWER:\n{draft}",
            },
        ]
        answer = await self.complete(messages, self.settings.REWRITE_TEMPERATURE, label="rewrite")
        return answer.text if answer else None

    async def close(self):
        """Clean up resources"""
        await self.http_client.aclose()
