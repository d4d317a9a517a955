"""
Data models for chat functionality
"""
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

# Loose top-level fields older clients send the utterance in
LOOSE_TEXT_FIELDS = ("message", "input", "text", "q")
DOCS_MODES = {"docs", "docs-only", "docs_only"}


class DocType(str, Enum):
    SALES_SHEET = "sales_sheet"
    DATA_SHEET = "data_sheet"
    PRODUCT_DATA_SHEET = "product_data_sheet"
    INSTALL_MANUAL = "install_manual"
    INSTALL_SHEET = "install_sheet"
    INSTALL_VIDEO = "install_video"
    CAD_DWG = "cad_dwg"
    CAD_STEP = "cad_step"
    PRODUCT_DRAWING = "product_drawing"
    PRODUCT_IMAGE = "product_image"
    RENDER = "render"
    ASSET = "asset"
    UNKNOWN = "unknown"


class Branch(str, Enum):
    """Terminal states of the routing policy"""
    EMPTY_INPUT = "empty_input"
    DOCS_ONLY = "docs_only"
    OUT_OF_SCOPE = "out_of_scope"
    ESCALATE = "escalate"
    ANSWER = "answer"


class ChatMessage(BaseModel):
    """One prior message sent by the client"""
    role: str
    content: str = ""

    @field_validator("role")
    @classmethod
    def check_role(cls, v):
        v = (v or "").strip().lower()
        if v not in ("user", "assistant", "system"):
            raise ValueError(f"unsupported role: {v}")
        return v

    @field_validator("content", mode="before")
    @classmethod
    def coerce_content(cls, v):
        if v is None:
            return ""
        if isinstance(v, list):
            # Multi-part content keeps only its text parts
            return "".join(str(part.get("text") or "") for part in v if isinstance(part, dict))
        return str(v)


class ChatTurn(BaseModel):
    """A single chat exchange as received from the client"""
    mode: str = "normal"
    conversation_id: Optional[str] = None
    messages: List[ChatMessage] = Field(default_factory=list)
    loose_text: str = ""

    @property
    def is_docs_mode(self) -> bool:
        return self.mode in DOCS_MODES

    @property
    def user_text(self) -> str:
        for message in reversed(self.messages):
            if message.role == "user":
                text = message.content.strip()
                if text:
                    return text
                break
        return self.loose_text.strip()

    @classmethod
    def from_payload(cls, payload: Any) -> "ChatTurn":
        """
        Build a turn from an arbitrary JSON body.

        Malformed message entries are skipped instead of failing the whole turn.
        """
        if not isinstance(payload, dict):
            return cls()

        messages = []
        raw_messages = payload.get("messages")
        if isinstance(raw_messages, list):
            for raw in raw_messages:
                if not isinstance(raw, dict):
                    continue
                try:
                    messages.append(ChatMessage(**raw))
                except (ValidationError, TypeError):
                    continue

        loose_text = ""
        for key in LOOSE_TEXT_FIELDS:
            value = payload.get(key)
            if value is not None and str(value).strip():
                loose_text = str(value).strip()
                break

        conversation_id = payload.get("conversationId") or payload.get("conversation_id")
        conversation_id = str(conversation_id).strip() if conversation_id else None

        return cls(
            mode=str(payload.get("mode") or "normal").strip().lower(),
            conversation_id=conversation_id or None,
            messages=messages,
            loose_text=loose_text,
        )


class RecommendedDocument(BaseModel):
    """Document surfaced from the document-search service"""
    title: str
    doc_type: DocType = DocType.UNKNOWN
    path: str
    url: Optional[str] = None
    excerpt: Optional[str] = None

    @field_validator("doc_type", mode="before")
    @classmethod
    def coerce_doc_type(cls, v):
        try:
            return DocType(v)
        except ValueError:
            return DocType.UNKNOWN


class SiteSnippet(BaseModel):
    """Lightweight grounding excerpt"""
    title: str
    url: str = ""
    excerpt: str = ""


class ClassificationResult(BaseModel):
    """Per-turn intent signals, never persisted"""
    model_config = ConfigDict(frozen=True)

    is_docs_only_request: bool = False
    is_out_of_scope: bool = False
    needs_escalation: bool = False
    mentions_restricted_term: bool = False
    folders: List[str] = Field(default_factory=list)


class ModelAnswer(BaseModel):
    """Normalized text produced by any model response shape"""
    text: str
    strategy: str = ""


class ChatResponse(BaseModel):
    """Chat response returned for every turn"""
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    answer: str = ""
    folders_used: List[str] = Field(default_factory=list, alias="foldersUsed")
    recommended_docs: List[RecommendedDocument] = Field(default_factory=list, alias="recommendedDocs")
    site_snippets: List[SiteSnippet] = Field(default_factory=list, alias="siteSnippets")
    error: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PersistedMessage(BaseModel):
    """Row appended to the external messages table"""
    conversation_id: str
    user_id: str
    role: str
    content: str = ""
    meta: Dict[str, Any] = Field(default_factory=dict)


class Identity(BaseModel):
    """Caller identity as resolved by the auth collaborator"""
    user_id: Optional[str] = None
    access_token: Optional[str] = Field(default=None, repr=False)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)
