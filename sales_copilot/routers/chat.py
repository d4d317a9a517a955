"""
Chat endpoint
"""
import json
from typing import Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
import structlog

from sales_copilot.models.chat import ChatTurn
from sales_copilot.services.identity import ANONYMOUS

logger = structlog.get_logger()

router = APIRouter(tags=["chat"])

# Caller headers passed through to the document-search service
FORWARDED_HEADERS = ("authorization", "cookie")


def forwarded_headers(req: Request) -> Dict[str, str]:
    return {name: req.headers[name] for name in FORWARDED_HEADERS if name in req.headers}


@router.post("/chat")
async def chat_endpoint(req: Request) -> JSONResponse:
    """
    Handle a chat turn.

    Always answers 200; failures are reported in the body so the UI can
    render them.
    """
    try:
        payload = await req.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Chat request body is not valid JSON")
        payload = {}

    turn = ChatTurn.from_payload(payload)

    logger.info(
        "Chat request received",
        mode=turn.mode,
        messages=len(turn.messages),
        has_conversation=bool(turn.conversation_id),
        text_length=len(turn.user_text),
    )

    app = req.app
    try:
        identity = await app.state.identity_resolver.resolve(req.headers.get("authorization"))
    except Exception as e:
        logger.error("Identity resolution failed", error=str(e), exc_info=True)
        identity = ANONYMOUS

    response = await app.state.pipeline.handle(
        turn,
        identity=identity,
        forward_headers=forwarded_headers(req),
    )

    return JSONResponse(status_code=200, content=response.to_json())
