"""
FinChat - API Routes
=====================
HTTP surface of the chat backend.

    POST   /api/chat        → run one chat turn, stream the answer
    DELETE /api/chat?id=…   → delete a chat owned by the caller

Handlers are thin controllers: validate the request, delegate to the
``RAGManager`` stored on ``app.state.rag`` and translate domain errors
into status codes.  Everything that can fail before the first token is
run *before* the streaming response starts, so those failures still get
a proper status code.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from pydantic import BaseModel, Field

from finchat.src.api.auth import get_current_user_id
from finchat.src.api.stream_protocol import STREAM_HEADERS, STREAM_MEDIA_TYPE, encode_annotations, encode_error, encode_finish, encode_text
from finchat.src.core.errors import AuthorizationError, NoUserMessageError
from finchat.src.core.models import AugmentedPrompt
from finchat.src.core.rag_engine import RAGManager
from finchat.src.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

_INTERNAL_ERROR = {"error": "Internal Server Error"}


# ══════════════════════════════════════════════════════════════════════
#  MODELS
# ══════════════════════════════════════════════════════════════════════


class ChatMessageIn(BaseModel):
    """One message of the client-side conversation."""

    id: str | None = None
    role: str
    content: str = ""


class ChatRequest(BaseModel):
    """Body of ``POST /api/chat``."""

    id: str = Field(..., min_length=1, description="Client-generated chat id")
    messages: list[ChatMessageIn] = Field(default_factory=list)


def get_rag_manager(request: Request) -> RAGManager:
    return request.app.state.rag


# ══════════════════════════════════════════════════════════════════════
#  POST /api/chat
# ══════════════════════════════════════════════════════════════════════


@router.post("/chat")
async def post_chat(body: ChatRequest, user_id: str | None = Depends(get_current_user_id), rag: RAGManager = Depends(get_rag_manager)) -> Response:
    if user_id is None:
        return PlainTextResponse("Unauthorized", status_code=401)

    messages = [{"role": m.role, "content": m.content} for m in body.messages]
    try:
        prompt = await rag.prepare_turn(body.id, user_id, messages)
    except NoUserMessageError:
        return PlainTextResponse("No user message found", status_code=400)
    except AuthorizationError:
        return PlainTextResponse("Unauthorized", status_code=401)
    except Exception:
        logger.exception("[API] Chat turn failed for chat '%s'.", body.id)
        return JSONResponse(_INTERNAL_ERROR, status_code=500)

    annotations: list[dict[str, str]] = []
    return StreamingResponse(_stream_reply(rag, body.id, prompt, annotations), media_type=STREAM_MEDIA_TYPE, headers=STREAM_HEADERS)


async def _stream_reply(rag: RAGManager, chat_id: str, prompt: AugmentedPrompt, annotations: list[dict[str, str]]) -> AsyncIterator[str]:
    """Translate model text chunks into data-stream parts."""
    try:
        async with aclosing(rag.stream_reply(chat_id, prompt, annotations)) as chunks:  # type: ignore[type-var]
            async for text in chunks:
                yield encode_text(text)
    except Exception:
        logger.exception("[API] Stream failed for chat '%s'.", chat_id)
        yield encode_error("An error occurred.")
        yield encode_finish("error")
        return

    if annotations:
        yield encode_annotations(annotations)
    yield encode_finish("stop")


# ══════════════════════════════════════════════════════════════════════
#  DELETE /api/chat
# ══════════════════════════════════════════════════════════════════════


@router.delete("/chat")
async def delete_chat(chat_id: str | None = Query(default=None, alias="id"), user_id: str | None = Depends(get_current_user_id), rag: RAGManager = Depends(get_rag_manager)) -> Response:
    if not chat_id:
        return PlainTextResponse("Not Found", status_code=404)
    if user_id is None:
        return PlainTextResponse("Unauthorized", status_code=401)

    try:
        deleted = await rag.delete_chat(chat_id, user_id)
    except AuthorizationError:
        return PlainTextResponse("Unauthorized", status_code=401)
    except Exception:
        logger.exception("[API] Failed to delete chat '%s'.", chat_id)
        return PlainTextResponse("An error occurred while processing your request", status_code=500)

    if not deleted:
        return PlainTextResponse("Not Found", status_code=404)

    logger.info("[API] Chat '%s' deleted by user '%s'.", chat_id, user_id)
    return PlainTextResponse("Chat deleted", status_code=200)
