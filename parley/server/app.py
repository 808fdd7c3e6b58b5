"""aiohttp HTTP/SSE boundary for the chat and summary services.

The caller's identity comes from a trusted header (``X-User-Id`` by
default) set by the authentication layer in front of this server.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

import pydantic
from aiohttp import web
from pydantic import BaseModel, Field

from parley.chat.service import ChatRequest, ChatService
from parley.config import Settings
from parley.errors import (
    AuthorizationError,
    ConversationNotFoundError,
    ParleyError,
    PersistenceError,
    UpstreamError,
    ValidationError,
)
from parley.llm.models import ModelCatalog
from parley.server import sse
from parley.summary.service import SummaryService

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

SETTINGS = web.AppKey("settings", Settings)
CHAT_SERVICE = web.AppKey("chat_service", ChatService)
SUMMARY_SERVICE = web.AppKey("summary_service", SummaryService)
CATALOG = web.AppKey("catalog", ModelCatalog)

_ERROR_STATUS: dict[type[ParleyError], tuple[int, str]] = {
    ValidationError: (400, "validation_error"),
    AuthorizationError: (403, "forbidden"),
    ConversationNotFoundError: (404, "not_found"),
    PersistenceError: (500, "persistence_error"),
    UpstreamError: (502, "upstream_error"),
}


# -- Request bodies ------------------------------------------------------------


class ChatBody(BaseModel):
    message: str = ""
    conversation_id: str | None = None
    system_prompt: str = ""
    response_format: str | None = None
    response_schema: str | None = None
    model: str | None = None
    temperature: float | None = None
    provider: str | None = None
    use_reference_corpus: bool = False
    reference_corpus_percent: int = Field(default=100, description="Share of the corpus to include.")

    def to_request(self, user_id: str) -> ChatRequest:
        return ChatRequest(user_id=user_id, **self.model_dump())


class SummarizeBody(BaseModel):
    model: str | None = None
    temperature: float | None = None
    provider: str | None = None


# -- Helpers -------------------------------------------------------------------


def error_response(exc: ParleyError) -> web.Response:
    status, code = 500, "internal_error"
    for cls, mapped in _ERROR_STATUS.items():
        if isinstance(exc, cls):
            status, code = mapped
            break
    return web.json_response(
        {"error": type(exc).__name__, "code": code, "message": str(exc)},
        status=status,
    )


@web.middleware
async def error_middleware(
    request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
) -> web.StreamResponse:
    try:
        return await handler(request)
    except ParleyError as exc:
        if isinstance(exc, (PersistenceError, UpstreamError)):
            logger.error("%s %s failed: %s", request.method, request.path, exc)
        else:
            logger.info("%s %s rejected: %s", request.method, request.path, exc)
        return error_response(exc)


def _user_id(request: web.Request) -> str:
    header = request.app[SETTINGS].user_id_header
    user_id = request.headers.get(header, "").strip()
    if not user_id:
        msg = f"missing {header} header"
        raise AuthorizationError(msg)
    return user_id


async def _parse_body(request: web.Request, model: type[BaseModel], *, optional: bool = False) -> Any:
    if optional and not request.can_read_body:
        return model()
    try:
        payload = await request.json()
    except ValueError as exc:
        raise ValidationError("invalid JSON body") from exc
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as exc:
        msg = f"invalid request body: {exc.errors()[0].get('msg', exc)}"
        raise ValidationError(msg) from exc


# -- Chat ----------------------------------------------------------------------


async def _chat_stream(request: web.Request) -> web.StreamResponse:
    """POST /chat/stream: relay one turn as server-sent events."""
    user_id = _user_id(request)
    body = await _parse_body(request, ChatBody)
    events = await request.app[CHAT_SERVICE].stream_message(body.to_request(user_id))

    response = web.StreamResponse(
        headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
    )
    await response.prepare(request)

    async with aclosing(events):
        try:
            async for event in events:
                for chunk in sse.encode_event(event):
                    await response.write(chunk)
        except ConnectionResetError:
            logger.info("Client disconnected from stream (user=%s)", user_id)
            return response

    await response.write_eof()
    return response


async def _chat(request: web.Request) -> web.Response:
    """POST /chat: run one turn and return the whole reply."""
    user_id = _user_id(request)
    body = await _parse_body(request, ChatBody)
    reply = await request.app[CHAT_SERVICE].send_message(body.to_request(user_id))
    return web.json_response(
        {
            "response": reply.response,
            "conversation_id": reply.conversation_id,
            "model": reply.model,
            "usage": sse.usage_payload(reply.usage) if reply.usage else None,
        }
    )


# -- Conversations -------------------------------------------------------------


async def _list_conversations(request: web.Request) -> web.Response:
    user_id = _user_id(request)
    conversations = await request.app[CHAT_SERVICE].list_conversations(user_id)
    return web.json_response({"conversations": [asdict(c) for c in conversations]})


async def _list_messages(request: web.Request) -> web.Response:
    user_id = _user_id(request)
    conversation_id = request.match_info["conversation_id"]
    messages = await request.app[CHAT_SERVICE].get_messages(conversation_id, user_id)
    return web.json_response({"messages": [asdict(m) for m in messages]})


async def _summarize(request: web.Request) -> web.Response:
    """POST /conversations/{id}/summarize."""
    user_id = _user_id(request)
    conversation_id = request.match_info["conversation_id"]
    body = await _parse_body(request, SummarizeBody, optional=True)
    result = await request.app[SUMMARY_SERVICE].summarize(
        conversation_id,
        user_id,
        model=body.model,
        temperature=body.temperature,
        provider=body.provider,
    )
    return web.json_response(
        {
            "summary": result.text,
            "summarized_up_to_message_id": result.cutoff_message_id,
            "conversation_id": conversation_id,
            "is_new_summary": result.is_new,
        }
    )


async def _list_summaries(request: web.Request) -> web.Response:
    user_id = _user_id(request)
    conversation_id = request.match_info["conversation_id"]
    summaries = await request.app[SUMMARY_SERVICE].list_summaries(conversation_id, user_id)
    return web.json_response({"summaries": [asdict(s) for s in summaries]})


# -- Misc ----------------------------------------------------------------------


async def _list_models(request: web.Request) -> web.Response:
    catalog = request.app[CATALOG]
    return web.json_response(
        {
            "models": [m.model_dump() for m in catalog.models],
            "default": catalog.default_model(),
        }
    )


async def _health(request: web.Request) -> web.Response:
    """GET /health: basic liveness check."""
    return web.json_response({"status": "ok"})


def create_web_app(
    settings: Settings,
    chat: ChatService,
    summaries: SummaryService,
    catalog: ModelCatalog,
) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(middlewares=[error_middleware])
    app[SETTINGS] = settings
    app[CHAT_SERVICE] = chat
    app[SUMMARY_SERVICE] = summaries
    app[CATALOG] = catalog

    app.router.add_get("/health", _health)
    app.router.add_get("/models", _list_models)
    app.router.add_post("/chat", _chat)
    app.router.add_post("/chat/stream", _chat_stream)
    app.router.add_get("/conversations", _list_conversations)
    app.router.add_get("/conversations/{conversation_id}/messages", _list_messages)
    app.router.add_post("/conversations/{conversation_id}/summarize", _summarize)
    app.router.add_get("/conversations/{conversation_id}/summaries", _list_summaries)
    return app


class ParleyServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(self, app: web.Application, host: str, port: int) -> None:
        self.host = host
        self.port = port
        self._app = app
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Parley server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Parley server stopped")
