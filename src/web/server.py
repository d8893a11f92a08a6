"""Async HTTP server: chat streaming, conversation management and uploads.

Chat responses are streamed as ``text/event-stream`` with one
``data: <json>\\n\\n`` frame per output event, ending with a ``done`` or
``error`` frame.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from aiohttp import web

from src.chat.events import OutputEvent
from src.chat.title import generate_title
from src.chat.turn import run_turn
from src.config import settings
from src.store.chat_store import ChatStore
from src.tools.extractors import extract_document
from src.web.security import auth_middleware

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

_SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


async def _read_json(request: web.Request) -> dict[str, Any] | None:
    """Parse a JSON object body; None when the body is not a JSON object."""
    if not request.can_read_body:
        return {}
    try:
        payload = await request.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


# -- Health -------------------------------------------------------------------


async def _health(request: web.Request) -> web.Response:
    """GET /health: basic liveness check."""
    return web.json_response({"status": "ok"})


# -- Chat ---------------------------------------------------------------------


async def _handle_chat(request: web.Request) -> web.StreamResponse:
    """POST /api/chat: run one turn and stream its events."""
    payload = await _read_json(request)
    if payload is None:
        return _error("invalid JSON", 400)

    message = payload.get("message")
    conversation_id = payload.get("conversationId")
    if not message or not isinstance(message, str):
        return _error("Message is required", 400)
    if not conversation_id or not isinstance(conversation_id, str):
        return _error("Conversation ID is required", 400)

    events = run_turn(conversation_id, message)

    # Failures before the first event (persisting the user message, loading
    # history) are reported as a plain 500 since nothing has been streamed.
    try:
        first = await anext(events)
    except Exception as exc:
        logger.exception("Chat turn failed to start for %s", conversation_id)
        return _error(str(exc) or "Internal server error", 500)

    response = web.StreamResponse(headers=_SSE_HEADERS)
    await response.prepare(request)
    try:
        await _pump(response, first, events, conversation_id)
    finally:
        await events.aclose()
    return response


async def _pump(
    response: web.StreamResponse,
    first: OutputEvent,
    events: AsyncIterator[OutputEvent],
    conversation_id: str,
) -> None:
    """Write events until a terminal one; stop quietly if the client left."""
    event = first
    while True:
        try:
            await response.write(event.to_sse())
        except ConnectionResetError:
            logger.info("Client disconnected from %s; abandoning stream", conversation_id)
            return
        if event.is_terminal:
            break
        try:
            event = await anext(events)
        except StopAsyncIteration:
            break
        except Exception as exc:
            logger.exception("Chat turn failed for %s", conversation_id)
            event = OutputEvent.error(str(exc) or "Internal server error")

    try:
        await response.write_eof()
    except ConnectionResetError:
        logger.debug("Client closed %s before end of stream", conversation_id)


# -- Conversations ------------------------------------------------------------


async def _list_conversations(request: web.Request) -> web.Response:
    """GET /api/conversations: most recently updated first."""
    conversations = await ChatStore.get().list_conversations()
    return web.json_response({"conversations": [c.to_dict() for c in conversations]})


async def _create_conversation(request: web.Request) -> web.Response:
    """POST /api/conversations: explicit create with an optional title."""
    payload = await _read_json(request)
    if payload is None:
        return _error("invalid JSON", 400)
    title = payload.get("title")
    if title is not None and not isinstance(title, str):
        return _error("Title must be a string", 400)
    conv = await ChatStore.get().create_conversation(title=title)
    return web.json_response(conv.to_dict())


async def _delete_conversation(request: web.Request) -> web.Response:
    """DELETE /api/conversations?id=<id>: cascades to all dependents."""
    conversation_id = request.query.get("id")
    if not conversation_id:
        return _error("Conversation ID is required", 400)
    await ChatStore.get().delete_conversation_cascade(conversation_id)
    return web.json_response({"success": True})


async def _get_messages(request: web.Request) -> web.Response:
    """GET /api/conversations/{id}: the conversation's messages in order."""
    conversation_id = request.match_info["id"]
    messages = await ChatStore.get().list_messages(conversation_id)
    return web.json_response({
        "messages": [
            {"id": m.id, "role": m.role, "content": m.content, "created_at": m.created_at}
            for m in messages
        ]
    })


async def _update_conversation(request: web.Request) -> web.Response:
    """PATCH /api/conversations/{id}: set a title or generate one."""
    conversation_id = request.match_info["id"]
    payload = await _read_json(request)
    if payload is None:
        return _error("invalid JSON", 400)

    store = ChatStore.get()
    if await store.get_conversation(conversation_id) is None:
        return _error("Conversation not found", 404)

    if payload.get("generate"):
        title = await generate_title(conversation_id, store)
        if title is None:
            return _error("Conversation has no messages to title", 400)
        return web.json_response({"success": True, "title": title})

    title = payload.get("title")
    if not title or not isinstance(title, str):
        return _error("Title is required", 400)
    await store.rename_conversation(conversation_id, title)
    return web.json_response({"success": True, "title": title})


# -- Upload -------------------------------------------------------------------


async def _handle_upload(request: web.Request) -> web.Response:
    """POST /api/upload: multipart ``file`` + ``conversationId``."""
    try:
        form = await request.post()
    except ValueError:
        return _error("Expected multipart form data", 400)
    except web.HTTPRequestEntityTooLarge:
        return _error("File too large", 413)

    upload = form.get("file")
    conversation_id = form.get("conversationId")
    if not isinstance(upload, web.FileField):
        return _error("No file provided", 400)
    if not conversation_id or not isinstance(conversation_id, str):
        return _error("Conversation ID is required", 400)

    data = upload.file.read()
    if len(data) > settings.max_upload_bytes:
        return _error("File too large", 413)

    mimetype = upload.content_type or "application/octet-stream"
    result = await extract_document(data, upload.filename, mimetype)
    if not result.success:
        return _error(result.error, 400)

    store = ChatStore.get()
    await store.ensure_conversation(conversation_id)
    record = await store.add_file(conversation_id, upload.filename, mimetype, result.content)
    return web.json_response({
        "id": record.id,
        "filename": record.filename,
        "mimetype": record.mimetype,
        "size": len(data),
        "metadata": result.metadata,
    })


def create_app() -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(
        middlewares=[auth_middleware],
        client_max_size=settings.max_upload_bytes + 1024 * 1024,
    )
    app.router.add_get("/health", _health)
    app.router.add_post("/api/chat", _handle_chat)
    app.router.add_get("/api/conversations", _list_conversations)
    app.router.add_post("/api/conversations", _create_conversation)
    app.router.add_delete("/api/conversations", _delete_conversation)
    app.router.add_get("/api/conversations/{id}", _get_messages)
    app.router.add_patch("/api/conversations/{id}", _update_conversation)
    app.router.add_post("/api/upload", _handle_upload)
    return app
