"""FastAPI endpoints for the relay.

POST /api/chat - validate history (+ optional image), forward upstream, return the reply
GET /health - component health check
GET / - liveness for deployment platforms
"""

import json
import time

import structlog
from fastapi import APIRouter, Request
from pydantic import TypeAdapter, ValidationError
from starlette.datastructures import UploadFile

from backend.api.schemas import ChatMessage, ChatReply, ErrorResponse, HealthResponse, JSONChatRequest
from backend.core.multimodal import ImageProcessingError, attach_image

logger = structlog.get_logger(__name__)

router = APIRouter()

_history_adapter = TypeAdapter(list[ChatMessage])


class RelayRequestError(Exception):
    """Client sent something the relay cannot use. Rendered as {"error": ...}."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@router.post(
    "/api/chat",
    response_model=ChatReply,
    responses={400: {"model": ErrorResponse}, 415: {"model": ErrorResponse},
               500: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def chat(req: Request):
    """Relay one chat turn: parse -> attach image -> forward upstream -> reply."""
    start = time.monotonic()
    content_type = req.headers.get("content-type", "")

    if "multipart/form-data" in content_type:
        messages, image = await _read_multipart(req)
    elif "application/json" in content_type:
        messages, image = await _read_json(req), None
    else:
        raise RelayRequestError(415, "Expected Content-Type: multipart/form-data")

    logger.info("chat.request", turns=len(messages), image=image[2] if image else None)

    if image is not None:
        data, media_type, filename = image
        if req.app.state.multimodal:
            attach_image(messages, data, media_type, filename)
        else:
            logger.info("chat.image_ignored", filename=filename, reason="multimodal disabled")

    reply = await req.app.state.llm_adapter.complete(messages, referer=req.headers.get("referer"))

    latency_ms = int((time.monotonic() - start) * 1000)
    logger.info("chat.response", latency_ms=latency_ms, reply_len=len(reply))
    return ChatReply(reply=reply)


@router.get("/health", response_model=HealthResponse)
def health(req: Request):
    """Report whether the relay can reach the provider with a credential."""
    components = {
        "api_key": "ok" if req.app.state.llm_adapter.is_healthy() else "error",
        "multimodal": "on" if req.app.state.multimodal else "off",
    }
    status = "healthy" if components["api_key"] == "ok" else "degraded"
    return {"status": status, "components": components}


@router.get("/")
@router.head("/")
def root_health():
    """Basic root health check for deployment platforms."""
    return {"status": "ok", "service": "relaychat-relay"}


def _validate_history(raw) -> list[dict]:
    try:
        parsed = _history_adapter.validate_python(raw)
    except ValidationError as e:
        logger.warning("chat.invalid_history", errors=e.error_count())
        raise RelayRequestError(400, 'Invalid message in "history" field')
    return [m.model_dump() for m in parsed]


async def _read_multipart(req: Request) -> tuple[list[dict], tuple[bytes, str, str] | None]:
    """Parse the multipart body into (messages, (image_bytes, media_type, filename) | None)."""
    try:
        form = await req.form()
    except Exception as e:
        logger.error("chat.form_parse_failed", error=str(e))
        raise RelayRequestError(400, "Invalid form data")

    history = form.get("history")
    if not history or not isinstance(history, str):
        raise RelayRequestError(400, 'Missing or invalid "history" field')

    try:
        raw = json.loads(history)
    except json.JSONDecodeError as e:
        logger.warning("chat.history_json_invalid", error=str(e))
        raise RelayRequestError(400, 'Invalid JSON format in "history" field')
    if not isinstance(raw, list):
        raise RelayRequestError(400, 'Invalid JSON format in "history" field')

    messages = _validate_history(raw)

    upload = form.get("image")
    if not isinstance(upload, UploadFile) or not upload.filename:
        return messages, None

    try:
        data = await upload.read()
    except Exception as e:
        logger.error("chat.image_read_failed", error=str(e))
        raise ImageProcessingError(str(e))

    if not data:
        logger.info("chat.image_empty", filename=upload.filename)
        return messages, None

    media_type = upload.content_type or "application/octet-stream"
    return messages, (data, media_type, upload.filename)


async def _read_json(req: Request) -> list[dict]:
    try:
        body = await req.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise RelayRequestError(400, "Invalid JSON body")

    try:
        parsed = JSONChatRequest.model_validate(body)
    except ValidationError:
        raise RelayRequestError(400, 'Missing or invalid "messages" field')
    return [m.model_dump() for m in parsed.messages]
