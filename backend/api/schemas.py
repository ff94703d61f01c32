"""Pydantic models for the relay API.

Defines the chat history accepted on POST /api/chat and the reply/error
bodies sent back to the client.
"""

from typing import Literal

from pydantic import BaseModel, Field


class TextContent(BaseModel):
    type: Literal["text"]
    text: str


class ImageURL(BaseModel):
    url: str


class ImageContent(BaseModel):
    type: Literal["image_url"]
    image_url: ImageURL


class ChatMessage(BaseModel):
    """Single turn of the history sent by the client."""
    role: Literal["user", "assistant", "system"]
    content: str | list[TextContent | ImageContent]


class JSONChatRequest(BaseModel):
    """Text-only request body (application/json variant)."""
    messages: list[ChatMessage] = Field(..., description="Conversation history, oldest first")


class ChatReply(BaseModel):
    """Successful relay response."""
    reply: str


class ErrorResponse(BaseModel):
    """Failed relay response."""
    error: str


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded"]
    components: dict[str, str]
