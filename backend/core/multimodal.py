"""Splice an uploaded image into the last user turn.

The client stores a text placeholder for attached images. Here the
placeholder is stripped and the turn becomes structured content: one text
part plus one image_url part carrying a base64 data URI.
"""

import base64

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_IMAGE_PROMPT = "What is in this image?"


class ImageProcessingError(Exception):
    """Uploaded image could not be read or encoded."""
    pass


def placeholder_for(name: str) -> str:
    return f"[User uploaded image: {name}]"


def to_data_uri(data: bytes, media_type: str) -> str:
    """Encode raw bytes as a data URI."""
    try:
        encoded = base64.b64encode(data).decode("ascii")
    except (TypeError, ValueError) as e:
        raise ImageProcessingError(f"Failed Base64 encoding: {e}")
    return f"data:{media_type};base64,{encoded}"


def attach_image(messages: list[dict], data: bytes, media_type: str, filename: str) -> bool:
    """Replace the last user turn's content with text + image parts, in place.

    Args:
        messages: OpenAI-style message dicts.
        data: Raw image bytes.
        media_type: MIME type of the upload.
        filename: Upload name, used to find the client's placeholder.

    Returns:
        True if the image was attached, False if there was no user turn to attach it to.
    """
    if not messages:
        logger.warning("multimodal.empty_history")
        return False

    last = messages[-1]
    if last.get("role") != "user":
        logger.warning("multimodal.last_not_user", role=last.get("role"))
        return False

    content = last.get("content")
    if isinstance(content, str):
        text = content.replace(placeholder_for(filename), "").strip()
    else:
        logger.warning("multimodal.non_text_content")
        text = ""

    last["content"] = [
        {"type": "text", "text": text or DEFAULT_IMAGE_PROMPT},
        {"type": "image_url", "image_url": {"url": to_data_uri(data, media_type)}},
    ]
    logger.info("multimodal.attached", filename=filename, media_type=media_type, size=len(data))
    return True
