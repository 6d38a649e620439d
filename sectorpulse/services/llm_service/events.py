"""Server-sent event framing for streamed LLM text."""
import json
import logging
from typing import Iterable, Iterator

logger = logging.getLogger(__name__)

DONE_EVENT = "data: [DONE]\n\n"
STREAM_ERROR_MESSAGE = "Summary generation failed"


def format_event(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def sse_events(chunks: Iterable[str]) -> Iterator[str]:
    """Frame text chunks as ``data: {"text": ...}`` events ending in ``[DONE]``.

    Once the first event is sent the HTTP status is fixed, so a later
    failure is logged and reported as a final ``{"error": ...}`` event
    instead of ``[DONE]``.
    """
    try:
        for text in chunks:
            yield format_event({"text": text})
    except Exception as e:
        logger.error("SSE_STREAM_FAILED", extra={"error": str(e)})
        yield format_event({"error": STREAM_ERROR_MESSAGE})
        return

    yield DONE_EVENT
