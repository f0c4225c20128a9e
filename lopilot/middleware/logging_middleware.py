"""
ASGI middleware that logs every API call with its status and duration.

Pure ASGI (not BaseHTTPMiddleware) so the SSE event feed keeps streaming.
Response bodies are only buffered for error responses, and never for
`text/event-stream` responses, which do not end while a client listens.
"""

import json
import logging
import time
from typing import Optional
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..core.logging_config import truncate_large_data

logger = logging.getLogger(__name__)


def _extract_error_reason(body: bytes) -> Optional[str]:
    """Pull the `detail` of an HTTPException body, or a short excerpt of anything else."""
    text = body.decode("utf-8", errors="ignore")
    if not text:
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return truncate_large_data(text, max_length=500)
    if isinstance(payload, dict) and payload.get("detail"):
        return truncate_large_data(str(payload["detail"]), max_length=500)
    return truncate_large_data(json.dumps(payload, ensure_ascii=False), max_length=500)


class RequestLoggingMiddleware:
    """Logs method, path, status code and duration of each HTTP request."""

    def __init__(self, app: ASGIApp, exclude_paths: Optional[list] = None):
        """
        Args:
            app: The ASGI application
            exclude_paths: Paths that are polled often and not worth logging (e.g. ["/chat/state"])
        """
        self.app = app
        self.exclude_paths = exclude_paths or ["/", "/chat/state"]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get("path", "") in self.exclude_paths:
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "")
        status_code = 0
        streaming = False
        error_chunks = []

        async def logging_send(message: Message) -> None:
            nonlocal status_code, streaming
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
                headers = dict(message.get("headers", []))
                content_type = headers.get(b"content-type", b"").decode("latin-1")
                streaming = content_type.startswith("text/event-stream")
                if streaming:
                    logger.info(f"Event stream opened: {method} {path}")
            elif message["type"] == "http.response.body" and status_code >= 400:
                error_chunks.append(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, receive, logging_send)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"Request failed: {method} {path} - {e}",
                exc_info=True,
                extra={"extra_fields": {"method": method, "path": path, "duration_ms": duration_ms}}
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        error_reason = _extract_error_reason(b"".join(error_chunks)) if error_chunks else None

        if status_code < 400:
            log_level = logging.INFO
        elif status_code < 500:
            log_level = logging.WARNING
        else:
            log_level = logging.ERROR

        message = f"Request completed: {method} {path} - {status_code} ({duration_ms:.2f}ms)"
        if streaming:
            message = f"Event stream closed: {method} {path} ({duration_ms:.2f}ms)"
        if error_reason:
            message += f" | error_reason={error_reason}"

        logger.log(
            log_level,
            message,
            extra={"extra_fields": {
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
                "error_reason": error_reason,
            }}
        )
