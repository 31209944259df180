"""
Transport-level request size ceilings.

Requests are answered with 413 before routing when their body exceeds
the configured ceiling, so no handler runs and no workspace is touched.
A declared Content-Length is checked up front; bodies sent without one
(chunked transfer encoding) are counted as they arrive and buffered
until they either complete or cross the ceiling. JSON bodies and
multipart uploads have separate ceilings; per-file limits are enforced
again while reading uploads.
"""

import logging
from typing import List

from fastapi.responses import ORJSONResponse
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("pdfservice.middleware")


def _too_large(limit: int) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=413,
        content={
            "error": "Payload too large",
            "detail": f"Request body exceeds the {limit} byte limit.",
        },
    )


class BodySizeLimitMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        *,
        max_json_bytes: int,
        max_multipart_bytes: int,
    ) -> None:
        self.app = app
        self.max_json_bytes = max_json_bytes
        self.max_multipart_bytes = max_multipart_bytes

    def _limit_for(self, content_type: str) -> int:
        if content_type.startswith("multipart/"):
            return self.max_multipart_bytes
        return self.max_json_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        path = scope.get("path", "")
        limit = self._limit_for(headers.get("content-type", "").lower())

        declared = headers.get("content-length")
        if declared is not None:
            try:
                length = int(declared)
            except ValueError:
                response = ORJSONResponse(
                    status_code=400,
                    content={"error": "Invalid request", "detail": "Malformed Content-Length."},
                )
                await response(scope, receive, send)
                return

            if length > limit:
                logger.warning(
                    "request_body_too_large",
                    extra={"path": path, "length": length, "limit": limit},
                )
                await _too_large(limit)(scope, receive, send)
                return

            await self.app(scope, receive, send)
            return

        # No declared length: count the stream before any handler sees it.
        buffered: List[Message] = []
        received = 0
        while True:
            message = await receive()
            buffered.append(message)
            if message["type"] != "http.request":
                break
            received += len(message.get("body", b""))
            if received > limit:
                logger.warning(
                    "request_body_too_large",
                    extra={"path": path, "length": received, "limit": limit, "chunked": True},
                )
                await _too_large(limit)(scope, receive, send)
                return
            if not message.get("more_body", False):
                break

        async def replay() -> Message:
            if buffered:
                return buffered.pop(0)
            return await receive()

        await self.app(scope, replay, send)
