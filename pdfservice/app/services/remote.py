"""
Remote compile backend.

When a remote base URL is configured, compilation is delegated to another
pdfservice instance over HTTP instead of the local TeX toolchain. The
populated workspace is forwarded as a bundle:

    POST {base}/compile-bundle
        main    doc.tex
        assets  every other top-level file in the workspace

A single ``httpx.Client`` is created per process and reused, so
connections are pooled across requests. Transport errors propagate as
``httpx`` exceptions; the orchestrator maps them to structured results.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

logger = logging.getLogger("pdfservice.remote")

BUNDLE_PATH = "/compile-bundle"
HEALTH_PATH = "/health"
HEALTH_TIMEOUT = 10.0


@dataclass(frozen=True)
class RemoteReply:
    status_code: int
    content: bytes
    text: str
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.status_code == 200

    def failure_details(self) -> Dict[str, Any]:
        """Structured diagnostics when the remote answered with a JSON error."""
        try:
            payload = json.loads(self.content)
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}


class RemoteCompiler:
    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 60.0,
        max_response_bytes: int = 100 * 1024 * 1024,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_response_bytes = max_response_bytes
        self._client = client or httpx.Client(base_url=self.base_url)

    @property
    def bundle_url(self) -> str:
        return f"{self.base_url}{BUNDLE_PATH}"

    def compile_bundle(
        self,
        main: bytes,
        assets: Sequence[Tuple[str, bytes]] = (),
    ) -> RemoteReply:
        """
        Forward one compile to the remote service.

        Raises:
            httpx.TimeoutException: no answer within ``timeout_seconds``.
            httpx.RequestError: the remote could not be reached.
        """
        files: List[Tuple[str, Tuple[str, bytes, str]]] = [
            ("main", ("doc.tex", main, "application/x-tex"))
        ]
        files += [
            ("assets", (name, content, "application/octet-stream"))
            for name, content in assets
        ]

        logger.info(
            "remote_compile_request",
            extra={"url": self.bundle_url, "assets": len(assets)},
        )

        with self._client.stream(
            "POST",
            self.bundle_url,
            files=files,
            headers={"Accept": "application/pdf"},
            timeout=self.timeout_seconds,
        ) as response:
            body = bytearray()
            truncated = False
            for chunk in response.iter_bytes():
                body += chunk
                if len(body) > self.max_response_bytes:
                    del body[self.max_response_bytes:]
                    truncated = True
                    break

        content = bytes(body)
        return RemoteReply(
            status_code=response.status_code,
            content=content,
            text=content.decode("utf-8", errors="replace"),
            truncated=truncated,
        )

    def health(self) -> Dict[str, Any]:
        try:
            response = self._client.get(
                f"{self.base_url}{HEALTH_PATH}", timeout=HEALTH_TIMEOUT
            )
            response.raise_for_status()
            return {"base": self.base_url, "reachable": True, "remote": response.json()}
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "remote_health_failed",
                extra={"base": self.base_url, "status_code": exc.response.status_code},
            )
            return {
                "base": self.base_url,
                "reachable": False,
                "error": f"Remote returned {exc.response.status_code}",
            }
        except (httpx.RequestError, ValueError) as exc:
            logger.warning(
                "remote_health_unreachable",
                extra={"base": self.base_url, "error": str(exc)},
            )
            return {"base": self.base_url, "reachable": False, "error": str(exc)}

    def close(self) -> None:
        self._client.close()
