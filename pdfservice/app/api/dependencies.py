"""
Dependency providers and shared response helpers for the API routers.
"""

from typing import Dict, Optional

from fastapi import Request, UploadFile
from fastapi.responses import Response

from pdfservice.app.core.config import Settings
from pdfservice.app.core.errors import PayloadTooLarge
from pdfservice.app.services.latex import CompilerOrchestrator
from pdfservice.app.services.pipeline import CompilePipeline
from pdfservice.app.store.artifact_store import ArtifactStore
from pdfservice.app.utils.filenames import header_safe

PDF_RESPONSES = {
    200: {
        "content": {"application/pdf": {}},
        "description": "Compiled PDF artifact",
    },
    413: {"description": "Payload too large"},
    422: {"description": "Invalid submission"},
    500: {"description": "LaTeX compilation failed"},
    503: {"description": "LaTeX toolchain unavailable"},
}


# =============================================================================
# Dependency providers
# =============================================================================

def get_app_settings(request: Request) -> Settings:
    settings: Optional[Settings] = getattr(request.app.state, "settings", None)
    if settings is None:
        raise RuntimeError("settings not initialized")
    return settings


def get_pipeline(request: Request) -> CompilePipeline:
    return request.app.state.pipeline


def get_orchestrator(request: Request) -> CompilerOrchestrator:
    return request.app.state.orchestrator


def get_artifact_store(request: Request) -> ArtifactStore:
    return request.app.state.artifact_store


# =============================================================================
# Helpers
# =============================================================================

def read_upload(upload: UploadFile, max_mb: int) -> bytes:
    """Bounded read of an uploaded file; rejects anything above ``max_mb``."""
    max_bytes = max_mb * 1024 * 1024
    content = upload.file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise PayloadTooLarge(
            f"File '{upload.filename}' exceeds the {max_mb}MB limit."
        )
    return content


def pdf_response(
    pdf: bytes,
    filename: str,
    *,
    disposition: str = "attachment",
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
) -> Response:
    return Response(
        content=pdf,
        status_code=status_code,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'{disposition}; filename="{header_safe(filename)}"',
            **(headers or {}),
        },
    )
