"""
Compile endpoints.

    POST /compile          JSON data tree → proposal template → PDF
                           ({"_minimal": true} compiles the smoke-test document)
    POST /compile/tex      {"template": "<raw LaTeX>"} compiled verbatim
    POST /proposal         proposal data → proposal template → PDF
    POST /compile-file     one uploaded .tex file compiled as-is
    POST /compile-bundle   multipart: main (1 file) + assets (0..63 files)

Every route answers with application/pdf on success. Failures are raised
as PdfServiceError subclasses and rendered as JSON by the application's
exception handler, so a partial PDF body is never returned.
"""

import logging
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, File, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, Field

from pdfservice.app.api.dependencies import (
    PDF_RESPONSES,
    get_app_settings,
    get_pipeline,
    pdf_response,
    read_upload,
)
from pdfservice.app.core.config import Settings
from pdfservice.app.core.errors import ValidationError
from pdfservice.app.services.bundle import BundleFile, check_asset_count
from pdfservice.app.services.pipeline import CompilePipeline, require_pdf

logger = logging.getLogger("pdfservice.api.compile")

router = APIRouter(tags=["Compilation"])

PROPOSAL_TEMPLATE = "proposal"


class RawTexRequest(BaseModel):
    template: str = Field(..., min_length=1, description="Complete LaTeX source")


# ---------------------------------------------------------------------------
# JSON-driven compiles
# ---------------------------------------------------------------------------


@router.post(
    "/compile",
    summary="Render a JSON data tree into the proposal template and compile it",
    response_class=Response,
    responses=PDF_RESPONSES,
)
def compile_document(
    payload: Annotated[Dict[str, Any], Body(...)],
    pipeline: Annotated[CompilePipeline, Depends(get_pipeline)],
) -> Response:
    result = pipeline.compile_data(payload, PROPOSAL_TEMPLATE, owner="compile")
    return pdf_response(require_pdf(result), "document.pdf")


@router.post(
    "/compile/tex",
    summary="Compile caller-supplied LaTeX source verbatim",
    response_class=Response,
    responses=PDF_RESPONSES,
)
def compile_tex(
    request: RawTexRequest,
    pipeline: Annotated[CompilePipeline, Depends(get_pipeline)],
) -> Response:
    result = pipeline.compile_source(request.template, owner="compile-tex")
    return pdf_response(require_pdf(result), "document.pdf")


@router.post(
    "/proposal",
    summary="Compile the proposal template from proposal data",
    response_class=Response,
    responses=PDF_RESPONSES,
)
def compile_proposal(
    pipeline: Annotated[CompilePipeline, Depends(get_pipeline)],
    payload: Annotated[Optional[Dict[str, Any]], Body()] = None,
) -> Response:
    result = pipeline.compile_data(payload or {}, PROPOSAL_TEMPLATE, owner="proposal")
    return pdf_response(require_pdf(result), "proposal.pdf")


# ---------------------------------------------------------------------------
# Upload-driven compiles
# ---------------------------------------------------------------------------


@router.post(
    "/compile-file",
    summary="Compile a single uploaded LaTeX file",
    response_class=Response,
    responses=PDF_RESPONSES,
)
def compile_file(
    file: Annotated[UploadFile, File(description="Main LaTeX document")],
    pipeline: Annotated[CompilePipeline, Depends(get_pipeline)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> Response:
    try:
        main = BundleFile(
            filename=file.filename or "doc.tex",
            content=read_upload(file, settings.max_upload_mb),
        )
    finally:
        file.file.close()

    result = pipeline.compile_bundle(main, [], owner="compile-file")
    return pdf_response(require_pdf(result), "document.pdf")


@router.post(
    "/compile-bundle",
    summary="Compile a main LaTeX document together with its assets",
    response_class=Response,
    responses=PDF_RESPONSES,
)
def compile_bundle(
    pipeline: Annotated[CompilePipeline, Depends(get_pipeline)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    main: Annotated[Optional[UploadFile], File(description="Main LaTeX document")] = None,
    assets: Annotated[
        List[UploadFile],
        File(description="Auxiliary files referenced by the main document"),
    ] = [],
) -> Response:
    uploads = ([main] if main is not None else []) + list(assets)
    try:
        if main is None:
            raise ValidationError("A 'main' file is required.")

        # Counted before any upload is read.
        check_asset_count(len(assets), settings.max_bundle_assets)

        main_file = BundleFile(
            filename=main.filename or "doc.tex",
            content=read_upload(main, settings.max_upload_mb),
        )
        asset_files = [
            BundleFile(
                filename=asset.filename or "",
                content=read_upload(asset, settings.max_upload_mb),
            )
            for asset in assets
        ]
    finally:
        for upload in uploads:
            upload.file.close()

    logger.info(
        "bundle_received",
        extra={"assets": len(asset_files), "main_bytes": len(main_file.content)},
    )

    result = pipeline.compile_bundle(main_file, asset_files, owner="compile-bundle")
    return pdf_response(require_pdf(result), "document.pdf")
