"""
Customer header documents: compile-only previews and persisted,
re-renderable compiled records.

The create and update routes answer with the compiled PDF and describe
the stored record in response headers:

    X-Customer-Header-Id        record identifier
    X-Customer-Header-Version   version after the write
    Location                    URL of the record
"""

from typing import Annotated, Any, Dict

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import Response

from pdfservice.app.api.dependencies import (
    PDF_RESPONSES,
    get_artifact_store,
    pdf_response,
)
from pdfservice.app.schemas.customer_header import (
    CustomerHeaderPage,
    CustomerHeaderRecord,
    CustomerHeaderStatusUpdate,
)
from pdfservice.app.store.artifact_store import ArtifactStore
from pdfservice.app.utils.filenames import customer_name_from

router = APIRouter(tags=["Customer Headers"])

DEFAULT_FILENAME = "customer-header.pdf"

Store = Annotated[ArtifactStore, Depends(get_artifact_store)]
Payload = Annotated[Dict[str, Any], Body(...)]


def _record_headers(record: CustomerHeaderRecord) -> Dict[str, str]:
    return {
        "X-Customer-Header-Id": record.id,
        "X-Customer-Header-Version": str(record.version),
        "Location": f"/customer-headers/{record.id}",
    }


# ---------------------------------------------------------------------------
# Compile-only
# ---------------------------------------------------------------------------


@router.post(
    "/customer-header/preview",
    summary="Compile a customer header without storing it",
    response_class=Response,
    responses=PDF_RESPONSES,
)
def preview_customer_header(payload: Payload, store: Store) -> Response:
    return pdf_response(store.preview(payload), DEFAULT_FILENAME, disposition="inline")


# ---------------------------------------------------------------------------
# Compile + persist
# ---------------------------------------------------------------------------


@router.post(
    "/customer-header",
    summary="Compile a customer header and store the record",
    status_code=status.HTTP_201_CREATED,
    response_class=Response,
    responses={**PDF_RESPONSES, 201: PDF_RESPONSES[200]},
)
def create_customer_header(payload: Payload, store: Store) -> Response:
    record, pdf = store.create(payload)
    return pdf_response(
        pdf,
        DEFAULT_FILENAME,
        disposition="inline",
        status_code=status.HTTP_201_CREATED,
        headers=_record_headers(record),
    )


@router.put(
    "/customer-headers/{record_id}",
    summary="Re-render and re-compile a stored customer header",
    response_class=Response,
    responses={**PDF_RESPONSES, 404: {"description": "Record not found"}},
)
def update_customer_header(record_id: str, payload: Payload, store: Store) -> Response:
    record, pdf = store.update(record_id, payload)
    return pdf_response(
        pdf,
        DEFAULT_FILENAME,
        disposition="inline",
        headers=_record_headers(record),
    )


@router.patch(
    "/customer-headers/{record_id}/status",
    response_model=CustomerHeaderRecord,
    summary="Change the approval status of a stored customer header",
    responses={404: {"description": "Record not found"}},
)
def update_customer_header_status(
    record_id: str,
    body: CustomerHeaderStatusUpdate,
    store: Store,
) -> CustomerHeaderRecord:
    return store.set_status(record_id, body.status)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get(
    "/customer-headers",
    response_model=CustomerHeaderPage,
    summary="List stored customer headers, newest first",
)
def list_customer_headers(
    store: Store,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1)] = 20,
) -> CustomerHeaderPage:
    return store.list_page(page=page, limit=limit)


@router.get(
    "/customer-headers/{record_id}",
    response_model=CustomerHeaderRecord,
    summary="Fetch a stored customer header record",
)
def get_customer_header(record_id: str, store: Store) -> CustomerHeaderRecord:
    return store.get(record_id)


@router.get(
    "/customer-headers/{record_id}/pdf",
    summary="Download the stored PDF of a customer header",
    response_class=Response,
    responses={200: PDF_RESPONSES[200], 404: {"description": "Record not found"}},
)
def download_customer_header_pdf(record_id: str, store: Store) -> Response:
    record, pdf = store.get_pdf(record_id)
    return pdf_response(
        pdf,
        f"{customer_name_from(record.data)}.pdf",
        disposition="inline",
        headers=_record_headers(record),
    )
