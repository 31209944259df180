from datetime import datetime
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

HeaderStatus = Literal[
    "saved",
    "draft",
    "pending_approval",
    "approved_admin",
    "approved_salesman",
]


class CustomerHeaderRecord(BaseModel):
    """
    Persisted compiled-document record.

    ``data`` is the caller's original data tree, before LaTeX escaping,
    so the document can be re-rendered. The PDF itself is served from
    ``pdf_ref``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    id: str
    data: Dict[str, Any]
    pdf_ref: str
    size_bytes: int = Field(..., ge=0)
    version: int = Field(..., ge=1)
    status: HeaderStatus = "saved"
    created_at: datetime
    updated_at: datetime


class CustomerHeaderStatusUpdate(BaseModel):
    """Workflow transition; the stored document and PDF are left as they are."""

    model_config = ConfigDict(extra="forbid")

    status: HeaderStatus


class CustomerHeaderPage(BaseModel):
    total: int
    page: int
    limit: int
    items: List[CustomerHeaderRecord]
