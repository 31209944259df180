"""
Compiled customer-header artifacts.

Writes are gated strictly behind compiler success:

- ``create`` compiles first and inserts only when a PDF was produced.
- ``update`` re-renders and re-compiles the new data, then overwrites
  data and PDF in one statement. A failed compile leaves the stored
  record untouched.

Updates to the same record are serialized with a per-record lock. Locks
are taken only for records that exist and are dropped once their last
holder releases them, so the lock map never outgrows the set of
in-flight updates. The write itself is conditional on the version read
before compiling, so two concurrent updates can never silently
overwrite each other.
"""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Tuple

from pdfservice.app.core.errors import PersistenceFailure, RecordNotFound
from pdfservice.app.schemas.customer_header import (
    CustomerHeaderPage,
    CustomerHeaderRecord,
    HeaderStatus,
)
from pdfservice.app.services.pipeline import CompilePipeline, require_pdf
from pdfservice.app.store.database import CustomerHeaderDatabase

logger = logging.getLogger("pdfservice.artifact_store")

CUSTOMER_HEADER_TEMPLATE = "customer_header"

MAX_PAGE_SIZE = 100


def pdf_ref_for(record_id: str) -> str:
    return f"/customer-headers/{record_id}/pdf"


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class ArtifactStore:
    def __init__(
        self,
        database: CustomerHeaderDatabase,
        pipeline: CompilePipeline,
        template: str = CUSTOMER_HEADER_TEMPLATE,
    ) -> None:
        self.database = database
        self.pipeline = pipeline
        self.template = template
        self._locks: Dict[str, _LockEntry] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _record_lock(self, record_id: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.setdefault(record_id, _LockEntry())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[record_id]

    @property
    def lock_count(self) -> int:
        with self._locks_guard:
            return len(self._locks)

    @staticmethod
    def _to_record(row: Mapping[str, Any]) -> CustomerHeaderRecord:
        return CustomerHeaderRecord(pdf_ref=pdf_ref_for(row["id"]), **row)

    # ------------------------------------------------------------------
    # Compile-only
    # ------------------------------------------------------------------

    def preview(self, data: Mapping[str, Any]) -> bytes:
        result = self.pipeline.compile_data(
            data, self.template, owner="customer-header:preview"
        )
        return require_pdf(result)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, data: Mapping[str, Any]) -> Tuple[CustomerHeaderRecord, bytes]:
        result = self.pipeline.compile_data(
            data, self.template, owner="customer-header:create"
        )
        pdf = require_pdf(result)

        record_id = uuid.uuid4().hex
        row = self.database.insert(record_id, dict(data), pdf)

        logger.info(
            "customer_header_created",
            extra={"record_id": record_id, "size_bytes": len(pdf)},
        )
        return self._to_record(row), pdf

    def update(
        self,
        record_id: str,
        data: Mapping[str, Any],
    ) -> Tuple[CustomerHeaderRecord, bytes]:
        if self.database.get(record_id) is None:
            raise RecordNotFound(f"Customer header '{record_id}' not found.")

        with self._record_lock(record_id):
            current = self.database.get(record_id)
            if current is None:
                raise RecordNotFound(f"Customer header '{record_id}' not found.")

            result = self.pipeline.compile_data(
                data, self.template, owner=f"customer-header:update:{record_id}"
            )
            pdf = require_pdf(result)

            if not self.database.replace(record_id, current["version"], dict(data), pdf):
                raise PersistenceFailure(
                    f"Customer header '{record_id}' changed during update; "
                    "stored record left unchanged."
                )

            row = self.database.get(record_id)
            if row is None:
                raise PersistenceFailure(
                    f"Customer header '{record_id}' disappeared after update."
                )

        logger.info(
            "customer_header_updated",
            extra={"record_id": record_id, "version": row["version"]},
        )
        return self._to_record(row), pdf

    def set_status(self, record_id: str, status: HeaderStatus) -> CustomerHeaderRecord:
        """Move a record through its approval workflow; no recompile."""
        if not self.database.set_status(record_id, status):
            raise RecordNotFound(f"Customer header '{record_id}' not found.")

        logger.info(
            "customer_header_status_changed",
            extra={"record_id": record_id, "status": status},
        )
        return self.get(record_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, record_id: str) -> CustomerHeaderRecord:
        row = self.database.get(record_id)
        if row is None:
            raise RecordNotFound(f"Customer header '{record_id}' not found.")
        return self._to_record(row)

    def get_pdf(self, record_id: str) -> Tuple[CustomerHeaderRecord, bytes]:
        record = self.get(record_id)
        pdf = self.database.get_pdf(record_id)
        if pdf is None:
            raise RecordNotFound(f"Customer header '{record_id}' not found.")
        return record, pdf

    def list_page(self, page: int = 1, limit: int = 20) -> CustomerHeaderPage:
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        total, rows = self.database.list(offset=(page - 1) * limit, limit=limit)
        return CustomerHeaderPage(
            total=total,
            page=page,
            limit=limit,
            items=[self._to_record(row) for row in rows],
        )
