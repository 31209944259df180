"""
Error taxonomy for the PDF compilation service.

Every failure that can terminate a request is expressed as a
``PdfServiceError`` subclass. The API layer converts them into a
structured JSON body; nothing is retried.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

if TYPE_CHECKING:
    from pdfservice.app.services.latex import CompileResult


class PdfServiceError(RuntimeError):
    """Base class for failures surfaced to callers."""

    status_code: int = 500
    error: str = "Internal error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.error, "detail": self.detail}


class ValidationError(PdfServiceError):
    """Rejected before any filesystem or process work."""

    status_code = 422
    error = "Invalid request"


class PayloadTooLarge(PdfServiceError):
    status_code = 413
    error = "Payload too large"


class RecordNotFound(PdfServiceError):
    status_code = 404
    error = "Not found"


class PersistenceFailure(PdfServiceError):
    """Durable store unreachable or update conflict."""

    status_code = 500
    error = "Persistence failure"


class CompileFailure(PdfServiceError):
    """
    Raised at request boundaries when a compile attempt did not produce
    a PDF. Carries the orchestrator's structured result for diagnosis.
    """

    status_code = 500
    error = "LaTeX compilation failed"

    def __init__(self, result: "CompileResult") -> None:
        super().__init__(result.describe())
        self.result = result

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload.update(
            {
                "errorCode": self.result.error_code,
                "exitCode": self.result.exit_code,
                "strategy": self.result.strategy,
                "command": list(self.result.command),
                "stdout": self.result.stdout,
                "stderr": self.result.stderr,
                "logTail": self.result.log_tail,
                "workspaceFiles": list(self.result.workspace_files),
            }
        )
        return payload


class ToolchainUnavailable(CompileFailure):
    """No compiler is installed, or the configured remote cannot be reached."""

    status_code = 503
    error = "LaTeX toolchain unavailable"


UNAVAILABLE_CODES = frozenset({"TOOLCHAIN_UNAVAILABLE", "REMOTE_UNREACHABLE"})


def failure_for(result: "CompileResult") -> CompileFailure:
    """Pick the exception class matching a failed compile result."""
    if result.error_code in UNAVAILABLE_CODES:
        return ToolchainUnavailable(result)
    return CompileFailure(result)
