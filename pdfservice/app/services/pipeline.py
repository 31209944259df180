"""
End-to-end compile pipeline.

    data tree ──sanitize──▶ sanitized tree ──render──▶ LaTeX source
        ──workspace──▶ doc.tex on disk ──toolchain──▶ CompileResult

Bundles skip sanitize/render and are materialized directly.

Each call is one sequential unit of work. Rendering and validation run
before a workspace exists, so rejected input never touches the
filesystem. The workspace is released on every exit path.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any, Mapping, Optional, Sequence

from pdfservice.app.core.errors import ValidationError, failure_for
from pdfservice.app.services.bundle import (
    MAX_BUNDLE_ASSETS,
    BundleFile,
    materialize,
    validate_bundle,
)
from pdfservice.app.services.latex import (
    MAIN_TEX,
    CompilerOrchestrator,
    CompileResult,
    CompileState,
)
from pdfservice.app.services.sanitize import sanitize_mapping
from pdfservice.app.services.templates import TemplateRenderer
from pdfservice.app.services.workspace import WorkspaceManager

logger = logging.getLogger("pdfservice.pipeline")


def require_pdf(result: CompileResult) -> bytes:
    """Return the PDF bytes of a successful result or raise its failure."""
    if not result.success or result.pdf is None:
        raise failure_for(result)
    return result.pdf


class CompilePipeline:
    def __init__(
        self,
        *,
        renderer: TemplateRenderer,
        workspaces: WorkspaceManager,
        orchestrator: CompilerOrchestrator,
        max_bundle_assets: int = MAX_BUNDLE_ASSETS,
    ) -> None:
        self.renderer = renderer
        self.workspaces = workspaces
        self.orchestrator = orchestrator
        self.max_bundle_assets = max_bundle_assets

    # ------------------------------------------------------------------
    # State reporting
    # ------------------------------------------------------------------

    @staticmethod
    def _transition(attempt: str, owner: str, state: CompileState, **extra: Any) -> None:
        logger.info(
            "compile_state",
            extra={"attempt": attempt, "owner": owner, "state": state.value, **extra},
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def render(self, template: str, data: Mapping[str, Any]) -> str:
        if not isinstance(data, Mapping):
            raise ValidationError("Request body must be a JSON object.")
        try:
            sanitized = sanitize_mapping(data)
        except TypeError as exc:
            raise ValidationError(str(exc)) from exc
        return self.renderer.render(template, sanitized)

    def compile_data(
        self,
        data: Mapping[str, Any],
        template: str,
        owner: str = "compile",
    ) -> CompileResult:
        """Sanitize ``data``, render it into ``template`` and compile."""
        attempt = secrets.token_hex(6)
        self._transition(attempt, owner, CompileState.PENDING, template=template)
        self._transition(attempt, owner, CompileState.RENDERING)
        source = self.render(template, data)
        return self._compile(attempt, owner, source=source)

    def compile_source(self, source: str, owner: str = "compile-tex") -> CompileResult:
        """Compile caller-supplied LaTeX source verbatim."""
        if not isinstance(source, str) or not source.strip():
            raise ValidationError("Body must include a non-empty 'template' string.")
        attempt = secrets.token_hex(6)
        self._transition(attempt, owner, CompileState.PENDING)
        return self._compile(attempt, owner, source=source)

    def compile_bundle(
        self,
        main: Optional[BundleFile],
        assets: Sequence[BundleFile] = (),
        owner: str = "bundle",
    ) -> CompileResult:
        """Materialize a main document plus assets and compile."""
        main = validate_bundle(main, assets, self.max_bundle_assets)
        attempt = secrets.token_hex(6)
        self._transition(attempt, owner, CompileState.PENDING, assets=len(assets))
        return self._compile(attempt, owner, main=main, assets=assets)

    # ------------------------------------------------------------------
    # Shared compile path
    # ------------------------------------------------------------------

    def _compile(
        self,
        attempt: str,
        owner: str,
        *,
        source: Optional[str] = None,
        main: Optional[BundleFile] = None,
        assets: Sequence[BundleFile] = (),
    ) -> CompileResult:
        with self.workspaces.workspace(owner) as workspace:
            if main is not None:
                materialize(workspace, main, assets)
            else:
                workspace.file(MAIN_TEX).write_text(source or "", encoding="utf-8")

            self._transition(
                attempt, owner, CompileState.COMPILING, workspace_id=workspace.id
            )
            result = self.orchestrator.compile(workspace)

        final = CompileState.SUCCEEDED if result.success else CompileState.FAILED
        self._transition(
            attempt,
            owner,
            final,
            strategy=result.strategy,
            error_code=result.error_code,
        )
        return result
