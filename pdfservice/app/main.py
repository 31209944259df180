import logging
import sys
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from pdfservice.app.api.compile import router as compile_router
from pdfservice.app.api.customer_headers import router as customer_header_router
from pdfservice.app.api.dependencies import get_orchestrator
from pdfservice.app.api.middleware import BodySizeLimitMiddleware
from pdfservice.app.core.config import Settings, get_settings
from pdfservice.app.core.errors import PdfServiceError
from pdfservice.app.services.latex import CompilerOrchestrator, ToolchainConfig
from pdfservice.app.services.pipeline import CompilePipeline
from pdfservice.app.services.remote import RemoteCompiler
from pdfservice.app.services.sweeper import sweep_temporary_root
from pdfservice.app.services.templates import TemplateRenderer
from pdfservice.app.services.workspace import WorkspaceManager
from pdfservice.app.store.artifact_store import ArtifactStore
from pdfservice.app.store.database import CustomerHeaderDatabase

logger = logging.getLogger("pdfservice.main")

MB = 1024 * 1024


def get_app_version() -> str:
    """
    Resolve application version.

    Falls back to the source version when the package is not installed.
    """
    try:
        return version("pdfservice")
    except PackageNotFoundError:
        return "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Guarantees:
    - Orphaned workspaces from earlier runs are swept before traffic
    - Templates are parsed once and shared read-only
    - Toolchain locations are resolved once and passed explicitly
    """
    settings: Settings = app.state.settings

    logger.info(
        "pdfservice_startup_begin",
        extra={"service": "pdfservice", "version": get_app_version()},
    )

    # ------------------------------------------------------------------
    # Orphaned workspace sweep
    # ------------------------------------------------------------------
    sweep_temporary_root(
        settings.tmp_dir,
        purge_all=settings.purge_tmp_on_startup,
        max_age_seconds=settings.tmp_max_age_seconds,
    )

    # ------------------------------------------------------------------
    # Compile pipeline (FAIL FAST on missing templates)
    # ------------------------------------------------------------------
    try:
        renderer = TemplateRenderer(settings.template_dir).load()
    except Exception:
        logger.exception("template_load_failed")
        raise

    toolchain = ToolchainConfig.from_settings(settings)
    remote: Optional[RemoteCompiler] = None
    if settings.use_remote:
        remote = RemoteCompiler(
            settings.remote_base_url,
            timeout_seconds=settings.remote_timeout_seconds,
        )
        logger.info("remote_compile_enabled", extra={"base": remote.base_url})
    orchestrator = CompilerOrchestrator(toolchain, remote=remote)
    pipeline = CompilePipeline(
        renderer=renderer,
        workspaces=WorkspaceManager(settings.tmp_dir),
        orchestrator=orchestrator,
        max_bundle_assets=settings.max_bundle_assets,
    )

    if orchestrator.select_strategy() is None:
        logger.warning(
            "latex_toolchain_missing",
            extra={
                "latexmk": str(toolchain.latexmk),
                "pdflatex": str(toolchain.pdflatex),
            },
        )

    app.state.orchestrator = orchestrator
    app.state.pipeline = pipeline
    app.state.artifact_store = ArtifactStore(
        database=CustomerHeaderDatabase(settings.database_path),
        pipeline=pipeline,
    )

    try:
        yield
    finally:
        logger.info("pdfservice_shutdown_begin")
        if remote is not None:
            remote.close()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


async def handle_service_error(request: Request, exc: PdfServiceError) -> ORJSONResponse:
    logger.warning(
        "request_failed",
        extra={
            "path": request.url.path,
            "status_code": exc.status_code,
            "error_type": type(exc).__name__,
        },
    )
    return ORJSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def handle_unexpected_error(request: Request, exc: Exception) -> ORJSONResponse:
    logger.exception(
        "request_crashed",
        extra={"path": request.url.path, "error_type": type(exc).__name__},
    )
    return ORJSONResponse(
        status_code=500,
        content={
            "error": "Internal error",
            "detail": "Request failed unexpectedly. See service logs for details.",
        },
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory for the PDF compilation service.
    """
    settings = settings or get_settings()
    _configure_logging(settings.log_level)

    app = FastAPI(
        title="pdfservice",
        description="LaTeX document compilation service",
        version=get_app_version(),
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        BodySizeLimitMiddleware,
        max_json_bytes=settings.max_json_body_mb * MB,
        max_multipart_bytes=settings.max_request_mb * MB,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "Content-Disposition",
            "Location",
            "X-Customer-Header-Id",
            "X-Customer-Header-Version",
        ],
    )

    app.add_exception_handler(PdfServiceError, handle_service_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(compile_router)
    app.include_router(customer_header_router)

    @app.get(
        "/health",
        tags=["Monitoring"],
        summary="Liveness and toolchain readiness probe",
    )
    def health_check(
        orchestrator: Annotated[CompilerOrchestrator, Depends(get_orchestrator)],
    ) -> ORJSONResponse:
        """
        Reports process liveness plus toolchain presence and versions.

        NOTE:
        - Does NOT compile anything
        """
        toolchain = orchestrator.health()
        return ORJSONResponse(
            content={
                "status": "ok" if toolchain["ready"] else "degraded",
                "service": "pdfservice",
                "version": app.version,
                "runtime": f"python {sys.version.split()[0]}",
                "toolchain": toolchain,
            }
        )

    return app


app = create_app()
