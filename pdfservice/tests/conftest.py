"""
Shared fixtures.

Compiles run against executable test doubles of latexmk and pdflatex
(see ``fixtures/fake_toolchain.py``), so the suite needs no TeX
installation. Every fixture points workspaces and the database at the
test's own ``tmp_path``.
"""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from pdfservice.app.core.config import Settings
from pdfservice.app.main import create_app
from pdfservice.app.services.latex import CompilerOrchestrator, ToolchainConfig
from pdfservice.app.services.pipeline import CompilePipeline
from pdfservice.app.services.templates import TemplateRenderer
from pdfservice.app.services.workspace import WorkspaceManager
from pdfservice.tests.fixtures.fake_toolchain import FakeToolchain, build_fake_toolchain

TEMPLATE_DIR = Path(__file__).resolve().parents[1] / "app" / "templates"


@pytest.fixture
def fake_tex(tmp_path: Path) -> FakeToolchain:
    return build_fake_toolchain(tmp_path / "bin")


@pytest.fixture
def settings(tmp_path: Path, fake_tex: FakeToolchain) -> Settings:
    return Settings(
        latexmk_path=fake_tex.latexmk,
        pdflatex_path=fake_tex.pdflatex,
        perl_path=fake_tex.perl,
        compile_timeout_seconds=20,
        tmp_dir=tmp_path / "workspaces",
        database_path=tmp_path / "data" / "customer_headers.db",
        max_json_body_mb=1,
        max_upload_mb=1,
        max_request_mb=4,
    )


@pytest.fixture
def toolchain(settings: Settings) -> ToolchainConfig:
    return ToolchainConfig.from_settings(settings)


@pytest.fixture
def renderer() -> TemplateRenderer:
    return TemplateRenderer(TEMPLATE_DIR).load()


@pytest.fixture
def workspaces(settings: Settings) -> WorkspaceManager:
    return WorkspaceManager(settings.tmp_dir)


@pytest.fixture
def pipeline(
    renderer: TemplateRenderer,
    workspaces: WorkspaceManager,
    toolchain: ToolchainConfig,
) -> CompilePipeline:
    return CompilePipeline(
        renderer=renderer,
        workspaces=workspaces,
        orchestrator=CompilerOrchestrator(toolchain),
    )


@pytest.fixture
def client(settings: Settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client
