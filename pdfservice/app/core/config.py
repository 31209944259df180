"""
Centralized configuration management for the PDF compilation service.

Pydantic v2 settings management to enforce strict validation and
fast-failure on invalid configuration. Toolchain binary locations are
resolved here once and handed to the compiler explicitly; the process
environment (including PATH) is never mutated.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

SizeMB = Annotated[
    int,
    Field(ge=1, le=512, description="Size ceiling in megabytes"),
]

OptionalBinary = Annotated[
    Optional[Path],
    Field(
        default=None,
        description=(
            "Absolute path to a toolchain binary. When unset, the binary "
            "is looked up on PATH once at startup."
        ),
    ),
]


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Application settings parsed from the environment.
    """

    # ---------------------------------------------------------------------
    # TeX toolchain
    # ---------------------------------------------------------------------

    latexmk_path: OptionalBinary
    pdflatex_path: OptionalBinary
    perl_path: OptionalBinary

    compile_timeout_seconds: Annotated[
        float,
        Field(
            default=120.0,
            gt=0,
            description="Upper bound on a single toolchain invocation.",
        ),
    ]

    exec_max_output_bytes: Annotated[
        int,
        Field(
            default=20 * 1024 * 1024,
            ge=1024,
            description=(
                "Per-stream ceiling on captured stdout/stderr; a toolchain "
                "that writes more is stopped with OUTPUT_LIMIT."
            ),
        ),
    ]

    log_tail_chars: Annotated[
        int,
        Field(
            default=4000,
            ge=0,
            description="Characters of doc.log attached to failure reports.",
        ),
    ]

    # ---------------------------------------------------------------------
    # Templates & workspaces
    # ---------------------------------------------------------------------

    template_dir: Annotated[
        Path,
        Field(
            default=Path(__file__).resolve().parents[1] / "templates",
            description="Directory holding the Jinja LaTeX templates.",
        ),
    ]

    tmp_dir: Annotated[
        Path,
        Field(
            default=Path("tmp") / "workspaces",
            description="Root under which per-request workspaces are created.",
        ),
    ]

    purge_tmp_on_startup: Annotated[
        bool,
        Field(
            default=True,
            description=(
                "Remove every entry under tmp_dir at startup. When false, "
                "only entries older than tmp_max_age_seconds are removed."
            ),
        ),
    ]

    tmp_max_age_seconds: Annotated[
        int,
        Field(default=300, ge=0),
    ]

    # ---------------------------------------------------------------------
    # Remote compile delegation
    # ---------------------------------------------------------------------

    remote_base_url: Annotated[
        Optional[str],
        Field(
            default=None,
            description=(
                "Base URL of another pdfservice instance. When set, compiles "
                "are forwarded there instead of running the local toolchain."
            ),
        ),
    ]

    remote_enabled: Annotated[
        Optional[bool],
        Field(
            default=None,
            description="Explicit switch; defaults to on whenever remote_base_url is set.",
        ),
    ]

    remote_timeout_seconds: Annotated[
        float,
        Field(default=60.0, gt=0, description="Upper bound on one remote compile."),
    ]

    @property
    def use_remote(self) -> bool:
        if not self.remote_base_url:
            return False
        return True if self.remote_enabled is None else self.remote_enabled

    # ---------------------------------------------------------------------
    # Persistence
    # ---------------------------------------------------------------------

    database_path: Annotated[
        Path,
        Field(
            default=Path("data") / "customer_headers.db",
            description="SQLite file holding customer header records.",
        ),
    ]

    # ---------------------------------------------------------------------
    # Operational Boundaries
    # ---------------------------------------------------------------------

    max_json_body_mb: Annotated[
        int,
        Field(default=5, ge=1, le=512, description="JSON body ceiling"),
    ]

    max_upload_mb: SizeMB = 10
    max_request_mb: SizeMB = 100

    max_bundle_assets: Annotated[
        int,
        Field(
            default=63,
            ge=0,
            le=63,
            description="Maximum number of auxiliary files in a bundle.",
        ),
    ]

    log_level: Annotated[
        str,
        Field(default="INFO", pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$"),
    ]

    model_config = SettingsConfigDict(
        env_prefix="PDFSERVICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )


# -------------------------------------------------------------------------
# Settings Dependency Provider
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Dependency injection provider for application settings.
    """
    return Settings()  # singleton within process
