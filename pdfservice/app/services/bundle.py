"""
Multi-file compile submissions.

A bundle is one main LaTeX document plus a bounded set of auxiliary
assets (images, .sty/.cls files, bibliographies). The main document is
always written as ``doc.tex``; assets keep their original filenames so
relative references inside the main document resolve.

Validation happens before any workspace is allocated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath, PureWindowsPath
from typing import List, Optional, Sequence

from pdfservice.app.core.errors import ValidationError
from pdfservice.app.services.latex import MAIN_TEX
from pdfservice.app.services.workspace import Workspace

MAX_BUNDLE_ASSETS = 63

_RESERVED_NAMES = {
    MAIN_TEX,
    "doc.pdf",
    "doc.log",
    "doc.aux",
    "doc.fls",
    "doc.fdb_latexmk",
}


@dataclass(frozen=True)
class BundleFile:
    filename: str
    content: bytes = field(repr=False)


def _check_asset_name(name: str) -> None:
    if not name or not name.strip():
        raise ValidationError("Asset filename must not be empty.")
    if "\x00" in name:
        raise ValidationError(f"Asset filename {name!r} contains a NUL byte.")

    posix, windows = PurePosixPath(name), PureWindowsPath(name)
    if (
        len(posix.parts) != 1
        or len(windows.parts) != 1
        or posix.is_absolute()
        or windows.is_absolute()
        or name in {".", ".."}
    ):
        raise ValidationError(
            f"Asset filename {name!r} must be a bare file name without directories."
        )

    if name.lower() in _RESERVED_NAMES:
        raise ValidationError(
            f"Asset filename {name!r} collides with a compiler-managed file."
        )


def check_asset_count(count: int, max_assets: int = MAX_BUNDLE_ASSETS) -> None:
    if count > max_assets:
        raise ValidationError(
            f"Too many asset files: {count} supplied, at most {max_assets} allowed."
        )


def validate_bundle(
    main: Optional[BundleFile],
    assets: Sequence[BundleFile],
    max_assets: int = MAX_BUNDLE_ASSETS,
) -> BundleFile:
    """
    Reject malformed submissions and return the validated main file.

    Raises:
        ValidationError: missing/empty main file, too many assets, unsafe
            or duplicate asset filenames.
    """
    if main is None:
        raise ValidationError("A 'main' file is required.")
    if not main.content:
        raise ValidationError("The 'main' file is empty.")

    check_asset_count(len(assets), max_assets)

    seen: set[str] = set()
    for asset in assets:
        _check_asset_name(asset.filename)
        if asset.filename in seen:
            raise ValidationError(f"Duplicate asset filename {asset.filename!r}.")
        seen.add(asset.filename)

    return main


def materialize(
    workspace: Workspace,
    main: BundleFile,
    assets: Sequence[BundleFile],
) -> List[str]:
    """
    Write the bundle into ``workspace``. Returns the written filenames,
    main entry first.
    """
    workspace.file(MAIN_TEX).write_bytes(main.content)
    written = [MAIN_TEX]

    for asset in assets:
        workspace.file(asset.filename).write_bytes(asset.content)
        written.append(asset.filename)

    return written
