"""
LaTeX toolchain orchestration.

This module drives the external TeX toolchain against a populated
workspace and reports the outcome as a typed ``CompileResult``.

Strategy selection (evaluated per compile):
- remote:    forward the workspace to another pdfservice instance when a
             remote base URL is configured
- primary:   ``latexmk -pdf`` when the latexmk binary is installed
- fallback:  ``pdflatex`` run twice, so cross-references and tables of
             contents resolve
- neither:   a failed result with ``TOOLCHAIN_UNAVAILABLE``

Guarantees:
- The workspace directory is the working directory of every invocation.
- Shell escape is disabled for both latexmk and pdflatex runs.
- Each invocation is bounded by ``timeout_seconds``; the whole process
  group is killed when it expires.
- Captured stdout/stderr are read incrementally and never exceed
  ``max_output_bytes`` per stream. A toolchain that writes more is killed
  and the compile fails with ``OUTPUT_LIMIT``.
- ``compile`` never raises for toolchain problems. Failures come back as
  structured results carrying the attempted command, exit status,
  captured streams, the tail of the TeX log and a workspace listing.
- A successful result always carries bytes that pikepdf can open.

Binary locations come from ``ToolchainConfig``; the process environment
is never modified.
"""

from __future__ import annotations

import io
import logging
import os
import shutil
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
import pikepdf

from pdfservice.app.core.config import Settings
from pdfservice.app.services.remote import RemoteCompiler
from pdfservice.app.services.workspace import Workspace, WorkspaceManager

logger = logging.getLogger("pdfservice.latex")


MAIN_TEX = "doc.tex"
PDF_SIGNATURE = b"%PDF-"

STRATEGY_REMOTE = "remote"
STRATEGY_LATEXMK = "latexmk"
STRATEGY_PDFLATEX = "pdflatex"

PDFLATEX_PASSES = 2
VERSION_PROBE_TIMEOUT = 10.0

READ_CHUNK = 64 * 1024
READER_JOIN_TIMEOUT = 5.0


class CompileState(str, Enum):
    PENDING = "pending"
    RENDERING = "rendering"
    COMPILING = "compiling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# ------------------------------------------------------------------
# Configuration
# ------------------------------------------------------------------

def _resolve_binary(configured: Optional[Path], name: str) -> Optional[Path]:
    if configured is not None:
        return Path(configured)
    found = shutil.which(name)
    return Path(found) if found else None


def _is_executable(path: Optional[Path]) -> bool:
    return path is not None and path.is_file() and os.access(path, os.X_OK)


@dataclass(frozen=True)
class ToolchainConfig:
    """Resolved toolchain locations and execution bounds."""

    latexmk: Optional[Path]
    pdflatex: Optional[Path]
    perl: Optional[Path] = None
    texinputs: Tuple[Path, ...] = ()
    timeout_seconds: float = 120.0
    max_output_bytes: int = 20 * 1024 * 1024
    log_tail_chars: int = 4000

    @classmethod
    def from_settings(cls, settings: Settings) -> "ToolchainConfig":
        return cls(
            latexmk=_resolve_binary(settings.latexmk_path, "latexmk"),
            pdflatex=_resolve_binary(settings.pdflatex_path, "pdflatex"),
            perl=_resolve_binary(settings.perl_path, "perl"),
            texinputs=(Path(settings.template_dir).resolve(),),
            timeout_seconds=settings.compile_timeout_seconds,
            max_output_bytes=settings.exec_max_output_bytes,
            log_tail_chars=settings.log_tail_chars,
        )


# ------------------------------------------------------------------
# Results
# ------------------------------------------------------------------

@dataclass(frozen=True)
class CompileResult:
    success: bool
    stdout: str = ""
    stderr: str = ""
    pdf: Optional[bytes] = field(default=None, repr=False)
    exit_code: Optional[int] = None
    error_code: Optional[str] = None
    message: str = ""
    strategy: Optional[str] = None
    command: Tuple[str, ...] = ()
    log_tail: str = ""
    workspace_files: Tuple[str, ...] = ()
    workspace_path: Optional[str] = None
    page_count: Optional[int] = None

    def describe(self) -> str:
        """Human-readable failure report in the shape of the TeX logs."""
        if self.success:
            return f"Compiled {self.page_count} page(s) with {self.strategy}."

        parts = [
            self.message or "LaTeX compilation failed",
            f"CODE:{self.error_code}",
            f"EXIT:{self.exit_code}",
            f"BIN:{self.command[0] if self.command else 'n/a'}",
            f"ARGS:{' '.join(self.command[1:])}",
            "",
            "STDOUT:",
            self.stdout,
            "",
            "STDERR:",
            self.stderr,
        ]
        if self.log_tail:
            parts += ["", "--- doc.log (tail) ---", self.log_tail]
        if self.workspace_files:
            parts += ["", "--- workdir files ---", *self.workspace_files]
        return "\n".join(parts)


@dataclass
class _Invocation:
    command: Tuple[str, ...]
    returncode: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    error_code: Optional[str] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error_code is None




class _StreamCollector(threading.Thread):
    """Drain one child pipe into memory, stopping at ``limit`` bytes."""

    def __init__(
        self,
        stream: IO[bytes],
        limit: int,
        on_overflow: Callable[[], None],
    ) -> None:
        super().__init__(daemon=True)
        self.stream = stream
        self.limit = limit
        self.on_overflow = on_overflow
        self.data = bytearray()
        self.overflowed = False

    def run(self) -> None:
        try:
            while True:
                chunk = self.stream.read1(READ_CHUNK)
                if not chunk:
                    return
                room = self.limit - len(self.data)
                if len(chunk) > room:
                    self.data += chunk[:room]
                    self.overflowed = True
                    self.on_overflow()
                    return
                self.data += chunk
        except (OSError, ValueError):
            # pipe closed underneath us after the child was killed
            return


def inspect_pdf(pdf_bytes: bytes) -> int:
    """Open compiled output with pikepdf and return its page count."""
    if not pdf_bytes.startswith(PDF_SIGNATURE):
        raise pikepdf.PdfError("output does not start with the PDF signature")
    with pikepdf.open(io.BytesIO(pdf_bytes)) as pdf:
        return len(pdf.pages)


# ------------------------------------------------------------------
# Orchestrator
# ------------------------------------------------------------------

class CompilerOrchestrator:
    def __init__(
        self,
        toolchain: ToolchainConfig,
        remote: Optional[RemoteCompiler] = None,
    ) -> None:
        self.toolchain = toolchain
        self.remote = remote

    # -- strategy -----------------------------------------------------

    def select_strategy(self) -> Optional[str]:
        if self.remote is not None:
            return STRATEGY_REMOTE
        if _is_executable(self.toolchain.latexmk):
            return STRATEGY_LATEXMK
        if _is_executable(self.toolchain.pdflatex):
            return STRATEGY_PDFLATEX
        return None

    def _commands(self, strategy: str, entry: str) -> List[Tuple[str, ...]]:
        if strategy == STRATEGY_LATEXMK:
            return [
                (
                    str(self.toolchain.latexmk),
                    "-pdf",
                    "-interaction=nonstopmode",
                    "-halt-on-error",
                    "-no-shell-escape",
                    entry,
                )
            ]

        single = (
            str(self.toolchain.pdflatex),
            "-interaction=nonstopmode",
            "-halt-on-error",
            "-no-shell-escape",
            entry,
        )
        return [single] * PDFLATEX_PASSES

    # -- process execution ---------------------------------------------

    def _environment(self) -> Dict[str, str]:
        env = os.environ.copy()
        if self.toolchain.texinputs:
            search = os.pathsep.join(str(path) for path in self.toolchain.texinputs)
            # trailing separator keeps the TeX default search path
            env["TEXINPUTS"] = f"{search}{os.pathsep}{env.get('TEXINPUTS', '')}"
        return env

    def _run(
        self,
        command: Sequence[str],
        cwd: Path,
        timeout: Optional[float] = None,
    ) -> _Invocation:
        invocation = _Invocation(command=tuple(command))
        timeout = self.toolchain.timeout_seconds if timeout is None else timeout

        try:
            process = subprocess.Popen(
                list(command),
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self._environment(),
                start_new_session=True,
            )
        except OSError as exc:
            invocation.error_code = "SPAWN_FAILED"
            invocation.message = f"Failed to invoke {command[0]}: {exc}"
            return invocation

        limit = self.toolchain.max_output_bytes
        collectors = [
            _StreamCollector(stream, limit, lambda: _kill_process_group(process))
            for stream in (process.stdout, process.stderr)
        ]
        for collector in collectors:
            collector.start()

        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_process_group(process)
            process.wait()
            invocation.error_code = "TIMEOUT"
            invocation.message = (
                f"{Path(command[0]).name} did not finish within {timeout:g} seconds"
            )

        for collector in collectors:
            collector.join(timeout=READER_JOIN_TIMEOUT)
            if not collector.is_alive():
                collector.stream.close()

        out, err = collectors
        invocation.returncode = process.returncode
        invocation.stdout = out.data.decode("utf-8", errors="replace")
        invocation.stderr = err.data.decode("utf-8", errors="replace")

        if invocation.ok and (out.overflowed or err.overflowed):
            invocation.error_code = "OUTPUT_LIMIT"
            invocation.message = (
                f"{Path(command[0]).name} wrote more than {limit} bytes of output "
                "and was stopped"
            )
        elif invocation.ok and process.returncode != 0:
            invocation.error_code = "NONZERO_EXIT"
            invocation.message = (
                f"{Path(command[0]).name} exited with status {process.returncode}"
            )
        return invocation

    # -- compile ----------------------------------------------------------

    def compile(self, workspace: Workspace, entry: str = MAIN_TEX) -> CompileResult:
        """
        Compile ``entry`` inside ``workspace`` and return the outcome.
        """
        strategy = self.select_strategy()
        if strategy is None:
            return self._failure(
                workspace,
                entry,
                error_code="TOOLCHAIN_UNAVAILABLE",
                message=(
                    "No LaTeX toolchain available: neither latexmk "
                    f"({self.toolchain.latexmk or 'not found'}) nor pdflatex "
                    f"({self.toolchain.pdflatex or 'not found'}) is executable."
                ),
            )
        if strategy == STRATEGY_REMOTE:
            return self._compile_remote(workspace, entry)

        stdout: List[str] = []
        stderr: List[str] = []
        command: Tuple[str, ...] = ()
        exit_code: Optional[int] = None

        for command in self._commands(strategy, entry):
            logger.info(
                "toolchain_invocation",
                extra={
                    "workspace_id": workspace.id,
                    "strategy": strategy,
                    "command": list(command),
                },
            )
            invocation = self._run(command, workspace.path)
            stdout.append(invocation.stdout)
            stderr.append(invocation.stderr)
            exit_code = invocation.returncode

            if not invocation.ok:
                return self._failure(
                    workspace,
                    entry,
                    error_code=invocation.error_code,
                    message=invocation.message,
                    strategy=strategy,
                    command=invocation.command,
                    exit_code=exit_code,
                    stdout="".join(stdout),
                    stderr="".join(stderr),
                )

        common: Dict[str, Any] = {
            "strategy": strategy,
            "command": command,
            "exit_code": exit_code,
            "stdout": "".join(stdout),
            "stderr": "".join(stderr),
        }

        pdf_file = workspace.file(Path(entry).with_suffix(".pdf").name)
        if not pdf_file.is_file():
            return self._failure(
                workspace,
                entry,
                error_code="NO_OUTPUT",
                message="Toolchain reported success, but no PDF output was produced.",
                **common,
            )

        return self._verified(workspace, entry, pdf_file.read_bytes(), common)

    def _compile_remote(self, workspace: Workspace, entry: str) -> CompileResult:
        remote = self.remote
        if remote is None:
            raise RuntimeError("remote compiler not configured")

        command = ("POST", remote.bundle_url)
        main = workspace.file(entry).read_bytes()
        assets = [
            (path.name, path.read_bytes())
            for path in sorted(workspace.path.iterdir())
            if path.is_file() and path.name != entry
        ]

        logger.info(
            "toolchain_invocation",
            extra={
                "workspace_id": workspace.id,
                "strategy": STRATEGY_REMOTE,
                "command": list(command),
            },
        )

        common: Dict[str, Any] = {"strategy": STRATEGY_REMOTE, "command": command}
        try:
            reply = remote.compile_bundle(main, assets)
        except httpx.TimeoutException:
            return self._failure(
                workspace,
                entry,
                error_code="TIMEOUT",
                message=(
                    f"Remote compile did not finish within "
                    f"{remote.timeout_seconds:g} seconds"
                ),
                **common,
            )
        except httpx.RequestError as exc:
            return self._failure(
                workspace,
                entry,
                error_code="REMOTE_UNREACHABLE",
                message=f"Remote compile service at {remote.base_url} unreachable: {exc}",
                **common,
            )

        if reply.truncated:
            return self._failure(
                workspace,
                entry,
                error_code="OUTPUT_LIMIT",
                message=(
                    f"Remote response exceeded {remote.max_response_bytes} bytes "
                    "and was discarded"
                ),
                **common,
            )

        if not reply.ok:
            details = reply.failure_details()
            return self._failure(
                workspace,
                entry,
                error_code="REMOTE_FAILED",
                message=f"Remote compile failed with status {reply.status_code}",
                exit_code=details.get("exitCode"),
                stdout=details.get("stdout") or "",
                stderr=details.get("stderr") or ("" if details else reply.text),
                log_tail=details.get("logTail") or details.get("detail") or "",
                **common,
            )

        return self._verified(workspace, entry, reply.content, common)

    def _verified(
        self,
        workspace: Workspace,
        entry: str,
        pdf_bytes: bytes,
        common: Dict[str, Any],
    ) -> CompileResult:
        try:
            page_count = inspect_pdf(pdf_bytes)
        except pikepdf.PdfError as exc:
            return self._failure(
                workspace,
                entry,
                error_code="INVALID_OUTPUT",
                message=f"Toolchain produced an unreadable PDF: {exc}",
                **common,
            )

        return CompileResult(
            success=True,
            pdf=pdf_bytes,
            page_count=page_count,
            workspace_path=str(workspace.path),
            **common,
        )

    def _failure(
        self,
        workspace: Workspace,
        entry: str,
        *,
        error_code: Optional[str],
        message: str,
        strategy: Optional[str] = None,
        command: Tuple[str, ...] = (),
        exit_code: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
        log_tail: str = "",
    ) -> CompileResult:
        limit = self.toolchain.log_tail_chars
        log_file = workspace.file(Path(entry).with_suffix(".log").name)
        if not log_tail and limit and log_file.is_file():
            try:
                log_tail = log_file.read_text(encoding="utf-8", errors="replace")
            except OSError:
                log_tail = ""

        logger.warning(
            "compile_failed",
            extra={
                "workspace_id": workspace.id,
                "error_code": error_code,
                "exit_code": exit_code,
                "strategy": strategy,
            },
        )

        return CompileResult(
            success=False,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            error_code=error_code,
            message=message,
            strategy=strategy,
            command=command,
            log_tail=log_tail[-limit:] if limit else "",
            workspace_files=tuple(WorkspaceManager.listing(workspace)),
            workspace_path=str(workspace.path),
        )

    # -- health --------------------------------------------------------------

    def _probe(self, binary: Optional[Path], flag: str) -> Dict[str, Any]:
        present = _is_executable(binary)
        version = "n/a"
        if present:
            invocation = self._run(
                [str(binary), flag],
                cwd=Path.cwd(),
                timeout=VERSION_PROBE_TIMEOUT,
            )
            if invocation.ok:
                lines = [line.strip() for line in invocation.stdout.splitlines()]
                version = next((line for line in lines if line), "n/a")
        return {
            "binary": str(binary) if binary else None,
            "present": present,
            "version": version,
        }

    def health(self) -> Dict[str, Any]:
        """
        Report toolchain availability and self-reported versions.

        ``ready`` is true when the selected strategy can take compiles:
        a reachable remote, or a local latexmk/pdflatex binary.

        Does NOT compile anything.
        """
        strategy = self.select_strategy()
        report: Dict[str, Any] = {
            "strategy": strategy,
            "latexmk": self._probe(self.toolchain.latexmk, "-v"),
            "pdflatex": self._probe(self.toolchain.pdflatex, "-version"),
            "perl": self._probe(self.toolchain.perl, "-v"),
            "timeout_seconds": self.toolchain.timeout_seconds,
            "remote": None,
        }
        if self.remote is not None:
            report["remote"] = self.remote.health()
            report["ready"] = bool(report["remote"]["reachable"])
        else:
            report["ready"] = strategy is not None
        return report


def _kill_process_group(process: subprocess.Popen) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError, AttributeError):
        process.kill()
