"""
Stand-in TeX binaries for tests.

Each fake is a small executable Python script that behaves like the
real tool from the orchestrator's point of view: it reads ``doc.tex``
from its working directory, writes ``doc.log`` and produces ``doc.pdf``.

Markers in the LaTeX source steer the outcome:

    FORCE-COMPILE-ERROR   exit 1 with a TeX-style error in doc.log
    FORCE-HANG            sleep far beyond any test timeout
    FORCE-NO-OUTPUT       exit 0 without writing doc.pdf
    FORCE-BAD-PDF         exit 0 with a doc.pdf that is not a PDF
    FORCE-FLOOD           write 1 MiB to stdout, then compile normally

The generated PDF records the source text in /Subject and the workspace
listing in /Keywords so tests can check what the compiler saw. Every
invocation is appended to ``<binary>.calls``.
"""

from __future__ import annotations

import json
import stat
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

_SCRIPT = '''#!__PYTHON__
import json
import os
import sys
import time
from pathlib import Path

import pikepdf

NAME = "__NAME__"
here = Path(__file__)
args = sys.argv[1:]

with open(str(here) + ".calls", "a", encoding="utf-8") as calls:
    record = {"cwd": os.getcwd(), "args": args, "texinputs": os.environ.get("TEXINPUTS")}
    calls.write(json.dumps(record) + "\\n")

if args and args[0] in ("-v", "-version"):
    print("")
    print(f"Fake {NAME} 1.0 (test double)")
    sys.exit(0)

cwd = Path.cwd()
entry = cwd / args[-1]
source = entry.read_text(encoding="utf-8")
log = cwd / "doc.log"

if "FORCE-COMPILE-ERROR" in source:
    log.write_text("This is fake TeX\\n! Undefined control sequence.\\nl.3 \\\\oops\\n")
    print("! Undefined control sequence.")
    print("fatal error occurred", file=sys.stderr)
    sys.exit(1)

if "FORCE-HANG" in source:
    time.sleep(60)

if "FORCE-FLOOD" in source:
    sys.stdout.write("x" * (1024 * 1024))
    sys.stdout.flush()

log.write_text("This is fake TeX\\nOutput written on doc.pdf (1 page).\\n")

if "FORCE-NO-OUTPUT" in source:
    sys.exit(0)

if "FORCE-BAD-PDF" in source:
    (cwd / "doc.pdf").write_bytes(b"definitely not a pdf")
    sys.exit(0)

listing = sorted(p.name for p in cwd.iterdir())
pdf = pikepdf.new()
pdf.add_blank_page()
pdf.docinfo["/Subject"] = source
pdf.docinfo["/Keywords"] = ",".join(listing)
pdf.docinfo["/Creator"] = NAME
pdf.save(cwd / "doc.pdf")
print(f"Output written on doc.pdf (1 page) by {NAME}.")
'''


@dataclass
class FakeToolchain:
    bin_dir: Path
    latexmk: Path
    pdflatex: Path
    perl: Path

    def calls(self, binary: Path) -> List[Dict[str, Any]]:
        log = Path(str(binary) + ".calls")
        if not log.exists():
            return []
        lines = log.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line]

    def remove(self, binary: Path) -> None:
        binary.unlink()


def _write_script(path: Path, name: str) -> Path:
    script = _SCRIPT.replace("__PYTHON__", sys.executable).replace("__NAME__", name)
    path.write_text(script, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def build_fake_toolchain(bin_dir: Path) -> FakeToolchain:
    bin_dir.mkdir(parents=True, exist_ok=True)
    return FakeToolchain(
        bin_dir=bin_dir,
        latexmk=_write_script(bin_dir / "latexmk", "latexmk"),
        pdflatex=_write_script(bin_dir / "pdflatex", "pdflatex"),
        perl=_write_script(bin_dir / "perl", "perl"),
    )
