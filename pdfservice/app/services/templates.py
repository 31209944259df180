"""
LaTeX template rendering.

Templates are Jinja2 files using LaTeX-friendly delimiters:

    \\VAR{expr}       variable substitution
    \\BLOCK{stmt}     control statements (for / if / set)
    \\#{comment}      template comments

All templates are parsed once when the renderer is loaded and are
immutable for the lifetime of the process. ``render`` touches no shared
mutable state and is safe to call from concurrent request threads.

Data handed to ``render`` must already be sanitized; the renderer does
not escape values itself (``autoescape=False``). Mapping keys are not
sanitized, so templates that print keys pipe them through ``|tex``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Mapping

from jinja2 import (
    ChainableUndefined,
    Environment,
    FileSystemLoader,
    Template,
    TemplateError,
)

from pdfservice.app.core.errors import ValidationError
from pdfservice.app.services.sanitize import escape_tex

logger = logging.getLogger("pdfservice.templates")


MINIMAL_FLAG = "_minimal"

MINIMAL_DOCUMENT = (
    "\\documentclass{article}"
    "\\usepackage[utf8]{inputenc}"
    "\\begin{document}Hello PDF!\\end{document}\n"
)

TEMPLATE_SUFFIX = ".tex.jinja"


def is_minimal_request(data: Mapping[str, Any]) -> bool:
    return data.get(MINIMAL_FLAG) is True


class TemplateRenderer:
    """
    Read-only registry of compiled LaTeX templates.
    """

    def __init__(self, template_dir: Path) -> None:
        self.template_dir = Path(template_dir).resolve()
        self._env = Environment(
            loader=FileSystemLoader(self.template_dir),
            block_start_string=r"\BLOCK{",
            block_end_string="}",
            variable_start_string=r"\VAR{",
            variable_end_string="}",
            comment_start_string=r"\#{",
            comment_end_string="}",
            undefined=ChainableUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self._env.filters["tex"] = lambda value: escape_tex(str(value))
        self._templates: Dict[str, Template] = {}

    def load(self) -> "TemplateRenderer":
        """Parse every template under ``template_dir``. Fails fast."""
        if not self.template_dir.is_dir():
            raise RuntimeError(f"Template directory does not exist: {self.template_dir}")

        templates: Dict[str, Template] = {}
        for name in self._env.list_templates():
            if not name.endswith(TEMPLATE_SUFFIX):
                continue
            templates[name[: -len(TEMPLATE_SUFFIX)]] = self._env.get_template(name)

        self._templates = templates
        logger.info(
            "templates_loaded",
            extra={
                "template_dir": str(self.template_dir),
                "templates": sorted(templates),
            },
        )
        return self

    @property
    def names(self) -> list[str]:
        return sorted(self._templates)

    def render(self, name: str, data: Mapping[str, Any]) -> str:
        """
        Merge sanitized ``data`` into the named template.

        A request carrying ``{"_minimal": true}`` bypasses the template
        and yields the fixed smoke-test document.
        """
        if is_minimal_request(data):
            return MINIMAL_DOCUMENT

        template = self._templates.get(name)
        if template is None:
            raise ValidationError(f"Template '{name}' not found.")

        try:
            return template.render(dict(data))
        except TemplateError as exc:
            raise ValidationError(
                f"Template '{name}' could not be rendered: {exc}"
            ) from exc
