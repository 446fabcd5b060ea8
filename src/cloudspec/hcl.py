"""Render .hcl files with Jinja2 and parse them."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import hcl2
import jinja2
from lark.exceptions import LarkError

from .projects import Project

if TYPE_CHECKING:
    from .workspace import Workspace

logger = logging.getLogger(__name__)

# undefined template names are errors; rendered text is HCL, never HTML
_templates = jinja2.Environment(
    undefined=jinja2.StrictUndefined,
    keep_trailing_newline=True,
    autoescape=False,
)


def loads(text: str, *, context: dict[str, Any] | None = None, source: str = "<string>") -> dict[str, Any]:
    """Render ``text`` as a Jinja2 template, then parse the result as HCL.

    Failures in either step raise ValueError prefixed with ``source``.
    """
    try:
        rendered = _templates.from_string(text).render(context or {})
    except jinja2.TemplateError as exc:
        raise ValueError(f"{source}: {exc}") from exc
    try:
        return hcl2.loads(rendered)
    except LarkError as exc:
        raise ValueError(f"{source}: unable to parse HCL: {exc}") from exc


def load(file: str | Path, *, context: dict[str, Any] | None = None) -> dict[str, Any]:
    """Load one HCL file; see ``loads``."""
    path = Path(file)
    logger.debug("Loading %s", path)
    return loads(path.read_text(), context=context, source=str(path))


def scan[P: Project](
    path: str | Path,
    *,
    project_type: type[P] = Project,  # type: ignore[assignment]
    recurse: bool = True,
    context: dict[str, Any] | None = None,
) -> Workspace[P]:
    """Build a Workspace from every .hcl file under ``path``."""
    from .workspace import Workspace

    ws = Workspace(project_type=project_type, context=context)
    ws.scan(path, recurse=recurse)
    return ws
