"""Jinja2 template renderer."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from jinja2 import StrictUndefined, TemplateError, TemplateSyntaxError, nodes
from jinja2.meta import find_undeclared_variables
from jinja2.sandbox import SandboxedEnvironment

from ..exceptions import TemplateRenderError
from ..ports.renderer import ITemplateRenderer

logger = logging.getLogger("notification_dispatch.rendering")


def format_date(value: datetime | str | None) -> str:
    """Render a timestamp (or ISO-8601 string) as ``dd/mm/yyyy`` in UTC."""
    if value is None or value == "":
        return ""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%d/%m/%Y")


def truncate_text(value: str | None, length: int) -> str:
    """Cut ``value`` to ``length`` characters, appending ``...`` when cut."""
    if not value:
        return ""
    return value[:length] + "..." if len(value) > length else value


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


class JinjaTemplateRenderer(ITemplateRenderer):
    """
    Renders template text with a sandboxed Jinja2 environment.

    Undefined variables fail loudly (``StrictUndefined``). Placeholders use
    the usual ``{{ name }}`` syntax; filters ``upper``, ``lower`` and
    ``default`` are Jinja built-ins, ``format_date`` and ``truncate_text``
    are registered here.
    """

    def __init__(self, *, autoescape: bool = True) -> None:
        self._env = SandboxedEnvironment(
            undefined=StrictUndefined,
            autoescape=autoescape,
            keep_trailing_newline=True,
        )
        self._env.filters["format_date"] = format_date
        self._env.filters["truncate_text"] = truncate_text

    def render(self, text: str, context: dict[str, Any]) -> str:
        try:
            return str(self._env.from_string(text).render(**context))
        except TemplateError as e:
            logger.error("Jinja2 rendering failed: %s", e)
            raise TemplateRenderError(f"Template processing failed: {e}") from e

    def extract_variables(self, text: str) -> list[str]:
        """Return the free variables of ``text`` in first-occurrence order.

        Raises:
            TemplateRenderError: on a syntax error.
        """
        try:
            ast = self._env.parse(text)
        except TemplateSyntaxError as e:
            raise TemplateRenderError(f"Template processing failed: {e}") from e
        undeclared = find_undeclared_variables(ast)
        ordered: dict[str, None] = {}
        for node in ast.find_all(nodes.Name):
            if node.name in undeclared:
                ordered.setdefault(node.name, None)
        return list(ordered)

    def missing_variables(
        self,
        subject: str | None,
        body: str,
        context: dict[str, Any],
        required: list[str] | None = None,
    ) -> list[str]:
        if required is None:
            required = self.extract_variables(body)
            if subject:
                seen = set(required)
                required += [v for v in self.extract_variables(subject) if v not in seen]
        return [name for name in required if _is_missing(context.get(name))]

    def check_syntax(self, text: str) -> str | None:
        """Return the syntax error message for ``text``, or ``None`` if valid."""
        try:
            self._env.parse(text)
        except TemplateSyntaxError as e:
            return f"line {e.lineno}: {e.message}"
        return None
