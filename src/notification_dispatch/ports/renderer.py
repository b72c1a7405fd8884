"""Template renderer port."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ITemplateRenderer(Protocol):
    """Protocol for rendering template text against a context."""

    def render(self, text: str, context: dict[str, Any]) -> str:
        """Render ``text``. Raises ``TemplateRenderError`` on syntax errors."""
        ...

    def missing_variables(
        self,
        subject: str | None,
        body: str,
        context: dict[str, Any],
        required: list[str] | None = None,
    ) -> list[str]:
        """Return required variable names that are absent or empty in ``context``.

        When ``required`` is ``None`` the names are extracted from the
        placeholders of ``body`` and ``subject``.
        """
        ...
