"""InMemoryTemplateStore — dict-backed template store."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ...ports.stores import ITemplateStore

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ...domain.template import Template


class InMemoryTemplateStore(ITemplateStore):
    """
    Dict-backed :class:`ITemplateStore` keyed by template name.
    """

    def __init__(self, templates: Iterable[Template] = ()) -> None:
        self._templates: dict[str, Template] = {}
        for template in templates:
            self._templates[template.name] = template

    async def find_by_name(self, name: str) -> Template | None:
        return self._templates.get(name)

    async def save(self, template: Template) -> Template:
        """Store or replace the template registered under its name."""
        self._templates[template.name] = template
        return template

    async def delete(self, name: str) -> bool:
        return self._templates.pop(name, None) is not None

    # --- Test helpers ---

    def clear(self) -> None:
        self._templates.clear()
