"""Template rendering."""

from __future__ import annotations

from .jinja import JinjaTemplateRenderer, format_date, truncate_text

__all__ = ["JinjaTemplateRenderer", "format_date", "truncate_text"]
