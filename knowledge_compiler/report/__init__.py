# File: knowledge_compiler/report/__init__.py
"""knowledge_compiler.report: JSON and HTML writers for compilation reports."""

from __future__ import annotations

from knowledge_compiler.report.html_report import DEFAULT_TEMPLATE_DIR, render_html
from knowledge_compiler.report.json_report import render_json, render_prompt

__all__ = ["render_json", "render_html", "render_prompt", "DEFAULT_TEMPLATE_DIR"]
