# File: knowledge_compiler/report/html_report.py
"""knowledge_compiler.report.html_report: HTML report rendered with Jinja2."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Union

from jinja2 import Environment, FileSystemLoader, select_autoescape

from knowledge_compiler.aggregator import CompilationReport

#: templates shipped inside the package
DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"


def render_html(
    report: CompilationReport,
    output_path: Union[Path, str],
    template_dir: Optional[Union[Path, str]] = None,
) -> Path:
    """Render the HTML report from ``report.html.j2`` and save it.

    Args:
        report: CompilationReport of a finished run.
        output_path: path of the resulting HTML file.
        template_dir: directory holding ``report.html.j2``; the bundled
            template is used when omitted.

    Returns:
        Path of the written HTML file.

    Example:
    ```python
    from knowledge_compiler.report.html_report import render_html
    html_path = render_html(report, output_path='reports/report.html')
    ```
    """
    template_dir = Path(template_dir) if template_dir is not None else DEFAULT_TEMPLATE_DIR
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    env = Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=select_autoescape(["html", "xml", "j2"]),
    )
    template = env.get_template("report.html.j2")

    data = report.as_dict()
    context: dict[str, Any] = {
        "run_id": data["run_id"],
        "seed_url": data["seed_url"],
        "status": data["status"],
        "prompt": data["prompt"],
        "fact_units": data["fact_units"],
        "metrics": data["metrics"],
    }

    html_content = template.render(**context)
    output_path.write_text(html_content, encoding="utf-8")

    return output_path
