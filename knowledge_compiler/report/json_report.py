# knowledge_compiler/report/json_report.py

"""
JSON report of a compilation run.

Serializes a CompilationReport (prompt, fact units, metrics) to a file.
"""
from pathlib import Path

from knowledge_compiler.aggregator import CompilationReport


def render_json(report: CompilationReport, output_path: Path | str, *, pretty: bool = True) -> Path:
    """
    Save *report* as JSON at *output_path*.

    :param report: CompilationReport of a finished run
    :param output_path: path of the JSON file
    :param pretty: indent the output
    :return: Path of the written file

    Example:
    ```python
    from knowledge_compiler.report.json_report import render_json
    report_path = render_json(report, 'reports/report.json')
    print(f"JSON report saved to: {report_path}")
    ```
    """
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(report.json(pretty=pretty) + "\n", encoding="utf-8")
    return output


def render_prompt(report: CompilationReport, output_path: Path | str) -> Path:
    """Write only the compiled prompt text."""
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(report.prompt.text, encoding="utf-8")
    return output
