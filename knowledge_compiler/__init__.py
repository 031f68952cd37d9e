# knowledge_compiler/__init__.py
"""
Knowledge Compiler package initializer.
Defines package version and exposes the CLI.
"""
__version__ = "0.1.0"

# Expose CLI entry point
from knowledge_compiler.cli import cli  # noqa: E402
