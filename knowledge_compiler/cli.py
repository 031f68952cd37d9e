# === FILE: knowledge_compiler/cli.py ===
#!/usr/bin/env python3
"""
Command-line entry point of Knowledge Compiler.

Commands:
  compile   Crawl a site and compile its knowledge into a budgeted prompt
  config    Show the effective configuration

Group options:
  --config PATH       YAML/JSON config (default: configs/default.yaml if present)
  --limit INT         Maximum number of pages to fetch (overrides max_pages)
  --log-level LEVEL   Logging level (DEBUG, INFO, ...)
  --log-file PATH     Log file (stderr only if omitted)
  --log-format FORMAT Logging format string

compile options:
  SEED                Seed URL (overrides seed_url)
  --ceiling INT       Token ceiling of the prompt
  --depth INT         Maximum crawl depth
  --generator NAME    openai or extractive
  --run-timeout SEC   Deadline of the whole run
  --json PATH         Save the JSON report to a file
  --html PATH         Save the HTML report to a file
  --template DIR      Directory holding report.html.j2
  --prompt-out PATH   Save the prompt text alone
  --pretty            Indent JSON output

Exit codes: 0 success, 1 error or aborted crawl, 2 no fact units produced.

Example:
  knowledge-compiler compile https://example.com --ceiling 1500 --json report.json --pretty
"""
import asyncio
import sys
from pathlib import Path
from typing import Any

import click

from knowledge_compiler import __version__
from knowledge_compiler.config import DEFAULT_CONFIG_PATH, CompilerConfig, load_config
from knowledge_compiler.engine import compile_site
from knowledge_compiler.errors import CrawlAborted
from knowledge_compiler.logger import DEFAULT_FORMAT, init_logging
from knowledge_compiler.report.html_report import render_html
from knowledge_compiler.report.json_report import render_json, render_prompt

CONTEXT_SETTINGS = dict(help_option_names=["--help"])

EXIT_EMPTY = 2


def print_error(message: str):
    click.secho(message, fg='red', err=True)
    sys.exit(1)


def apply_overrides(cfg: CompilerConfig, **overrides: Any) -> CompilerConfig:
    """Return *cfg* with every non-None override applied and re-validated."""
    updates = {k: v for k, v in overrides.items() if v is not None}
    if not updates:
        return cfg
    return CompilerConfig(**{**cfg.model_dump(), **updates})


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__, '--version', '-v', message='Knowledge Compiler, version %(version)s')
@click.option(
    '--config', '-c', 'config_path',
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help=f'Path to a YAML or JSON config file (default: {DEFAULT_CONFIG_PATH} if present).'
)
@click.option(
    '--limit', '-l', 'limit',
    type=int,
    default=None,
    help='Maximum number of pages to fetch (overrides max_pages)'
)
@click.option(
    '--log-level', 'log_level',
    default='INFO', show_default=True,
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
    help='Logging level'
)
@click.option(
    '--log-file', 'log_file',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Log file path (stderr only if omitted)'
)
@click.option(
    '--log-format', 'log_format',
    default=DEFAULT_FORMAT,
    show_default=True,
    help='Logging format string'
)
@click.pass_context
def cli(ctx, config_path, limit, log_level, log_file, log_format):
    """Knowledge Compiler command group."""
    init_logging(
        level=log_level,
        log_file=str(log_file) if log_file else None,
        log_format=log_format
    )
    try:
        if config_path is None and not DEFAULT_CONFIG_PATH.exists():
            cfg = CompilerConfig()
        else:
            cfg = load_config(config_path)
        cfg = apply_overrides(cfg, max_pages=limit)
    except (OSError, ValueError, TypeError) as e:
        print_error(f'Failed to load configuration: {e}')
    ctx.ensure_object(dict)
    ctx.obj['config'] = cfg


@cli.command('compile', context_settings=CONTEXT_SETTINGS)
@click.argument('seed', required=False)
@click.option('--ceiling', 'ceiling', type=int, default=None, help='Token ceiling of the compiled prompt')
@click.option('--depth', 'depth', type=int, default=None, help='Maximum crawl depth')
@click.option(
    '--generator', 'generator',
    type=click.Choice(['openai', 'extractive']),
    default=None,
    help='Q&A generator backend'
)
@click.option('--run-timeout', 'run_timeout', type=float, default=None, help='Deadline of the whole run (seconds)')
@click.option(
    '--json', '-j', 'json_output',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Save the JSON report to a file'
)
@click.option(
    '--html', 'html_output',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Save the HTML report to a file'
)
@click.option(
    '--template', '-t', 'template_dir',
    default=None,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help='Directory with the Jinja2 report template (bundled one if omitted)'
)
@click.option(
    '--prompt-out', '-o', 'prompt_output',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Save the compiled prompt text to a file'
)
@click.option('--pretty', is_flag=True, help='Indent JSON output (2 spaces)')
@click.pass_context
def compile_cmd(ctx, seed, ceiling, depth, generator, run_timeout, json_output, html_output,
                template_dir, prompt_output, pretty):
    """Crawl SEED and compile a prompt from what the site says."""
    try:
        cfg = apply_overrides(
            ctx.obj['config'],
            seed_url=seed,
            token_ceiling=ceiling,
            max_depth=depth,
            generator=generator,
            run_timeout=run_timeout,
        )
    except ValueError as e:
        print_error(f'Invalid option: {e}')
    if cfg.seed_url is None:
        print_error('No seed URL: pass SEED or set seed_url in the config')

    click.echo(f'Compiling knowledge from {cfg.seed_url}', err=True)
    try:
        report = asyncio.run(compile_site(cfg))
    except CrawlAborted as e:
        print_error(f'Crawl aborted: {e}')
    except Exception as e:
        print_error(f'Compilation failed: {e}')

    if not json_output and not html_output and not prompt_output:
        click.echo(report.json(pretty=pretty))

    if json_output:
        try:
            saved_json = render_json(report, json_output, pretty=pretty)
            click.echo(f'JSON report: {saved_json}', err=True)
        except OSError as e:
            print_error(f'Failed to save JSON report: {e}')

    if html_output:
        try:
            saved_html = render_html(report, html_output, template_dir)
            click.echo(f'HTML report: {saved_html}', err=True)
        except OSError as e:
            print_error(f'Failed to save HTML report: {e}')

    if prompt_output:
        try:
            saved_prompt = render_prompt(report, prompt_output)
            click.echo(f'Prompt: {saved_prompt}', err=True)
        except OSError as e:
            print_error(f'Failed to save prompt: {e}')

    click.echo(
        f'Status: {report.status}, {len(report.prompt.included_fact_unit_ids)} fact units, '
        f'{report.prompt.total_tokens}/{cfg.token_ceiling} tokens',
        err=True,
    )
    if report.status == 'empty':
        click.secho('No fact units were produced', fg='yellow', err=True)
        sys.exit(EXIT_EMPTY)


@cli.command('config', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def show_config(ctx):
    """Show the effective configuration as JSON."""
    cfg = ctx.obj['config']
    click.echo(cfg.model_dump_json(indent=2))


if __name__ == "__main__":
    cli()
