#!/usr/bin/env python3
"""
Main CLI entry point for PatchPilot.
"""
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.syntax import Syntax
from rich.logging import RichHandler
from rich.prompt import Confirm
from rich.markup import escape

from patchpilot import __version__
from patchpilot.api.client import ChatCompletionClient, ConfigurationError, ModelClientError
from patchpilot.config import load_config, AssistantConfig
from patchpilot.core.action_protocol import ActionProtocolParser
from patchpilot.core.code_validator import ValidationEngine, format_verdict
from patchpilot.core.models import EditRequest, OrchestrationResult, SideEffectRequest
from patchpilot.core.orchestrator import Orchestrator

console = Console()


def setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)]
    )


def parse_line_range(value: Optional[str], total_lines: int) -> Tuple[int, int]:
    """'START:END' (1-based, inclusive) -> (start, end). Whole file when None."""
    if not value:
        return 1, total_lines
    try:
        start_text, end_text = value.split(":", 1)
        start, end = int(start_text), int(end_text)
    except ValueError:
        raise click.BadParameter("expected START:END, e.g. 10:25", param_hint="--lines")
    if start < 1 or end < start or end > total_lines:
        raise click.BadParameter(f"range must lie within 1:{total_lines}", param_hint="--lines")
    return start, end


async def confirm_action(request: SideEffectRequest) -> bool:
    """Ask on the terminal before running a side effect."""
    return await asyncio.to_thread(Confirm.ask, f"Execute action? [bold]{request.describe()}[/bold]", console=console)


@click.group()
@click.version_option(version=__version__)
@click.option('--verbose', '-v', is_flag=True, help="Enable debug logging")
def cli(verbose):
    """PatchPilot - validated code edits from natural-language instructions."""
    setup_logging(verbose)


@cli.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--instruction', '-i', required=True, help="What to change")
@click.option('--lines', '-l', 'line_range', default=None, help="Selection as START:END (1-based, inclusive)")
@click.option('--project-root', '-p', type=click.Path(exists=True, file_okay=False), default=None,
              help="Project directory for context and actions")
@click.option('--config', '-c', 'config_path', default="config.yaml", help="Path to config file")
@click.option('--write', '-w', is_flag=True, help="Write the result back into FILE on success")
@click.option('--json', 'as_json', is_flag=True, help="Print the result as JSON")
def fix(file, instruction, line_range, project_root, config_path, write, as_json):
    """Rewrite code in FILE according to an instruction."""
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        console.print(f"[red]❌ Configuration error: {e}[/red]")
        sys.exit(1)

    document = file.read_text(encoding="utf-8")
    lines = document.split("\n")
    start, end = parse_line_range(line_range, len(lines))
    selected = "\n".join(lines[start - 1:end])

    request = EditRequest(
        instruction=instruction,
        selected_code=selected,
        full_document=document,
        document_id=str(file),
        project_root=str(Path(project_root).resolve()) if project_root else None
    )

    result = asyncio.run(_fix_async(config, request, as_json))

    if as_json:
        console.print_json(data=result.to_dict())
    else:
        _print_result(result, file)

    if write and result.succeeded and result.final_code is not None:
        lines[start - 1:end] = result.final_code.split("\n")
        file.write_text("\n".join(lines), encoding="utf-8")
        if not as_json:
            console.print(f"[green]✅ Wrote changes to {file}[/green]")

    sys.exit(0 if result.succeeded else 1)


async def _fix_async(config: AssistantConfig, request: EditRequest, quiet: bool) -> OrchestrationResult:
    """Async wrapper for fix command."""
    try:
        client = ChatCompletionClient.from_config(config)
    except ConfigurationError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    async with client:
        orchestrator = Orchestrator(
            client,
            config,
            confirm=confirm_action if config.require_confirmation else None
        )
        if quiet:
            return await orchestrator.run(request)
        with console.status("[bold green]Analyzing task...") as status:
            return await orchestrator.run(request, progress=lambda message: status.update(f"[bold green]{message}"))


def _print_result(result: OrchestrationResult, file: Path):
    if result.final_code is not None:
        title = "✅ Fixed code" if result.succeeded else "⚠️  Best-effort code (validation failed)"
        syntax = Syntax(result.final_code, Syntax.guess_lexer(str(file), result.final_code), line_numbers=True)
        console.print(Panel(syntax, title=title, border_style="green" if result.succeeded else "yellow"))

    table = Table(title="Run Summary")
    table.add_column("Item", style="cyan")
    table.add_column("Value", style="yellow")
    table.add_row("Status", result.final_state.value)
    table.add_row("Tier", f"{result.profile.tier.value} ({result.profile.mode.value})")
    table.add_row("Project context", "cached" if result.cache_hit else "fresh / none")
    table.add_row("Retries", str(result.retry_count))
    if result.verdict is not None:
        table.add_row("Quality score", f"{result.verdict.quality_score}/100")
    table.add_row("Validation", "on" if result.validated else "off")
    table.add_row("Elapsed", f"{result.elapsed_seconds:.2f}s")
    console.print(table)

    if result.effect_outcomes:
        actions = Table(title="Actions")
        actions.add_column("Attempt", style="dim")
        actions.add_column("Action", style="cyan")
        actions.add_column("Status")
        actions.add_column("Details")
        for outcome in result.effect_outcomes:
            color = {"succeeded": "green", "denied": "yellow", "failed": "red"}[outcome.status.value]
            actions.add_row(str(outcome.attempt + 1), outcome.request.describe(),
                            f"[{color}]{outcome.status.value}[/{color}]", escape(outcome.error or outcome.detail))
        console.print(actions)

    if not result.succeeded:
        console.print(f"❌ {result.failure_reason}", style="red", markup=False)
        if result.verdict is not None and result.verdict.errors:
            console.print(format_verdict(result.verdict), markup=False)


@cli.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(file):
    """Validate FILE without calling the model."""
    verdict = ValidationEngine().validate(file.read_text(encoding="utf-8"), str(file))
    console.print(format_verdict(verdict), style="green" if verdict.is_acceptable else "red", markup=False)
    sys.exit(0 if verdict.is_acceptable else 1)


@cli.command(name="parse-actions")
@click.argument('file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
def parse_actions(file):
    """List action markers found in a text FILE."""
    requests = ActionProtocolParser().parse(file.read_text(encoding="utf-8"))
    if not requests:
        console.print("[yellow]No actions found[/yellow]")
        return

    table = Table(title=f"Actions in {file.name}")
    table.add_column("#", style="dim")
    table.add_column("Kind", style="cyan")
    table.add_column("Description")
    for index, request in enumerate(requests, 1):
        table.add_row(str(index), request.kind.value, escape(request.describe()))
    console.print(table)


@cli.command()
@click.option('--config', '-c', 'config_path', default="config.yaml", help="Path to config file")
@click.option('--show-key', is_flag=True, help="Show full API key (be careful!)")
def config(config_path, show_key):
    """Show current configuration."""
    try:
        settings = load_config(config_path)
    except ConfigurationError as e:
        console.print(f"[red]❌ Configuration error: {e}[/red]")
        sys.exit(1)

    table = Table(title="Current Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")

    for key, value in settings.to_dict(show_key=show_key).items():
        table.add_row(key, str(value))

    if not Path(config_path).exists():
        table.add_row(config_path, "[red]NOT FOUND (defaults in use)[/red]")

    console.print(table)


@cli.command()
@click.option('--config', '-c', 'config_path', default="config.yaml", help="Path to config file")
def test(config_path):
    """Test API connection and configuration."""
    asyncio.run(_test_async(config_path))


async def _test_async(config_path: str):
    """Async wrapper for test command."""
    table = Table(title="Configuration Test")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Details")

    try:
        settings = load_config(config_path)
        client = ChatCompletionClient.from_config(settings)
    except ConfigurationError as e:
        table.add_row("Configuration", "❌", str(e))
        console.print(table)
        sys.exit(1)

    table.add_row("Configuration", "✅", f"{settings.model} @ {settings.base_url}")

    async with client:
        try:
            if await client.test_connection():
                table.add_row("API Connection", "✅", "Connected")
            else:
                table.add_row("API Connection", "❌", "Connection failed")
        except ModelClientError as e:
            table.add_row("API Connection", "❌", str(e))

    console.print(table)


if __name__ == "__main__":
    cli()
