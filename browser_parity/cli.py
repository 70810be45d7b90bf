"""CLI entry point for the parity harness."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click
from playwright.async_api import Error as PlaywrightError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from browser_parity.errors import HarnessError, error_kind
from browser_parity.models.agent import AgentInfo
from browser_parity.models.capture import Viewport
from browser_parity.models.config import HarnessConfig
from browser_parity.models.parity import ParityCase
from browser_parity.orchestrator import Orchestrator

console = Console(stderr=True)

EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_SETUP_ERROR = 2

# Anything escaping per-case isolation means the run never produced a verdict
SETUP_ERRORS = (HarnessError, PlaywrightError, OSError)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_config(path: str) -> HarnessConfig:
    try:
        return HarnessConfig.load(path)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {path}[/red]")
        console.print("Run 'browser-parity init' to create a default config.")
        sys.exit(EXIT_SETUP_ERROR)


def _setup_failed(error: BaseException) -> NoReturn:
    console.print(f"[red]{error_kind(error)}:[/red] {error}")
    sys.exit(EXIT_SETUP_ERROR)


def _agents_table(infos: list[AgentInfo], host: str) -> Table:
    table = Table(title="Agents")
    table.add_column("Agent", style="bold")
    table.add_column("State")
    table.add_column("App")
    table.add_column("Debug port")
    table.add_column("Profile")
    for info in infos:
        table.add_row(info.agent_id, info.state.value, f"http://{host}:{info.app_port}",
                      str(info.debug_port), info.profile_dir)
    return table


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Isolated browser agents and visual parity checks."""
    setup_logging(verbose)


@cli.command()
@click.option("--base-path", default="/", help="Path of the default parity case")
def init(base_path: str) -> None:
    """Create a default configuration file."""
    config_path = Path("parity-config.json")
    if config_path.exists():
        if not click.confirm("parity-config.json already exists. Overwrite?"):
            return

    cfg = HarnessConfig(cases=[
        ParityCase(name="home", path=base_path, viewport=Viewport(width=1280, height=720, name="desktop")),
        ParityCase(name="home", path=base_path, viewport=Viewport(width=375, height=812, name="mobile")),
    ])
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nEdit dev_server.command for your app, then run:")
    console.print("  [blue]browser-parity parity --reference ../main --candidate .[/blue]")


@cli.command()
@click.argument("workspaces", nargs=-1, required=True, type=click.Path(exists=True, file_okay=False))
@click.option("--config", "-c", default="parity-config.json", help="Config file path")
def provision(workspaces: tuple[str, ...], config: str) -> None:
    """Provision one agent per workspace and hold them until Ctrl-C."""
    cfg = _load_config(config)

    async def hold(infos: list[AgentInfo]) -> None:
        console.print(_agents_table(infos, cfg.allocator.host))
        click.echo(json.dumps([i.model_dump(mode="json") for i in infos], indent=2))
        console.print("[yellow]Agents running. Press Ctrl-C to tear down.[/yellow]")
        await asyncio.Event().wait()

    try:
        Orchestrator(cfg).provision_agents(workspaces, hold=hold)
    except SETUP_ERRORS as e:
        _setup_failed(e)
    except KeyboardInterrupt:
        console.print("[green]Agents torn down[/green]")


@cli.command()
@click.argument("name")
@click.option("--workspace", "-w", required=True, type=click.Path(exists=True, file_okay=False),
              help="Workspace the agent serves")
@click.option("--config", "-c", default="parity-config.json", help="Config file path")
def script(name: str, workspace: str, config: str) -> None:
    """Run a named automation script against a fresh agent."""
    cfg = _load_config(config)
    try:
        result = Orchestrator(cfg).run_script(name, workspace)
    except SETUP_ERRORS as e:
        _setup_failed(e)

    table = Table(title=f"Script {name}")
    table.add_column("#")
    table.add_column("Command", style="bold")
    table.add_column("Status")
    table.add_column("Detail")
    for step in result.steps:
        color = {"pass": "green", "fail": "red"}.get(step.status, "yellow")
        detail = step.error_message if step.error_message else ("" if step.output is None else str(step.output))
        table.add_row(str(step.step_index), step.command, f"[{color}]{step.status}[/{color}]",
                      f"{step.error_kind + ': ' if step.error_kind else ''}{detail[:120]}")
    console.print(table)
    click.echo(result.model_dump_json(indent=2))
    sys.exit(EXIT_PASSED if result.passed else EXIT_FAILED)


@cli.command()
@click.option("--reference", "-r", required=True, type=click.Path(exists=True, file_okay=False),
              help="Workspace of the reference build")
@click.option("--candidate", "-t", required=True, type=click.Path(exists=True, file_okay=False),
              help="Workspace of the candidate build")
@click.option("--config", "-c", default="parity-config.json", help="Config file path")
@click.option("--json", "as_json", is_flag=True, help="Print per-case records as JSON on stdout")
def parity(reference: str, candidate: str, config: str, as_json: bool) -> None:
    """Run the configured parity case matrix against two workspaces."""
    cfg = _load_config(config)
    try:
        report, reports = Orchestrator(cfg).run_parity(reference, candidate)
    except SETUP_ERRORS as e:
        _setup_failed(e)

    table = Table(title=f"Parity {report.run_id}")
    table.add_column("Case", style="bold")
    table.add_column("Path")
    table.add_column("Viewport")
    table.add_column("Theme")
    table.add_column("Score")
    table.add_column("Result")
    for rec in report.summary_records():
        result = "[green]PASS[/green]" if rec["passed"] else f"[red]FAIL[/red] {rec['error_kind'] or ''}"
        table.add_row(rec["name"], rec["path"], rec["viewport"], rec["theme"],
                      f"{rec['metric']} {rec['score']:g}", result)
    console.print(table)
    for fmt, path in reports.items():
        console.print(f"  {fmt.upper()} report: [blue]{path}[/blue]")

    if as_json:
        click.echo(json.dumps({"passed": report.passed, "cases": report.summary_records()}, indent=2))
    sys.exit(EXIT_PASSED if report.passed else EXIT_FAILED)


if __name__ == "__main__":
    cli()
