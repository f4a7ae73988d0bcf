"""CLI entry point for taskmaster"""

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from taskmaster.config.config import KEY_MAP, NO_API_KEY_PROVIDERS, ConfigManager
from taskmaster.config.schema import ROLES
from taskmaster.errors import ModelCatalogError, TaskmasterError

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "silent": logging.CRITICAL,
}

app = typer.Typer(
    name="taskmaster",
    help="Role-based AI provider orchestration",
    add_completion=False,
)
console = Console()


def load_config(project_root: Path | None) -> ConfigManager:
    """Load catalog and configuration; a broken catalog ends the process"""
    try:
        manager = ConfigManager()
    except ModelCatalogError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if manager.get_debug_flag(project_root):
        level = logging.DEBUG
    else:
        level = LOG_LEVELS.get(manager.get_log_level(project_root), logging.INFO)
    logging.getLogger().setLevel(level)
    return manager


@app.command()
def models(
    directory: Path = typer.Option(None, "--dir", "-d", help="Project root"),
):
    """List supported models and the current role assignments"""
    manager = load_config(directory)
    assigned = {
        (manager.get_provider(role, directory), manager.get_model_id(role, directory)): role
        for role in ROLES
    }

    table = Table(title="Supported Models")
    table.add_column("Provider", style="cyan")
    table.add_column("Model", style="green")
    table.add_column("SWE score", justify="right")
    table.add_column("Cost in/out (per 1M)", justify="right")
    table.add_column("Roles")
    table.add_column("Active", style="magenta")

    for model in manager.get_available_models():
        cost = model.get("cost_per_1m_tokens")
        cost_text = f"${cost['input']} / ${cost['output']}" if cost and cost.get("input") is not None else "-"
        score = model.get("swe_score")
        table.add_row(
            model["provider"],
            model["id"],
            f"{score * 100:.1f}%" if score else "-",
            cost_text,
            ", ".join(model.get("allowed_roles") or []),
            assigned.get((model["provider"], model["id"]), ""),
        )

    console.print(table)


@app.command()
def config(
    directory: Path = typer.Option(None, "--dir", "-d", help="Project root"),
):
    """Show the effective configuration"""
    manager = load_config(directory)
    state = manager.get_config(directory)
    console.print(f"[dim]Project root: {state.project_root}[/dim]")
    console.print(f"[dim]Source: {state.source}[/dim]")
    console.print_json(json.dumps(state.effective_config.to_json_dict()))


@app.command()
def keys(
    directory: Path = typer.Option(None, "--dir", "-d", help="Project root"),
):
    """Show API key status per provider"""
    manager = load_config(directory)

    table = Table(title="API Key Status")
    table.add_column("Provider", style="cyan")
    table.add_column("Variable")
    table.add_column("CLI (.env)")
    table.add_column("MCP (.cursor/mcp.json)")

    providers = sorted(set(KEY_MAP) | NO_API_KEY_PROVIDERS)
    for provider in providers:
        cli_ok = manager.is_api_key_set(provider, project_root=directory)
        mcp_ok = manager.get_mcp_api_key_status(provider, directory)
        table.add_row(
            provider,
            KEY_MAP.get(provider, "-"),
            "[green]yes[/green]" if cli_ok else "[red]no[/red]",
            "[green]yes[/green]" if mcp_ok else "[red]no[/red]",
        )

    console.print(table)


@app.command()
def generate(
    prompt: str = typer.Argument(..., help="Prompt to send"),
    role: str = typer.Option("main", "--role", "-r", help="main, research or fallback"),
    system: str = typer.Option(None, "--system", "-s", help="System prompt"),
    directory: Path = typer.Option(None, "--dir", "-d", help="Project root"),
    tools: bool = typer.Option(False, "--tools", help="Let the model read/write files and run commands"),
    stream: bool = typer.Option(False, "--stream", help="Print text as it arrives"),
):
    """Send a single prompt to the model configured for a role"""
    from taskmaster.service import AIService
    from taskmaster.tool.registry import ToolRegistry

    if role not in ROLES:
        console.print(f"[red]Error:[/red] unknown role '{role}'. Use one of: {', '.join(ROLES)}")
        raise typer.Exit(2)

    manager = load_config(directory)
    service = AIService(manager, tools=ToolRegistry() if tools else None)
    project_root = str(directory) if directory else None

    async def run_generate():
        if stream:
            result = await service.stream_text(role, system, prompt, project_root=project_root, command_name="generate")
            async for delta in result.main_result:
                console.print(delta, end="", soft_wrap=True, markup=False, highlight=False)
            console.print()
            final = await result.main_result.result()
            usage = final.usage
        else:
            result = await service.generate_text(role, system, prompt, project_root=project_root, command_name="generate")
            console.print(result.main_result.text, markup=False, highlight=False)
            usage = result.main_result.usage

        summary = f"{result.provider_name}/{result.model_id} - {usage.input_tokens} in / {usage.output_tokens} out"
        if result.telemetry_data:
            summary += f" - ${result.telemetry_data.total_cost:.6f}"
        console.print(f"[dim]{summary}[/dim]")

    try:
        asyncio.run(run_generate())
    except TaskmasterError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def main():
    app()


if __name__ == "__main__":
    main()
