"""CLI interface for termpost."""

import asyncio
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import Config
from .dispatcher import HttpTransport
from .errors import ParseError, StoreError, TermpostError
from .exporter import request_to_curl
from .logging_config import configure_logging
from .models import HistoryEntry
from .resolver import resolve_request
from .storage import StorageBackend

console = Console()


@click.group(invoke_without_command=True)
@click.option("--data-dir", type=click.Path(file_okay=False, path_type=Path), help="Directory holding collections, history and settings")
@click.option("--timeout", type=float, help="Request timeout in seconds")
@click.version_option(__version__, prog_name="termpost")
@click.pass_context
def main(ctx, data_dir, timeout):
    """termpost - a terminal HTTP client with collections, environments and history."""
    config = Config.from_env(data_dir=data_dir, request_timeout=timeout)
    config.ensure_dirs()
    configure_logging(config)
    ctx.obj = config

    if ctx.invoked_subcommand is None:
        ctx.invoke(tui)


@main.command()
@click.pass_obj
def tui(config):
    """Run the interactive terminal UI."""
    from .tui import run

    run(config)


@main.command()
@click.option("--requests", "-r", "show_requests", is_flag=True, help="List every request with its id")
@click.pass_obj
def collections(config, show_requests):
    """List saved collections."""
    storage = StorageBackend(config)
    trees = storage.load_collections()
    for error in storage.load_errors:
        console.print(f"[yellow]Skipped: {error}[/yellow]")

    if not trees:
        console.print("[yellow]No collections found[/yellow]")
        return

    if not show_requests:
        table = Table(title="Collections")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Requests", style="green")
        for tree in trees:
            table.add_row(tree.id, tree.name, str(len(tree.requests())))
        console.print(table)
        return

    table = Table(title="Requests")
    table.add_column("ID", style="dim")
    table.add_column("Collection", style="cyan")
    table.add_column("Method", style="magenta")
    table.add_column("Name")
    table.add_column("URL", style="green")
    for tree in trees:
        for request in tree.requests():
            table.add_row(request.id, tree.name, request.method.value, request.name, request.url)
    console.print(table)


@main.command()
@click.option("--limit", "-n", default=20, show_default=True, help="Number of entries to show")
@click.pass_obj
def history(config, limit):
    """Show recently sent requests, newest first."""
    storage = StorageBackend(config)
    try:
        entries = storage.load_history()
    except ParseError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if not entries:
        console.print("[yellow]No history yet[/yellow]")
        return

    table = Table(title="History")
    table.add_column("Time", style="dim")
    table.add_column("Method", style="magenta")
    table.add_column("URL", style="cyan")
    table.add_column("Status")
    table.add_column("Duration", style="green")
    for entry in entries[:limit]:
        if entry.status_code is None:
            status = f"[red]{entry.error or 'ERR'}[/red]"
        elif entry.status_code < 400:
            status = f"[green]{entry.status_code}[/green]"
        else:
            status = f"[yellow]{entry.status_code}[/yellow]"
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.request.method.value,
            entry.request.url,
            status,
            f"{entry.duration_ms}ms",
        )
    console.print(table)


@main.command()
@click.pass_obj
def envs(config):
    """List environments and mark the active one."""
    storage = StorageBackend(config)
    try:
        environments = storage.load_environments()
    except ParseError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    table = Table(title="Environments")
    table.add_column("", width=1)
    table.add_column("Name", style="cyan")
    table.add_column("Variables")
    active = environments.active()
    for env in environments.environments:
        marker = "*" if env is active else ""
        variables = ", ".join(f"{k}={v}" for k, v in env.variables.items())
        table.add_row(marker, env.name, variables)
    console.print(table)


def _find_request(storage: StorageBackend, request_id: str):
    """Find a saved request by id or unique id prefix."""
    matches = [
        request
        for tree in storage.load_collections()
        for request in tree.requests()
        if request.id == request_id or request.id.startswith(request_id)
    ]
    exact = [request for request in matches if request.id == request_id]
    if exact:
        return exact[0]
    if len(matches) == 1:
        return matches[0]
    if matches:
        raise click.UsageError(f"Request id prefix '{request_id}' is ambiguous")
    return None


def _variables(storage: StorageBackend, env_name):
    environments = storage.load_environments()
    if env_name is None:
        return environments.active_variables()
    index = environments.index_of(env_name)
    if index is None:
        raise click.BadParameter(f"Unknown environment: {env_name}", param_hint="--env")
    return dict(environments.environments[index].variables)


@main.command()
@click.argument("request_id")
@click.option("--env", "env_name", help="Environment to resolve variables against (default: active)")
@click.pass_obj
def send(config, request_id, env_name):
    """Send a saved request and print the response."""
    storage = StorageBackend(config)
    request = _find_request(storage, request_id)
    if not request:
        console.print(f"[red]Request with ID {request_id} not found[/red]")
        sys.exit(1)

    try:
        resolved = resolve_request(request, _variables(storage, env_name))
    except TermpostError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    console.print(f"[green]Sending:[/green] {resolved.method.value} {resolved.url}")

    async def do_send():
        transport = HttpTransport(timeout=config.request_timeout, verify=config.verify_tls)
        try:
            return await transport.execute(resolved)
        finally:
            await transport.close()

    try:
        response = asyncio.run(do_send())
    except TermpostError as e:
        console.print(f"[red]Request failed: {e}[/red]")
        _record(storage, HistoryEntry(request=request, error=str(e)))
        sys.exit(1)

    color = "green" if response.is_success else "yellow" if response.status < 500 else "red"
    console.print(f"[{color}]{response.status} {response.status_text}[/{color}]")
    console.print(f"[cyan]Response Time:[/cyan] {response.elapsed_ms}ms")
    if response.body:
        console.print(response.pretty_body(), markup=False, highlight=False)
    _record(storage, HistoryEntry(request=request, status_code=response.status, duration_ms=response.elapsed_ms))


def _record(storage: StorageBackend, entry: HistoryEntry):
    try:
        storage.append_history(entry, storage.load_history())
    except (ParseError, StoreError) as e:
        console.print(f"[yellow]History not saved: {e}[/yellow]")


@main.command()
@click.argument("request_id")
@click.option("--env", "env_name", help="Environment to resolve variables against (default: active)")
@click.pass_obj
def curl(config, request_id, env_name):
    """Print a saved request as a curl command."""
    storage = StorageBackend(config)
    request = _find_request(storage, request_id)
    if not request:
        console.print(f"[red]Request with ID {request_id} not found[/red]")
        sys.exit(1)

    try:
        variables = _variables(storage, env_name)
    except ParseError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    click.echo(request_to_curl(request, variables))


if __name__ == "__main__":
    main()
