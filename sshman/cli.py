from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

import typer
from InquirerPy import inquirer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .errors import ConnectionFailedError, InvalidNameError, ProbeError, RegistryError
from .models import AuthMethod, Server
from .settings import PERSISTED_KEYS, AppConfig, init_config, load_settings, set_setting
from .ssh import connect, has_ssh, probe_connection
from .storage import Registry
from .validation import check_name, validate_name


def find_default_ssh_key() -> str | None:
    """Find default SSH key in ~/.ssh/."""
    ssh_dir = Path.home() / ".ssh"
    if not ssh_dir.exists():
        return None

    # Priority: ed25519 > rsa > ecdsa
    for key_name in ["id_ed25519", "id_rsa", "id_ecdsa"]:
        key_path = ssh_dir / key_name
        if key_path.exists():
            return str(key_path)
    return None


class OrderCommands(typer.core.TyperGroup):
    """Custom group to sort commands alphabetically in help."""

    def list_commands(self, ctx):
        return sorted(super().list_commands(ctx))


app = typer.Typer(
    help="sshman: keep a registry of SSH servers and test connections to them.",
    cls=OrderCommands,
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()


@dataclass
class State:
    cfg: AppConfig
    registry: Registry


def configure_logging(cfg: AppConfig) -> None:
    level = logging.DEBUG if cfg.debug else getattr(logging, cfg.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False, show_time=False)],
        force=True,
    )


@app.callback()
def main_callback(ctx: typer.Context) -> None:
    cfg = AppConfig.from_env()
    created = init_config(cfg)
    cfg = load_settings(cfg)
    configure_logging(cfg)
    console.no_color = not cfg.color_output
    if created:
        console.print(f"[dim]Created default config: {cfg.config_file}[/dim]")
    ctx.obj = State(cfg=cfg, registry=Registry(cfg.env_file))


def _cancelled() -> typer.Exit:
    console.print("\n[dim]Cancelled.[/dim]")
    return typer.Exit(0)


def _select_server(registry: Registry, message: str) -> Server:
    """Let the user pick a server interactively."""
    servers = registry.servers()
    if not servers:
        console.print("[yellow]No servers configured. Add one: sshman add[/yellow]")
        raise typer.Exit(1)

    try:
        selected = inquirer.select(
            message=message,
            choices=[s.display() for s in servers],
            cycle=True,
            vi_mode=False,
            instruction="↑↓ navigate, search by name",
        ).execute()
    except KeyboardInterrupt:
        raise _cancelled()

    for s in servers:
        if s.display() == selected:
            return s
    console.print("[red]Failed to identify server[/red]")
    raise typer.Exit(1)


def _resolve(state: State, query: str | None, message: str) -> Server:
    if query is None:
        return _select_server(state.registry, message)
    srv = state.registry.find(query)
    if not srv:
        console.print(f"[red]Server '{query}' not found[/red]")
        raise typer.Exit(1)
    return srv


def _prompt_name(name: str | None) -> str:
    if name is not None:
        try:
            return validate_name(name)
        except InvalidNameError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
    while True:
        name = typer.prompt("Server name (e.g., prod1, web-server)")
        problem = check_name(name)
        if problem is None:
            return name
        console.print(f"[red]{problem.value}[/red]")


def _prompt_auth(auth: AuthMethod | None) -> AuthMethod:
    if auth is not None:
        return auth
    try:
        choice = inquirer.select(
            message="Authentication method:",
            choices=["SSH Key", "Password"],
            cycle=True,
        ).execute()
    except KeyboardInterrupt:
        raise _cancelled()
    return AuthMethod.PASSWORD if choice == "Password" else AuthMethod.KEY


def _prompt_key_path(default: str | None = None) -> str:
    default = default or find_default_ssh_key() or str(Path.home() / ".ssh" / "id_rsa")
    return str(Path(typer.prompt("SSH key path", default=default)).expanduser())


def _run_probe(state: State, srv: Server, verbose: bool) -> bool:
    verbose = verbose or state.cfg.debug
    console.print(f"Testing connection to [bold]{srv.name}[/bold] ({srv.user}@{srv.host}:{srv.port})...")
    try:
        result = probe_connection(srv, timeout=state.cfg.connect_timeout, verbose=verbose)
    except ConnectionFailedError as e:
        console.print(f"[red]{e}[/red]")
        if e.details:
            console.print("[yellow]Debug output:[/yellow]")
            for line in e.details.splitlines():
                console.print(f"  {line}", markup=False)
        elif not verbose:
            console.print("[dim]Use --verbose or set SSH_MANAGER_DEBUG=1 to see detailed error output[/dim]")
        return False
    except ProbeError as e:
        console.print(f"[red]{e}[/red]")
        return False
    console.print(f"[green]Connection successful[/green] [dim]({result.elapsed_ms:.0f}ms)[/dim]")
    return True


@app.command("list", help="Show list of servers. Alias: ls")
@app.command("ls", hidden=True)
def list_servers(ctx: typer.Context) -> None:
    """Show list of servers."""
    state: State = ctx.obj
    try:
        servers = state.registry.servers()
    except RegistryError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    if not servers:
        console.print("[yellow]No servers configured. Add one: sshman add[/yellow]")
        return

    table = Table(title="SSH Servers")
    table.add_column("Name", style="bold")
    table.add_column("Host")
    table.add_column("User")
    table.add_column("Auth", justify="center", no_wrap=True)
    for s in servers:
        host_info = f"{s.host}:{s.port}"
        if s.description:
            host_info += f" ({s.description})"
        auth = {AuthMethod.KEY: "key", AuthMethod.PASSWORD: "pwd"}.get(s.auth_method, "---")
        table.add_row(s.name, host_info, s.user, auth)
    console.print(table)
    console.print(f"Total servers: {len(servers)}")


@app.command("add", help="Add a new server. Alias: a")
@app.command("a", hidden=True)
def add_server(
    ctx: typer.Context,
    name: str | None = typer.Option(None, help="Server name"),
    host: str | None = typer.Option(None, help="Host/IP address"),
    user: str | None = typer.Option(None, help="Username"),
    port: int | None = typer.Option(None, help="SSH port"),
    auth: AuthMethod | None = typer.Option(None, help="Authentication method"),
    key_path: str | None = typer.Option(None, help="Path to private key"),
    description: str | None = typer.Option(None, help="Description"),
    test: bool | None = typer.Option(None, "--test/--no-test", help="Test the connection after saving"),
):
    """Add a new server."""
    state: State = ctx.obj
    try:
        name = _prompt_name(name)
        if state.registry.exists(name):
            console.print(f"[red]Server '{name}' already exists[/red]")
            raise typer.Exit(1)
        host = host if host is not None else typer.prompt("Host/IP address")
        user = user if user is not None else typer.prompt("Username", default="root")
        port = port if port is not None else typer.prompt("Port", default=22, type=int)
        method = _prompt_auth(AuthMethod.KEY if auth is None and key_path else auth)
        if method is AuthMethod.PASSWORD:
            auth_value = typer.prompt("Password", hide_input=True, confirmation_prompt=True)
        else:
            auth_value = str(Path(key_path).expanduser()) if key_path else _prompt_key_path()
        if description is None:
            description = typer.prompt("Description (optional)", default="", show_default=False)

        state.registry.add(name, host, user, method, auth_value, port=port, description=description)
        console.print(f"[green]Server '{name}' added successfully[/green]")

        if test is None:
            test = typer.confirm("Test connection now?", default=True)
    except (KeyboardInterrupt, typer.Abort):
        raise _cancelled()
    except (RegistryError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if test:
        srv = state.registry.get_server(name)
        if not _run_probe(state, srv, verbose=False):
            raise typer.Exit(1)


@app.command("show", help="Show server details. Alias: info")
@app.command("info", hidden=True)
def show_server(ctx: typer.Context, query: str | None = typer.Argument(None, help="Name/partial name (optional)")):
    """Show server details."""
    state: State = ctx.obj
    srv = _resolve(state, query, "Select server to show:")

    table = Table(title=f"Server Details: {srv.name}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Host:", srv.host)
    table.add_row("User:", srv.user)
    table.add_row("Port:", str(srv.port))
    if srv.auth_method is AuthMethod.KEY:
        table.add_row("Auth Type:", "SSH Key")
        table.add_row("Key Path:", srv.key_path)
    elif srv.auth_method is AuthMethod.PASSWORD:
        table.add_row("Auth Type:", "Password")
        table.add_row("Password:", "********")
    else:
        table.add_row("Auth Type:", "Unknown")
    if srv.description:
        table.add_row("Description:", srv.description)
    if srv.default_dir:
        table.add_row("Default Dir:", srv.default_dir)
    console.print(table)


@app.command("edit", help="Edit a server. Alias: e")
@app.command("e", hidden=True)
def edit(ctx: typer.Context, query: str | None = typer.Argument(None, help="Name/partial name (optional)")):
    """Edit a server."""
    state: State = ctx.obj
    srv = _resolve(state, query, "Select server to edit:")

    try:
        host = typer.prompt("Host", default=srv.host)
        user = typer.prompt("Username", default=srv.user)
        port = typer.prompt("Port", default=srv.port, type=int)

        method = srv.auth_method or AuthMethod.KEY
        if typer.confirm("Change authentication method?", default=False):
            method = _prompt_auth(None)
        if method is AuthMethod.PASSWORD:
            auth_value = srv.password
            if not auth_value or typer.confirm("Change password?", default=False):
                auth_value = typer.prompt("New password", hide_input=True, confirmation_prompt=True)
        else:
            auth_value = _prompt_key_path(srv.key_path)

        description = typer.prompt("Description", default=srv.description or "", show_default=False)
        default_dir = typer.prompt("Default directory", default=srv.default_dir or "", show_default=False)

        state.registry.update(
            srv.name, host, user, method, auth_value, port=port, description=description, default_dir=default_dir
        )
        console.print(f"[green]Server '{srv.name}' updated successfully[/green]")
    except (KeyboardInterrupt, typer.Abort):
        raise _cancelled()
    except (RegistryError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@app.command("remove", help="Remove a server. Alias: rm")
@app.command("rm", hidden=True)
def remove(
    ctx: typer.Context,
    query: str | None = typer.Argument(None, help="Name/partial name (optional)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Don't ask for confirmation"),
):
    """Remove a server."""
    state: State = ctx.obj
    srv = _resolve(state, query, "Select server to remove:")

    try:
        if not yes:
            console.print(f"[yellow]This will remove server '{srv.name}' ({srv.host})[/yellow]")
            if not typer.confirm("Are you sure?", default=False):
                console.print("[dim]Removal cancelled.[/dim]")
                raise typer.Exit(1)
        state.registry.remove(srv.name)
        console.print(f"[green]Server '{srv.name}' removed successfully[/green]")
    except (KeyboardInterrupt, typer.Abort):
        raise _cancelled()
    except RegistryError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@app.command("test", help="Test SSH connection to a server. Alias: t")
@app.command("t", hidden=True)
def test_cmd(
    ctx: typer.Context,
    query: str | None = typer.Argument(None, help="Name/partial name (optional)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show ssh output on failure"),
):
    """Test SSH connection to a server."""
    state: State = ctx.obj
    srv = _resolve(state, query, "Select server to test:")
    if not _run_probe(state, srv, verbose):
        raise typer.Exit(1)


@app.command("connect", help="Connect to a server. Alias: c")
@app.command("c", hidden=True)
def connect_cmd(ctx: typer.Context, query: str | None = typer.Argument(None, help="Name/partial name (optional)")):
    """Connect to a server."""
    state: State = ctx.obj
    srv = _resolve(state, query, "Select server to connect:")
    if not srv.is_complete:
        console.print(f"[red]Server '{srv.name}' has incomplete configuration[/red]")
        raise typer.Exit(1)
    if not has_ssh():
        console.print("[red]SSH client not found.[/red] Install OpenSSH client via your package manager.")
        raise typer.Exit(127)
    console.print(f"[cyan]Connecting to {srv.user}@{srv.host}:{srv.port}...[/cyan]")
    raise typer.Exit(connect(srv))


@app.command("open", help="Open the servers file in your editor. Alias: o")
@app.command("o", hidden=True)
def open_file(ctx: typer.Context):
    """Open the servers file in the configured editor."""
    state: State = ctx.obj
    path = state.cfg.env_file
    if not path.exists():
        console.print(f"[red]Configuration file not found:[/red] {path}")
        raise typer.Exit(1)
    editor = state.cfg.default_editor
    console.print(f"Opening configuration in {editor}...")
    try:
        rc = subprocess.call([*shlex.split(editor), str(path)])  # noqa: S603
    except OSError as e:
        console.print(f"[red]Failed to start editor: {e}[/red]")
        raise typer.Exit(1)
    raise typer.Exit(rc)


@app.command("config", help="Show or change settings. Alias: cfg")
@app.command("cfg", hidden=True)
def config_cmd(
    ctx: typer.Context,
    key: str | None = typer.Argument(None, help="Setting name"),
    value: str | None = typer.Argument(None, help="New value"),
):
    """Show settings, or set KEY to VALUE in config.json."""
    state: State = ctx.obj
    cfg = state.cfg

    if key is None:
        table = Table(title="Settings")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        table.add_row("servers file", str(cfg.env_file))
        table.add_row("config file", str(cfg.config_file))
        for k, v in cfg.persisted().items():
            table.add_row(k, str(v))
        table.add_row("debug", str(cfg.debug))
        console.print(table)
        return

    if value is None:
        if key not in PERSISTED_KEYS:
            console.print(f"[red]Unknown setting: {key}[/red]")
            raise typer.Exit(1)
        console.print(str(cfg.persisted()[key]))
        return

    try:
        state.cfg = set_setting(cfg, key, value)
    except KeyError:
        console.print(f"[red]Unknown setting: {key}[/red]")
        raise typer.Exit(1)
    except ValidationError as e:
        console.print(f"[red]Invalid value for {key}: {e.errors()[0]['msg']}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Updated config: {key} = {value}[/green]")


def main():
    app()


if __name__ == "__main__":
    main()
