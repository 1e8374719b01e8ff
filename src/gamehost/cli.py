import json
import sys
from pathlib import Path

import click
import halo
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from click.shell_completion import CompletionItem

from gamehost.config import load_config, starter_config
from gamehost.control.provisioner import Provisioner
from gamehost.errors import ActivationTimeout
from gamehost.games.registry import get_game, list_games

console = Console()

PROGRESS_MODE = "steps"  # "steps", "inline", or "plain"


class StepProgress:
    """Step-by-step progress display.

    Modes:
        "steps": halo bouncingBar spinner, checkmark/cross per step on new lines
        "inline": single-line replacement
        "plain": just print each message, no spinner/ANSI (for non-TTY / debug)
    """

    def __init__(self, mode="steps"):
        self._mode = mode
        self._spinner = None
        self._last_message = None

    def update(self, message):
        if self._mode == "steps":
            if self._spinner:
                self._spinner.succeed()
            self._spinner = halo.Halo(text=message, spinner="bouncingBar")
            self._spinner.start()
        elif self._mode == "inline":
            print(f"\r\033[K{message}", end="", flush=True)
            self._last_message = message
        else:
            print(message)

    def finish(self):
        if self._mode == "steps":
            if self._spinner:
                self._spinner.succeed()
                self._spinner = None
        elif self._mode == "inline":
            if self._last_message:
                print()
                self._last_message = None

    def fail(self, message=None):
        if self._mode == "steps":
            if self._spinner:
                self._spinner.fail(message)
                self._spinner = None
        elif self._mode == "inline":
            print(f"\r\033[K{message or 'Failed'}")
        else:
            print(message or "Failed")


def _progress_mode(ctx):
    debug = ctx.obj.get("debug", False) if ctx.obj else False
    if debug:
        return "plain"
    if not sys.stderr.isatty():
        return "plain"
    return PROGRESS_MODE


def _complete_deployment(ctx, param, incomplete):
    from gamehost.control.state import DeploymentState
    state = DeploymentState()
    return [
        CompletionItem(r.name, help=f"{r.game} - {r.status}")
        for r in state.list_all()
        if r.name.startswith(incomplete) or r.id.startswith(incomplete)
    ]


def _complete_game(ctx, param, incomplete):
    _load_games()
    return [
        CompletionItem(g.name, help=g.display_name)
        for g in list_games()
        if g.name.startswith(incomplete)
    ]


def _make_provisioner(ctx, **kwargs):
    """Create a Provisioner with debug wiring from the CLI context."""
    debug = ctx.obj.get("debug", False) if ctx.obj else False
    p = Provisioner(debug=debug, **kwargs)
    if debug:
        p.on_debug = lambda msg: console.log(f"[dim]{msg}[/]")
    return p


def _run_step(ctx, provisioner, fn, *args, **kwargs):
    """Run a provisioner call behind a progress display; exit non-zero on failure."""
    progress = StepProgress(mode=_progress_mode(ctx))
    provisioner.on_status = progress.update
    try:
        result = fn(*args, **kwargs)
        progress.finish()
    except KeyboardInterrupt:
        progress.fail("Interrupted")
        console.print("\n[yellow]Interrupted.[/]")
        raise SystemExit(130)
    except Exception as e:
        progress.fail(str(e))
        console.print(f"[bold red]Error:[/] {e}")
        raise SystemExit(1)
    return result


class HelpfulCommand(click.Command):
    """Show full help text when a command is invoked incorrectly."""

    def parse_args(self, ctx, args):
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as e:
            click.echo(ctx.get_help())
            click.echo()
            console.print(f"[bold red]Error:[/] {e.format_message()}")
            ctx.exit(2)


class HelpfulGroup(click.Group):
    command_class = HelpfulCommand


def _load_games():
    """Import all game modules to trigger registration."""
    import gamehost.games.satisfactory  # noqa: F401


@click.group(cls=HelpfulGroup)
@click.version_option(version="0.1.0", prog_name="gamehost")
@click.option("--debug", is_flag=True, help="Show resolved resources and plain progress output")
@click.pass_context
def cli(ctx, debug):
    """gamehost - Run a self-hosted game server on AWS that sleeps when nobody plays."""
    _load_games()
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.argument("shell", type=click.Choice(["bash", "zsh", "fish"]))
def completion(shell):
    """Generate shell completion script."""
    from click.shell_completion import get_completion_class
    comp_cls = get_completion_class(shell)
    comp = comp_cls(cli, {}, "gamehost", "_GAMEHOST_COMPLETE")
    click.echo(comp.source())


@cli.command()
def games():
    """List supported games."""
    all_games = list_games()
    if not all_games:
        click.echo("No games registered.")
        return

    table = Table(title="Supported Games")
    table.add_column("Name", style="cyan")
    table.add_column("Display Name", style="green")
    table.add_column("Instance Type", style="magenta")
    table.add_column("Disk (GB)")
    table.add_column("Ports")

    for g in sorted(all_games, key=lambda x: x.name):
        ports = ", ".join(f"{p.name}={p.port}/{p.protocol}" for p in g.ports)
        table.add_row(g.name, g.display_name, g.default_instance_type, str(g.disk_gb), ports)

    console.print(table)


@cli.command()
@click.argument("game_name", shell_complete=_complete_game)
@click.option("--output", "-o", default=None, help="Config file to write (default: GAME.json)")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init(game_name, output, force):
    """Write a starter deployment config for a game."""
    game = get_game(game_name)
    if not game:
        console.print(f"[red]Unknown game: {game_name}[/]")
        raise SystemExit(1)
    path = Path(output or f"{game.name}.json")
    if path.exists() and not force:
        console.print(f"[red]{path} already exists (use --force to overwrite)[/]")
        raise SystemExit(1)
    path.write_text(json.dumps(starter_config(game), indent=2) + "\n")
    console.print(f"[green]Wrote {path}[/]")


@cli.command()
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def deploy(ctx, config_file):
    """Provision or update a game server from a config file."""
    try:
        config = load_config(config_file)
    except ValueError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise SystemExit(1)

    provisioner = _make_provisioner(ctx)
    record = _run_step(ctx, provisioner, provisioner.deploy, config)

    result_lines = [
        f"[bold]ID:[/]          {record.id}",
        f"[bold]Name:[/]        {record.name}",
        f"[bold]Instance:[/]    {record.instance_id}",
        f"[bold]Public IP:[/]   {record.public_ip}",
        f"[bold]Save store:[/]  {record.save_store}",
    ]
    if record.save_store_owned:
        result_lines.append(
            "[dim]Set save_store.name to this bucket to keep saves across a fresh deployment.[/]"
        )
    if record.activation_enabled:
        result_lines.append(f"[bold]Wake up:[/]     gamehost wake {record.name}")
        if record.activation_url:
            result_lines.append(f"[bold]Start URL:[/]   POST {record.activation_url}")
    console.print(Panel("\n".join(result_lines), title="[green]Server Deployed[/]", border_style="green"))


@cli.command("list")
def list_deployments():
    """List deployments."""
    provisioner = Provisioner()
    records = provisioner.state.list_all()
    if not records:
        console.print("No deployments.")
        return

    table = Table(title="Deployments")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Game", style="yellow")
    table.add_column("Public IP", style="magenta")
    table.add_column("Region")
    table.add_column("Status")

    for r in records:
        table.add_row(r.id, r.name, r.game, r.public_ip, r.region, r.status)

    console.print(table)


@cli.command()
@click.argument("deployment", shell_complete=_complete_deployment)
def info(deployment):
    """Show details for a deployment."""
    provisioner = Provisioner()
    try:
        record = provisioner.refresh(deployment)
    except ValueError:
        console.print(f"[red]Deployment not found: {deployment}[/]")
        raise SystemExit(1)

    console.print(f"[bold]Deployment: {record.name}[/]")
    console.print(f"  ID:              {record.id}")
    console.print(f"  Game:            {record.game}")
    console.print(f"  Instance ID:     {record.instance_id}")
    console.print(f"  Region:          {record.region}")
    console.print(f"  Public IP:       {record.public_ip}")
    console.print(f"  Status:          {record.status}")
    console.print(f"  VPC / Subnet:    {record.vpc_id} / {record.subnet_id}")
    console.print(f"  Security Group:  {record.security_group_id}")
    console.print(f"  Save Store:      {record.save_store} ({'owned' if record.save_store_owned else 'adopted'})")
    console.print(f"  Activation:      {'enabled' if record.activation_enabled else 'disabled'}")
    if record.activation_url:
        console.print(f"  Start URL:       {record.activation_url}")
    console.print(f"  Idle Shutdown:   {record.idle_threshold_minutes}m + {record.idle_grace_minutes}m grace")
    console.print(f"  Created:         {record.created_at}")


@cli.command()
@click.argument("deployment", shell_complete=_complete_deployment)
def outputs(deployment):
    """Print deployment outputs as JSON."""
    provisioner = Provisioner()
    record = provisioner.state.get_by_name_or_id(deployment)
    if not record:
        console.print(f"[red]Deployment not found: {deployment}[/]")
        raise SystemExit(1)
    click.echo(json.dumps(record.outputs(), indent=2))


@cli.command()
@click.argument("deployment", shell_complete=_complete_deployment)
@click.pass_context
def wake(ctx, deployment):
    """Start a stopped server through its activation gateway."""
    provisioner = _make_provisioner(ctx)
    progress = StepProgress(mode=_progress_mode(ctx))
    provisioner.on_status = progress.update
    try:
        result = provisioner.wake(deployment)
        progress.finish()
    except ActivationTimeout as e:
        progress.fail("Timed out")
        console.print(f"[yellow]{e}[/]")
        raise SystemExit(1)
    except Exception as e:
        progress.fail(str(e))
        console.print(f"[bold red]Error:[/] {e}")
        raise SystemExit(1)
    if result.retryable:
        console.print(f"[yellow]Not started yet: {result.reason}.[/]")
        raise SystemExit(1)
    if not result.accepted:
        console.print(f"[red]Denied: {result.reason}[/]")
        raise SystemExit(1)
    if result.start_issued:
        console.print(f"[green]Start requested for {result.instance_id}.[/]")
    else:
        console.print(f"[green]Server is {result.reason}.[/]")


@cli.command()
@click.argument("deployment", shell_complete=_complete_deployment)
@click.pass_context
def stop(ctx, deployment):
    """Stop the server instance (storage and address are kept)."""
    provisioner = _make_provisioner(ctx)
    _run_step(ctx, provisioner, provisioner.stop, deployment)
    console.print(f"[green]Deployment {deployment} stopped.[/]")


@cli.command()
@click.argument("deployment", shell_complete=_complete_deployment)
@click.option("--interval", default=60, type=int, help="Seconds between activity checks")
@click.pass_context
def watch(ctx, deployment, interval):
    """Stop the server automatically once nobody is playing."""
    provisioner = _make_provisioner(ctx)
    provisioner.on_status = lambda msg: console.print(msg)
    console.print(f"Watching {deployment} (Ctrl-C to stop)")
    try:
        provisioner.watch(
            deployment, interval=float(interval),
            on_transition=lambda old, new: console.print(f"[cyan]{old.value} -> {new.value}[/]"),
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped watching.[/]")
    except Exception as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise SystemExit(1)


@cli.command()
@click.argument("deployment", shell_complete=_complete_deployment)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def destroy(ctx, deployment, yes):
    """Tear down a deployment. The save store and root volume are kept."""
    provisioner = _make_provisioner(ctx)
    record = provisioner.state.get_by_name_or_id(deployment)
    if not record:
        console.print(f"[red]Deployment not found: {deployment}[/]")
        raise SystemExit(1)

    if not yes:
        click.confirm(f"Destroy deployment {record.name} ({record.id})?", abort=True)

    _run_step(ctx, provisioner, provisioner.destroy, record.id)
    console.print(f"[green]Deployment {record.name} destroyed.[/]")
    console.print(f"Save store [bold]{record.save_store}[/] was kept.")
