"""Command-line interface for the pubsub shell."""

import asyncio
import logging
import shutil
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from pubsub_shell import __version__
from pubsub_shell.config import ShellConfig
from pubsub_shell.console import CommandConsole, stdin_lines
from pubsub_shell.errors import OperationError, StartupError
from pubsub_shell.node import NodeConfig, NodeLifecycle, build_node_config, repo_path_for
from pubsub_shell.output import ConsoleOutput
from pubsub_shell.ports import PortSet, allocate_ports
from pubsub_shell.pubsub import PubSubFacade
from pubsub_shell.sink import MessageSink

logger = logging.getLogger(__name__)


def setup_logging(debug: bool, timestamps: bool) -> None:
    fmt = "%(levelname)s %(name)s: %(message)s"
    if timestamps:
        fmt = "%(asctime)s " + fmt
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format=fmt,
        stream=sys.stderr,
    )


async def run_shell(config: NodeConfig, ports: PortSet, lifecycle: NodeLifecycle,
                    prompt: str = "> ") -> int:
    """
    Start the node, run the console and stop the node.

    Raises:
        StartupError: If the node cannot be started
    """
    click.echo("Starting IPFS node...")
    node = await lifecycle.start(config)

    click.echo("IPFS node is ready")
    click.echo(f"Repository path: {config.repo_path}")
    click.echo(f"Swarm port: {ports.swarm_port}")
    click.echo(f"WebSocket port: {ports.ws_port}")
    click.echo(f"API port: {ports.api_port}")
    click.echo(f"Gateway port: {ports.gateway_port}")

    identity = await node.id()
    click.echo(f"Node ID: {identity.id}")
    click.echo("Node addresses:")
    for addr in identity.addresses:
        click.echo(f"- {addr}")

    click.echo("\nConnecting to IPFS swarm...")
    try:
        peers = await node.swarm_peers()
        click.echo(f"Connected to {len(peers)} peers")
    except OperationError as e:
        click.echo(f"Failed to connect to swarm: {e.reason}", err=True)

    output = ConsoleOutput(prompt=prompt)
    facade = PubSubFacade(node, MessageSink(output))
    console = CommandConsole(node, facade, output)

    click.echo("")
    console.print_help()
    console.install_signal_handlers()
    try:
        return await console.run(stdin_lines())
    finally:
        console.remove_signal_handlers()
        # No-op unless the console ended without stopping the node
        await node.stop()


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """pubsub-shell - an interactive IPFS pubsub console."""
    pass


@cli.command()
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (default: ~/.pubsub-shell/pubsub-shell.conf)",
)
@click.option(
    "--repo-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding node repositories",
)
@click.option(
    "--ipfs-binary",
    default=None,
    help="Path to the ipfs executable",
)
@click.option(
    "--bootstrap",
    multiple=True,
    help="Bootstrap peer multiaddress (repeatable, replaces the defaults)",
)
@click.option(
    "--no-bootstrap",
    is_flag=True,
    help="Start without bootstrap peers",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug logging",
)
def start(
    config_path: Optional[Path],
    repo_dir: Optional[Path],
    ipfs_binary: Optional[str],
    bootstrap: Tuple[str, ...],
    no_bootstrap: bool,
    debug: bool,
) -> None:
    """Start a node and open the pubsub console."""
    settings = ShellConfig(str(config_path) if config_path else None)
    setup_logging(debug or settings.getboolean('debug'),
                  settings.getboolean('logtimestamps'))
    logger.debug(f"Settings: {settings.to_dict()}")

    if no_bootstrap:
        bootstrap_peers: Tuple[str, ...] = ()
    elif bootstrap:
        bootstrap_peers = bootstrap
    else:
        bootstrap_peers = tuple(settings.getlist('bootstrap'))

    ports = allocate_ports()
    node_config = build_node_config(
        ports,
        bootstrap=bootstrap_peers,
        repo_dir=str(repo_dir) if repo_dir else settings.get('repo_dir'),
        repo_prefix=settings.get('repo_prefix'),
        pubsub_router=settings.get('pubsub_router'),
    )
    lifecycle = NodeLifecycle(
        ipfs_binary=ipfs_binary or settings.get('ipfs_binary'),
        startup_timeout=settings.getfloat('startup_timeout'),
        request_timeout=settings.getfloat('request_timeout'),
        shutdown_timeout=settings.getfloat('shutdown_timeout'),
    )

    try:
        code = asyncio.run(run_shell(node_config, ports, lifecycle,
                                     prompt=settings.get('prompt')))
    except StartupError as e:
        click.echo(f"Failed to start node: {e}", err=True)
        sys.exit(1)
    sys.exit(code)


@cli.command()
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              default=None, help="Configuration file")
def ports(config_path: Optional[Path]) -> None:
    """Allocate a port set and show where its repository would live."""
    settings = ShellConfig(str(config_path) if config_path else None)
    port_set = allocate_ports()
    click.echo(f"Swarm port: {port_set.swarm_port}")
    click.echo(f"WebSocket port: {port_set.ws_port}")
    click.echo(f"API port: {port_set.api_port}")
    click.echo(f"Gateway port: {port_set.gateway_port}")
    repo = repo_path_for(port_set.swarm_port, settings.get('repo_prefix'),
                         settings.get('repo_dir'))
    click.echo(f"Repository path: {repo}")


@cli.command()
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              default=None, help="Configuration file")
@click.option("--repo-dir", type=click.Path(file_okay=False, path_type=Path),
              default=None, help="Directory holding node repositories")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def clean(config_path: Optional[Path], repo_dir: Optional[Path], yes: bool) -> None:
    """Remove repositories left behind by earlier sessions."""
    settings = ShellConfig(str(config_path) if config_path else None)
    base = repo_dir or Path(settings.get('repo_dir'))
    prefix = settings.get('repo_prefix')

    repos = sorted(
        p for p in base.glob(f"{prefix}-*")
        if p.is_dir() and p.name[len(prefix) + 1:].isdigit()
    )
    if not repos:
        click.echo("No repositories to remove")
        return

    for repo in repos:
        click.echo(f"- {repo}")
    if not yes and not click.confirm(f"Remove {len(repos)} repositories?"):
        click.echo("Aborted")
        return

    for repo in repos:
        shutil.rmtree(repo)
    click.echo(f"Removed {len(repos)} repositories")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
