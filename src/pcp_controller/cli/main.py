"""
PCP controller CLI, the `pcpctl` command.

Commands:
  pcpctl inventory [pattern]       Identities associated with the broker
  pcpctl associated <identity>     Wait for an agent to associate
  pcpctl broker-status             Broker service state
  pcpctl run <target>...           Non-blocking action + status polling
"""

import asyncio
import logging

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install pcp-controller[cli]")

from pcp_controller.client import AsyncController
from pcp_controller.config import load_settings

console = Console()


def _get_client(ctx: click.Context) -> AsyncController:
    return AsyncController(settings=load_settings(ctx.obj.get("config")))


def _run(coro):
    return asyncio.run(coro)


@click.group()
@click.version_option("0.1.0")
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False),
              help="Settings file (default ~/.pcp/config.json)")
@click.option("-v", "--verbose", is_flag=True, help="Log bus traffic")
@click.pass_context
def main(ctx, config_path, verbose):
    """Talk to PCP agents through a PCP broker."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = config_path
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(message)s",
                            handlers=[RichHandler(console=console, show_path=False)])


# Register subcommands from separate modules
from pcp_controller.cli.inventory import inventory_cmd, associated_cmd, broker_status_cmd
from pcp_controller.cli.actions import run_cmd

main.add_command(inventory_cmd)
main.add_command(associated_cmd)
main.add_command(broker_status_cmd)
main.add_command(run_cmd)


if __name__ == "__main__":
    main()
