"""CLI: pcpctl inventory|associated|broker-status"""

import json

import click
from rich.console import Console
from rich.table import Table

from pcp_controller.errors import PCPControllerError

console = Console()


def _get_client(ctx):
    from pcp_controller.cli.main import _get_client
    return _get_client(ctx)


def _run(coro):
    from pcp_controller.cli.main import _run
    return _run(coro)


@click.command("inventory")
@click.argument("pattern", default="pcp://*/*")
@click.option("--json-output", "--json", is_flag=True)
@click.pass_context
def inventory_cmd(ctx, pattern, json_output):
    """List identities associated with the broker."""

    async def _inventory():
        async with _get_client(ctx) as client:
            return await client.inventory.query(pattern)

    try:
        uris = _run(_inventory())
    except PCPControllerError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)
    if json_output:
        click.echo(json.dumps(uris, indent=2))
        return
    table = Table(title=f"Inventory for {pattern} ({len(uris)} associated)")
    table.add_column("Identity", style="bold")
    for uri in sorted(uris):
        table.add_row(uri)
    console.print(table)


@click.command("associated")
@click.argument("identity")
@click.option("--retries", default=None, type=int, help="Polls before giving up (0 = check once)")
@click.option("--absent", is_flag=True, help="Wait for the identity to disappear instead")
@click.pass_context
def associated_cmd(ctx, identity, retries, absent):
    """Wait until IDENTITY is (or with --absent, is not) associated."""

    async def _check():
        async with _get_client(ctx) as client:
            if absent:
                return await client.inventory.is_not_associated(identity, retries)
            return await client.inventory.is_associated(identity, retries)

    try:
        with console.status(f"Checking {identity}..."):
            ok = _run(_check())
    except PCPControllerError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)
    wanted = "absent" if absent else "associated"
    if ok:
        console.print(f"[green]{identity} is {wanted}[/green]")
    else:
        console.print(f"[red]{identity} did not become {wanted}[/red]")
        raise SystemExit(1)


@click.command("broker-status")
@click.option("--wait", is_flag=True, help="Poll until the broker reports running")
@click.option("--retries", default=100, type=int, help="Polls before giving up with --wait")
@click.pass_context
def broker_status_cmd(ctx, wait, retries):
    """Show the broker service state."""

    async def _status():
        client = _get_client(ctx)
        try:
            if wait:
                await client.broker.wait_until_running(retries=retries)
            return await client.broker.get_state()
        finally:
            await client.broker.close()

    try:
        state = _run(_status())
    except PCPControllerError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)
    colour = "green" if state.value == "running" else "yellow"
    console.print(f"[{colour}]{state.value}[/{colour}]")
    if wait and state.value != "running":
        console.print("[red]Broker did not reach running[/red]")
        raise SystemExit(1)
