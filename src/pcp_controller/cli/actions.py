"""CLI: pcpctl run"""

import json

import click
from rich.console import Console
from rich.table import Table

from pcp_controller.errors import PCPControllerError
from pcp_controller.models.transaction import Transaction, TransactionStatus
from pcp_controller.rpc import DEFAULT_ACTION, DEFAULT_MODULE

console = Console()


def _get_client(ctx):
    from pcp_controller.cli.main import _get_client
    return _get_client(ctx)


def _run(coro):
    from pcp_controller.cli.main import _run
    return _run(coro)


@click.command("run")
@click.argument("targets", nargs=-1, required=True)
@click.option("--module", default=DEFAULT_MODULE, show_default=True)
@click.option("--action", default=DEFAULT_ACTION, show_default=True)
@click.option("--params", default="{}", help="Action params as JSON")
@click.option("--retries", default=None, type=int, help="Status queries per target")
@click.option("--interval", default=None, type=float, help="Seconds between status queries")
@click.option("--json-output", "--json", is_flag=True)
@click.pass_context
def run_cmd(ctx, targets, module, action, params, retries, interval, json_output):
    """Start a non-blocking action on TARGETS and wait for each outcome."""
    try:
        parsed_params = json.loads(params)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--params")

    async def _go():
        async with _get_client(ctx) as client:
            return await client.actions.run(list(targets), module, action, parsed_params,
                                            max_retries=retries, interval=interval)

    try:
        with console.status(f"Running {module} {action} on {len(targets)} target(s)..."):
            results = _run(_go())
    except PCPControllerError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    failed = [t for t, r in results.items()
              if not isinstance(r, Transaction) or r.status is not TransactionStatus.SUCCESS]

    if json_output:
        click.echo(json.dumps({
            t: r.model_dump(mode="json") if isinstance(r, Transaction) else {"error": r.code, "message": str(r)}
            for t, r in results.items()
        }, indent=2))
    else:
        table = Table(title=f"{module} {action}")
        table.add_column("Target", style="bold")
        table.add_column("Transaction")
        table.add_column("Status")
        table.add_column("Attempts")
        for target, result in results.items():
            if isinstance(result, Transaction):
                colour = "green" if result.status is TransactionStatus.SUCCESS else "red"
                table.add_row(target, result.id, f"[{colour}]{result.raw_status or result.status.value}[/{colour}]", str(result.attempts))
            else:
                table.add_row(target, "", f"[red]{result.code}[/red]", "")
        console.print(table)

    if failed:
        raise SystemExit(1)
