"""CLI: zauth refunds listen|pending|stats"""

import asyncio
import json
import signal

import click
from rich.console import Console
from rich.table import Table

from zauthx402.client import ZauthClient
from zauthx402.models.refund import ExecutedRefund, RefundFailure

console = Console()


def _build_config(**overrides):
    from zauthx402.cli.main import _build_config
    return _build_config(**overrides)


def _run(coro):
    from zauthx402.cli.main import _run
    return _run(coro)


@click.group()
def refunds():
    """Refund execution and history."""


@refunds.command("listen")
@click.option("--max-refund", "max_refund_usd", default=None, type=float, help="Per-refund maximum in USD")
@click.option("--daily-cap", "daily_cap_usd", default=None, type=float, help="Daily cap in USD")
@click.option("--monthly-cap", "monthly_cap_usd", default=None, type=float, help="Monthly cap in USD")
def refunds_listen(max_refund_usd, daily_cap_usd, monthly_cap_usd):
    """Connect to the refund channel and pay out refunds until interrupted."""

    def on_refund(refund: ExecutedRefund) -> None:
        console.print(
            f"[green]Refunded {refund.amount_usd:.2f} USD[/green] to {refund.recipient} "
            f"on {refund.network} ({refund.tx_hash})"
        )

    def on_refund_error(failure: RefundFailure) -> None:
        tag = "will retry" if failure.retryable else "rejected"
        console.print(f"[red]Refund {failure.refund_id} failed ({tag}):[/red] {failure.error}")

    overrides = {"enabled": True, "on_refund": on_refund, "on_refund_error": on_refund_error}
    if max_refund_usd is not None:
        overrides["max_refund_usd"] = max_refund_usd
    if daily_cap_usd is not None:
        overrides["daily_cap_usd"] = daily_cap_usd
    if monthly_cap_usd is not None:
        overrides["monthly_cap_usd"] = monthly_cap_usd

    config = _build_config(**overrides)
    if not config.refund.has_signer:
        console.print("[red]No refund signer configured. Set ZAUTH_REFUND_PRIVATE_KEY "
                      "or ZAUTH_SOLANA_PRIVATE_KEY.[/red]")
        raise SystemExit(1)

    async def _listen():
        client = ZauthClient(config)
        try:
            channel = await client.start_refunds()
            if channel is None:
                return

            stop = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, stop.set)
                except NotImplementedError:
                    pass
            console.print(f"Listening on {channel.url.split('?')[0]} (Ctrl-C to stop)")
            await stop.wait()
        finally:
            with console.status("Shutting down..."):
                await client.shutdown()

    _run(_listen())


@refunds.command("pending")
@click.option("--limit", default=10, type=int)
@click.option("--json-output", "--json", is_flag=True)
def refunds_pending(limit, json_output):
    """List refunds approved by the service and waiting for execution."""

    config = _build_config()

    async def _pending():
        client = ZauthClient(config)
        try:
            result = await client.get_pending_refunds(limit=limit)
        finally:
            await client.shutdown()
        if json_output:
            click.echo(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2))
            return
        table = Table(title=f"Pending refunds ({result.total} total)")
        table.add_column("ID", style="bold")
        table.add_column("URL")
        table.add_column("Network")
        table.add_column("USD", justify="right")
        table.add_column("Reason")
        for r in result.refunds:
            table.add_row(r.id, r.url, r.network, f"{r.amount_usd:.2f}", getattr(r.reason, "value", r.reason))
        console.print(table)
        stats = result.stats
        console.print(
            f"Today: {stats.today_refunded_cents / 100:.2f} USD  "
            f"Month: {stats.month_refunded_cents / 100:.2f} USD"
        )

    _run(_pending())


@refunds.command("stats")
@click.option("--days", default=30, type=int)
@click.option("--json-output", "--json", is_flag=True)
def refunds_stats(days, json_output):
    """Refund totals for the last N days."""

    config = _build_config()

    async def _stats():
        client = ZauthClient(config)
        try:
            stats = await client.get_refund_stats(days=days)
        finally:
            await client.shutdown()
        if json_output:
            click.echo(json.dumps(stats.model_dump(mode="json", by_alias=True), indent=2))
            return
        console.print(
            f"[bold]{stats.total_refunds}[/bold] refunds, "
            f"[bold]{stats.total_amount_cents / 100:.2f} USD[/bold] in the last {days} days"
        )
        if stats.by_reason:
            table = Table(title="By reason")
            table.add_column("Reason", style="bold")
            table.add_column("Count", justify="right")
            for reason, count in sorted(stats.by_reason.items(), key=lambda kv: -kv[1]):
                table.add_row(reason, str(count))
            console.print(table)

    _run(_stats())
