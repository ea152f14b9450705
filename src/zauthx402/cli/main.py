"""
zauthx402 CLI — `zauth` command.

Commands:
  zauth config set|show     Stored API key and endpoint
  zauth decode <header>     Decode an X-PAYMENT header
  zauth validate <file>     Score a captured response body
  zauth refunds <cmd>       Listen for, list and summarise refunds
"""

import asyncio
import json
from pathlib import Path

try:
    import click
    from rich.console import Console
    from rich.table import Table
except ImportError:
    raise SystemExit("CLI requires extras: pip install zauthx402[cli]")

from zauthx402.config import DEFAULT_API_ENDPOINT, ValidationConfig, ZauthConfig
from zauthx402.payment_header import decode_payment_header
from zauthx402.validator import validate_response

console = Console()
CONFIG_FILE = Path.home() / ".zauth" / "config.json"
CONFIG_KEYS = ("api_key", "api_endpoint", "environment", "refund_private_key", "solana_private_key")
SECRET_KEYS = {"api_key", "refund_private_key", "solana_private_key"}


def _load_config() -> dict:
    try:
        return json.loads(CONFIG_FILE.read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        return {}


def _save_config(cfg: dict) -> None:
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_FILE.write_text(json.dumps(cfg, indent=2))


def _build_config(**overrides) -> ZauthConfig:
    """Stored settings over environment defaults; exits when no API key is known."""
    cfg = _load_config()
    config = ZauthConfig()
    updates = {k: cfg[k] for k in ("api_key", "api_endpoint", "environment") if cfg.get(k)}
    config = config.model_copy(update=updates)

    refund_updates = {}
    if cfg.get("refund_private_key"):
        refund_updates["private_key"] = cfg["refund_private_key"]
    if cfg.get("solana_private_key"):
        refund_updates["solana_private_key"] = cfg["solana_private_key"]
    refund_updates.update(overrides)
    if refund_updates:
        config = config.model_copy(update={"refund": config.refund.model_copy(update=refund_updates)})

    if not config.api_key:
        console.print("[red]No API key. Run `zauth config set api_key <key>` or set ZAUTH_API_KEY.[/red]")
        raise SystemExit(1)
    return config


def _run(coro):
    return asyncio.run(coro)


def _mask(value: str) -> str:
    return value[:4] + "…" + value[-4:] if len(value) > 12 else "****"


@click.group()
@click.version_option("0.1.0")
def main():
    """zauthx402 CLI — x402 response monitoring and refunds."""


@main.group()
def config():
    """Stored configuration (~/.zauth/config.json)."""


@config.command("set")
@click.argument("key", type=click.Choice(CONFIG_KEYS))
@click.argument("value")
def config_set(key, value):
    """Store a configuration value."""
    cfg = _load_config()
    cfg[key] = value
    _save_config(cfg)
    console.print(f"[green]Saved {key}.[/green]")


@config.command("show")
def config_show():
    """Show stored configuration with secrets masked."""
    cfg = _load_config()
    table = Table(title=str(CONFIG_FILE))
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key in CONFIG_KEYS:
        value = cfg.get(key)
        if value and key in SECRET_KEYS:
            value = _mask(value)
        if key == "api_endpoint" and not value:
            value = f"[dim]{DEFAULT_API_ENDPOINT} (default)[/dim]"
        table.add_row(key, value or "[dim]-[/dim]")
    console.print(table)


@main.command("decode")
@click.argument("header")
def decode_cmd(header):
    """Decode an X-PAYMENT / Payment-Signature header."""
    decoded = decode_payment_header(header)
    if decoded is None:
        console.print("[red]Could not decode payment header.[/red]")
        raise SystemExit(1)
    click.echo(json.dumps(decoded.model_dump(), indent=2))


@main.command("validate")
@click.argument("file", type=click.File("r"))
@click.option("--status", "status_code", default=200, type=int, help="HTTP status of the captured response")
@click.option("--require", "required_fields", multiple=True, help="Field that must be present (repeatable)")
def validate_cmd(file, status_code, required_fields):
    """Score a captured response body (JSON or text)."""
    text = file.read()
    try:
        body = json.loads(text)
    except ValueError:
        body = text

    validation = ValidationConfig(required_fields=list(required_fields))
    result = validate_response(body, status_code, validation)

    colour = "green" if result.valid else "red"
    console.print(f"[{colour}]valid={result.valid}[/{colour}] score={result.meaningfulness_score:.2f}")
    table = Table()
    table.add_column("Check", style="bold")
    table.add_column("Passed")
    table.add_column("Message")
    for check in result.checks:
        table.add_row(check.name, "yes" if check.passed else "[red]no[/red]", check.message or "")
    console.print(table)
    if not result.valid:
        raise SystemExit(2)


from zauthx402.cli.refunds import refunds  # noqa: E402

main.add_command(refunds)


if __name__ == "__main__":
    main()
