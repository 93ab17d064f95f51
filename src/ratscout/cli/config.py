"""CLI: ratscout config show|set|unset"""

import click
from rich.console import Console
from rich.table import Table

from ratscout import settings as settings_module
from ratscout.settings import DEFAULTS, load_config, save_config

console = Console()

SECRET_KEYS = {"dexcom_password", "owm_api_key", "ipgeo_api_key"}


def _mask(key: str, value: str) -> str:
    if key in SECRET_KEYS and value:
        return "*" * 8
    return value


@click.group()
def config():
    """Settings commands."""


@config.command("show")
def config_show():
    """Show all settings (secrets masked)."""
    cfg = load_config()
    table = Table(title=str(settings_module.CONFIG_FILE))
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_column("Source", style="dim")
    for key, default in DEFAULTS.items():
        if key in cfg:
            table.add_row(key, _mask(key, str(cfg[key])), "config")
        else:
            table.add_row(key, default, "default")
    console.print(table)


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set KEY to VALUE."""
    if key not in DEFAULTS:
        raise click.BadParameter(f"Unknown setting {key!r}", param_hint="KEY")
    cfg = load_config()
    cfg[key] = value
    save_config(cfg)
    console.print(f"[green]{key} saved.[/green]")


@config.command("unset")
@click.argument("key")
def config_unset(key: str):
    """Remove KEY, falling back to its default."""
    cfg = load_config()
    if cfg.pop(key, None) is None:
        console.print(f"[yellow]{key} was not set.[/yellow]")
        return
    save_config(cfg)
    console.print(f"[green]{key} removed.[/green]")
