"""
Rat Scout CLI — `ratscout` command.

Commands:
  ratscout config <cmd>     Show / edit settings
  ratscout fetch            Run one aggregation against the live upstreams
  ratscout simulate         Phone + watch over an in-process link
  ratscout host --url URL   Serve the phone side over a Socket.IO relay
"""

import asyncio
import logging

try:
    import click
    from rich.console import Console
except ImportError:
    raise SystemExit("CLI requires extras: pip install ratscout[cli]")

from ratscout import __version__

console = Console()


def _run(coro):
    return asyncio.run(coro)


@click.group()
@click.version_option(__version__)
@click.option("--log-level", default="WARNING", show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
def main(log_level: str):
    """Rat Scout — glucose, weather and astronomy for your watch."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Register subcommands from separate modules
from ratscout.cli.config import config
from ratscout.cli.sync import fetch_cmd, host_cmd, simulate_cmd

main.add_command(config)
main.add_command(fetch_cmd)
main.add_command(simulate_cmd)
main.add_command(host_cmd)


if __name__ == "__main__":
    main()
