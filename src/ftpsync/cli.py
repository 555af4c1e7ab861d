"""CLI entry point for ftpsync.

Commands:
    ftpsync ls [PATH]            # List a remote directory
    ftpsync get REMOTE LOCAL     # Download a file
    ftpsync put LOCAL REMOTE     # Upload a file
    ftpsync rm PATH [--dir]      # Delete a file or empty directory
    ftpsync mv OLD NEW           # Rename a remote file
    ftpsync mkdir PATH           # Create a remote directory
    ftpsync chmod MODE PATH      # Change remote permissions
    ftpsync stat PATH            # Size and modification time
    ftpsync config init|show     # Manage configuration
    ftpsync trust list|remove    # Manage trusted certificates
"""

import logging

import click

from ftpsync import __version__
from ftpsync.click_group import FtpsyncGroup
from ftpsync.commands import (
    chmod,
    config_group,
    get,
    ls,
    mkdir,
    mv,
    put,
    rm,
    stat,
    trust_group,
)


@click.group(
    cls=FtpsyncGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)
@click.option("--config", help="Config file path", type=click.Path())
@click.option("--verbose", "-v", is_flag=True, help="Show debug output")
@click.pass_context
@click.version_option(version=__version__)
def main(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """ftpsync - FTP/FTPS file transfer with trust-on-first-use certificates.

    \b
    CONFIGURATION:
        Config file: ~/.ftpsync/config.toml
        Password:    FTPSYNC_PASSWORD environment variable, or prompted

    For help on any command: ftpsync <command> --help
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")

    ctx.ensure_object(dict)
    ctx.obj["config"] = config

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)


main.add_command(ls)
main.add_command(get)
main.add_command(put)
main.add_command(rm)
main.add_command(mv)
main.add_command(mkdir)
main.add_command(chmod)
main.add_command(stat)
main.add_command(config_group)
main.add_command(trust_group)


if __name__ == "__main__":
    main()
