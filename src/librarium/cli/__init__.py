# ABOUTME: CLI package for Librarium, built on Click.
# ABOUTME: Defines the root command group, configures logging, and registers subcommands.

import logging

import click
from rich.logging import RichHandler

from librarium.cli.commands import (
    convert_cmd,
    cover_cmd,
    import_cmd,
    info_cmd,
    inspect_cmd,
    ls_cmd,
    merge_cmd,
    rm_cmd,
    search_cmd,
)


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=False)],
    )


@click.group()
@click.version_option(package_name="librarium")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Show debug logging.")
def cli(verbose: bool) -> None:
    """Librarium - ingest, convert, and merge books into one library."""
    configure_logging(verbose)


cli.add_command(import_cmd.import_command)
cli.add_command(inspect_cmd.inspect)
cli.add_command(info_cmd.info)
cli.add_command(ls_cmd.ls)
cli.add_command(search_cmd.search)
cli.add_command(convert_cmd.convert)
cli.add_command(merge_cmd.merge)
cli.add_command(cover_cmd.cover)
cli.add_command(rm_cmd.rm)
