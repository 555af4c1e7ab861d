"""Custom Click group with automatic help display on errors.

This module provides a custom Click Group class that automatically
displays contextual help when syntax errors occur.
"""

from typing import Any

import click


class FtpsyncGroup(click.Group):
    """Click group that shows the relevant help text on usage errors."""

    def invoke(self, ctx: click.Context) -> Any:
        """Handle subcommand usage errors with auto-help."""
        try:
            return super().invoke(ctx)
        except (
            click.exceptions.UsageError,
            click.exceptions.BadParameter,
            click.exceptions.MissingParameter,
        ) as e:
            click.echo(f"Error: {e.format_message()}", err=True)

            # Get the most specific context for help (the subcommand context if available)
            error_ctx = e.ctx if e.ctx else ctx

            click.echo("")
            click.echo(error_ctx.get_help())
            error_ctx.exit(e.exit_code)
            return None

    def resolve_command(
        self, ctx: click.Context, args: list[str]
    ) -> tuple[str | None, click.Command | None, list[str]]:
        """Override to show help when command is not found."""
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError as e:
            # Parameter errors are reported by invoke()
            if isinstance(e, click.exceptions.MissingParameter | click.exceptions.BadParameter):
                raise
            click.echo(f"Error: {e.format_message()}", err=True)
            click.echo("")
            click.echo(ctx.get_help())
            ctx.exit(2)
            return None, None, []


# Subgroups created with @main.group() also use FtpsyncGroup
FtpsyncGroup.group_class = FtpsyncGroup
