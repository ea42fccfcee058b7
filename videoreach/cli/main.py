"""
Main CLI entry point for VideoReach
"""

import click

from ..core.observability import configure_logging, setup_logfire
from .campaign import (
    cancel_command,
    estimate_command,
    import_recipients_command,
    process_command,
    reconcile_command,
    retry_command,
)


@click.group()
@click.version_option(version='0.1.0')
@click.option('--log-level', default='INFO', help='Logging level (DEBUG, INFO, WARNING, ERROR)')
def cli(log_level: str):
    """
    VideoReach - Personalized video campaign processing

    Generate personalization assets and render one video per recipient,
    in rate-limited batches.
    """
    configure_logging(log_level)
    setup_logfire()


# Register commands
cli.add_command(process_command)
cli.add_command(retry_command)
cli.add_command(estimate_command)
cli.add_command(reconcile_command)
cli.add_command(cancel_command)
cli.add_command(import_recipients_command)


if __name__ == '__main__':
    cli()
