# -*- coding: utf-8 -*-

import logging
import traceback
from pathlib import Path

import click

from ..core.errors import AuthenticationFailed
from ..core.bulk.manager import BulkBatchManager
from ..core.bulk.polling import PollingPolicy
from ..core.utils.clients import create_bulk_client
from ..core.utils.environment import validate_required_env_vars
from ..core.utils.registry import get_registry


def setup_logging(verbose=False, quiet=False):
    """Configure logging for CLI execution."""
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    # Configure root logger
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True  # Override any existing configuration
    )

    # Reduce noise from external libraries in non-verbose mode
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    if verbose:
        logger = logging.getLogger(__name__)
        logger.debug("CLI logging setup completed")


def _validate_positive_integer_callback(ctx, param, value):
    """Validate that the provided value is a positive integer."""
    if value is not None and value <= 0:
        raise click.BadParameter("Value must be a positive integer.")
    return value


def _validate_positive_number_callback(ctx, param, value):
    if value is not None and value <= 0:
        raise click.BadParameter("Value must be a positive number.")
    return value


def polling_options(func):
    """Attach the back-off policy options shared by `run` and `track`."""
    options = [
        click.option(
            '--initial-delay', default=1.0, type=float, show_default=True,
            callback=_validate_positive_number_callback,
            help='Seconds to wait after the first polling round.'
        ),
        click.option(
            '--growth-factor', default=2.0, type=click.FloatRange(min=1.0), show_default=True,
            help='Multiplier applied to the delay after each round.'
        ),
        click.option(
            '--max-delay', default=None, type=float,
            callback=_validate_positive_number_callback,
            help='Upper bound (seconds) for a single delay. Unbounded by default.'
        ),
        click.option(
            '--timeout', default=None, type=float,
            callback=_validate_positive_number_callback,
            help='Give up polling after this many seconds. No deadline by default.'
        ),
        click.option(
            '--max-query-failures', default=None, type=int,
            callback=_validate_positive_integer_callback,
            help=('Consecutive failed status checks tolerated per batch before '
                  'giving up on it. Unlimited by default.')
        ),
        click.option(
            '--n-jobs', default=1, type=int,
            help='Number of concurrent status checks per round. -1 for the maximum (8).'
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_policy(initial_delay, growth_factor, max_delay, timeout, max_query_failures):
    return PollingPolicy(
        initial_delay=initial_delay,
        growth_factor=growth_factor,
        max_delay=max_delay,
        timeout=timeout,
        max_query_failures=max_query_failures,
    )


def _create_client(ctx):
    """Create an authenticated Bulk API client or exit with an error."""
    missing_vars = validate_required_env_vars()
    if missing_vars:
        logging.error(f"Missing required environment variables: {missing_vars}")
        logging.info("Please set these environment variables or create a "
                     ".env file at the repo root directory with:")
        for var in missing_vars:
            logging.info(f"  {var}=your_value_here")
        raise SystemExit(1)

    try:
        return create_bulk_client(is_sandbox=ctx.obj.get('is_sandbox'))
    except (ValueError, AuthenticationFailed) as e:
        logging.error(f"Error creating Bulk API client: {e}")
        raise SystemExit(1)


def _load_manager(ctx, client, **kwargs):
    """Load the manager of the run selected with --run-name."""
    return BulkBatchManager.load(client, ctx.obj['base_folder'], **kwargs)


def _resolve_registered_base_folder(run_name):
    registry = get_registry()
    base_folder = registry.get_base_folder(run_name)
    if base_folder is None:
        logging.error(f"No state found for run '{run_name}'. "
                      f"Please run 'bulkbm --run-name {run_name} submit ...' "
                      "first, or use 'bulkbm list-runs' to see "
                      "available runs.")
        raise SystemExit(1)
    return base_folder


def _default_base_folder(run_name):
    return str(Path.cwd() / "bulk_runs" / run_name)


def _echo_report(lines):
    for line in lines:
        click.echo(line)


def print_error_chain(error):
    """Print an error and each of its causes: message followed by traceback."""
    seen = set()
    current = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        click.echo(f"{type(current).__name__}: {current}")
        click.echo("".join(traceback.format_tb(current.__traceback__)).rstrip())
        current = current.__cause__ or current.__context__
