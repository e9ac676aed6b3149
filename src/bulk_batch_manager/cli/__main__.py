"""
CLI entry point for Bulk Batch Manager (`bulkbm`).

Logging is configured and the .env file loaded before the command group is
imported, so messages emitted while loading credentials are not lost.
"""

import sys
import logging


def main():
    """Run the bulkbm command group."""
    verbose = any(flag in sys.argv for flag in ('-v', '--verbose'))
    quiet = any(flag in sys.argv for flag in ('-q', '--quiet'))

    from .utils import setup_logging
    from ..core.utils.environment import setup_environment, validate_required_env_vars

    setup_logging(verbose=verbose, quiet=quiet)
    setup_environment(verbose=verbose)
    missing = validate_required_env_vars()
    if missing:
        logging.debug(f"Not set yet: {', '.join(missing)}")

    from .cli import cli
    try:
        cli()
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(130)  # Standard exit code for SIGINT


if __name__ == '__main__':
    main()
