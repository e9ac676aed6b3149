# -*- coding: utf-8 -*-

"""
Loading of Salesforce credentials from .env files.
"""

import os
import logging
from pathlib import Path
from typing import Iterator, Optional

import dotenv

REQUIRED_ENV_VARS = (
    'SF_CONSUMER_KEY',
    'SF_CONSUMER_SECRET',
    'SF_USERNAME',
    'SF_PASSWORD',
)
ENV_FILE_NAMES = ('.env.local', '.env')


def _candidate_env_files() -> Iterator[Path]:
    # Working directory first, then the repository root (src/ layout)
    roots = [Path.cwd(), Path(__file__).resolve().parents[4]]
    seen = set()
    for root in roots:
        for name in ENV_FILE_NAMES:
            path = root / name
            if path not in seen:
                seen.add(path)
                yield path


def load_environment_variables(env_file: Optional[str] = None, verbose: bool = False) -> Optional[Path]:
    """
    Load variables from a .env file into the process environment.

    An explicit `env_file` overrides variables already set. Otherwise the
    first existing file among ./.env.local, ./.env and the same names at the
    repository root is loaded without overriding anything.

    Returns:
        Path | None: The loaded file, None if no file was found.
    """
    if env_file:
        path = Path(env_file)
        if not path.exists():
            logging.warning(f"Specified .env file not found: {path}")
            return None
        dotenv.load_dotenv(path, override=True)
        if verbose:
            logging.debug(f"Loaded environment from: {path}")
        return path

    path = next((p for p in _candidate_env_files() if p.exists()), None)
    if path is not None:
        dotenv.load_dotenv(path)
        if verbose:
            logging.debug(f"Loaded environment from: {path}")
    return path


def validate_required_env_vars() -> list:
    """Names of required Salesforce variables that are unset or empty."""
    return [var for var in REQUIRED_ENV_VARS if not os.getenv(var)]


def setup_environment(verbose: bool = False, env_file: Optional[str] = None) -> bool:
    """
    Load the .env file of the package, if any.

    Returns:
        True if a .env file was loaded.
    """
    loaded = load_environment_variables(env_file, verbose)
    if loaded is None and verbose:
        searched = ", ".join(str(p) for p in _candidate_env_files())
        logging.debug(f"No .env file loaded, relying on system environment variables. Searched: {searched}")
    return loaded is not None
