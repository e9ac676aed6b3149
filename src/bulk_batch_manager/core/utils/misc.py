# -*- coding: utf-8 -*-

import os
import json
import logging
from pathlib import Path

import yaml

MAX_QUERY_WORKERS = 8    # Concurrent status checks per polling round


#=======================================================================
# File Formats
#=======================================================================

def write_jsonl(rows, path):
    """
    Write dictionaries to a JSON Lines file, one object per line.

    Args:
        rows (Iterable[dict]): Objects to serialize.
        path (str | Path): Output file, overwritten if present.
    """
    with open(path, 'w', encoding='utf-8') as f:
        f.writelines(json.dumps(row, ensure_ascii=False) + '\n' for row in rows)


def read_jsonl(path):
    """Read a JSON Lines file. Blank lines are ignored."""
    rows = []
    with open(path, 'r', encoding='utf-8') as f:
        for line in f:
            if line.strip():
                rows.append(json.loads(line))
    return rows


def read_yaml(path):
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f)


def write_yaml(data, path):
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)


#=======================================================================
# Concurrency
#=======================================================================

def resolve_n_jobs(n_jobs: int) -> int:
    """
    Turn an --n-jobs value into a number of concurrent status checks.

    Status checks are network bound, so the count is capped by
    MAX_QUERY_WORKERS rather than by CPU cores.

    Args:
        n_jobs (int): 1 for serial checks, -1 for MAX_QUERY_WORKERS, any
            other positive value for that many workers (capped).

    Returns:
        int: Number of workers to use.
    """
    if n_jobs == -1:
        return MAX_QUERY_WORKERS
    if n_jobs < 1:
        raise ValueError(f"Invalid n_jobs value: {n_jobs}. Must be >= 1 or -1.")
    if n_jobs > MAX_QUERY_WORKERS:
        logging.warning(f"n_jobs={n_jobs} is above the limit of {MAX_QUERY_WORKERS} concurrent status checks.")
        return MAX_QUERY_WORKERS
    return n_jobs


#=======================================================================
# Paths
#=======================================================================

def mask_path(path, base_dir=None):
    """
    Shorten a path for log messages.

    Paths under `base_dir` (or $PROJECT_DIR) are shown relative to it, paths
    under the home directory start with "~". Anything else is shown as is.
    """
    path = Path(path)
    anchors = [Path(base_dir)] if base_dir else []
    if os.getenv('PROJECT_DIR'):
        anchors.append(Path(os.environ['PROJECT_DIR']))

    for anchor in anchors:
        if path.is_relative_to(anchor):
            return str(path.relative_to(anchor))
    if path.is_relative_to(Path.home()):
        return f"~/{path.relative_to(Path.home())}"
    return str(path)


def ensure_folder(path, description="Folder"):
    """Create `path` (and its parents) unless it already exists."""
    path = Path(path)
    if not path.exists():
        logging.info(f"{description} does not exist. Creating it at: {mask_path(path)}")
    path.mkdir(parents=True, exist_ok=True)
    return path
