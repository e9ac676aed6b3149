# -*- coding: utf-8 -*-

import logging
from datetime import datetime
from pathlib import Path

from ..utils.misc import mask_path, read_yaml, write_yaml
from .models import Batch, Job


def save_run_state(path, job, batches, completed_order=None, errored=None,
                   submission_failures=None, verbose=True):
    """
    Save the job, its batches and the polling bookkeeping to a YAML file.

    Args:
        path (str | Path): Destination file, must end with .yaml.
        job (Job): The run's job.
        batches (list[Batch]): Batches in submission order.
        completed_order (list[str]): Batch ids in the order they reached a
            terminal state.
        errored (dict): Batch id -> error message for batches given up on.
        submission_failures (dict): Collection label -> error message for
            collections that could not be submitted.
    """
    path = str(path)
    if not path.endswith('.yaml'):
        raise ValueError("Path must end with .yaml")
    state = {
        "job": job.to_dict(),
        "batches": [batch.to_dict() for batch in batches],
        "completed_order": list(completed_order or []),
        "errored": dict(errored or {}),
        "submission_failures": {str(k): v for k, v in (submission_failures or {}).items()},
        "updated_at": datetime.now().isoformat(),
    }
    write_yaml(state, path)
    if verbose:
        logging.info(f"Saved state of job {job.id} ({len(batches)} batches) to {mask_path(path)}.")


def load_run_state(path, verbose=True):
    """
    Load a run state written by save_run_state.

    Returns:
        dict: With keys 'job' (Job), 'batches' (list[Batch]),
            'completed_order', 'errored' and 'submission_failures'.
    """
    path = str(path)
    if not path.endswith('.yaml'):
        raise ValueError("Path must end with .yaml")
    if not Path(path).exists():
        raise FileNotFoundError(f"Run state not found: {path}")
    raw = read_yaml(path) or {}
    if "job" not in raw:
        raise ValueError(f"{mask_path(path)} does not hold a run state.")

    state = {
        "job": Job.from_dict(raw["job"]),
        "batches": [Batch.from_dict(b) for b in raw.get("batches") or []],
        "completed_order": list(raw.get("completed_order") or []),
        "errored": dict(raw.get("errored") or {}),
        "submission_failures": dict(raw.get("submission_failures") or {}),
    }
    if verbose:
        logging.info(f"Loaded job {state['job'].id} with {len(state['batches'])} batches from {mask_path(path)}.")
    return state
