# -*- coding: utf-8 -*-

"""
Run registry: maps run names to the folder holding their run_state.yaml,
so stepwise CLI commands only need `--run-name`.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

import platformdirs

from .misc import read_yaml, write_yaml

RUN_STATE_FILENAME = "run_state.yaml"
APP_NAME = "bulk-batch-manager"

_registry = None


class RunRegistry:
    """
    YAML file of registered runs, by default in the user config directory.

    Each entry keeps the base folder of the run plus a few facts about its
    job so `list-runs` can describe runs without loading their state.
    """

    def __init__(self, registry_path: Optional[Path] = None):
        if registry_path is None:
            registry_path = Path(platformdirs.user_config_dir(APP_NAME, "bulkbm")) / "runs_registry.yaml"
        self.registry_path = Path(registry_path)
        self.registry_path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self) -> dict:
        if not self.registry_path.exists():
            return {}
        try:
            data = read_yaml(self.registry_path) or {}
        except Exception as e:
            logging.warning(f"Ignoring unreadable run registry {self.registry_path}: {e}")
            return {}
        return dict(data.get("runs") or {})

    @contextmanager
    def _edit(self):
        runs = self._read()
        yield runs
        write_yaml({"runs": runs}, self.registry_path)

    @staticmethod
    def _has_state(entry: dict) -> bool:
        return (Path(entry["base_folder"]) / RUN_STATE_FILENAME).exists()

    def register_run(self, run_name: str, base_folder, job=None):
        """
        Register a run, or point an existing name to a new folder.

        Args:
            run_name (str): Name used with --run-name.
            base_folder (str | Path): Folder holding the run state.
            job (Job): Optional job of the run, recorded for listings.
        """
        now = datetime.now().isoformat(timespec="seconds")
        with self._edit() as runs:
            entry = runs.get(run_name) or {"registered_at": now}
            entry["base_folder"] = str(Path(base_folder).resolve())
            entry["last_used"] = now
            if job is not None:
                entry["job_id"] = job.id
                entry["job"] = f"{job.operation.value} {job.entity_type}"
            runs[run_name] = entry
        logging.debug(f"Run '{run_name}' registered at {entry['base_folder']}")

    def get_base_folder(self, run_name: str) -> Optional[Path]:
        """Base folder of a run, or None when the run or its state file is missing."""
        with self._edit() as runs:
            entry = runs.get(run_name)
            if entry is None:
                return None
            if not self._has_state(entry):
                logging.warning(f"Run '{run_name}' has no {RUN_STATE_FILENAME} in {entry['base_folder']}")
                return None
            entry["last_used"] = datetime.now().isoformat(timespec="seconds")
        return Path(entry["base_folder"])

    def list_runs(self) -> list[dict]:
        """Registered runs, most recently used first."""
        runs = [
            {
                "name": name,
                "base_folder": entry["base_folder"],
                "job_id": entry.get("job_id"),
                "job": entry.get("job"),
                "registered_at": entry.get("registered_at"),
                "last_used": entry.get("last_used", ""),
                "state_exists": self._has_state(entry),
            }
            for name, entry in self._read().items()
        ]
        runs.sort(key=lambda run: run["last_used"], reverse=True)
        return runs

    def unregister_run(self, run_name: str) -> bool:
        with self._edit() as runs:
            removed = runs.pop(run_name, None) is not None
        if removed:
            logging.info(f"Unregistered run '{run_name}'")
        return removed

    def cleanup_orphaned_runs(self) -> list[str]:
        """Drop runs whose state file is gone and return their names."""
        with self._edit() as runs:
            orphaned = [name for name, entry in runs.items() if not self._has_state(entry)]
            for name in orphaned:
                del runs[name]
        return orphaned


def get_registry() -> RunRegistry:
    """Process-wide registry instance."""
    global _registry
    if _registry is None:
        _registry = RunRegistry()
    return _registry
