# -*- coding: utf-8 -*-

import time
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

from ..errors import InvalidState, PollingInterrupted, RemoteRejected, TransientQueryFailure
from ..utils.misc import ensure_folder, mask_path
from ..utils.registry import RUN_STATE_FILENAME
from .jobs import (
    abort_job,
    close_job,
    create_job,
    submit_multiple_batches,
    submit_multiple_batches_parallel,
)
from .models import Job, OperationKind
from .polling import PollingPolicy, PollingReport, PollingScheduler
from .results import aggregate, summarize_outcomes
from .utils import load_run_state, save_run_state


@dataclass
class RunResult:
    """
    Everything a bulk run produced.

    When polling was cancelled or timed out, `interruption` holds the error,
    `pending` the batches left unfinished and `outcomes` those of the batches
    that did finish.
    """
    job: Job
    batches: list
    outcomes: list
    errored: dict = field(default_factory=dict)
    submission_failures: dict = field(default_factory=dict)
    summary: dict = field(default_factory=dict)
    pending: list = field(default_factory=list)
    interruption: Optional[PollingInterrupted] = None

    @property
    def interrupted(self) -> bool:
        return self.interruption is not None


class BulkBatchManager:
    """
    A class to orchestrate one bulk job: create it, submit its batches, poll
    them until terminal and aggregate their per-record outcomes.

    When `base_folder` is given the job and batch states are persisted to
    `run_state.yaml` in that folder, so a run can be resumed from another
    process with BulkBatchManager.load().
    """

    def __init__(
        self,
        client,
        base_folder: str | Path | None = None,
        policy: Optional[PollingPolicy] = None,
        max_workers: int = 1,
        show_progress: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.client = client
        self.base_folder = Path(base_folder).resolve() if base_folder else None
        self.policy = policy or PollingPolicy()
        self.max_workers = max_workers
        self.show_progress = show_progress
        self._sleep = sleep
        self._clock = clock

        self.job: Optional[Job] = None
        self.batches = []                # Batches in submission order
        self.completed_order = []        # Batch ids in the order they became terminal
        self.errored = {}                # Batch id -> reason the batch was given up on
        self.submission_failures = {}    # Collection label -> submission error

        if self.base_folder is not None:
            ensure_folder(self.base_folder, description="Base folder")

    @classmethod
    def load(cls, client, base_folder: str | Path, **kwargs):
        """Rebuild a manager from the run state saved in base_folder."""
        manager = cls(client, base_folder=base_folder, **kwargs)
        state = load_run_state(manager.state_path)
        manager.job = state["job"]
        manager.batches = state["batches"]
        manager.completed_order = state["completed_order"]
        manager.errored = state["errored"]
        manager.submission_failures = state["submission_failures"]
        return manager

    @property
    def state_path(self) -> Optional[Path]:
        if self.base_folder is None:
            return None
        return self.base_folder / RUN_STATE_FILENAME

    def save_state(self, verbose=False):
        if self.state_path is None or self.job is None:
            return
        save_run_state(
            self.state_path,
            self.job,
            self.batches,
            completed_order=self.completed_order,
            errored=self.errored,
            submission_failures=self.submission_failures,
            verbose=verbose
        )

    def _require_job(self):
        if self.job is None:
            raise InvalidState("No job created yet. Call create_job() first.")

    #=========================================================================
    # Submission
    #=========================================================================

    def create_job(self, entity_type: str, operation: OperationKind | str,
                   external_id_field: Optional[str] = None) -> Job:
        """Create the run's job. A manager drives exactly one job."""
        if self.job is not None:
            raise InvalidState(f"Job {self.job.id} was already created for this run.")
        self.job = create_job(self.client, entity_type, operation, external_id_field)
        self.save_state()
        return self.job

    def submit(self, record_collections: Sequence[Sequence], sources: Optional[Sequence[str]] = None,
               parallel: bool = False):
        """
        Submit each record collection as a batch of the run's job.

        Args:
            record_collections (list): One record collection per batch.
            sources (list[str]): Optional labels, one per collection.
            parallel (bool): Whether to submit batches in parallel.

        Returns:
            list[Batch]: The batches created by this call.
        """
        self._require_job()
        if parallel:
            batches, failures = submit_multiple_batches_parallel(
                self.client, self.job, record_collections, sources=sources
            )
        else:
            batches, failures = submit_multiple_batches(
                self.client, self.job, record_collections, sources=sources
            )

        self.batches.extend(batches)
        for i, error in failures.items():
            label = sources[i] if sources else f"collection-{i}"
            self.submission_failures[label] = error
        self.save_state()
        return batches

    def close_job(self) -> Job:
        self._require_job()
        self.job = close_job(self.client, self.job)
        self.save_state()
        return self.job

    def abort(self):
        self._require_job()
        abort_job(self.client, self.job.id)
        self.job = Job.from_dict({**self.job.to_dict(), "state": "Aborted"})
        self.save_state()

    #=========================================================================
    # Tracking
    #=========================================================================

    def check(self) -> dict:
        """
        Query the state of every non-terminal batch once.

        Returns:
            dict: Batch id -> state value ('error' when the check failed).
        """
        self._require_job()
        statuses = {}
        for batch in self.batches:
            if batch.is_terminal or batch.id in self.errored:
                statuses[batch.id] = 'error' if batch.id in self.errored else batch.state.value
                continue
            try:
                batch.update_state(self.client.get_batch_state(batch.job_id, batch.id))
                statuses[batch.id] = batch.state.value
                if batch.is_terminal and batch.id not in self.completed_order:
                    self.completed_order.append(batch.id)
            except (TransientQueryFailure, RemoteRejected) as e:
                logging.warning(f"Status check failed for batch {batch.id}: {e}")
                statuses[batch.id] = 'error'
            logging.info(f"Batch {batch.id} ({batch.source}): {statuses[batch.id]}")
        self.save_state()
        return statuses

    def _batches_to_track(self):
        by_id = {batch.id: batch for batch in self.batches}
        # Keep the recorded completion order for batches that already finished
        ordered = [by_id[i] for i in self.completed_order if i in by_id]
        ordered += [
            b for b in self.batches
            if b.id not in self.completed_order and b.id not in self.errored
        ]
        return ordered

    def _record_report(self, report: PollingReport):
        self.completed_order = [batch.id for batch in report.completed]
        self.errored.update(report.errored)

    def track(self, cancel_event=None) -> PollingReport:
        """
        Poll the run's batches until every one is terminal or given up on.

        Raises:
            PollingCancelled | PollingTimeout: The progress made so far is
                recorded (and saved) before the error propagates.
        """
        self._require_job()
        scheduler = PollingScheduler(
            self.client,
            self.policy,
            max_workers=self.max_workers,
            sleep=self._sleep,
            clock=self._clock,
            show_progress=self.show_progress
        )
        try:
            report = scheduler.run(self._batches_to_track(), cancel_event=cancel_event)
        except PollingInterrupted as e:
            self._record_report(e.report)
            self.save_state()
            raise
        self._record_report(report)
        self.save_state()
        return report

    #=========================================================================
    # Results
    #=========================================================================

    def completed_batches(self) -> list:
        by_id = {batch.id: batch for batch in self.batches}
        return [by_id[i] for i in self.completed_order if i in by_id]

    def pending_batches(self) -> list:
        return [
            b for b in self.batches
            if not b.state.is_terminal and b.id not in self.errored
        ]

    def collect_results(self) -> list:
        """Aggregate the outcomes of every terminal batch, in completion order."""
        self._require_job()
        return aggregate(self.client, self.completed_batches(), show_progress=self.show_progress)

    def run(
        self,
        entity_type: str,
        operation: OperationKind | str,
        record_collections: Sequence[Sequence],
        sources: Optional[Sequence[str]] = None,
        external_id_field: Optional[str] = None,
        parallel: bool = False,
        close: bool = True,
        cancel_event=None
    ) -> RunResult:
        """
        Run a whole bulk operation: create the job, submit one batch per
        record collection, close the job, poll until every batch is terminal
        and aggregate the per-record outcomes.

        A cancelled or timed out polling does not raise: the outcomes of the
        batches that finished are still collected and the error is returned
        in RunResult.interruption.
        """
        interruption = None
        self.create_job(entity_type, operation, external_id_field)
        self.submit(record_collections, sources=sources, parallel=parallel)
        if close:
            self.close_job()

        if not self.batches:
            logging.error(f"No batch could be submitted to job {self.job.id}.")
            outcomes = []
        else:
            try:
                self.track(cancel_event=cancel_event)
            except PollingInterrupted as e:
                logging.warning(f"Polling stopped early ({e}). Collecting outcomes of the "
                                f"{len(self.completed_batches())} finished batches.")
                interruption = e
            outcomes = self.collect_results()

        if self.base_folder is not None:
            logging.info(f"Run state kept in {mask_path(self.base_folder)}")

        return RunResult(
            job=self.job,
            batches=list(self.batches),
            outcomes=outcomes,
            errored=dict(self.errored),
            submission_failures=dict(self.submission_failures),
            summary=summarize_outcomes(outcomes, return_as='dict'),
            pending=self.pending_batches(),
            interruption=interruption,
        )

    def states(self) -> dict:
        """Count batches per state ('Errored' for batches given up on)."""
        counts = {}
        for batch in self.batches:
            key = 'Errored' if batch.id in self.errored else batch.state.value
            counts[key] = counts.get(key, 0) + 1
        return counts

