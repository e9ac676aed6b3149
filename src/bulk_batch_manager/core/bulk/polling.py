# -*- coding: utf-8 -*-
"""
Polling of submitted batches until every one of them reaches a terminal
state (Completed, Failed or NotProcessed).

Each round queries the state of every pending batch; batches reported as
terminal move to the completed list, in the order they finished. Between
rounds the scheduler sleeps, and the delay grows exponentially:

    delay before round k+1 = initial_delay * growth_factor ** (k - 1)

optionally capped by `max_delay`. A transient failure to query one batch
keeps it pending for the next round; a permanent rejection (unknown batch,
for instance) moves it out of the loop into `errored`.
"""

import time
import logging
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from tqdm.auto import tqdm

from ..errors import (PollingCancelled, PollingTimeout, RemoteRejected,
                      TransientQueryFailure)
from .models import Batch, BatchState

_CANCELLED = object()


@dataclass
class PollingPolicy:
    """
    Back-off and termination policy of the polling loop.

    Attributes:
        initial_delay (float): Seconds slept after the first round.
        growth_factor (float): Multiplier applied to the delay after each round.
        max_delay (float | None): Upper bound for a single delay. None keeps
            growing without limit.
        timeout (float | None): Overall deadline in seconds for the whole loop.
        max_query_failures (int | None): Consecutive transient query failures
            tolerated for a single batch before giving up on it. None retries
            forever.
    """
    initial_delay: float = 1.0
    growth_factor: float = 2.0
    max_delay: Optional[float] = None
    timeout: Optional[float] = None
    max_query_failures: Optional[int] = None

    def __post_init__(self):
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be non-negative.")
        if self.growth_factor < 1:
            raise ValueError("growth_factor must be >= 1.")
        if self.max_delay is not None and self.max_delay < 0:
            raise ValueError("max_delay must be non-negative.")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive.")
        if self.max_query_failures is not None and self.max_query_failures < 1:
            raise ValueError("max_query_failures must be >= 1.")

    def delays(self):
        """Yield the successive inter-round delays."""
        delay = self.initial_delay
        while True:
            yield delay if self.max_delay is None else min(delay, self.max_delay)
            delay *= self.growth_factor


@dataclass
class PollingReport:
    """Outcome of a polling run."""
    completed: list = field(default_factory=list)   # terminal batches, completion order
    pending: list = field(default_factory=list)     # batches still not terminal
    errored: dict = field(default_factory=dict)     # batch id -> error message
    rounds: int = 0
    delays: list = field(default_factory=list)      # delays actually slept

    @property
    def all_done(self) -> bool:
        return not self.pending

    def summary(self) -> dict:
        states = Counter(batch.state.value for batch in self.completed)
        return {
            'rounds': self.rounds,
            'completed': len(self.completed),
            'pending': len(self.pending),
            'errored': len(self.errored),
            'terminal_states': dict(states),
        }


class PollingScheduler:
    """
    Drives a set of batches from submitted to terminal state.

    Args:
        client: Bulk API client exposing get_batch_state(job_id, batch_id).
        policy (PollingPolicy): Back-off and termination policy.
        max_workers (int): Number of concurrent state queries within a round.
            1 queries batches one after the other.
        sleep (callable): Function used to wait between rounds.
        clock (callable): Monotonic clock used for the overall deadline.
        show_progress (bool): Display a progress bar of terminal batches.
    """

    def __init__(
        self,
        client,
        policy: Optional[PollingPolicy] = None,
        max_workers: int = 1,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        show_progress: bool = False
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1.")
        self.client = client
        self.policy = policy or PollingPolicy()
        self.max_workers = max_workers
        self.sleep = sleep
        self.clock = clock
        self.show_progress = show_progress

    def run(self, batches: Iterable[Batch], cancel_event: Optional[threading.Event] = None) -> PollingReport:
        """
        Poll the given batches until none is left pending.

        Args:
            batches: Batches to track. Already terminal batches are moved to
                the completed list without being queried.
            cancel_event (threading.Event): Optional cancellation signal,
                checked at each round boundary and before each query.

        Returns:
            PollingReport: Completed batches in completion order, plus the
                batches given up on in `errored`.

        Raises:
            PollingCancelled: If cancel_event is set before every batch finished.
            PollingTimeout: If the policy timeout is reached first.
            InvalidState: If the service reports a terminal batch back as
                non-terminal.
        """
        report = PollingReport()
        pending = {}
        for batch in batches:
            if batch.id in pending or any(b.id == batch.id for b in report.completed):
                raise ValueError(f"Batch {batch.id} was given more than once.")
            if batch.is_terminal:
                report.completed.append(batch)
            else:
                pending[batch.id] = batch
        report.pending = list(pending.values())

        if not pending:
            logging.info("No pending batches to poll.")
            return report

        deadline = None
        if self.policy.timeout is not None:
            deadline = self.clock() + self.policy.timeout

        delays = self.policy.delays()
        failures = Counter()
        executor = ThreadPoolExecutor(max_workers=self.max_workers) if self.max_workers > 1 else None
        progress = tqdm(
            total=len(pending) + len(report.completed),
            initial=len(report.completed),
            desc="Batches finished",
            disable=not self.show_progress
        )

        try:
            while pending:
                self._raise_if_cancelled(cancel_event, report)
                report.rounds += 1
                logging.info(f"Round {report.rounds}: checking {len(pending)} pending batches...")

                round_batches = list(pending.values())
                if executor is None:
                    answers = [self._query_state(batch, cancel_event) for batch in round_batches]
                else:
                    answers = list(executor.map(
                        lambda b: self._query_state(b, cancel_event), round_batches
                    ))

                cancelled = False
                for batch, answer in zip(round_batches, answers):
                    if answer is _CANCELLED:
                        cancelled = True
                    elif isinstance(answer, BatchState):
                        failures.pop(batch.id, None)
                        batch.update_state(answer)
                        if batch.is_terminal:
                            del pending[batch.id]
                            report.completed.append(batch)
                            progress.update(1)
                            logging.info(f"Batch {batch.id} reached {batch.state.value}")
                    elif isinstance(answer, TransientQueryFailure):
                        failures[batch.id] += 1
                        limit = self.policy.max_query_failures
                        if limit is not None and failures[batch.id] > limit:
                            logging.error(f"Giving up on batch {batch.id} after {failures[batch.id]} failed status checks: {answer}")
                            del pending[batch.id]
                            report.errored[batch.id] = str(answer)
                        else:
                            logging.warning(f"Status check failed for batch {batch.id}, will retry next round: {answer}")
                    else:
                        logging.error(f"Batch {batch.id} was rejected by the service: {answer}")
                        del pending[batch.id]
                        report.errored[batch.id] = str(answer)

                report.pending = list(pending.values())
                if cancelled:
                    self._raise_if_cancelled(cancel_event, report)
                if not pending:
                    break

                delay = next(delays)
                if deadline is not None and self.clock() + delay > deadline:
                    raise PollingTimeout(
                        f"{len(pending)} batches still pending after {self.policy.timeout} seconds",
                        report
                    )
                logging.info(f"{len(report.completed)} finished, {len(report.errored)} errored, {len(pending)} still pending. Waiting {delay:g} seconds before next round...")
                self._raise_if_cancelled(cancel_event, report)
                self.sleep(delay)
                report.delays.append(delay)
        finally:
            progress.close()
            if executor is not None:
                executor.shutdown(wait=True)

        logging.info(f"All batches done after {report.rounds} rounds: {len(report.completed)} finished, {len(report.errored)} errored.")
        return report

    def _query_state(self, batch: Batch, cancel_event):
        if cancel_event is not None and cancel_event.is_set():
            return _CANCELLED
        try:
            return BatchState.parse(self.client.get_batch_state(batch.job_id, batch.id))
        except (TransientQueryFailure, RemoteRejected) as e:
            return e

    @staticmethod
    def _raise_if_cancelled(cancel_event, report):
        if cancel_event is not None and cancel_event.is_set():
            raise PollingCancelled(
                f"Polling cancelled with {len(report.pending)} batches still pending",
                report
            )


def poll_until_terminal(client, batches, policy: Optional[PollingPolicy] = None, **kwargs) -> PollingReport:
    """Shortcut for PollingScheduler(client, policy, **kwargs).run(batches)."""
    cancel_event = kwargs.pop('cancel_event', None)
    return PollingScheduler(client, policy, **kwargs).run(batches, cancel_event=cancel_event)
