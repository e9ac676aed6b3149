"""
Tests for the high-level manager: one-shot runs and resumable runs
persisted to a base folder.
"""

import threading

import pytest

from bulk_batch_manager.core.bulk.manager import BulkBatchManager
from bulk_batch_manager.core.bulk.models import BatchState
from bulk_batch_manager.core.bulk.polling import PollingPolicy
from bulk_batch_manager.core.bulk.utils import load_run_state
from bulk_batch_manager.core.errors import InvalidState, PollingCancelled, PollingTimeout, RemoteRejected

from conftest import FakeBulkClient


def make_manager(client, clock, base_folder=None, **policy_kwargs):
    return BulkBatchManager(
        client,
        base_folder=base_folder,
        policy=PollingPolicy(**policy_kwargs),
        sleep=clock.sleep,
        clock=clock,
    )


class TestRun:

    def test_full_run(self, client, clock, account_collections):
        for batch_id in ("B1", "B2", "B3"):
            client.script(batch_id, "Queued", "InProgress", "Completed")

        result = make_manager(client, clock).run("Account", "insert", account_collections)

        assert result.job.state == "Closed"
        assert len(result.batches) == 3
        assert len(result.outcomes) == 11
        assert result.summary["failed"]["count"] == 2
        assert result.summary["successful"]["created"] == 9
        assert result.errored == {}
        assert result.submission_failures == {}
        assert clock.sleeps == [1.0, 2.0]

    def test_submission_failure_is_reported_by_source(self, client, clock, account_collections):
        client.rejections["Hooli"] = RemoteRejected("InvalidBatch", "Records not processed", 400)

        result = make_manager(client, clock).run(
            "Account", "insert", account_collections, sources=["a.csv", "b.csv", "c.csv"]
        )

        assert result.submission_failures == {"b.csv": "InvalidBatch: Records not processed"}
        assert len(result.outcomes) == 8

    def test_timeout_keeps_finished_outcomes(self, client, clock, account_collections):
        client.script("B2", "InProgress")

        result = make_manager(client, clock, timeout=5).run("Account", "insert", account_collections)

        assert isinstance(result.interruption, PollingTimeout)
        assert result.interrupted
        assert sorted(client.result_requests) == ["B1", "B3"]
        assert [o.batch_id for o in result.outcomes] == ["B1"] * 4 + ["B3"] * 4
        assert [b.id for b in result.pending] == ["B2"]
        assert clock.sleeps == [1.0, 2.0]

    def test_cancel_keeps_finished_outcomes(self, client, clock, account_collections):
        event = threading.Event()
        client.script("B1", "InProgress")

        def sleep_then_cancel(seconds):
            clock.sleep(seconds)
            event.set()

        manager = BulkBatchManager(client, sleep=sleep_then_cancel, clock=clock)
        result = manager.run("Account", "insert", account_collections, cancel_event=event)

        assert isinstance(result.interruption, PollingCancelled)
        assert [o.batch_id for o in result.outcomes] == ["B2"] * 3 + ["B3"] * 4
        assert [b.id for b in result.pending] == ["B1"]

    def test_nothing_submitted(self, client, clock):
        client.rejections["Acme"] = RemoteRejected("InvalidBatch", "nope", 400)

        result = make_manager(client, clock).run("Account", "insert", [[{"Name": "Acme"}]])

        assert result.outcomes == []
        assert client.queries == []

    def test_one_job_per_manager(self, client, clock):
        manager = make_manager(client, clock)
        manager.create_job("Account", "insert")
        with pytest.raises(InvalidState):
            manager.create_job("Account", "insert")

    def test_submit_requires_job(self, client, clock):
        with pytest.raises(InvalidState):
            make_manager(client, clock).submit([[{"Name": "Acme"}]])


class TestPersistence:

    def test_state_saved_and_reloaded(self, client, clock, account_collections, tmp_path):
        manager = make_manager(client, clock, base_folder=tmp_path / "run")
        manager.create_job("Account", "insert")
        manager.submit(account_collections, sources=["a", "b", "c"])
        manager.close_job()

        assert manager.state_path.exists()
        state = load_run_state(manager.state_path)
        assert state["job"] == manager.job
        assert [b.id for b in state["batches"]] == ["B1", "B2", "B3"]
        assert [b.source for b in state["batches"]] == ["a", "b", "c"]

        client.script("B1", "InProgress", "Completed")
        client.script("B3", "Completed")
        resumed = BulkBatchManager.load(client, tmp_path / "run", sleep=clock.sleep, clock=clock)
        report = resumed.track()

        assert [b.id for b in report.completed] == ["B2", "B3", "B1"]
        assert [o.batch_id for o in resumed.collect_results()][:3] == ["B2"] * 3
        assert load_run_state(resumed.state_path)["completed_order"] == ["B2", "B3", "B1"]

    def test_timeout_keeps_progress(self, client, clock, account_collections, tmp_path):
        client.script("B1", "InProgress")
        manager = make_manager(client, clock, base_folder=tmp_path, timeout=0.5)
        manager.create_job("Account", "insert")
        manager.submit(account_collections)

        with pytest.raises(PollingTimeout):
            manager.track()

        state = load_run_state(tmp_path / "run_state.yaml")
        assert state["completed_order"] == ["B2", "B3"]
        assert [b.id for b in manager.pending_batches()] == ["B1"]

        # A later process picks the run up where it stopped
        later = FakeBulkClient(clock=clock)
        later.submitted = client.submitted
        resumed = BulkBatchManager.load(later, tmp_path, sleep=clock.sleep, clock=clock)
        report = resumed.track()
        assert [b.id for b in report.completed] == ["B2", "B3", "B1"]
        assert later.queried_batches() == ["B1"]

    def test_check_once(self, client, clock, account_collections, tmp_path):
        client.script("B2", "InProgress")
        client.script("B3", RemoteRejected("InvalidBatch", "Unable to find batch", 400))
        manager = make_manager(client, clock, base_folder=tmp_path)
        manager.create_job("Account", "insert")
        manager.submit(account_collections)

        statuses = manager.check()

        assert statuses == {"B1": "Completed", "B2": "InProgress", "B3": "error"}
        assert manager.states() == {"Completed": 1, "InProgress": 1, "Queued": 1}
        assert manager.batches[0].state == BatchState.COMPLETED

    def test_abort(self, client, clock, tmp_path):
        manager = make_manager(client, clock, base_folder=tmp_path)
        manager.create_job("Account", "insert")
        manager.abort()

        assert load_run_state(tmp_path / "run_state.yaml")["job"].state == "Aborted"
