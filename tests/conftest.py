"""
Pytest configuration and shared fixtures for Bulk Batch Manager tests.
"""
import threading

import pytest

from bulk_batch_manager.core.bulk.models import Batch, BatchState, OperationKind, Record
from bulk_batch_manager.core.utils import registry as registry_module
from bulk_batch_manager.core.utils.registry import RunRegistry


# ============================================================================
# Fakes
# ============================================================================

class FakeClock:
    """Monotonic clock that only moves when sleep() is called."""

    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeBulkClient:
    """
    In-memory stand-in for SalesforceBulkClient.

    Batch ids are handed out in submission order ("B1", "B2", ...). The state
    answers of a batch are scripted with script(): one answer is consumed per
    query and the last one repeats. An answer that is an exception is raised.
    Unscripted batches are Completed on their first query.

    Results default to one successful row per submitted record, except for
    records holding a MADEUPFIELD key which get an INVALID_FIELD error.
    """

    def __init__(self, clock=None):
        self.clock = clock
        self.jobs = {}
        self.submitted = {}
        self.scripts = {}
        self.results = {}
        self.rejections = {}        # first record Name -> exception raised on submit
        self.queries = []           # (batch_id, clock time)
        self.result_requests = []
        self.closed = False
        self._lock = threading.Lock()
        self._batch_count = 0

    def script(self, batch_id, *answers, rows=None):
        self.scripts[batch_id] = list(answers)
        if rows is not None:
            self.results[batch_id] = rows

    def create_job(self, entity_type, operation, external_id_field=None):
        job_id = f"750J{len(self.jobs) + 1}"
        info = {
            "id": job_id,
            "object": entity_type,
            "operation": OperationKind.parse(operation).value,
            "state": "Open",
            "contentType": "JSON",
        }
        if external_id_field:
            info["externalIdFieldName"] = external_id_field
        self.jobs[job_id] = info
        return dict(info)

    def close_job(self, job_id):
        self.jobs[job_id]["state"] = "Closed"
        return {"id": job_id, "state": "Closed"}

    def abort_job(self, job_id):
        self.jobs[job_id]["state"] = "Aborted"
        return {"id": job_id, "state": "Aborted"}

    def create_batch(self, job_id, records):
        records = [dict(record) for record in records]
        name = records[0].get("Name") if records else None
        if name in self.rejections:
            raise self.rejections[name]
        with self._lock:
            self._batch_count += 1
            batch_id = f"B{self._batch_count}"
            self.submitted[batch_id] = records
        return {
            "id": batch_id,
            "jobId": job_id,
            "state": "Queued",
            "numberRecordsProcessed": 0,
            "numberRecordsFailed": 0,
        }

    def get_batch_state(self, job_id, batch_id):
        with self._lock:
            self.queries.append((batch_id, self.clock() if self.clock else None))
            answers = self.scripts.setdefault(batch_id, ["Completed"])
            answer = answers.pop(0) if len(answers) > 1 else answers[0]
        if isinstance(answer, Exception):
            raise answer
        return BatchState.parse(answer)

    def get_batch_result(self, job_id, batch_id):
        self.result_requests.append(batch_id)
        rows = self.results.get(batch_id)
        if isinstance(rows, Exception):
            raise rows
        if rows is None:
            rows = default_rows(batch_id, self.submitted.get(batch_id, []))
        return [dict(row) for row in rows]

    def queried_batches(self):
        return [batch_id for batch_id, _ in self.queries]

    def query_times(self, batch_id):
        return [t for b, t in self.queries if b == batch_id]

    def close(self):
        self.closed = True


def default_rows(batch_id, records):
    rows = []
    for i, record in enumerate(records):
        if "MADEUPFIELD" in record:
            rows.append({
                "id": None,
                "success": False,
                "created": False,
                "errors": [{
                    "statusCode": "INVALID_FIELD",
                    "message": "No such column 'MADEUPFIELD' on entity 'Account'",
                    "fields": ["MADEUPFIELD"],
                }],
            })
        else:
            rows.append({
                "id": f"001{batch_id}{i:03d}",
                "success": True,
                "created": True,
                "errors": [],
            })
    return rows


def make_batch(batch_id, state="Queued", record_count=0, job_id="750J1"):
    return Batch(
        id=batch_id,
        job_id=job_id,
        state=BatchState.parse(state),
        record_count=record_count,
    )


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client(clock):
    return FakeBulkClient(clock=clock)


@pytest.fixture
def account_collections():
    """Three collections of 4, 3 and 4 accounts; the first and last hold one invalid field each."""
    return [
        [
            Record(Name="Acme", Industry="Energy"),
            Record(Name="Globex", AnnualRevenue=1200000),
            Record(Name="Initech", MADEUPFIELD="x"),
            Record(Name="Umbrella"),
        ],
        [
            Record(Name="Hooli"),
            Record(Name="Vandelay", NumberOfEmployees=12),
            Record(Name="Stark", IsPartner=True),
        ],
        [
            Record(Name="Wayne"),
            Record(Name="Tyrell", MADEUPFIELD="y"),
            Record(Name="Cyberdyne", Description=None),
            Record(Name="Soylent"),
        ],
    ]


@pytest.fixture
def run_registry(tmp_path, monkeypatch):
    """Route the global run registry to a temporary file."""
    registry = RunRegistry(tmp_path / "registry" / "runs_registry.yaml")
    monkeypatch.setattr(registry_module, "_registry", registry)
    return registry


@pytest.fixture
def sf_env(monkeypatch):
    """Provide a complete set of Salesforce credentials in the environment."""
    monkeypatch.setenv("SF_CONSUMER_KEY", "consumer-key")
    monkeypatch.setenv("SF_CONSUMER_SECRET", "consumer-secret")
    monkeypatch.setenv("SF_USERNAME", "user@example.com")
    monkeypatch.setenv("SF_PASSWORD", "hunter2")
    monkeypatch.setenv("SF_SECURITY_TOKEN", "TOKEN")
    monkeypatch.delenv("SF_IS_SANDBOX", raising=False)
    monkeypatch.delenv("SF_API_VERSION", raising=False)
