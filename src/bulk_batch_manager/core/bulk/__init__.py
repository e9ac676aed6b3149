"""
Bulk job/batch lifecycle for Bulk Batch Manager.

This module contains the bulk processing functionality organized into submodules:

Submodules:
    models:  Records, jobs, batches and per-record outcomes
    jobs:    Job creation and batch submission
    polling: Back-off polling of batches until they reach a terminal state
    results: Result fetching, aggregation, summaries and export
    utils:   Run state persistence
    manager: High-level BulkBatchManager class

Example Usage:
    import bulk_batch_manager as bbm

    job = bbm.bulk.jobs.create_job(client, "Account", "insert")
    batches, failures = bbm.bulk.jobs.submit_multiple_batches(client, job, collections)
    report = bbm.bulk.polling.PollingScheduler(client).run(batches)
    outcomes = bbm.bulk.results.aggregate(client, report.completed)
"""

# Import submodules (not individual functions)
from . import models
from . import jobs
from . import polling
from . import results
from . import utils
from . import manager

__all__ = [
    'models',     # bbm.bulk.models.*
    'jobs',       # bbm.bulk.jobs.*
    'polling',    # bbm.bulk.polling.*
    'results',    # bbm.bulk.results.*
    'utils',      # bbm.bulk.utils.*
    'manager',    # bbm.bulk.manager.*
]
