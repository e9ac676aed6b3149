"""
Bulk Batch Manager - Asynchronous, chunked bulk operations on Salesforce

A toolkit to submit collections of records as batches of a Bulk API job,
track the batches until they reach a terminal state and aggregate the
per-record outcomes (generated id or structured error). It provides both a
programmatic API and a command-line interface.

Key Features:
    - Job creation for insert, update, upsert, delete and query operations
    - Serial or parallel batch submission
    - Polling with exponential back-off, cancellation and deadlines
    - Uniform per-record outcomes across heterogeneous result payloads
    - Resumable runs persisted on disk

Example Usage:

    High-Level Interface:
        import bulk_batch_manager as bbm

        client = bbm.utils.clients.create_bulk_client()
        manager = bbm.BulkBatchManager(client, base_folder='./runs/accounts/')
        result = manager.run(
            'Account', 'insert',
            [[{'Name': 'Acme'}, {'Name': 'Globex'}], [{'Name': 'Initech'}]],
        )
        for outcome in result.outcomes:
            print(outcome.id, outcome.success, outcome.error)

    CLI Usage:
        $ bulkbm run Account insert ./accounts.csv --output ./outcomes.csv
        $ bulkbm -r accounts submit Account insert ./accounts.csv --base-folder ./runs/accounts
        $ bulkbm -r accounts track
        $ bulkbm -r accounts results --output ./outcomes.jsonl

Environment Setup:
    Required environment variables:
    - SF_CONSUMER_KEY, SF_CONSUMER_SECRET (connected app)
    - SF_USERNAME, SF_PASSWORD (and optionally SF_SECURITY_TOKEN)
    - SF_IS_SANDBOX=true to log in against the sandbox endpoint

    These can be set via .env files in:
    - Current working directory (.env, .env.local)
    - Project root directory
"""

__version__ = "0.1.0"

# Load environment on package import
from .core.utils.environment import setup_environment
setup_environment()

# Export core API modules
from . import core
errors = core.errors
bulk = core.bulk
utils = core.utils
BulkBatchManager = core.BulkBatchManager

__all__ = [
    '__version__',
    'errors',            # bbm.errors.*
    'bulk',              # bbm.bulk.*
    'utils',             # bbm.utils.*
    'BulkBatchManager',  # bbm.BulkBatchManager()
]

# Clean up namespace
del setup_environment, core
