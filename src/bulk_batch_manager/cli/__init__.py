"""
Command-line interface for Bulk Batch Manager.

This module provides a CLI for pushing records through Salesforce Bulk API
jobs and collecting the per-record outcomes. Commands either run a whole
operation at once or walk through it step by step, keeping the run state in
a folder registered under a run name.

Command Categories:
    One-shot:
        - run: Create a job, submit one batch per file, poll with
            exponential back-off and print one line per record

    Stepwise:
        - submit: Create the run's job and submit its batches
        - check: Check the state of every batch once
        - track: Poll the batches until all of them are done
        - results: Fetch and aggregate per-record outcomes, optionally
            saving them as JSONL, CSV or Parquet
        - abort: Abort the run's job

    Registry:
        - list-runs: Show registered runs
        - unregister-run: Remove a run from the registry

Environment Requirements:
    - SF_CONSUMER_KEY + SF_CONSUMER_SECRET (connected app)
    - SF_USERNAME + SF_PASSWORD + SF_SECURITY_TOKEN
    - SF_IS_SANDBOX (optional)

Example Workflow:
    # One shot
    $ bulkbm run Account insert ./accounts_1.csv ./accounts_2.jsonl --pause

    # Step by step
    $ bulkbm -r accounts submit Account upsert ./accounts.csv
        --external-id-field External_Id__c --parallel
    $ bulkbm -r accounts track --initial-delay 2 --max-delay 60
    $ bulkbm -r accounts results --output ./outcomes.parquet

The CLI provides help for each command:
    $ bulkbm --help
    $ bulkbm run --help
"""

from .cli import cli

__all__ = [
    'cli',  # Main CLI interface (Click command group)
]
