"""
Core functionality for Bulk Batch Manager.

Architecture:
    errors      - Exception taxonomy shared by every layer

    bulk/       - Bulk job/batch lifecycle
      ├── models/   - Records, jobs, batches, outcomes
      ├── jobs/     - Job creation and batch submission
      ├── polling/  - Polling scheduler with exponential back-off
      ├── results/  - Result aggregation, summaries, export
      ├── utils/    - Run state persistence
      └── manager/  - High-level orchestration

    utils/      - Shared utilities and infrastructure
      ├── clients/    - Authentication and Bulk API transport
      ├── datasource/ - Record files and chunking
      ├── registry/   - Run registry (internal)
      ├── misc/       - General utilities (internal)
      └── environment/ - Environment setup (internal)
"""

from . import errors
from . import bulk
from . import utils

from .bulk.manager import BulkBatchManager

__all__ = [
    'errors',
    'bulk',
    'utils',
    'BulkBatchManager',
]
