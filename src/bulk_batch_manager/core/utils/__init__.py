"""
Shared utilities for Bulk Batch Manager.

Submodules:
    clients:     Salesforce authentication and Bulk API client
    datasource:  Reading record files and chunking them into batches
    registry:    Run registry (internal)
    misc:        Internal utilities (internal)
    environment: Environment configuration (internal)

Example Usage:
    import bulk_batch_manager as bbm

    credentials = bbm.utils.clients.Credentials.from_env()
    client = bbm.utils.clients.create_bulk_client(credentials)

    records = bbm.utils.datasource.read_records('./accounts.csv')
    collections = bbm.utils.datasource.chunk_records(records, batch_size=2000)
"""

from . import clients     # Authentication and transport
from . import datasource  # Record files and chunking

__all__ = [
    'clients',      # bbm.utils.clients.*
    'datasource',   # bbm.utils.datasource.*
]

# Internal modules not exported:
# - registry (internal run management)
# - misc (internal utilities)
# - environment (internal environment setup)
