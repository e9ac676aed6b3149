# -*- coding: utf-8 -*-
"""
This module provides functions to create bulk jobs and submit record
collections as batches under them, either serially or in parallel.
Submission failures of one collection never prevent the others from
being submitted; they are reported back to the caller.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional, Sequence

from tqdm.auto import tqdm

from ..errors import AuthenticationFailed
from .models import Batch, Job, OperationKind, as_records

SUBMIT_MAX_WORKERS = 3    # Conservative number of workers to avoid rate limits


#=============================================================================
# Job Lifecycle
#=============================================================================

def create_job(
        client,
        entity_type: str,
        operation: OperationKind | str,
        external_id_field: Optional[str] = None
    ) -> Job:
    """
    Create a bulk job declaring one operation against one entity type.

    Args:
        client: Bulk API client.
        entity_type (str): Target entity type (e.g. "Account").
        operation (OperationKind | str): Operation kind (insert, update, upsert...).
        external_id_field (str): External id field name, required for upsert.

    Returns:
        Job: The created job.

    Raises:
        ValueError: If an upsert is requested without external id field.
        RemoteRejected: If the service refuses the operation for the entity type.
    """
    operation = OperationKind.parse(operation)
    if operation is OperationKind.UPSERT and not external_id_field:
        raise ValueError("An external id field is required for upsert jobs.")

    logging.info(f"Creating {operation.value} job for {entity_type}...")
    info = client.create_job(entity_type, operation, external_id_field=external_id_field)
    job = Job.from_info(info)
    logging.info(f"Job created with ID: {job.id}")
    return job


def close_job(client, job: Job) -> Job:
    """
    Close a job so the service knows no more batches will be added.

    Batches already submitted keep being processed.
    """
    logging.info(f"Closing job {job.id}...")
    info = client.close_job(job.id)
    return Job.from_info({**_job_info_defaults(job), **info})


def abort_job(client, job_id: str):
    """
    Abort a job. Unprocessed batches are not processed and results of
    processed ones remain available.
    """
    logging.info(f"Aborting job {job_id}...")
    client.abort_job(job_id)
    logging.info(f"Job {job_id} aborted.")


def _job_info_defaults(job: Job) -> dict:
    return {
        "id": job.id,
        "object": job.entity_type,
        "operation": job.operation.value,
        "externalIdFieldName": job.external_id_field,
        "contentType": job.content_type,
    }


#=============================================================================
# Batch Submission
#=============================================================================

def submit_batch(client, job: Job, records: Sequence, source: Optional[str] = None) -> Batch:
    """
    Submit one collection of records as a batch under the given job.

    Records are passed through untouched; invalid fields only surface later,
    in the per-record outcomes of the batch result.

    Args:
        client: Bulk API client.
        job (Job): Owning job.
        records (Sequence): Records (or plain mappings) to submit.
        source (str): Optional label of where the records come from.

    Returns:
        Batch: The created batch, in the state reported by the service.

    Raises:
        ValueError: If the collection is empty or the job is a query job,
            whose batches carry a SOQL statement instead of records.
        RemoteRejected: If the service refuses the payload.
    """
    if job.operation.is_query:
        raise ValueError(f"Job {job.id} is a {job.operation.value} job; record batches cannot be submitted to it.")
    records = as_records(records)
    if not records:
        raise ValueError("Cannot submit an empty batch.")

    logging.info(f"Submitting batch of {len(records)} records to job {job.id}...")
    info = client.create_batch(job.id, [record.to_payload() for record in records])
    batch = Batch.from_info(info, record_count=len(records), source=source)
    logging.info(f"Batch created with ID: {batch.id} ({batch.state.value})")
    return batch


def submit_multiple_batches(
        client,
        job: Job,
        record_collections: Sequence[Sequence],
        sources: Optional[Sequence[str]] = None
    ):
    """
    Submit each record collection as its own batch, one after the other.

    Args:
        client: Bulk API client.
        job (Job): Owning job.
        record_collections (list): One record collection per batch.
        sources (list[str]): Optional labels, one per collection.

    Returns:
        list[Batch]: Created batches, in submission order.
        dict: Mapping from collection index to error message for the
            collections that could not be submitted.
    """
    if not record_collections:
        raise ValueError("No record collections provided.")
    sources = _resolve_sources(record_collections, sources)

    logging.info(f"Submitting {len(record_collections)} batches to job {job.id}")

    batches = []
    failures = {}
    for i, records in enumerate(tqdm(record_collections, desc="Submitting batches")):
        try:
            batches.append(submit_batch(client, job, records, source=sources[i]))
        except AuthenticationFailed:
            raise
        except Exception as e:
            logging.error(f"Failed to submit batch #{i} ({sources[i]}): {e}")
            failures[i] = str(e)

    _log_submission_summary(batches, failures)
    return batches, failures


def submit_multiple_batches_parallel(
        client,
        job: Job,
        record_collections: Sequence[Sequence],
        sources: Optional[Sequence[str]] = None,
        max_workers: int = SUBMIT_MAX_WORKERS
    ):
    """
    Submit all record collections in parallel with controlled concurrency.

    Args:
        client: Bulk API client.
        job (Job): Owning job.
        record_collections (list): One record collection per batch.
        sources (list[str]): Optional labels, one per collection.
        max_workers (int): Maximum concurrent submissions.

    Returns:
        list[Batch]: Created batches, in submission (input) order.
        dict: Mapping from collection index to error message.
    """
    if not record_collections:
        raise ValueError("No record collections provided.")
    sources = _resolve_sources(record_collections, sources)

    logging.info(f"Submitting {len(record_collections)} batches to job {job.id} in parallel (max_workers={max_workers})...")

    created = {}
    failures = {}
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_index = {
            executor.submit(submit_batch, client, job, records, sources[i]): i
            for i, records in enumerate(record_collections)
        }

        for future in as_completed(future_to_index):
            i = future_to_index[future]
            try:
                created[i] = future.result()
            except AuthenticationFailed:
                raise
            except Exception as e:
                logging.error(f"Failed to submit batch #{i} ({sources[i]}): {e}")
                failures[i] = str(e)

    batches = [created[i] for i in sorted(created)]
    _log_submission_summary(batches, failures)
    return batches, failures


def _resolve_sources(record_collections, sources):
    if sources is None:
        return [f"collection-{i}" for i in range(len(record_collections))]
    if len(sources) != len(record_collections):
        raise ValueError("`sources` must have one label per record collection.")
    return list(sources)


def _log_submission_summary(batches, failures):
    if failures:
        logging.warning(f"Submitted {len(batches)} batches, {len(failures)} failed.")
    else:
        logging.info(f"All {len(batches)} batches submitted successfully.")
