# -*- coding: utf-8 -*-

import logging
from collections import Counter
from pathlib import Path
from typing import Literal, Sequence

import polars as pl
from tqdm.auto import tqdm

from ..errors import InvalidState
from ..utils.misc import mask_path, write_jsonl
from .models import Batch, BatchResult, RecordOutcome


#=============================================================================
# Result Fetching
#=============================================================================

def fetch_results(client, batch: Batch) -> BatchResult:
    """
    Fetch and normalize the per-record outcomes of a terminal batch.

    Failed and NotProcessed batches are terminal too, so their results can be
    fetched like Completed ones. The result is attached to the batch.

    Args:
        client: Bulk API client exposing get_batch_result(job_id, batch_id).
        batch (Batch): A batch in a terminal state.

    Returns:
        BatchResult: One outcome per submitted record, in submission order.

    Raises:
        InvalidState: If the batch has not reached a terminal state yet. No
            request is made in that case.
    """
    if not batch.is_terminal:
        raise InvalidState(
            f"Cannot fetch results of batch {batch.id}: it is still {batch.state.value}"
        )

    logging.info(f"Fetching results for batch {batch.id}...")
    rows = client.get_batch_result(batch.job_id, batch.id)
    result = BatchResult.from_rows(batch.id, rows)

    if batch.record_count and len(result) != batch.record_count:
        logging.warning(f"Batch {batch.id} returned {len(result)} outcomes for {batch.record_count} submitted records.")

    batch.attach_result(result)
    logging.info(f"Batch {batch.id}: {len(result)} outcomes, {len(result.failed)} failed.")
    return result


def aggregate(client, batches: Sequence[Batch], show_progress: bool = False) -> list[RecordOutcome]:
    """
    Fetch the results of every given batch and flatten them.

    Outcomes are concatenated in the order the batches are given; when fed
    with PollingReport.completed this is the order in which batches reached
    a terminal state, not the order they were submitted in.

    Raises:
        InvalidState: If any batch is not terminal. Checked for all batches
            before anything is fetched.
    """
    not_ready = [batch.id for batch in batches if not batch.is_terminal]
    if not_ready:
        raise InvalidState(f"Batches not in a terminal state: {not_ready}")

    outcomes = []
    for batch in tqdm(batches, desc="Fetching batch results", disable=not show_progress):
        result = batch.result if batch.result is not None else fetch_results(client, batch)
        outcomes.extend(result.outcomes)

    logging.info(f"Aggregated {len(outcomes)} outcomes from {len(batches)} batches.")
    return outcomes


#=============================================================================
# Reporting
#=============================================================================

def summarize_outcomes(outcomes: Sequence[RecordOutcome], return_as: Literal['print', 'dict'] = 'dict'):
    """
    Show or return a summary of aggregated outcomes:
    - Total count
    - Successful (and created) vs failed records
    - Breakdown of failures by status code

    Args:
        outcomes: Aggregated outcomes.
        return_as: 'print' to display the summary, 'dict' to return it.

    Returns:
        dict: Summary stats if return_as == 'dict'
    """
    total = len(outcomes)
    failed_items = [o for o in outcomes if not o.success]
    failed = len(failed_items)
    success = total - failed
    created = sum(1 for o in outcomes if o.created)

    status_codes = Counter(o.error.status_code for o in failed_items)
    summary = {
        'total': total,
        'successful': {
            'count': success,
            'created': created,
            'percent': _percent(success, total),
        },
        'failed': {
            'count': failed,
            'percent': _percent(failed, total),
            'status_codes': {
                code: {'count': count, 'percent': _percent(count, failed)}
                for code, count in status_codes.most_common()
            },
        },
        'batches': len({o.batch_id for o in outcomes}),
    }

    if return_as == 'dict':
        return summary

    print(f"\nAggregated {total} outcomes from {summary['batches']} batches:")
    print(f"  Successful: {success} ({summary['successful']['percent']}%), {created} created")
    print(f"  Failed:     {failed} ({summary['failed']['percent']}%)")
    for code, data in summary['failed']['status_codes'].items():
        print(f"    - {code}: {data['count']} ({data['percent']}%)")
    print()


def format_outcome_report(outcomes: Sequence[RecordOutcome]) -> list[str]:
    """Render one block of lines per outcome, errors indented below."""
    lines = []
    for outcome in outcomes:
        lines.append(
            f"Id:{outcome.id or ''}, Created:{outcome.created}, "
            f"Success:{outcome.success}, Errors:{outcome.error is not None}"
        )
        if outcome.error is not None:
            lines.append("\tErrors:")
            for field_name in outcome.error.fields:
                lines.append(f"\tField:{field_name}")
            lines.append(f"\t{outcome.error.message}")
            lines.append(f"\t{outcome.error.status_code}")
    return lines


def outcomes_to_df(outcomes: Sequence[RecordOutcome]) -> pl.DataFrame:
    """Convert outcomes to a Polars DataFrame (one row per record)."""
    schema = {
        'batch_id': pl.Utf8,
        'index': pl.Int64,
        'id': pl.Utf8,
        'created': pl.Boolean,
        'success': pl.Boolean,
        'error_fields': pl.Utf8,
        'error_message': pl.Utf8,
        'error_status_code': pl.Utf8,
    }
    return pl.DataFrame([o.to_dict() for o in outcomes], schema=schema)


def write_outcomes(
        outcomes: Sequence[RecordOutcome],
        path: str | Path,
        file_type: Literal['jsonl', 'csv', 'parquet'] | None = None
    ) -> Path:
    """
    Write aggregated outcomes to disk.

    Args:
        outcomes: Aggregated outcomes.
        path (str | Path): Destination file. Its parent folder is created if needed.
        file_type (str): 'jsonl', 'csv' or 'parquet'. Inferred from the
            file extension when not given.

    Returns:
        Path: The written file.
    """
    path = Path(path).resolve()
    if file_type is None:
        file_type = path.suffix.lstrip('.').lower()
    if file_type not in ('jsonl', 'csv', 'parquet'):
        raise ValueError(f"Unsupported file type: {file_type!r}. Expected 'jsonl', 'csv' or 'parquet'.")

    path.parent.mkdir(parents=True, exist_ok=True)
    match file_type:
        case 'jsonl':
            write_jsonl([o.to_dict() for o in outcomes], path)
        case 'csv':
            outcomes_to_df(outcomes).write_csv(path)
        case 'parquet':
            outcomes_to_df(outcomes).write_parquet(path)

    logging.info(f"Saved {len(outcomes)} outcomes to {mask_path(path)}.")
    return path


def _percent(part, total):
    return round(100 * part / total, 1) if total else 0.0
