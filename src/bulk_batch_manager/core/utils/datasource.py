# -*- coding: utf-8 -*-

import json
from pathlib import Path

import polars as pl

from ..bulk.models import Record
from .misc import read_jsonl

MAX_RECORDS_PER_BATCH = 10_000   # Bulk API limit on records per batch


def read_records_jsonl(source_file):
    """Read records from a JSONL file, one object per line."""
    lines = read_jsonl(source_file)
    records = []
    for i, item in enumerate(lines):
        if not isinstance(item, dict):
            raise ValueError(f"Line {i} of {source_file} is not a JSON object.")
        records.append(Record(item))
    return records


def read_records_json(source_file):
    """Read records from a JSON file holding a list of objects."""
    with open(source_file, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise ValueError(f"{source_file} must contain a JSON list of objects.")
    return [Record(item) for item in data]


def read_records_tabular(source_file):
    """Read records from a CSV or PARQUET file, one record per row."""
    source_file = Path(source_file)
    if source_file.suffix == '.csv':
        # Keep every column as text; the service converts field values itself
        df = pl.read_csv(source_file, infer_schema=False)
    elif source_file.suffix == '.parquet':
        df = pl.read_parquet(source_file)
    else:
        raise ValueError('Source data file must be either CSV or PARQUET')
    return [Record(row) for row in df.to_dicts()]


def read_records(source_file):
    """Read records from a JSONL, JSON, CSV or PARQUET file."""
    source_file = Path(source_file)
    if source_file.suffix == '.jsonl':
        return read_records_jsonl(source_file)
    if source_file.suffix == '.json':
        return read_records_json(source_file)
    if source_file.suffix in ['.csv', '.parquet']:
        return read_records_tabular(source_file)
    raise ValueError("Source data file must be a JSONL, JSON, CSV or PARQUET file.")


def chunk_records(records, batch_size=MAX_RECORDS_PER_BATCH):
    """
    Split one record collection into consecutive collections of at most
    `batch_size` records, preserving order.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be a positive integer.")
    if batch_size > MAX_RECORDS_PER_BATCH:
        raise ValueError(f"batch_size cannot exceed {MAX_RECORDS_PER_BATCH} records.")
    records = list(records)
    return [records[i:i + batch_size] for i in range(0, len(records), batch_size)]


def read_record_collections(source_files, batch_size=MAX_RECORDS_PER_BATCH):
    """
    Read every source file and chunk it into batch-sized collections.

    Returns:
        list[list[Record]]: Record collections, one per future batch.
        list[str]: Source label of each collection ("<file>" or "<file>#<part>").
    """
    collections = []
    sources = []
    for source_file in source_files:
        chunks = chunk_records(read_records(source_file), batch_size)
        name = Path(source_file).name
        for part, chunk in enumerate(chunks, start=1):
            collections.append(chunk)
            sources.append(name if len(chunks) == 1 else f"{name}#{part}")
    return collections, sources
