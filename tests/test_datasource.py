"""
Tests for reading record files and chunking them into batches.
"""

import json

import polars as pl
import pytest

from bulk_batch_manager.core.utils.datasource import (
    MAX_RECORDS_PER_BATCH,
    chunk_records,
    read_record_collections,
    read_records,
)


@pytest.fixture
def data_dir(tmp_path):
    (tmp_path / "accounts.jsonl").write_text(
        '{"Name": "Acme", "NumberOfEmployees": 10}\n\n{"Name": "Globex", "IsPartner": true}\n',
        encoding="utf-8",
    )
    (tmp_path / "accounts.json").write_text(
        json.dumps([{"Name": "Hooli"}, {"Name": "Initech", "MADEUPFIELD": None}]),
        encoding="utf-8",
    )
    (tmp_path / "accounts.csv").write_text(
        "Name,Industry,NumberOfEmployees\nStark,Energy,0012\nWayne,,40\n",
        encoding="utf-8",
    )
    pl.DataFrame({"Name": ["Tyrell", "Cyberdyne", "Soylent"], "Rank": [1, 2, 3]}).write_parquet(
        tmp_path / "accounts.parquet"
    )
    return tmp_path


class TestReadRecords:

    def test_jsonl_skips_blank_lines(self, data_dir):
        records = read_records(data_dir / "accounts.jsonl")
        assert records == [
            {"Name": "Acme", "NumberOfEmployees": 10},
            {"Name": "Globex", "IsPartner": True},
        ]

    def test_json_list(self, data_dir):
        records = read_records(data_dir / "accounts.json")
        assert records[1] == {"Name": "Initech", "MADEUPFIELD": None}

    def test_csv_values_stay_text(self, data_dir):
        records = read_records(data_dir / "accounts.csv")
        assert records == [
            {"Name": "Stark", "Industry": "Energy", "NumberOfEmployees": "0012"},
            {"Name": "Wayne", "Industry": None, "NumberOfEmployees": "40"},
        ]

    def test_parquet(self, data_dir):
        records = read_records(data_dir / "accounts.parquet")
        assert [r["Rank"] for r in records] == [1, 2, 3]

    def test_json_must_hold_objects(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text('{"Name": "Acme"}', encoding="utf-8")
        with pytest.raises(ValueError):
            read_records(path)

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "accounts.xml"
        path.write_text("<Account/>", encoding="utf-8")
        with pytest.raises(ValueError):
            read_records(path)


class TestChunking:

    def test_chunks_preserve_order(self):
        chunks = chunk_records(list(range(7)), batch_size=3)
        assert chunks == [[0, 1, 2], [3, 4, 5], [6]]

    @pytest.mark.parametrize("batch_size", [0, -1, MAX_RECORDS_PER_BATCH + 1])
    def test_invalid_batch_size(self, batch_size):
        with pytest.raises(ValueError):
            chunk_records([1], batch_size=batch_size)

    def test_collections_are_labelled_by_file(self, data_dir):
        collections, sources = read_record_collections(
            [data_dir / "accounts.parquet", data_dir / "accounts.jsonl"], batch_size=2
        )
        assert [len(c) for c in collections] == [2, 1, 2]
        assert sources == ["accounts.parquet#1", "accounts.parquet#2", "accounts.jsonl"]
