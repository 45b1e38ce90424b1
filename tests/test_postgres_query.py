"""
Unit tests for the PostgreSQL index query builder and pool configuration.

No database is required.
"""

from datetime import timedelta
from uuid import uuid4

from envdata_ingest.storage.postgres import (
    SCHEMA_STATEMENTS,
    PostgreSQLConnectionPool,
    build_find_files_query,
)

from tests.fixtures import T0


def test_query_without_filters():
    query, args = build_find_files_query()

    assert query == (
        "SELECT * FROM data_file_metadata WHERE 1=1 "
        "ORDER BY time_range_start, created_at"
    )
    assert args == []


def test_query_with_all_filters():
    source_id = uuid4()
    end = T0 + timedelta(hours=1)

    query, args = build_find_files_query(
        source_id=source_id,
        time_start=T0,
        time_end=end,
        parameters=["temperature", "humidity"],
    )

    assert "source_id = $1" in query
    assert "time_range_end >= $2" in query
    assert "time_range_start <= $3" in query
    assert "parameters && $4::text[]" in query
    assert args == [source_id, T0, end, ["temperature", "humidity"]]


def test_placeholders_follow_present_filters():
    query, args = build_find_files_query(time_end=T0, parameters=["rainfall"])

    assert "time_range_start <= $1" in query
    assert "parameters && $2::text[]" in query
    assert "source_id" not in query
    assert args == [T0, ["rainfall"]]


def test_empty_parameter_list_is_ignored():
    query, args = build_find_files_query(parameters=[])

    assert "parameters" not in query
    assert args == []


def test_schema_creates_both_tables():
    schema = "\n".join(SCHEMA_STATEMENTS)

    assert "CREATE TABLE IF NOT EXISTS data_file_metadata" in schema
    assert "CREATE TABLE IF NOT EXISTS data_record_index" in schema
    assert "USING GIN (parameters)" in schema


def test_pool_is_lazy():
    pool = PostgreSQLConnectionPool(dsn="postgresql://envdata@localhost/envdata")

    assert pool.pool is None
    assert pool.dsn == "postgresql://envdata@localhost/envdata"
