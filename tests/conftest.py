"""
Pytest configuration and fixtures for inventory-import-pipeline tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
from __future__ import annotations

import os
from collections.abc import Iterable, Iterator
from typing import Any, Generator
from uuid import UUID

import psycopg
import pytest
from pyspark.sql import SparkSession
from testcontainers.postgres import PostgresContainer

from inventory_pipeline.core.exceptions import SessionNotFoundError, StagingRecordNotFoundError
from inventory_pipeline.core.models import TERMINAL_STATUSES, StagingRecord, UploadSession, utc_now
from inventory_pipeline.warehouse.connection import DatabaseConnectionPool
from inventory_pipeline.warehouse.sessions import COUNTER_FIELDS


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# SPARK FIXTURES
# =======================

@pytest.fixture(scope="session")
def spark_session() -> Generator[SparkSession, None, None]:
    """
    Create a Spark session for testing with local mode

    Yields:
        SparkSession configured for local testing
    """
    spark = (
        SparkSession.builder
        .appName("inventory-import-test")
        .master("local[2]")
        .config("spark.sql.shuffle.partitions", "2")
        .config("spark.driver.memory", "1g")
        .config("spark.ui.enabled", "false")  # Disable UI for tests
        .config("spark.sql.warehouse.dir", "/tmp/spark-warehouse")
        .getOrCreate()
    )

    # Set log level to WARN to reduce test output noise
    spark.sparkContext.setLogLevel("WARN")

    yield spark

    spark.stop()


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance with the import schema applied
    """
    with PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_pipeline",
        password="test_password",
        dbname="test_inventory",
        driver=None,
    ) as postgres:
        init_sql_path = os.path.join(
            os.path.dirname(os.path.dirname(__file__)),
            "docker",
            "init-db.sql"
        )

        with open(init_sql_path) as f:
            init_sql = f.read()

        with psycopg.connect(postgres.get_connection_url()) as conn:
            with conn.cursor() as cur:
                cur.execute(init_sql)
            conn.commit()

        yield postgres


@pytest.fixture(scope="session")
def db_pool(postgres_container) -> Generator[DatabaseConnectionPool, None, None]:
    """
    Connection pool against the test container, shared by the session
    """
    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_inventory",
        user="test_pipeline",
        password="test_password",
        min_size=1,
        max_size=4,
    )
    pool.open()
    yield pool
    pool.close()


@pytest.fixture(scope="function")
def clean_db(db_pool) -> DatabaseConnectionPool:
    """
    Provide a clean database by truncating all tables before each test

    Returns:
        The shared pool, with empty tables
    """
    db_pool.execute_command("TRUNCATE TABLE staging_record, upload_session, inventory CASCADE")
    return db_pool


# =======================
# IN-MEMORY REPOSITORIES
# =======================

class FakeSessionRepository:
    """Dict-backed stand-in for UploadSessionRepository."""

    def __init__(self):
        self.sessions: dict[UUID, UploadSession] = {}
        self.progress_calls: list[dict[str, int]] = []
        self.fail_updates_after: int | None = None

    def create(self, session: UploadSession) -> UploadSession:
        self.sessions[session.id] = session
        return session

    def get(self, session_id: UUID) -> UploadSession:
        if session_id not in self.sessions:
            raise SessionNotFoundError(str(session_id))
        return self.sessions[session_id]

    def list(self, limit: int = 50, batch_id: UUID | None = None) -> list[UploadSession]:
        rows = [s for s in self.sessions.values() if batch_id is None or s.batch_id == batch_id]
        rows.sort(key=lambda s: (s.created_at, s.chunk_number), reverse=True)
        return rows[:limit]

    def chunks_for_batch(self, batch_id: UUID) -> list[UploadSession]:
        return sorted(
            (s for s in self.sessions.values() if s.batch_id == batch_id),
            key=lambda s: s.chunk_number,
        )

    def update_progress(self, session_id: UUID, **deltas: int) -> UploadSession:
        if self.fail_updates_after is not None and len(self.progress_calls) >= self.fail_updates_after:
            raise psycopg.OperationalError("connection lost")
        unknown = set(deltas) - set(COUNTER_FIELDS)
        if unknown:
            raise ValueError(f"Unknown session counters: {sorted(unknown)}")
        session = self.get(session_id)
        self.progress_calls.append(dict(deltas))
        updated = session.model_copy(
            update={
                **{name: getattr(session, name) + value for name, value in deltas.items()},
                "updated_at": utc_now(),
            }
        )
        self.sessions[session_id] = updated
        return updated

    def transition(self, session_id: UUID, status: str, error_message: str | None = None) -> UploadSession:
        session = self.get(session_id)
        if session.status == "completed":
            return session
        now = utc_now()
        updated = session.model_copy(
            update={
                "status": status,
                "error_message": error_message,
                "updated_at": now,
                "started_at": session.started_at or (now if status == "processing" else None),
                "completed_at": now if status in TERMINAL_STATUSES else None,
            }
        )
        self.sessions[session_id] = updated
        return updated

    def delete(self, session_id: UUID) -> bool:
        return self.sessions.pop(session_id, None) is not None


class FakeStagingRepository:
    """Dict-backed stand-in for StagingRepository."""

    def __init__(self):
        self.records: dict[UUID, StagingRecord] = {}

    def insert_batch(self, session_id: UUID, records: Iterable[StagingRecord]) -> int:
        taken = {(r.upload_session_id, r.row_number) for r in self.records.values()}
        inserted = 0
        for record in records:
            if (session_id, record.row_number) in taken:
                continue
            self.records[record.id] = record.model_copy(update={"upload_session_id": session_id})
            inserted += 1
        return inserted

    def get(self, record_id: UUID) -> StagingRecord:
        if record_id not in self.records:
            raise StagingRecordNotFoundError(str(record_id))
        return self.records[record_id]

    def update(self, record_id: UUID, changes: dict[str, Any], cur=None) -> StagingRecord:
        record = self.get(record_id)
        updated = record.model_copy(update={**changes, "updated_at": utc_now()})
        self.records[record_id] = updated
        return updated

    def for_session(self, session_id: UUID) -> list[StagingRecord]:
        return sorted(
            (r for r in self.records.values() if r.upload_session_id == session_id),
            key=lambda r: r.row_number,
        )

    def iter_session(self, session_id: UUID, statuses=None, page_size: int = 500) -> Iterator[StagingRecord]:
        for record in self.for_session(session_id):
            if statuses is None or record.validation_status in statuses:
                yield record

    def get_many(self, record_ids: Iterable[UUID]) -> list[StagingRecord]:
        return [self.records[i] for i in record_ids if i in self.records]

    def vcpns_for_session(self, session_id: UUID, before_row: int | None = None) -> set[str]:
        return {
            r.vcpn
            for r in self.for_session(session_id)
            if r.vcpn and (before_row is None or r.row_number < before_row)
        }

    def get_by_row_numbers(self, session_id: UUID, row_numbers: Iterable[int]) -> list[StagingRecord]:
        wanted = set(row_numbers)
        return [r for r in self.for_session(session_id) if r.row_number in wanted]

    def delete(self, record_id: UUID) -> bool:
        return self.records.pop(record_id, None) is not None


class ListSource:
    """In-memory upload with the same surface as CSVSource."""

    def __init__(self, headers: list[str], rows: list[list[str]], original_filename: str = "vendor.csv"):
        self.headers = headers
        self.rows = rows
        self.path = f"/uploads/{original_filename}"
        self.original_filename = original_filename
        self.file_size = sum(len(",".join(r)) + 1 for r in [headers, *rows])
        self.total_rows = len(rows)
        self.reads: list[int] = []

    def iter_rows(self, start: int = 0) -> Iterator[list[str]]:
        self.reads.append(start)
        for row in self.rows[start:]:
            yield list(row)


@pytest.fixture
def fake_sessions() -> FakeSessionRepository:
    return FakeSessionRepository()


@pytest.fixture
def fake_staging() -> FakeStagingRepository:
    return FakeStagingRepository()


@pytest.fixture
def fake_repositories():
    """Fresh (sessions, staging) fake pairs, for tests that need more than one."""

    def _make():
        return FakeSessionRepository(), FakeStagingRepository()

    return _make


@pytest.fixture
def list_source_factory():
    """Build ListSource objects without importing conftest from tests."""
    return ListSource


# =======================
# FILE FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_data_dir() -> str:
    """
    Get path to test data fixtures directory

    Returns:
        Path to tests/fixtures directory
    """
    return os.path.join(os.path.dirname(__file__), "fixtures")


@pytest.fixture
def write_csv(tmp_path):
    """Write rows to a CSV file under tmp_path and return its path."""

    def _write(name: str, lines: list[str]) -> str:
        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return str(path)

    return _write


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_env_vars():
    """
    Set test environment variables

    This fixture loads test.env and sets environment variables
    """
    from dotenv import load_dotenv

    env_path = os.path.join(
        os.path.dirname(os.path.dirname(__file__)),
        "config",
        "test.env"
    )

    if os.path.exists(env_path):
        load_dotenv(env_path, override=True)
