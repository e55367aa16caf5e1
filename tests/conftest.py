"""Shared test fixtures."""
import re
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from tablesync.config import Settings
from tablesync.db.engine import init_db
from tablesync.models.config import SyncConfig
from tablesync.models.job import JobStatus, SyncJob
from tablesync.remote.client import QueryStatus, StatusDetail
from tablesync.remote.credentials import Credentials
from tablesync.remote.polling import PollPolicy

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0)


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="file_engine")
def file_engine_fixture(tmp_path):
    """File-backed SQLite engine: every session gets its own connection, as in production."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'tablesync-test.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="test_session")
def test_session_fixture(engine):
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="credentials")
def credentials_fixture() -> Credentials:
    return Credentials(
        tenant="ACME_TST",
        key_id="ACME_TST#saak",
        key_secret="sask-secret",
        client_id="ACME_TST~client",
        client_secret="client-secret",
        api_base_url="https://ion.example.com",
        sso_base_url="https://sso.example.com/ACME_TST/as/",
    )


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    return Settings(
        database_url="sqlite://",
        result_page_size=1000,
        invocation_budget_seconds=240,
        poll_interval_seconds=0.0,
        poll_max_attempts=10,
        poll_backoff_factor=1.0,
        poll_max_interval_seconds=0.0,
    )


@pytest.fixture(name="fast_policy")
def fast_policy_fixture() -> PollPolicy:
    return PollPolicy(interval=0.0, max_attempts=10, backoff_factor=1.0, max_interval=0.0)


# ─── Remote data ──────────────────────────────────────────────────────────────

def make_taskdetail_rows(
    count: int,
    whseid: str = "wmwhse1",
    start: datetime = datetime(2024, 1, 1, 8, 0),
    qty: str = "5",
) -> List[Dict[str, Any]]:
    """Remote-shaped taskdetail rows with increasing ADDDATE."""
    return [
        {
            "WHSEID": whseid,
            "TASKDETAILKEY": f"{i:010d}",
            "SERIALKEY": i,
            "TASKTYPE": "PK",
            "QTY": qty,
            "ADDDATE": (start + timedelta(minutes=i)).strftime("%Y-%m-%dT%H:%M:%S.000Z"),
            "EDITDATE": (start + timedelta(minutes=i)).strftime("%Y-%m-%dT%H:%M:%S.000Z"),
        }
        for i in range(count)
    ]


class FakeRemoteClient:
    """
    In-memory stand-in for RemoteQueryClient.

    Paged queries are answered from `rows` using the LIMIT/OFFSET in the SQL;
    count queries return len(rows). `status` fixes the status every poll
    reports; `on_submit(n)` runs before the n-th submit is answered.
    """

    def __init__(
        self,
        rows: List[Dict[str, Any]],
        status: QueryStatus = QueryStatus.COMPLETED,
        message: Optional[str] = None,
        on_submit: Optional[Callable[[int], None]] = None,
    ):
        self.rows = rows
        self.status = status
        self.message = message
        self.on_submit = on_submit
        self.submitted: List[str] = []
        self.status_checks = 0
        self.fetches: List[tuple] = []
        self._results: Dict[str, List[Dict[str, Any]]] = {}

    async def submit(self, sql: str) -> str:
        self.submitted.append(sql)
        if self.on_submit is not None:
            self.on_submit(len(self.submitted))
        query_id = f"q{len(self.submitted)}"
        paged = re.search(r"LIMIT (\d+) OFFSET (\d+)", sql)
        if "COUNT(*)" in sql:
            self._results[query_id] = [{"count": len(self.rows)}]
        elif paged:
            limit, offset = int(paged.group(1)), int(paged.group(2))
            self._results[query_id] = self.rows[offset:offset + limit]
        else:
            self._results[query_id] = list(self.rows)
        return query_id

    async def status_detail(self, query_id: str) -> StatusDetail:
        self.status_checks += 1
        return StatusDetail(status=self.status, raw_status=self.status.value.upper(), message=self.message)

    async def status(self, query_id: str) -> QueryStatus:
        return (await self.status_detail(query_id)).status

    async def fetch_page(self, query_id: str, offset: int, limit: int) -> List[Dict[str, Any]]:
        self.fetches.append((query_id, offset, limit))
        return self._results[query_id][offset:offset + limit]


@pytest.fixture(name="make_rows")
def make_rows_fixture():
    return make_taskdetail_rows


@pytest.fixture(name="fake_remote")
def fake_remote_fixture():
    """Factory: fake_remote(rows, **kwargs) -> FakeRemoteClient."""
    return FakeRemoteClient


@pytest.fixture(name="taskdetail_config")
def taskdetail_config_fixture() -> SyncConfig:
    return SyncConfig(
        table_id="taskdetail",
        table_name="Task Detail",
        enabled=True,
        batch_size=100,
        max_records=500,
        options={"whseid": "wmwhse1"},
    )


@pytest.fixture(name="make_job")
def make_job_fixture():
    """Factory for persisted-shape SyncJob rows."""

    def _make(job_id: str = "job-1", status: JobStatus = JobStatus.IN_PROGRESS, **fields) -> SyncJob:
        values = dict(
            job_id=job_id,
            table_id="taskdetail",
            whseid="wmwhse1",
            status=status.value,
            start_time=datetime(2024, 6, 1, 11, 0),
        )
        values.update(fields)
        return SyncJob(**values)

    return _make
