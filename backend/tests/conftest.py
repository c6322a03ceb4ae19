import pytest
import os
from datetime import datetime, timedelta, UTC
from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy.pool import StaticPool

os.environ["TESTING"] = "1"
os.environ["STORE_BACKEND"] = "sql"

import app.config
app.config.settings.STORE_BACKEND = "sql"
app.config.settings.RETRY_API_CALL_MAX_RETRIES = 0

from app.models import Suite, TestCase
from app.schemas.test_case import TestCaseRecord
from app.services.store import SQLTestCaseService

REPOSITORY_ID = "repo-1"
PROJECT_ID = "project-1"


@pytest.fixture(name="engine")
def engine_fixture():
    """テスト用のインメモリSQLiteエンジン（全接続で同じDBを共有する）"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="session")
def session_fixture(engine):
    """テスト用のインメモリSQLiteデータベースセッションを作成"""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="store")
def store_fixture(session):
    """SQLバックエンドのリポジトリサービス"""
    return SQLTestCaseService(session, REPOSITORY_ID)


@pytest.fixture(name="make_suite")
def make_suite_fixture(session):
    """スイートを作成するファクトリー"""
    def make(title: str, parent_id: str = None, order: int = None, suite_id: str = None, repository_id: str = REPOSITORY_ID) -> Suite:
        suite = Suite(repository_id=repository_id, title=title, parent_id=parent_id, order=order)
        if suite_id:
            suite.id = suite_id
        session.add(suite)
        session.commit()
        session.refresh(suite)
        return suite
    return make


@pytest.fixture(name="make_test_case")
def make_test_case_fixture(session):
    """テストケースを作成するファクトリー"""
    def make(suite_id: str, title: str, **fields) -> TestCase:
        row = TestCase(suite_id=suite_id, title=title, **fields)
        session.add(row)
        session.commit()
        session.refresh(row)
        return row
    return make


@pytest.fixture(name="record")
def record_fixture():
    """TestCaseRecord を作成するファクトリー（created_at は minutes 分だけ基準時刻からずらす）"""
    base = datetime(2024, 1, 1, tzinfo=UTC)

    def make(test_case_id: str, title: str, minutes: int = 0, **fields) -> TestCaseRecord:
        fields.setdefault("suite_id", "suite-1")
        return TestCaseRecord(id=test_case_id, title=title, created_at=base + timedelta(minutes=minutes), **fields)
    return make
