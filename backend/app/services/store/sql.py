"""
SQLModel をバックエンドとするテストケースリポジトリサービス

ローカル実行やエンドツーエンドテスト用。存在しない行へのアクセスは REST API と同じく
RemoteServiceException(404) として通知する。
"""

import math
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from app.exceptions import RemoteServiceException
from app.logging_config import logger
from app.models import Suite, TestCase
from app.models.base import utc_now
from app.schemas.suite import SuiteRecord, SuiteUpdate
from app.schemas.test_case import TestCaseFields, TestCasePage, TestCaseRecord, TestCaseUpdate
from app.services.store.base import TestCaseRepositoryService

# SQLモデルの列名とペイロードのフィールド名は同じ（snake_case）
_SCALAR_FIELDS = (
    "title",
    "description",
    "automated",
    "priority",
    "severity",
    "labels",
    "regression",
    "epic_link",
    "linked_issue",
    "release_version",
    "platform",
)


def _to_record(row: TestCase) -> TestCaseRecord:
    return TestCaseRecord(
        id=row.id,
        suite_id=row.suite_id,
        suite_title=row.suite.title if row.suite else None,
        order=row.order,
        created_at=row.created_at,
        updated_at=row.updated_at,
        created_by=row.created_by,
        updated_by=row.updated_by,
        data=row.data,
        **{name: getattr(row, name) for name in _SCALAR_FIELDS},
    )


def _data_to_column(fields) -> Optional[Dict]:
    if fields.data is None:
        return None
    return fields.data.to_wire() or None


class SQLTestCaseService(TestCaseRepositoryService):
    """1つのリポジトリIDに属するスイートとテストケースを Session 経由で操作する"""

    def __init__(self, session: Session, repository_id: str, owns_session: bool = False):
        self.session = session
        self.repository_id = str(repository_id)
        self._owns_session = owns_session

    async def aclose(self) -> None:
        if self._owns_session:
            self.session.close()

    def _suite_or_404(self, suite_id: str) -> Suite:
        suite = self.session.get(Suite, suite_id)
        if suite is None or suite.repository_id != self.repository_id:
            raise RemoteServiceException(404, "Suite not found", details={"suite_id": suite_id})
        return suite

    def _test_case_or_404(self, test_case_id: str, suite_id: Optional[str] = None) -> TestCase:
        row = self.session.get(TestCase, test_case_id)
        if row is None or (suite_id is not None and row.suite_id != suite_id):
            raise RemoteServiceException(404, "Test case not found", details={"test_case_id": test_case_id})
        self._suite_or_404(row.suite_id)
        return row

    async def list_test_cases(self, suite_id: str, page: int = 1, limit: int = 20) -> TestCasePage:
        self._suite_or_404(suite_id)
        total = self.session.exec(
            select(func.count()).select_from(TestCase).where(TestCase.suite_id == suite_id)
        ).one()
        rows = self.session.exec(
            select(TestCase)
            .where(TestCase.suite_id == suite_id)
            .order_by(TestCase.order, TestCase.created_at)
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return TestCasePage(
            test_cases=[_to_record(row) for row in rows],
            page=page,
            limit=limit,
            total=total,
            total_pages=max(1, math.ceil(total / limit)) if limit else 1,
        )

    async def get_test_case(self, suite_id: str, test_case_id: str) -> TestCaseRecord:
        return _to_record(self._test_case_or_404(test_case_id, suite_id))

    async def create_test_case(self, suite_id: str, payload: TestCaseFields) -> TestCaseRecord:
        self._suite_or_404(suite_id)
        row = TestCase(
            suite_id=suite_id,
            data=_data_to_column(payload),
            **{name: getattr(payload, name) for name in _SCALAR_FIELDS},
        )
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        logger.debug(f"Created test case {row.id} in suite {suite_id}")
        return _to_record(row)

    async def update_test_case(self, suite_id: str, test_case_id: str, update: TestCaseUpdate) -> TestCaseRecord:
        row = self._test_case_or_404(test_case_id, suite_id)
        for name in update.model_fields_set:
            if name == "data":
                row.data = _data_to_column(update)
            else:
                setattr(row, name, getattr(update, name))
        row.updated_at = utc_now()
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return _to_record(row)

    async def delete_test_case(self, suite_id: str, test_case_id: str) -> None:
        row = self._test_case_or_404(test_case_id, suite_id)
        self.session.delete(row)
        self.session.commit()

    async def move_test_case(self, test_case_id: str, target_suite_id: str) -> TestCaseRecord:
        row = self._test_case_or_404(test_case_id)
        self._suite_or_404(target_suite_id)
        row.suite_id = target_suite_id
        row.updated_at = utc_now()
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return _to_record(row)

    def _test_case_counts(self) -> Dict[str, int]:
        rows = self.session.exec(
            select(TestCase.suite_id, func.count())
            .join(Suite, Suite.id == TestCase.suite_id)
            .where(Suite.repository_id == self.repository_id)
            .group_by(TestCase.suite_id)
        ).all()
        return {suite_id: count for suite_id, count in rows}

    def _to_suite_record(self, suite: Suite, child_counts: Dict[str, int], case_counts: Dict[str, int]) -> SuiteRecord:
        return SuiteRecord(
            id=suite.id,
            title=suite.title,
            parent_id=suite.parent_id,
            order=suite.order,
            child_count=child_counts.get(suite.id, 0),
            test_case_count=case_counts.get(suite.id, 0),
        )

    def _suites(self) -> List[Suite]:
        return list(self.session.exec(select(Suite).where(Suite.repository_id == self.repository_id)).all())

    async def list_suites(self) -> List[SuiteRecord]:
        suites = self._suites()
        child_counts: Dict[str, int] = {}
        for suite in suites:
            if suite.parent_id:
                child_counts[suite.parent_id] = child_counts.get(suite.parent_id, 0) + 1
        case_counts = self._test_case_counts()
        return [self._to_suite_record(s, child_counts, case_counts) for s in suites]

    async def get_suite(self, suite_id: str) -> Optional[SuiteRecord]:
        suite = self.session.get(Suite, suite_id)
        if suite is None or suite.repository_id != self.repository_id:
            return None
        children = [s for s in self._suites() if s.parent_id == suite.id]
        return self._to_suite_record(suite, {suite.id: len(children)}, self._test_case_counts())

    async def create_suite(self, title: str, parent_id: Optional[str] = None) -> SuiteRecord:
        if parent_id is not None:
            self._suite_or_404(parent_id)
        siblings = [s.order or 0 for s in self._suites() if s.parent_id == parent_id]
        suite = Suite(
            repository_id=self.repository_id,
            title=title,
            parent_id=parent_id,
            order=max(siblings, default=0) + 1,
        )
        self.session.add(suite)
        self.session.commit()
        self.session.refresh(suite)
        logger.info(f"Created suite {suite.id} ({title})")
        return self._to_suite_record(suite, {}, {})

    async def delete_suite(self, suite_id: str) -> None:
        suite = self._suite_or_404(suite_id)
        by_parent: Dict[Optional[str], List[Suite]] = {}
        for s in self._suites():
            by_parent.setdefault(s.parent_id, []).append(s)

        # 子孫スイートとそのテストケースもまとめて削除する
        doomed = [suite]
        index = 0
        while index < len(doomed):
            doomed.extend(by_parent.get(doomed[index].id, []))
            index += 1
        for s in reversed(doomed):
            for row in self.session.exec(select(TestCase).where(TestCase.suite_id == s.id)).all():
                self.session.delete(row)
            self.session.delete(s)
        self.session.commit()

    async def update_suite(self, suite_id: str, update: SuiteUpdate) -> SuiteRecord:
        suite = self._suite_or_404(suite_id)
        if "parent_id" in update.model_fields_set:
            if update.parent_id is not None:
                self._suite_or_404(update.parent_id)
            suite.parent_id = update.parent_id
        if "order" in update.model_fields_set:
            suite.order = update.order
        if "title" in update.model_fields_set and update.title is not None:
            suite.title = update.title
        suite.updated_at = utc_now()
        self.session.add(suite)
        self.session.commit()
        self.session.refresh(suite)
        return self._to_suite_record(suite, {}, {})
