"""
テストケースリポジトリサービスの抽象インターフェース

重複検出・マージ・インポート・スイート並べ替えの各ワークフローは、このインターフェースを通じてのみ
テストケースとスイートを読み書きする。失敗は RemoteServiceException（HTTPステータス相当のコードと
メッセージを持つ）として通知される。
"""

import abc
from typing import List, Optional

from app.schemas.suite import SuiteRecord, SuiteUpdate
from app.schemas.test_case import TestCaseFields, TestCasePage, TestCaseRecord, TestCaseUpdate

DEFAULT_PAGE_SIZE = 100


class TestCaseRepositoryService(abc.ABC):
    """1つのリポジトリ（プロジェクト内のスイート群）に対する操作"""
    __test__ = False

    @abc.abstractmethod
    async def list_test_cases(self, suite_id: str, page: int = 1, limit: int = 20) -> TestCasePage:
        """スイート内のテストケースを1ページ分取得する"""
        pass

    @abc.abstractmethod
    async def get_test_case(self, suite_id: str, test_case_id: str) -> TestCaseRecord:
        pass

    @abc.abstractmethod
    async def create_test_case(self, suite_id: str, payload: TestCaseFields) -> TestCaseRecord:
        pass

    @abc.abstractmethod
    async def update_test_case(self, suite_id: str, test_case_id: str, update: TestCaseUpdate) -> TestCaseRecord:
        """部分更新。update で明示的に設定されたフィールドのみ変更する"""
        pass

    @abc.abstractmethod
    async def delete_test_case(self, suite_id: str, test_case_id: str) -> None:
        pass

    @abc.abstractmethod
    async def move_test_case(self, test_case_id: str, target_suite_id: str) -> TestCaseRecord:
        pass

    @abc.abstractmethod
    async def list_suites(self) -> List[SuiteRecord]:
        pass

    @abc.abstractmethod
    async def get_suite(self, suite_id: str) -> Optional[SuiteRecord]:
        """スイートを取得する。存在しない場合は None"""
        pass

    @abc.abstractmethod
    async def create_suite(self, title: str, parent_id: Optional[str] = None) -> SuiteRecord:
        pass

    @abc.abstractmethod
    async def delete_suite(self, suite_id: str) -> None:
        pass

    @abc.abstractmethod
    async def update_suite(self, suite_id: str, update: SuiteUpdate) -> SuiteRecord:
        """親・並び順・タイトルの部分更新"""
        pass

    async def rename_suite(self, suite_id: str, title: str) -> SuiteRecord:
        return await self.update_suite(suite_id, SuiteUpdate(title=title))

    async def list_all_test_cases(self, suite_id: str, page_size: int = DEFAULT_PAGE_SIZE) -> List[TestCaseRecord]:
        """
        スイート内の全テストケースをページを辿って取得する

        Args:
            suite_id: スイートID
            page_size: 1ページあたりの件数

        Returns:
            全テストケース
        """
        records: List[TestCaseRecord] = []
        page = 1
        while True:
            result = await self.list_test_cases(suite_id, page=page, limit=page_size)
            records.extend(result.test_cases)
            if page >= result.total_pages or not result.test_cases:
                return records
            page += 1

    async def aclose(self) -> None:
        """保持しているリソースを解放する"""
        return None

    async def __aenter__(self) -> "TestCaseRepositoryService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
