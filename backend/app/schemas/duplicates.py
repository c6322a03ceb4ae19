from typing import Any, List, Optional

from pydantic import BaseModel, Field

from app.schemas.test_case import TestCaseRecord, TestCaseRef


class DuplicateGroup(BaseModel):
    """タイトルが互いに類似したテストケースの組（永続化しない）"""
    test_cases: List[TestCaseRecord] = Field(default_factory=list)
    similarity: float = 100.0

    @property
    def ids(self) -> List[str]:
        return [tc.id for tc in self.test_cases]


class FieldDifference(BaseModel):
    field: str
    left: Optional[Any] = None
    right: Optional[Any] = None


class ComparePairRequest(BaseModel):
    left: TestCaseRef
    right: TestCaseRef


class MergePairRequest(BaseModel):
    keep: TestCaseRef
    merge: TestCaseRef


class MergeAllRequest(BaseModel):
    # 省略時はサーバー側でリポジトリ全体から再計算する
    groups: Optional[List[DuplicateGroup]] = None
