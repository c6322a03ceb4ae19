from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SuiteRecord(BaseModel):
    """フラットなスイート。parent_id による自己参照で森を構成する"""
    id: str
    title: str
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    order: Optional[int] = None
    child_count: int = Field(default=0, alias="childCount")
    test_case_count: int = Field(default=0, alias="testCaseCount")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        values = dict(values)
        for key in ("id", "parentId", "parent_id"):
            if values.get(key) is not None:
                values[key] = str(values[key])
        counts = values.pop("counts", None)
        if isinstance(counts, dict):
            values.setdefault("childCount", counts.get("children", 0))
            values.setdefault("testCaseCount", counts.get("testCases", 0))
        values.pop("parent", None)
        return values

    @property
    def sort_order(self) -> int:
        return self.order or 0


class SuiteNode(BaseModel):
    """ツリー表示用のノード"""
    suite: SuiteRecord
    children: List["SuiteNode"] = Field(default_factory=list)

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()


class DropIntent(str, Enum):
    """ドラッグ＆ドロップの移動意図"""
    CHILD = "child"
    BEFORE = "sibling-above"
    AFTER = "sibling-below"
    PARENT = "parent"
    ROOT = "root"


class SuiteUpdate(BaseModel):
    """スイートの部分更新。parent_id=None はルートへの移動を意味するので exclude_unset で送る"""
    title: Optional[str] = None
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    order: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class OrderShift(BaseModel):
    suite_id: str
    order: int


class MovePlan(BaseModel):
    """移動1回分の計画。shifts を先に適用してから本体を更新する"""
    suite_id: str
    intent: DropIntent
    parent_id: Optional[str] = None
    order: int
    shifts: List[OrderShift] = Field(default_factory=list)


class MoveSuiteRequest(BaseModel):
    target_suite_id: Optional[str] = None
    intent: DropIntent


class MoveSuiteResponse(BaseModel):
    plan: Optional[MovePlan] = None
    tree: List[SuiteNode] = Field(default_factory=list)
