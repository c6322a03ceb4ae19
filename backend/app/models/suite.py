from sqlmodel import Field, Relationship
from typing import Optional, List
from uuid import uuid4
from .base import TimestampModel

class Suite(TimestampModel, table=True):
    __tablename__ = "suite"
    """テストスイートモデル（親参照による森構造）"""
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    repository_id: str = Field(index=True)
    title: str
    parent_id: Optional[str] = Field(default=None, foreign_key="suite.id", index=True)
    # 兄弟内での並び順。None は末尾扱い
    order: Optional[int] = None

    # リレーションシップ
    test_cases: List["TestCase"] = Relationship(back_populates="suite")
