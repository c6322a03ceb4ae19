from .base import TimestampModel, get_session, engine
from .suite import Suite
from .test_case import TestCase

__all__ = [
    "TimestampModel", "get_session", "engine",
    "Suite", "TestCase",
]

def init_db():
    """データベーススキーマを初期化する"""
    from sqlmodel import SQLModel

    SQLModel.metadata.create_all(engine)
