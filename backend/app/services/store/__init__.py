"""
テストケースリポジトリサービスのファクトリー
"""

from typing import Any, Optional

from sqlmodel import Session

from app.config import settings
from app.exceptions import ConfigurationException
from app.services.store.base import TestCaseRepositoryService
from app.services.store.http import CredentialStore, HttpTestCaseService
from app.services.store.sql import SQLTestCaseService

__all__ = [
    "TestCaseRepositoryService",
    "CredentialStore",
    "HttpTestCaseService",
    "SQLTestCaseService",
    "StoreFactory",
]


class StoreFactory:
    """リポジトリサービスのファクトリークラス"""

    @staticmethod
    def create(
        backend: str,
        project_id: str,
        repository_id: str,
        session: Optional[Session] = None,
        **kwargs: Any
    ) -> TestCaseRepositoryService:
        """
        リポジトリサービスを作成する

        Args:
            backend: バックエンドの種類 ("http" または "sql")
            project_id: プロジェクトID
            repository_id: リポジトリID
            session: sql バックエンドで使うセッション（省略時は新規に開き、aclose() で閉じる）
            **kwargs: バックエンド固有のパラメータ

        Returns:
            リポジトリサービス
        """
        backend = (backend or "").lower()
        if backend == "http":
            return HttpTestCaseService(project_id, repository_id, **kwargs)
        if backend == "sql":
            if session is None:
                from app.models import engine
                return SQLTestCaseService(Session(engine), repository_id, owns_session=True)
            return SQLTestCaseService(session, repository_id)
        raise ConfigurationException(
            f"Unsupported store backend: {backend}",
            details={"backend": backend}
        )

    @staticmethod
    def create_from_settings(
        project_id: str,
        repository_id: str,
        session: Optional[Session] = None
    ) -> TestCaseRepositoryService:
        """設定の STORE_BACKEND に従ってリポジトリサービスを作成する"""
        return StoreFactory.create(settings.STORE_BACKEND, project_id, repository_id, session=session)
