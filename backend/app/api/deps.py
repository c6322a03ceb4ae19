from fastapi import Depends
from sqlmodel import Session

from app.models import get_session
from app.services.store import StoreFactory, TestCaseRepositoryService


async def get_repository_service(
    project_id: str,
    repo_id: str,
    session: Session = Depends(get_session),
):
    """
    リクエスト単位のリポジトリサービスを提供する

    Args:
        project_id: プロジェクトID
        repo_id: リポジトリID
        session: sql バックエンドで使うセッション

    Yields:
        設定の STORE_BACKEND に従ったリポジトリサービス
    """
    service: TestCaseRepositoryService = StoreFactory.create_from_settings(project_id, repo_id, session=session)
    try:
        yield service
    finally:
        await service.aclose()
