import asyncio
from typing import Any, Dict, List, Optional

from app.workers import celery_app
from app.config import settings
from app.exceptions import AuthenticationException, QaHubException
from app.logging_config import logger
from app.schemas.duplicates import DuplicateGroup
from app.schemas.test_case import ParsedRow
from app.services.duplicates import collect_repository_test_cases, find_duplicate_groups
from app.services.importer import BulkImportReconciler
from app.services.merge import MergeEngine
from app.services.store import StoreFactory


def _progress_reporter(task):
    def report(current: int, total: int) -> None:
        task.update_state(state="PROGRESS", meta={"current": current, "total": total})
    return report


def _error_result(e: Exception) -> Dict[str, Any]:
    if isinstance(e, AuthenticationException):
        return {"status": "error", "message": e.message, "error": e.to_dict(), "redirect_to": e.redirect_to}
    if isinstance(e, QaHubException):
        return {"status": "error", "message": e.message, "error": e.to_dict()}
    return {"status": "error", "message": str(e)}


@celery_app.task(bind=True)
def bulk_import_task(self, project_id: str, repository_id: str, suite_id: str, rows: List[Dict[str, Any]]) -> Dict:
    """
    解析済みのCSV行をスイートへインポートするCeleryタスク

    Args:
        project_id: プロジェクトID
        repository_id: リポジトリID
        suite_id: インポート先のスイートID
        rows: ParsedRow.to_payload() の形の行

    Returns:
        dict: インポート結果（created / updated / failed / errors）
    """
    try:
        parsed = [ParsedRow.model_validate(row) for row in rows]

        async def run():
            async with StoreFactory.create_from_settings(project_id, repository_id) as service:
                reconciler = BulkImportReconciler(service)
                return await reconciler.run(suite_id, parsed, on_progress=_progress_reporter(self))

        result = asyncio.run(run())
        return {"status": "completed", **result.model_dump()}

    except QaHubException as e:
        logger.error(f"Error importing test cases into suite {suite_id}: {e}")
        return _error_result(e)
    except Exception as e:
        logger.error(f"Unexpected error importing test cases: {e}", exc_info=True)
        return _error_result(e)


@celery_app.task(bind=True)
def merge_all_task(
    self,
    project_id: str,
    repository_id: str,
    groups: Optional[List[Dict[str, Any]]] = None
) -> Dict:
    """
    重複グループをすべてマージするCeleryタスク

    Args:
        project_id: プロジェクトID
        repository_id: リポジトリID
        groups: DuplicateGroup の辞書表現。省略時はリポジトリ全体から重複を検出し直す

    Returns:
        dict: マージ結果と表示用のサマリー
    """
    try:
        async def run():
            async with StoreFactory.create_from_settings(project_id, repository_id) as service:
                if groups is None:
                    test_cases = await collect_repository_test_cases(service)
                    duplicate_groups = find_duplicate_groups(test_cases)
                else:
                    duplicate_groups = [DuplicateGroup.model_validate(g) for g in groups]
                engine = MergeEngine(service)
                return await engine.merge_all(duplicate_groups, on_progress=_progress_reporter(self))

        result = asyncio.run(run())
        return {
            "status": "completed",
            "summary": result.summary(settings.MERGE_ERROR_PREVIEW),
            **result.model_dump(),
        }

    except QaHubException as e:
        logger.error(f"Error merging duplicates for repository {repository_id}: {e}")
        return _error_result(e)
    except Exception as e:
        logger.error(f"Unexpected error merging duplicates: {e}", exc_info=True)
        return _error_result(e)
