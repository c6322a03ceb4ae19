"""
テストケースの一括移動・一括削除

どちらも1件ずつ順に呼び出し、失敗は「タイトル: メッセージ」としてまとめて報告する。
"""

from typing import Dict, Optional, Sequence

from app.logging_config import logger
from app.schemas.batch import BatchResult
from app.schemas.test_case import TestCaseRecord
from app.services.store.base import TestCaseRepositoryService
from app.exceptions import error_message_from
from app.utils.pipeline import CancellationToken, ProgressCallback, sequential_pipeline


def _label(test_case_id: str, titles: Dict[str, str]) -> str:
    return titles.get(test_case_id) or test_case_id


async def _collect(result: BatchResult, pipeline, titles: Dict[str, str]) -> BatchResult:
    processed = 0
    async for outcome in pipeline:
        processed += 1
        if not outcome.ok:
            result.record_failure(f"{_label(outcome.item, titles)}: {error_message_from(outcome.error)}")
        else:
            result.record_success()
    result.cancelled = processed < result.total
    return result


async def bulk_move_test_cases(
    service: TestCaseRepositoryService,
    test_case_ids: Sequence[str],
    target_suite_id: str,
    titles: Optional[Dict[str, str]] = None,
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> BatchResult:
    """
    テストケースを別のスイートへ移動する

    Args:
        service: リポジトリサービス
        test_case_ids: 移動するテストケースID
        target_suite_id: 移動先スイートID
        titles: エラーメッセージに使う ID → タイトル
        on_progress: 進捗コールバック
        cancel_token: キャンセルトークン

    Returns:
        成功・失敗件数とエラーメッセージ
    """
    async def move(test_case_id: str) -> TestCaseRecord:
        return await service.move_test_case(test_case_id, target_suite_id)

    result = BatchResult(total=len(test_case_ids))
    pipeline = sequential_pipeline(
        list(test_case_ids), move, cancel_token=cancel_token, on_progress=on_progress, label="bulk-move"
    )
    await _collect(result, pipeline, titles or {})
    logger.info(f"Moved {result.success} test cases to suite {target_suite_id}, {result.failed} failed")
    return result


async def bulk_delete_test_cases(
    service: TestCaseRepositoryService,
    suite_id: str,
    test_case_ids: Sequence[str],
    titles: Optional[Dict[str, str]] = None,
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> BatchResult:
    """スイート内のテストケースを削除する"""
    async def delete(test_case_id: str) -> None:
        await service.delete_test_case(suite_id, test_case_id)

    result = BatchResult(total=len(test_case_ids))
    pipeline = sequential_pipeline(
        list(test_case_ids), delete, cancel_token=cancel_token, on_progress=on_progress, label="bulk-delete"
    )
    await _collect(result, pipeline, titles or {})
    logger.info(f"Deleted {result.success} test cases from suite {suite_id}, {result.failed} failed")
    return result
