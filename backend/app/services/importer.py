"""
CSVインポートの突き合わせ

解析済みの行を1件ずつ、対象スイート内の既存テストケースとタイトル（前後空白除去・小文字化）で照合し、
一致すれば更新、なければ作成する。1行の失敗は記録して次の行へ進む。
"""

from datetime import datetime
from typing import Dict, Optional, Sequence

from app.config import settings
from app.exceptions import (
    AuthenticationException,
    EmptyImportError,
    QaHubException,
    RemoteServiceException,
    SuiteNotFoundError,
    error_message_from,
)
from app.logging_config import logger
from app.schemas.batch import ImportResult
from app.schemas.suite import SuiteRecord
from app.schemas.test_case import ParsedRow, TestCaseUpdate
from app.services.similarity import normalize_title
from app.services.store.base import TestCaseRepositoryService
from app.utils.pipeline import CancellationToken, ProgressCallback, sequential_pipeline

CREATED = "created"
UPDATED = "updated"


def default_suite_title(today: Optional[datetime] = None) -> str:
    today = today or datetime.now()
    return f"Imported Suite {today.strftime('%Y-%m-%d')}"


def describe_remote_error(exc: Exception) -> str:
    """エラーメッセージにバリデーションエラーの詳細（path: message）を付け加える"""
    message = error_message_from(exc)
    details = getattr(exc, "details", None)
    validation = details.get("validation") if isinstance(details, dict) else None
    if isinstance(validation, list) and validation:
        parts = []
        for item in validation:
            if not isinstance(item, dict):
                continue
            path = item.get("path") or []
            if isinstance(path, (list, tuple)):
                path = ".".join(str(p) for p in path)
            parts.append(f"{path}: {item.get('message', '')}")
        if parts:
            message = f"{message} ({', '.join(parts)})"
    return message


class BulkImportReconciler:
    """解析済みの行を対象スイートへ作成または更新する"""

    def __init__(self, service: TestCaseRepositoryService, suites: Optional[Sequence[SuiteRecord]] = None):
        self.service = service
        # 呼び出し側が保持しているスイート一覧（API がまだ新規スイートを返さない場合の代替）
        self.suites = list(suites or [])

    async def _create_fallback_suite(self, suite_id: str) -> str:
        try:
            created = await self.service.create_suite(default_suite_title(), parent_id=None)
        except AuthenticationException:
            raise
        except QaHubException as e:
            logger.error(f"Failed to create suite for import: {e}")
            raise SuiteNotFoundError(
                "Test suite not found and failed to create a new one. Please create a test suite first.",
                details={"suite_id": suite_id, "reason": error_message_from(e)},
            ) from e
        logger.info(f"Suite {suite_id} not found, created {created.id} ({created.title}) for import")
        return created.id

    async def resolve_target_suite(self, suite_id: str) -> str:
        """
        インポート先のスイートIDを決める

        サーバーに存在すればそのまま。なければ手元のスイート一覧にあるか探し、それもなければ
        日付入りの名前でルートに新しいスイートを作る。存在確認自体が404以外で失敗した場合はそのまま続行する。

        Raises:
            SuiteNotFoundError: スイートが見つからず作成にも失敗した場合
        """
        try:
            suite = await self.service.get_suite(suite_id)
        except AuthenticationException:
            raise
        except RemoteServiceException as e:
            if e.status_code != 404:
                logger.warning(f"Failed to check suite existence for {suite_id}: {e}")
                return suite_id
            suite = None

        if suite is not None:
            return suite.id

        local = next((s for s in self.suites if s.id == suite_id), None)
        if local is not None:
            return local.id
        return await self._create_fallback_suite(suite_id)

    async def load_title_index(self, suite_id: str) -> Dict[str, str]:
        """
        スイート内の既存テストケースについて、正規化したタイトル → ID の対応を作る

        取得に失敗した場合は空の対応で続行する（すべて新規作成になる）。
        """
        try:
            page = await self.service.list_test_cases(suite_id, page=1, limit=settings.IMPORT_LIST_LIMIT)
        except AuthenticationException:
            raise
        except QaHubException as e:
            logger.warning(f"Failed to fetch existing test cases for duplicate check: {e}")
            return {}

        index: Dict[str, str] = {}
        for test_case in page.test_cases:
            if test_case.title:
                index[normalize_title(test_case.title)] = test_case.id
        return index

    async def run(
        self,
        suite_id: str,
        rows: Sequence[ParsedRow],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ImportResult:
        """
        インポートを実行する

        Args:
            suite_id: インポート先のスイートID
            rows: 解析済みの行
            on_progress: 1行処理するごとに (current, total) で呼ばれる
            cancel_token: 行の間で確認するキャンセルトークン

        Returns:
            作成・更新・失敗の件数と行ごとのエラー

        Raises:
            EmptyImportError: 行が1件もない（通信前に送出する）
        """
        if not rows:
            raise EmptyImportError()

        target_suite_id = await self.resolve_target_suite(suite_id)
        title_index = await self.load_title_index(target_suite_id)
        result = ImportResult(suite_id=target_suite_id, total=len(rows))

        async def reconcile(row: ParsedRow) -> str:
            existing_id = title_index.get(normalize_title(row.title))
            if existing_id:
                await self.service.update_test_case(target_suite_id, existing_id, TestCaseUpdate.from_fields(row))
                return UPDATED
            await self.service.create_test_case(target_suite_id, row)
            return CREATED

        processed = 0
        async for outcome in sequential_pipeline(
            rows,
            reconcile,
            cancel_token=cancel_token,
            on_progress=on_progress,
            label="import",
        ):
            processed += 1
            if not outcome.ok:
                result.record_row_failure(outcome.index + 1, outcome.item.title, describe_remote_error(outcome.error))
                continue
            result.record_success()
            if outcome.result == UPDATED:
                result.updated += 1
            else:
                result.created += 1

        result.cancelled = processed < len(rows)
        logger.info(
            f"Import into suite {target_suite_id}: {result.created} created, {result.updated} updated, "
            f"{result.failed} failed"
        )
        return result
