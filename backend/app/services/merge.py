"""
重複テストケースのマージ

2件のマージ: keep 側を更新してから merge 側を削除する。API に複数レコードをまたぐトランザクションは
ないため、更新後に削除が失敗した場合はロールバックせず PartialMergeError として報告する。

一括マージ: グループごとに作成日時の新しい順に並べ、最新のレコードを残して古いレコードの値で
空のフィールドを埋めてから、古いレコードを削除する。1グループの失敗は他のグループを止めない。
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.config import settings
from app.exceptions import (
    AuthenticationException,
    MergeException,
    PartialMergeError,
    QaHubException,
    error_message_from,
)
from app.logging_config import logger
from app.schemas.batch import MergeAllResult
from app.schemas.duplicates import DuplicateGroup
from app.schemas.test_case import TestCaseRecord, TestCaseRef, TestCaseUpdate
from app.services.store.base import TestCaseRepositoryService
from app.utils.pipeline import CancellationToken, ProgressCallback, sequential_pipeline

# keep 側が空のときだけ補完するフィールド
BACKFILLED_FIELDS = (
    "description",
    "severity",
    "labels",
    "epic_link",
    "linked_issue",
    "platform",
    "release_version",
)
# どちらかが true なら true
OR_FLAGS = ("automated", "regression")


def _initial_values(keep: TestCaseRecord) -> Dict[str, Any]:
    values: Dict[str, Any] = {"title": keep.title, "priority": keep.priority}
    for name in BACKFILLED_FIELDS + OR_FLAGS:
        values[name] = getattr(keep, name)
    return values


def _fold_into(values: Dict[str, Any], other: TestCaseRecord) -> None:
    for name in BACKFILLED_FIELDS:
        if not values[name] and getattr(other, name):
            values[name] = getattr(other, name)
    for name in OR_FLAGS:
        values[name] = bool(values[name] or getattr(other, name))
    if other.priority > values["priority"]:
        values["priority"] = other.priority


def _to_update(values: Dict[str, Any]) -> TestCaseUpdate:
    return TestCaseUpdate(**{name: value for name, value in values.items() if value is not None})


def merge_fields(keep: TestCaseRecord, merge_away: TestCaseRecord) -> TestCaseUpdate:
    """
    keep 側に送る更新内容を作る

    タイトルは常に keep 側。フラグは OR、優先度は大きい方、その他のテキストは keep 側が空なら merge 側。
    data ブロブはマージしない。
    """
    values = _initial_values(keep)
    _fold_into(values, merge_away)
    return _to_update(values)


def _created_key(record: TestCaseRecord) -> float:
    created: Optional[datetime] = record.created_at
    return created.timestamp() if created is not None else float("-inf")


def fold_group(records: Sequence[TestCaseRecord]) -> Tuple[TestCaseRecord, List[TestCaseRecord], TestCaseUpdate]:
    """
    グループを「残す1件」「削除する残り」「残す1件への更新内容」に分ける

    新しい順に並べて先頭を残し、2件目以降を順に畳み込む。先に畳み込んだレコードの値で埋まった
    フィールドは、それより古いレコードでは上書きされない。

    Returns:
        (keep, 削除対象, 更新内容)
    """
    ordered = sorted(records, key=_created_key, reverse=True)
    keep, older = ordered[0], ordered[1:]
    values = _initial_values(keep)
    for record in older:
        _fold_into(values, record)
    return keep, older, _to_update(values)


class MergeEngine:
    """重複テストケースのマージを実行する"""

    def __init__(self, service: TestCaseRepositoryService):
        self.service = service

    async def merge_pair(self, keep: TestCaseRecord, merge_away: TestCaseRecord) -> TestCaseRecord:
        """
        merge_away を keep にマージして削除する

        Args:
            keep: 残すテストケース
            merge_away: 削除するテストケース

        Returns:
            更新後の keep

        Raises:
            MergeException: 同じテストケース同士のマージ
            PartialMergeError: 更新は反映されたが削除に失敗した場合
        """
        if keep.id == merge_away.id:
            raise MergeException("Cannot merge a test case into itself", details={"test_case_id": keep.id})

        update = merge_fields(keep, merge_away)
        updated = await self.service.update_test_case(keep.suite_id, keep.id, update)

        try:
            await self.service.delete_test_case(merge_away.suite_id, merge_away.id)
        except AuthenticationException:
            raise
        except QaHubException as e:
            logger.error(f"Merged {merge_away.id} into {keep.id} but delete failed: {e}")
            raise PartialMergeError(
                details={
                    "kept_id": keep.id,
                    "merged_id": merge_away.id,
                    "reason": error_message_from(e),
                }
            ) from e

        logger.info(f"Merged test case {merge_away.id} into {keep.id}")
        return updated

    async def merge_refs(self, keep: TestCaseRef, merge_away: TestCaseRef) -> TestCaseRecord:
        """スイートIDとテストケースIDの組で指定された2件をマージする"""
        keep_record = await self.service.get_test_case(keep.suite_id, keep.test_case_id)
        merge_record = await self.service.get_test_case(merge_away.suite_id, merge_away.test_case_id)
        return await self.merge_pair(keep_record, merge_record)

    async def _merge_group(self, group: DuplicateGroup) -> Tuple[TestCaseRecord, int, List[str]]:
        keep, older, update = fold_group(group.test_cases)
        await self.service.update_test_case(keep.suite_id, keep.id, update)

        deleted = 0
        errors: List[str] = []
        for record in older:
            try:
                await self.service.delete_test_case(record.suite_id, record.id)
                deleted += 1
            except AuthenticationException:
                raise
            except QaHubException as e:
                logger.error(f"Error deleting test case {record.id}: {e}")
                errors.append(f"Failed to delete {record.display_key}: {error_message_from(e)}")
        return keep, deleted, errors

    async def merge_all(
        self,
        groups: Sequence[DuplicateGroup],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> MergeAllResult:
        """
        全グループを1件ずつ順にマージする

        Args:
            groups: 重複グループ
            on_progress: グループを1つ処理するごとに (current, total) で呼ばれる
            cancel_token: グループ間で確認するキャンセルトークン

        Returns:
            成功・失敗グループ数とエラーメッセージ
        """
        eligible = [g for g in groups if len(g.test_cases) >= 2]
        result = MergeAllResult(total=len(eligible))
        processed = 0

        async for outcome in sequential_pipeline(
            eligible,
            self._merge_group,
            cancel_token=cancel_token,
            on_progress=on_progress,
            label="merge-all",
        ):
            processed += 1
            if not outcome.ok:
                title = outcome.item.test_cases[0].title or "Unknown"
                result.record_failure(f'Failed to merge group "{title}": {error_message_from(outcome.error)}')
                continue

            keep, deleted, errors = outcome.result
            result.deleted += deleted
            if errors:
                result.failed += 1
                result.errors.extend(errors)
            else:
                result.record_success()

        result.cancelled = processed < len(eligible)
        logger.info(result.summary(settings.MERGE_ERROR_PREVIEW))
        return result
