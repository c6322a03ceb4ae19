"""
重複テストケースの検出

タイトル類似度がしきい値以上のテストケースを貪欲な単一リンク方式でグループ化する。
各レコードは最初に見つかったグループにのみ属し、グループのスコアはグループ内の全ペアの類似度の平均。
"""

from itertools import combinations
from typing import Any, Callable, List, Optional, Sequence, Set

from app.config import settings
from app.exceptions import AuthenticationException, QaHubException
from app.logging_config import logger
from app.schemas.duplicates import DuplicateGroup, FieldDifference
from app.schemas.test_case import TestCaseRecord
from app.services.similarity import calculate_similarity
from app.services.store.base import TestCaseRepositoryService

Scorer = Callable[[str, str], float]

# 比較画面に並べるフィールド（表示名, 属性名）
COMPARED_FIELDS = [
    ("title", "title"),
    ("description", "description"),
    ("automated", "automated"),
    ("priority", "priority"),
    ("severity", "severity"),
    ("labels", "labels"),
    ("regression", "regression"),
    ("epicLink", "epic_link"),
    ("linkedIssue", "linked_issue"),
    ("platform", "platform"),
    ("releaseVersion", "release_version"),
    ("suite", "suite_title"),
]


def average_pairwise_similarity(titles: Sequence[str], scorer: Scorer = calculate_similarity) -> float:
    """グループ内の全ペアの類似度の平均（ペアがなければ100）"""
    scores = [scorer(a, b) for a, b in combinations(titles, 2)]
    if not scores:
        return 100.0
    return sum(scores) / len(scores)


def find_duplicate_groups(
    test_cases: Sequence[TestCaseRecord],
    threshold: Optional[float] = None,
    scorer: Scorer = calculate_similarity,
) -> List[DuplicateGroup]:
    """
    タイトルが類似したテストケースをグループ化する

    Args:
        test_cases: 対象のテストケース
        threshold: 類似度のしきい値（以上でグループ化。None の場合は設定値）
        scorer: 類似度関数

    Returns:
        2件以上を含む DuplicateGroup のリスト
    """
    if threshold is None:
        threshold = settings.DUPLICATE_THRESHOLD

    processed: Set[str] = set()
    groups: List[DuplicateGroup] = []

    for i, anchor in enumerate(test_cases):
        if anchor.id in processed:
            continue

        members = [anchor]
        for candidate in test_cases[i + 1:]:
            if candidate.id in processed or candidate.id == anchor.id:
                continue
            if scorer(anchor.title, candidate.title) >= threshold:
                members.append(candidate)
                processed.add(candidate.id)

        if len(members) > 1:
            processed.add(anchor.id)
            similarity = average_pairwise_similarity([m.title for m in members], scorer)
            groups.append(DuplicateGroup(test_cases=members, similarity=similarity))

    logger.info(f"Found {len(groups)} duplicate groups among {len(test_cases)} test cases")
    return groups


def _compare_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def field_differences(left: TestCaseRecord, right: TestCaseRecord) -> List[FieldDifference]:
    """2件のテストケースで値が異なるフィールドを返す（前後の空白は無視）"""
    differences = []
    for label, attribute in COMPARED_FIELDS:
        left_value = getattr(left, attribute)
        right_value = getattr(right, attribute)
        if _compare_text(left_value) != _compare_text(right_value):
            differences.append(FieldDifference(field=label, left=left_value, right=right_value))
    return differences


async def collect_repository_test_cases(service: TestCaseRepositoryService) -> List[TestCaseRecord]:
    """
    リポジトリ内の全スイートから詳細付きのテストケースを集める

    詳細の取得に失敗したケースは一覧の情報で代用し、一覧の取得に失敗したスイートは読み飛ばす。

    Args:
        service: リポジトリサービス

    Returns:
        スイート情報付きのテストケース
    """
    collected: List[TestCaseRecord] = []
    for suite in await service.list_suites():
        try:
            summaries = await service.list_all_test_cases(suite.id)
        except AuthenticationException:
            raise
        except QaHubException as e:
            logger.error(f"Error fetching test cases for suite {suite.id}: {e}")
            continue

        for summary in summaries:
            try:
                record = await service.get_test_case(suite.id, summary.id)
            except AuthenticationException:
                raise
            except QaHubException as e:
                logger.warning(f"Falling back to list entry for test case {summary.id}: {e}")
                record = summary.model_copy(update={"data": None, "order": None})
            collected.append(record.model_copy(update={"suite_id": suite.id, "suite_title": suite.title}))

    logger.info(f"Collected {len(collected)} test cases for duplicate detection")
    return collected
