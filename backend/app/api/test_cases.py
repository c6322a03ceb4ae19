from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from typing import List

from app.api.deps import get_repository_service
from app.logging_config import logger
from app.schemas.batch import BatchResult, BulkMoveRequest, TaskTriggered
from app.schemas.duplicates import (
    ComparePairRequest,
    DuplicateGroup,
    FieldDifference,
    MergeAllRequest,
    MergePairRequest,
)
from app.schemas.test_case import TestCaseRecord
from app.services.bulk_ops import bulk_move_test_cases
from app.services.csv_parser import build_template_csv
from app.services.duplicates import collect_repository_test_cases, field_differences, find_duplicate_groups
from app.services.merge import MergeEngine
from app.services.store import TestCaseRepositoryService
from app.workers.tasks import merge_all_task

router = APIRouter(prefix="/api/projects/{project_id}/repositories/{repo_id}/test-cases", tags=["test-cases"])


@router.get("/import/template")
async def download_template(project_id: str, repo_id: str):
    """インポート用のテンプレートCSVを返す"""
    return Response(
        content=build_template_csv(),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="test-cases-template.csv"'},
    )


@router.get("/duplicates", response_model=List[DuplicateGroup])
async def find_duplicates(
    project_id: str,
    repo_id: str,
    service: TestCaseRepositoryService = Depends(get_repository_service),
):
    logger.info(f"Finding duplicate test cases in repository {repo_id}")
    test_cases = await collect_repository_test_cases(service)
    return find_duplicate_groups(test_cases)


@router.post("/duplicates/compare", response_model=List[FieldDifference])
async def compare_pair(
    project_id: str,
    repo_id: str,
    request: ComparePairRequest,
    service: TestCaseRepositoryService = Depends(get_repository_service),
):
    left = await service.get_test_case(request.left.suite_id, request.left.test_case_id)
    right = await service.get_test_case(request.right.suite_id, request.right.test_case_id)
    return field_differences(left, right)


@router.post("/duplicates/merge", response_model=TestCaseRecord)
async def merge_pair(
    project_id: str,
    repo_id: str,
    request: MergePairRequest,
    service: TestCaseRepositoryService = Depends(get_repository_service),
):
    """
    2件のテストケースをマージする

    Returns:
        更新後の keep 側テストケース
    """
    logger.info(f"Merging test case {request.merge.test_case_id} into {request.keep.test_case_id}")
    return await MergeEngine(service).merge_refs(request.keep, request.merge)


@router.post("/duplicates/merge-all", response_model=TaskTriggered)
async def merge_all(project_id: str, repo_id: str, request: MergeAllRequest):
    """
    重複グループの一括マージタスクを起動する

    groups を省略した場合はタスク側でリポジトリ全体から重複を検出し直す。
    """
    groups = None
    if request.groups is not None:
        groups = [g.model_dump(mode="json", by_alias=True) for g in request.groups]

    task = merge_all_task.delay(project_id, repo_id, groups)
    if not task or not task.id:
        logger.error(f"Failed to trigger merge-all task for repository {repo_id}")
        raise HTTPException(status_code=500, detail="Failed to start merge task")

    logger.info(f"Merge-all task started with ID: {task.id}")
    return TaskTriggered(message="Merging all duplicate groups", task_id=task.id, status="merging")


@router.post("/bulk-move", response_model=BatchResult)
async def bulk_move(
    project_id: str,
    repo_id: str,
    request: BulkMoveRequest,
    service: TestCaseRepositoryService = Depends(get_repository_service),
):
    logger.info(f"Moving {len(request.test_case_ids)} test cases to suite {request.target_suite_id}")
    return await bulk_move_test_cases(service, request.test_case_ids, request.target_suite_id)
