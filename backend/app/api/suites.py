from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import Response
from typing import List

from app.api.deps import get_repository_service
from app.exceptions import EmptyImportError
from app.logging_config import logger
from app.schemas.batch import BatchResult, BulkDeleteRequest, TaskTriggered
from app.schemas.suite import MoveSuiteRequest, MoveSuiteResponse, SuiteNode
from app.services.bulk_ops import bulk_delete_test_cases
from app.services.csv_parser import decode_csv_bytes, export_test_cases_csv, parse_test_cases_csv
from app.services.store import TestCaseRepositoryService
from app.services.suite_tree import SuiteReorderEngine
from app.workers.tasks import bulk_import_task

router = APIRouter(prefix="/api/projects/{project_id}/repositories/{repo_id}/suites", tags=["suites"])


@router.get("/tree", response_model=List[SuiteNode])
async def get_suite_tree(
    project_id: str,
    repo_id: str,
    service: TestCaseRepositoryService = Depends(get_repository_service),
):
    logger.info(f"Fetching suite tree for repository {repo_id}")
    return await SuiteReorderEngine(service).refresh()


@router.post("/{suite_id}/move", response_model=MoveSuiteResponse)
async def move_suite(
    project_id: str,
    repo_id: str,
    suite_id: str,
    request: MoveSuiteRequest,
    service: TestCaseRepositoryService = Depends(get_repository_service),
):
    """
    スイートをドラッグ＆ドロップの意図に従って移動する

    Args:
        suite_id: ドラッグしたスイート
        request: ドロップ先と移動意図

    Returns:
        適用した移動計画と移動後のツリー（自分自身へのドロップでは plan は null）
    """
    logger.info(f"Moving suite {suite_id} ({request.intent.value}) relative to {request.target_suite_id}")
    engine = SuiteReorderEngine(service)
    return await engine.move(suite_id, request.target_suite_id, request.intent)


@router.post("/{suite_id}/import", response_model=TaskTriggered)
async def import_test_cases(
    project_id: str,
    repo_id: str,
    suite_id: str,
    file: UploadFile = File(...),
):
    """
    CSV/TSVファイルを解析し、インポートタスクを起動する

    解析エラーはタスクを起動する前に 400 として返す。
    """
    logger.info(f"Importing test cases into suite {suite_id}: {file.filename}")
    rows = parse_test_cases_csv(decode_csv_bytes(await file.read()))
    if not rows:
        raise EmptyImportError(details={"filename": file.filename})

    task = bulk_import_task.delay(project_id, repo_id, suite_id, [row.to_payload() for row in rows])
    if not task or not task.id:
        logger.error(f"Failed to trigger import task for suite {suite_id}")
        raise HTTPException(status_code=500, detail="Failed to start import task")

    logger.info(f"Import task started with ID: {task.id} ({len(rows)} rows)")
    return TaskTriggered(message=f"Import of {len(rows)} test cases started", task_id=task.id, status="importing")


@router.get("/{suite_id}/test-cases/export")
async def export_test_cases(
    project_id: str,
    repo_id: str,
    suite_id: str,
    service: TestCaseRepositoryService = Depends(get_repository_service),
):
    records = await service.list_all_test_cases(suite_id)
    logger.info(f"Exporting {len(records)} test cases from suite {suite_id}")
    return Response(
        content=export_test_cases_csv(records),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="test-cases-{suite_id}.csv"'},
    )


@router.post("/{suite_id}/test-cases/bulk-delete", response_model=BatchResult)
async def bulk_delete(
    project_id: str,
    repo_id: str,
    suite_id: str,
    request: BulkDeleteRequest,
    service: TestCaseRepositoryService = Depends(get_repository_service),
):
    logger.info(f"Deleting {len(request.test_case_ids)} test cases from suite {suite_id}")
    return await bulk_delete_test_cases(service, suite_id, request.test_case_ids)
