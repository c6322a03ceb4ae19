from celery.result import AsyncResult
from fastapi import APIRouter

from app.workers import celery_app

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.get("/{task_id}")
async def get_task_status(task_id: str):
    """
    インポート・一括マージタスクの状態を返す

    PROGRESS の間は current / total を、完了後はタスクの戻り値を含める。
    """
    result = AsyncResult(task_id, app=celery_app)
    response = {"task_id": task_id, "status": result.state}
    if result.state == "PROGRESS" and isinstance(result.info, dict):
        response["progress"] = {
            "current": result.info.get("current", 0),
            "total": result.info.get("total", 0),
        }
    elif result.successful():
        response["result"] = result.result
    elif result.failed():
        response["error"] = str(result.result)
    return response
