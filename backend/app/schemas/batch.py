from typing import List, Optional

from pydantic import BaseModel, Field


class BatchResult(BaseModel):
    """一括処理の結果。成功件数・失敗件数・エラー詳細の3つ組で報告する"""
    success: int = 0
    failed: int = 0
    total: int = 0
    errors: List[str] = Field(default_factory=list)
    cancelled: bool = False

    def record_success(self) -> None:
        self.success += 1

    def record_failure(self, message: str) -> None:
        self.failed += 1
        self.errors.append(message)


class ImportRowError(BaseModel):
    row: int
    title: str
    message: str


class ImportResult(BatchResult):
    suite_id: Optional[str] = None
    created: int = 0
    updated: int = 0
    row_errors: List[ImportRowError] = Field(default_factory=list)

    def record_row_failure(self, row: int, title: str, message: str) -> None:
        self.row_errors.append(ImportRowError(row=row, title=title, message=message))
        self.record_failure(f"Row {row} ({title}): {message}")


class MergeAllResult(BatchResult):
    deleted: int = 0

    def summary(self, preview: int = 3) -> str:
        merged = f"Merged {self.success} group{'s' if self.success != 1 else ''} successfully."
        if self.failed == 0:
            return merged
        failed = f"Failed to merge {self.failed} group{'s' if self.failed != 1 else ''}."
        details = "; ".join(self.errors[:preview])
        return f"{merged} {failed} {details}".strip()


class TaskTriggered(BaseModel):
    message: str
    task_id: Optional[str] = None
    status: str


class BulkMoveRequest(BaseModel):
    test_case_ids: List[str]
    target_suite_id: str


class BulkDeleteRequest(BaseModel):
    test_case_ids: List[str]
