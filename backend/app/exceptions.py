"""
QaHubコアの例外クラス階層

このモジュールは、重複検出・マージ、CSVインポート、スイートツリー操作で使用される例外クラスを定義します。
各例外クラスには適切なエラーコードが割り当てられ、エラーの種類を明確に区別できます。
"""
import functools
import logging
from enum import Enum
from typing import Optional, Dict, Any, Type, Callable, TypeVar, cast


class ErrorCode(Enum):
    """エラーコード定義"""
    # 一般的なエラー (1000-1999)
    GENERAL_ERROR = 1000
    CONFIGURATION_ERROR = 1001

    # CSVインポート関連エラー (3000-3999)
    IMPORT_ERROR = 3000
    HEADER_NOT_FOUND = 3001
    REQUIRED_COLUMN_MISSING = 3002
    EMPTY_IMPORT = 3003

    # スイートツリー関連エラー (4000-4999)
    SUITE_TREE_ERROR = 4000
    CYCLIC_MOVE = 4001
    INVALID_MOVE = 4002
    SUITE_NOT_FOUND = 4003

    # リモートサービス関連エラー (5000-5999)
    REMOTE_ERROR = 5000
    AUTHENTICATION_ERROR = 5001

    # マージ関連エラー (6000-6999)
    MERGE_ERROR = 6000
    PARTIAL_MERGE = 6001


class QaHubException(Exception):
    """QaHubの基底例外クラス"""
    def __init__(
        self,
        message: str = "QaHubアプリケーションエラーが発生しました",
        error_code: ErrorCode = ErrorCode.GENERAL_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.error_code.name}:{self.error_code.value}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """例外情報を辞書形式で返す"""
        return {
            "error_code": self.error_code.value,
            "error_name": self.error_code.name,
            "message": self.message,
            "details": self.details
        }


class ConfigurationException(QaHubException):
    """設定エラー"""
    def __init__(
        self,
        message: str = "設定の読み込みまたは検証に失敗しました",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, details)


# CSVインポート関連の例外クラス
class CSVImportException(QaHubException):
    """CSVインポート関連の基底例外クラス"""
    def __init__(
        self,
        message: str = "CSVファイルの解析に失敗しました",
        error_code: ErrorCode = ErrorCode.IMPORT_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)


class RequiredColumnMissingError(CSVImportException):
    """ヘッダー行に title 列がない"""
    def __init__(
        self,
        message: str = "Title column not found in CSV",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.REQUIRED_COLUMN_MISSING, details)


class HeaderNotFoundError(RequiredColumnMissingError):
    """title と description を含むヘッダー行が見つからない（title 列がないファイルもここに該当する）"""
    def __init__(
        self,
        message: str = "Could not find CSV header row",
        details: Optional[Dict[str, Any]] = None
    ):
        CSVImportException.__init__(self, message, ErrorCode.HEADER_NOT_FOUND, details)


class EmptyImportError(CSVImportException):
    """解析結果が0件"""
    def __init__(
        self,
        message: str = "No test cases found in the file",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.EMPTY_IMPORT, details)


# スイートツリー関連の例外クラス
class SuiteTreeException(QaHubException):
    """スイートツリー関連の基底例外クラス"""
    def __init__(
        self,
        message: str = "スイートツリーの操作に失敗しました",
        error_code: ErrorCode = ErrorCode.SUITE_TREE_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)


class CyclicMoveError(SuiteTreeException):
    """スイートを自身の子孫へ移動しようとした"""
    def __init__(
        self,
        message: str = "Cannot move suite into its own descendant",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.CYCLIC_MOVE, details)


class InvalidMoveError(SuiteTreeException):
    """ドロップ意図に対して成立しない移動"""
    def __init__(
        self,
        message: str = "Invalid suite move",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.INVALID_MOVE, details)


class SuiteNotFoundError(SuiteTreeException):
    """対象のスイートが存在しない"""
    def __init__(
        self,
        message: str = "Suite not found",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.SUITE_NOT_FOUND, details)


# リモートサービス関連の例外クラス
class RemoteServiceException(QaHubException):
    """テストケースリポジトリサービスが返したエラー"""
    def __init__(
        self,
        status_code: int,
        message: str = "Remote service request failed",
        details: Optional[Dict[str, Any]] = None,
        error_code: ErrorCode = ErrorCode.REMOTE_ERROR
    ):
        self.status_code = status_code
        super().__init__(message, error_code, details)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["status_code"] = self.status_code
        return result


class AuthenticationException(RemoteServiceException):
    """認証エラー。ローカルの認証情報は破棄済みで、エントリーポイントへ戻す必要がある"""
    def __init__(
        self,
        message: str = "Your session has expired. Please log in again.",
        details: Optional[Dict[str, Any]] = None,
        redirect_to: str = "/"
    ):
        self.redirect_to = redirect_to
        super().__init__(401, message, details, ErrorCode.AUTHENTICATION_ERROR)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["redirect_to"] = self.redirect_to
        return result


# マージ関連の例外クラス
class MergeException(QaHubException):
    """マージ関連の基底例外クラス"""
    def __init__(
        self,
        message: str = "テストケースのマージに失敗しました",
        error_code: ErrorCode = ErrorCode.MERGE_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)


class PartialMergeError(MergeException):
    """更新は反映済みだが削除に失敗した。ロールバックは行わない"""
    def __init__(
        self,
        message: str = "Merged data was saved but the duplicate could not be deleted",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.PARTIAL_MERGE, details)


logger = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable[..., Any])

GENERIC_ERROR_MESSAGE = "Unknown error"


def error_message_from(exc: BaseException, fallback: str = GENERIC_ERROR_MESSAGE) -> str:
    """
    ユーザーに表示するエラーメッセージを取り出す

    Args:
        exc: 発生した例外
        fallback: メッセージが取れない場合の文言

    Returns:
        リモートサービスのメッセージ、なければフォールバック文言
    """
    if isinstance(exc, QaHubException) and exc.message:
        return exc.message
    return fallback


def exception_to_response(exception: QaHubException) -> Dict[str, Any]:
    """
    例外をAPIレスポンス形式に変換する

    Args:
        exception: 変換する例外

    Returns:
        APIレスポンス形式の辞書
    """
    return {
        "success": False,
        "error": exception.to_dict()
    }


def convert_exception(
    exception_type: Type[QaHubException],
    message: Optional[str] = None
) -> Callable[[F], F]:
    """
    一般的な例外を特定のQaHub例外に変換するデコレータ（同期関数用）

    Args:
        exception_type: 変換先の例外タイプ
        message: 例外メッセージ（Noneの場合は元の例外のメッセージを使用）

    Returns:
        デコレータ関数
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except QaHubException:
                raise
            except Exception as e:
                error_message = message if message is not None else str(e)
                details = {"original_exception": str(e), "exception_type": type(e).__name__}
                raise exception_type(error_message, details=details) from e
        return cast(F, wrapper)
    return decorator
