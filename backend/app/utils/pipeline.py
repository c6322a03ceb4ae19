"""
逐次パイプラインのユーティリティモジュール

一括インポート・一括マージ・一括移動/削除は、外部APIへの呼び出しを1件ずつ await する。
このモジュールはその「同時実行数1」の処理順序を明示的な非同期ジェネレータとして提供し、
アイテム間でのキャンセル確認と進捗通知を一か所にまとめる。
"""

import threading
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from app.exceptions import AuthenticationException
from app.logging_config import logger

T = TypeVar('T')
R = TypeVar('R')

ProgressCallback = Callable[[int, int], None]


class CancellationToken:
    """協調的キャンセルのためのトークン。別スレッドからの cancel() も安全"""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class StepOutcome(Generic[T]):
    """1アイテム分の処理結果"""
    index: int
    item: T
    result: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def sequential_pipeline(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    cancel_token: Optional[CancellationToken] = None,
    on_progress: Optional[ProgressCallback] = None,
    label: str = "batch",
) -> AsyncIterator[StepOutcome[T]]:
    """
    アイテムを1件ずつ worker に渡して結果を順に返す

    Args:
        items: 処理対象
        worker: 1件を処理するコルーチン関数
        cancel_token: 各アイテムの処理前に確認するキャンセルトークン
        on_progress: 1件処理するごとに (current, total) で呼ばれる
        label: ログ用の処理名

    Yields:
        各アイテムの StepOutcome。アイテム単位の失敗はバッチを止めずに error として返す

    Raises:
        AuthenticationException: 認証エラーはローカルで回復できないため即座に中断する
    """
    total = len(items)
    for index, item in enumerate(items):
        if cancel_token is not None and cancel_token.cancelled:
            logger.info(f"{label} cancelled after {index} of {total} items")
            return

        try:
            result = await worker(item)
        except AuthenticationException:
            raise
        except Exception as e:
            logger.error(f"{label} item {index + 1}/{total} failed: {type(e).__name__}: {e}")
            outcome = StepOutcome(index=index, item=item, error=e)
        else:
            outcome = StepOutcome(index=index, item=item, result=result)

        if on_progress is not None:
            on_progress(index + 1, total)
        logger.debug(f"{label} progress {index + 1}/{total}")
        yield outcome
