"""
リトライ処理のユーティリティモジュール

このモジュールは、非同期関数の実行にリトライ機能を提供します。
設定値は環境変数やsettingsから取得でき、リトライ回数を超えた場合は適切な例外をスローします。
"""

import asyncio
import functools
import os
import random
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union, cast

from app.config import settings
from app.exceptions import QaHubException, ErrorCode
from app.logging_config import logger

AsyncF = TypeVar('AsyncF', bound=Callable[..., Any])

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_MAX_RETRY_DELAY = 30.0
DEFAULT_RETRY_JITTER = 0.1
DEFAULT_BACKOFF_FACTOR = 2.0


class MaxRetriesExceededException(QaHubException):
    """最大リトライ回数を超えた場合の例外"""
    def __init__(
        self,
        message: str = "最大リトライ回数を超えました",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.GENERAL_ERROR, details)


def get_retry_config(retry_key: str, config_name: str, default: Union[int, float]) -> Union[int, float]:
    """
    環境変数または設定から特定のリトライ設定値を取得する

    Args:
        retry_key: リトライ設定のキー（例: "API_CALL"）
        config_name: 設定名（例: "MAX_RETRIES"）
        default: デフォルト値

    Returns:
        設定値
    """
    name = f"RETRY_{retry_key.upper()}_{config_name.upper()}"
    env_value = os.environ.get(name)
    if env_value:
        try:
            return int(env_value) if isinstance(default, int) else float(env_value)
        except ValueError:
            logger.warning(f"Invalid retry value in environment variable {name}: {env_value}")

    if hasattr(settings, name):
        value = getattr(settings, name)
        return int(value) if isinstance(default, int) else float(value)

    return default


def calculate_next_delay(
    retry_count: int,
    base_delay: float,
    max_delay: float,
    backoff_factor: float,
    jitter: float
) -> float:
    """
    次のリトライまでの待機時間を計算する（指数バックオフ）

    Args:
        retry_count: 現在のリトライ回数
        base_delay: 基本待機時間（秒）
        max_delay: 最大待機時間（秒）
        backoff_factor: バックオフ係数
        jitter: ジッター（ランダム性）の大きさ

    Returns:
        待機時間（秒）
    """
    delay = min(base_delay * (backoff_factor ** retry_count), max_delay)

    if jitter > 0:
        jitter_amount = delay * jitter
        delay = delay + random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)


def async_retry(
    max_retries: Optional[int] = None,
    retry_delay: Optional[float] = None,
    retry_exceptions: Optional[List[Type[Exception]]] = None,
    retry_key: Optional[str] = None
) -> Callable[[AsyncF], AsyncF]:
    """
    非同期関数にリトライ機能を追加するデコレータ

    Args:
        max_retries: 最大リトライ回数（Noneの場合は retry_key の設定値）
        retry_delay: 初期リトライ間隔（秒）
        retry_exceptions: リトライ対象の例外クラスのリスト
        retry_key: 設定から取得するリトライ設定のキー

    Returns:
        デコレータ関数

    Examples:
        >>> @async_retry(retry_key="API_CALL", retry_exceptions=[httpx.TransportError])
        >>> async def send():
        >>>     ...
    """
    exceptions = tuple(retry_exceptions or [Exception])

    def decorator(func: AsyncF) -> AsyncF:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            _max_retries = max_retries
            _retry_delay = retry_delay
            if _max_retries is None:
                _max_retries = int(get_retry_config(retry_key, "MAX_RETRIES", DEFAULT_MAX_RETRIES)) if retry_key else DEFAULT_MAX_RETRIES
            if _retry_delay is None:
                _retry_delay = float(get_retry_config(retry_key, "RETRY_DELAY", DEFAULT_RETRY_DELAY)) if retry_key else DEFAULT_RETRY_DELAY

            retry_count = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if retry_count >= _max_retries:
                        logger.warning(
                            f"Max retries exceeded for {func.__name__}",
                            extra={"retry_count": retry_count, "exception": str(e)}
                        )
                        if isinstance(e, QaHubException):
                            raise
                        raise MaxRetriesExceededException(
                            f"最大リトライ回数({_max_retries})を超えました: {func.__name__}",
                            details={
                                "function": func.__name__,
                                "max_retries": _max_retries,
                                "original_exception": str(e),
                                "exception_type": type(e).__name__
                            }
                        ) from e

                    delay = calculate_next_delay(
                        retry_count, _retry_delay,
                        DEFAULT_MAX_RETRY_DELAY, DEFAULT_BACKOFF_FACTOR, DEFAULT_RETRY_JITTER
                    )
                    retry_count += 1
                    logger.info(f"Retrying {func.__name__} ({retry_count}/{_max_retries}) in {delay:.2f}s: {e}")
                    await asyncio.sleep(delay)

        return cast(AsyncF, wrapper)

    return decorator
