import os
import json
import yaml
from typing import Any, Dict, Optional, Tuple, Type
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from app.exceptions import ConfigurationException

# 設定ファイル内のドット区切りパス → Settings のフィールド名
CONFIG_FILE_PATHS: Dict[str, str] = {
    "app.name": "APP_NAME",
    "app.debug": "DEBUG",
    "api.url": "QAHUB_API_URL",
    "api.version": "QAHUB_API_VERSION",
    "api.token": "QAHUB_API_TOKEN",
    "store.backend": "STORE_BACKEND",
    "store.database_url": "DATABASE_URL",
    "workflow.duplicate_threshold": "DUPLICATE_THRESHOLD",
    "workflow.import_list_limit": "IMPORT_LIST_LIMIT",
    "workflow.merge_error_preview": "MERGE_ERROR_PREVIEW",
    "redis.url": "REDIS_URL",
    "timeout.http_request": "TIMEOUT_HTTP_REQUEST",
    "retry.api_call.max_retries": "RETRY_API_CALL_MAX_RETRIES",
    "retry.api_call.retry_delay": "RETRY_API_CALL_RETRY_DELAY",
}


def load_config_file(config_file: Optional[str] = None) -> Dict[str, Any]:
    """
    YAML / JSON の設定ファイルを読み込む

    Args:
        config_file: ファイルパス（Noneの場合は環境変数 CONFIG_FILE、なければ config.yaml）

    Returns:
        設定ファイルの内容。ファイルがなければ空の辞書

    Raises:
        ConfigurationException: ファイルが存在するが読み込めない場合
    """
    config_file = config_file or os.environ.get("CONFIG_FILE", "config.yaml")
    if not os.path.exists(config_file):
        return {}

    try:
        with open(config_file, 'r') as f:
            if config_file.endswith(('.yaml', '.yml')):
                data = yaml.safe_load(f) or {}
            elif config_file.endswith('.json'):
                data = json.load(f)
            else:
                data = {}
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationException(
            f"設定ファイルの読み込みに失敗しました: {config_file}",
            details={"config_file": config_file, "reason": str(e)},
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationException(
            f"設定ファイルの形式が不正です: {config_file}",
            details={"config_file": config_file},
        )
    return data


def _lookup(data: Dict[str, Any], dotted_path: str) -> Any:
    value: Any = data
    for key in dotted_path.split('.'):
        if not isinstance(value, dict) or key not in value:
            return None
        value = value[key]
    return value


class ConfigFileSettingsSource(PydanticBaseSettingsSource):
    """設定ファイルの値を Settings に渡す。環境変数より優先度は低い"""

    def __init__(self, settings_cls: Type[BaseSettings]):
        super().__init__(settings_cls)
        self.config_data = load_config_file()

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        for path, name in CONFIG_FILE_PATHS.items():
            if name == field_name:
                return _lookup(self.config_data, path), field_name, False
        return None, field_name, False

    def __call__(self) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for field_name, field in self.settings_cls.model_fields.items():
            value, _, _ = self.get_field_value(field, field_name)
            if value is not None:
                values[field_name] = value
        return values


class Settings(BaseSettings):
    # アプリケーション設定
    APP_NAME: str = "QaHub"
    DEBUG: bool = False

    # QaHub API 設定
    QAHUB_API_URL: str = "http://localhost:3001"
    QAHUB_API_VERSION: str = "v1"
    QAHUB_API_TOKEN: str = ""

    # ストア設定
    STORE_BACKEND: str = "http"
    DATABASE_URL: str = "sqlite:///./qahub.db"

    # ワークフロー設定
    DUPLICATE_THRESHOLD: float = 80.0
    IMPORT_LIST_LIMIT: int = 1000
    MERGE_ERROR_PREVIEW: int = 3

    # Redis設定
    REDIS_URL: str = "redis://redis:6379/0"

    # タイムアウト設定（秒）
    TIMEOUT_HTTP_REQUEST: float = 30.0

    # API呼び出しのリトライ設定
    RETRY_API_CALL_MAX_RETRIES: int = 2
    RETRY_API_CALL_RETRY_DELAY: float = 0.5

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # 優先順位: 引数 > 環境変数 > .env > 設定ファイル > デフォルト値
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            ConfigFileSettingsSource(settings_cls),
            file_secret_settings,
        )

    @property
    def api_base_url(self) -> str:
        return f"{self.QAHUB_API_URL.rstrip('/')}/api/{self.QAHUB_API_VERSION}"


settings = Settings()
