# =============================================================================
# Drive Indexer - 設定管理モジュール
# =============================================================================
# config.yaml と環境変数から設定を読み込み、パイプライン全体で
# 使用する設定オブジェクトを提供します。
#
# 使用方法:
#   from drive_indexer.config import load_config
#   settings = load_config("config.yaml")
#   print(settings.root_paths)
# =============================================================================

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from drive_indexer.errors import ConfigError

# 設定ファイルのパスを指定する環境変数
CONFIG_ENV_VAR = "DRIVE_CONFIG"
DEFAULT_CONFIG_PATH = "config.yaml"


# ---------------------------------------------------------------------------
# Meilisearch設定のデータクラス
# ---------------------------------------------------------------------------
class MeilisearchConfig(BaseModel):
    """
    Meilisearch接続設定を保持するクラス

    Attributes:
        host: MeilisearchサーバーのURL
        index_name: 登録先のインデックス名
        api_key: APIキー（オプション）
    """
    host: str = "http://localhost:7700"
    index_name: str = "files_index"
    api_key: Optional[str] = None


# ---------------------------------------------------------------------------
# 巡回設定のデータクラス
# ---------------------------------------------------------------------------
class CrawlConfig(BaseModel):
    """
    ファイルシステム巡回の設定を保持するクラス

    Attributes:
        max_workers: ワーカースレッド数（None の場合は CPU数 + 4、最大32）
        follow_symlinks: シンボリックリンクをたどるかどうか
        io_timeout_seconds: パスごとのI/Oタイムアウト（秒）、None の場合は無制限
    """
    max_workers: Optional[int] = Field(default=None, ge=1)
    follow_symlinks: bool = False
    io_timeout_seconds: Optional[float] = Field(default=None, gt=0)


# ---------------------------------------------------------------------------
# 登録設定のデータクラス
# ---------------------------------------------------------------------------
class UploadConfig(BaseModel):
    """
    Meilisearchへのバッチ登録の設定を保持するクラス

    Attributes:
        batch_size: 1回のリクエストで送信するドキュメント数
        max_attempts: バッチごとの最大試行回数
        backoff_seconds: 最初のリトライまでの待機時間（秒）、以降は倍々で増加
        max_backoff_seconds: リトライ待機時間の上限（秒）
        task_timeout_ms: Meilisearch タスクの完了待ちタイムアウト（ミリ秒）
    """
    batch_size: int = Field(default=1000, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=1.0, ge=0)
    max_backoff_seconds: float = Field(default=30.0, ge=0)
    task_timeout_ms: int = Field(default=120000, ge=1)


# ---------------------------------------------------------------------------
# ログ設定のデータクラス
# ---------------------------------------------------------------------------
class LoggingConfig(BaseModel):
    """
    ログ出力設定を保持するクラス

    Attributes:
        level: ログレベル（DEBUG, INFO, WARNING, ERROR, CRITICAL）
        format: ログフォーマット文字列
    """
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"不明なログレベルです: {value}")
        return level


# ---------------------------------------------------------------------------
# メイン設定クラス
# ---------------------------------------------------------------------------
class Settings(BaseSettings):
    """
    パイプライン全体の設定を管理するクラス

    Attributes:
        root_paths: 巡回対象のルートパスリスト
        scan_interval_minutes: 定期実行の間隔（分）、0 の場合は1回だけ実行
        crawl: 巡回設定
        upload: 登録設定
        meilisearch: Meilisearch接続設定
        logging: ログ設定
    """

    root_paths: List[str] = Field(default_factory=list)
    scan_interval_minutes: int = Field(default=0, ge=0)

    # サブ設定
    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    meilisearch: MeilisearchConfig = Field(default_factory=MeilisearchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="DRIVEINDEX_",  # 環境変数のプレフィックス
        env_nested_delimiter="__"
    )


def resolve_config_path(config_path: Optional[str] = None) -> Path:
    """
    設定ファイルのパスを決定する

    優先順位:
    1. 引数で指定されたパス
    2. 環境変数 DRIVE_CONFIG
    3. config.yaml

    Args:
        config_path: 明示的に指定された設定ファイルのパス

    Returns:
        Path: 設定ファイルのパス
    """
    return Path(config_path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)


def load_config(config_path: Optional[str] = None) -> Settings:
    """
    設定ファイルを読み込み、Settingsオブジェクトを生成する

    この関数は以下の処理を行います:
    1. YAML ファイルを読み込む
    2. ルートパスを取り出す（`root_paths` または `drives.root_paths`）
    3. Meilisearchのホスト/APIキーを環境変数で上書きする

    Args:
        config_path: 設定ファイルのパス（省略時は DRIVE_CONFIG、config.yaml の順）

    Returns:
        Settings: 読み込まれた設定オブジェクト

    Raises:
        ConfigError: ファイルが読めない、YAMLが不正、ルートパスが空などの場合
    """
    config_file = resolve_config_path(config_path)
    if not config_file.is_file():
        raise ConfigError(f"設定ファイルが見つかりません: {config_file}")

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"設定ファイルを読み込めません: {config_file} - {e}") from e

    if not isinstance(yaml_config, dict):
        raise ConfigError(f"設定ファイルの形式が不正です: {config_file}")

    values = _collect_values(yaml_config)

    try:
        settings = Settings(**values)
    except ValidationError as e:
        raise ConfigError(f"設定値が不正です: {config_file}\n{e}") from e

    if not settings.root_paths:
        raise ConfigError(f"root_paths が設定されていません: {config_file}")

    return settings


def _collect_values(yaml_config: Dict[str, Any]) -> Dict[str, Any]:
    """YAML の内容を Settings のキーワード引数に変換する"""
    values = {
        key: yaml_config[key]
        for key in ("root_paths", "scan_interval_minutes", "crawl", "upload", "logging")
        if yaml_config.get(key) is not None
    }

    # 旧形式の [drives] セクションもサポート
    if "root_paths" not in values:
        drives = yaml_config.get("drives") or {}
        if isinstance(drives, dict) and drives.get("root_paths"):
            values["root_paths"] = drives["root_paths"]

    # Meilisearch設定を構築（環境変数が優先される）
    meili_config = dict(yaml_config.get("meilisearch") or {})
    if os.environ.get("MEILISEARCH_HOST"):
        meili_config["host"] = os.environ["MEILISEARCH_HOST"]
    if os.environ.get("MEILI_MASTER_KEY"):
        meili_config["api_key"] = os.environ["MEILI_MASTER_KEY"]
    values["meilisearch"] = meili_config

    return values
