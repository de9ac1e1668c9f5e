# =============================================================================
# Drive Indexer - Meilisearch クライアント
# =============================================================================
# Meilisearch との通信を行うクライアントクラスを提供します。
#
# 主な機能:
#   - インデックスの作成（存在しない場合のみ）と設定
#   - ドキュメントのバッチ送信とタスク完了待ち
#   - ヘルスチェック
# =============================================================================

import logging
from typing import Any, Dict, List, Optional

import meilisearch
from meilisearch.errors import MeilisearchApiError, MeilisearchError

from drive_indexer.errors import BatchSubmitError, IndexSetupError

logger = logging.getLogger(__name__)

# ドキュメントの主キー
PRIMARY_KEY = "id"

# フィルター・ソートに使用する属性
FILTERABLE_ATTRIBUTES = ["parent_id", "size", "path"]
SORTABLE_ATTRIBUTES = ["path", "size"]
SEARCHABLE_ATTRIBUTES = ["path"]


def _get_task_uid(task_info: Any) -> Optional[int]:
    """
    タスク情報から task_uid を取得するヘルパー関数

    Meilisearch ライブラリのバージョンによって、タスク情報が
    辞書または TaskInfo オブジェクトで返されるため、両方に対応する。
    """
    if hasattr(task_info, "task_uid"):
        return task_info.task_uid
    if isinstance(task_info, dict):
        return task_info.get("taskUid") or task_info.get("uid")
    return None


def _get_task_status(result: Any) -> str:
    """タスク結果からステータスを取得するヘルパー関数"""
    if hasattr(result, "status"):
        return result.status
    if isinstance(result, dict):
        return result.get("status", "unknown")
    return "unknown"


def _get_task_error(result: Any) -> Any:
    """タスク結果からエラー情報を取得するヘルパー関数"""
    if hasattr(result, "error"):
        return result.error
    if isinstance(result, dict):
        return result.get("error", {})
    return None


def _is_index_not_found(error: MeilisearchApiError) -> bool:
    return getattr(error, "code", None) == "index_not_found" or "index_not_found" in str(error)


class MeilisearchClient:
    """
    Meilisearch との通信を行うクライアントクラス

    IndexUploader が所有する接続ハンドルで、巡回フェーズとは共有しない。

    使用例:
        client = MeilisearchClient(
            host="http://localhost:7700",
            index_name="files_index"
        )
        client.ensure_index()
        client.submit_batch([{...}, {...}])

    Attributes:
        host: Meilisearch サーバーの URL
        index_name: 登録先のインデックス名
        task_timeout_ms: タスク完了待ちのタイムアウト（ミリ秒）
    """

    def __init__(
        self,
        host: str = "http://localhost:7700",
        api_key: Optional[str] = None,
        index_name: str = "files_index",
        task_timeout_ms: int = 120000,
        client: Optional[meilisearch.Client] = None
    ):
        """
        MeilisearchClient を初期化する

        Args:
            host: Meilisearch サーバーの URL
            api_key: API キー（オプション）
            index_name: 登録先のインデックス名
            task_timeout_ms: タスク完了待ちのタイムアウト（ミリ秒）
            client: 生成済みの meilisearch.Client（省略時は host と api_key から生成）
        """
        self.host = host
        self.index_name = index_name
        self.task_timeout_ms = task_timeout_ms

        self.client = client if client is not None else meilisearch.Client(host, api_key)
        self.index = self.client.index(index_name)

    def ensure_index(self) -> bool:
        """
        インデックスが存在しない場合は作成する

        既存のインデックスはそのまま使用し、中身を削除することはない。
        作成後、検索設定を適用する（設定の失敗は警告のみ）。

        Returns:
            bool: 新規に作成した場合は True

        Raises:
            IndexSetupError: インデックスの取得・作成に失敗した場合
        """
        created = False
        try:
            try:
                self.client.get_index(self.index_name)
                logger.info(f"既存のインデックスを使用: {self.index_name}")
            except MeilisearchApiError as e:
                if not _is_index_not_found(e):
                    raise
                logger.info(f"インデックスを作成: {self.index_name}")
                task = self.client.create_index(self.index_name, {"primaryKey": PRIMARY_KEY})
                result = self._wait_for_task(task)
                status = _get_task_status(result)
                # 同時に別プロセスが作成した場合も既存として扱う
                if status == "failed" and not self._index_exists():
                    raise IndexSetupError(
                        f"インデックスの作成に失敗しました: {self.index_name} - {_get_task_error(result)}"
                    )
                created = status == "succeeded"
        except MeilisearchError as e:
            logger.error(f"インデックス初期化エラー: {e}")
            raise IndexSetupError(f"インデックスを準備できません: {self.index_name} - {e}") from e

        self._configure_index_settings()
        return created

    def _index_exists(self) -> bool:
        try:
            self.client.get_index(self.index_name)
            return True
        except MeilisearchApiError:
            return False

    def _configure_index_settings(self) -> None:
        """
        インデックスの検索設定を適用する

        - フィルター可能属性: parent_id で子エントリを、size で大きさを絞り込める
        - ソート可能属性: パス順、サイズ順
        - 検索可能属性: パス
        """
        try:
            tasks = [
                self.index.update_filterable_attributes(FILTERABLE_ATTRIBUTES),
                self.index.update_sortable_attributes(SORTABLE_ATTRIBUTES),
                self.index.update_searchable_attributes(SEARCHABLE_ATTRIBUTES),
            ]
            for task in tasks:
                self._wait_for_task(task)
            logger.info("インデックス設定を適用しました")
        except MeilisearchError as e:
            logger.warning(f"インデックス設定の適用に失敗: {e}")

    def _wait_for_task(self, task_info: Any) -> Any:
        """
        Meilisearch タスクの完了を待機する

        Meilisearch の操作は非同期で実行されるため、
        タスクの完了を待機する必要があります。

        Args:
            task_info: タスク情報（TaskInfo オブジェクトまたは辞書）

        Returns:
            完了したタスクの情報
        """
        task_uid = _get_task_uid(task_info)
        if task_uid is None:
            logger.warning(f"タスク情報にtaskUidがありません: {task_info}")
            return task_info

        logger.debug(f"タスク待機中: taskUid={task_uid}")
        result = self.client.wait_for_task(task_uid, timeout_in_ms=self.task_timeout_ms)
        status = _get_task_status(result)

        if status == "failed":
            logger.error(f"タスク失敗: taskUid={task_uid}, error={_get_task_error(result)}")
        elif status == "succeeded":
            logger.debug(f"タスク成功: taskUid={task_uid}")
        else:
            logger.warning(f"タスク状態: taskUid={task_uid}, status={status}")

        return result

    def submit_batch(self, documents: List[Dict[str, Any]]) -> int:
        """
        1バッチ分のドキュメントを送信し、インデックスへの反映を待つ

        リトライは行わない（呼び出し側の IndexUploader が担当する）。

        Args:
            documents: 送信するドキュメントのリスト

        Returns:
            int: 登録されたドキュメント数

        Raises:
            BatchSubmitError: 送信またはタスクが失敗した場合
        """
        try:
            task = self.index.add_documents(documents, primary_key=PRIMARY_KEY)
            logger.debug(f"タスク作成: taskUid={_get_task_uid(task)}")
            result = self._wait_for_task(task)
        except MeilisearchError as e:
            raise BatchSubmitError(f"ドキュメント送信エラー: {e}") from e

        status = _get_task_status(result)
        if status != "succeeded":
            raise BatchSubmitError(
                f"バッチ登録失敗: status={status}, error={_get_task_error(result)}"
            )
        return len(documents)

    def health_check(self) -> bool:
        """
        Meilisearch サーバーの健全性をチェックする

        Returns:
            bool: サーバーが正常に動作している場合は True
        """
        try:
            health = self.client.health()
            return health.get("status") == "available"
        except MeilisearchError as e:
            logger.error(f"ヘルスチェック失敗: {e}")
            return False
