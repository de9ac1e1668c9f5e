# =============================================================================
# Drive Indexer - インデックスアップローダー
# =============================================================================
# カタログのスナップショットをドキュメントに変換し、
# 検索エンジンへバッチ単位で登録します。
#
# 処理の流れ:
#   1. 登録先インデックスの準備（存在しない場合のみ作成）
#   2. ドキュメントをバッチに分割して送信
#   3. 失敗したバッチは待機時間を倍々にしながらリトライ
#      （試行回数を使い切ったら BatchUploadError で中断）
# =============================================================================

import logging
import time
from dataclasses import dataclass
from itertools import islice
from typing import Any, Callable, Dict, Iterable, Iterator, List, Protocol, Union

from drive_indexer.crawler.catalog import Catalog, CatalogSnapshot
from drive_indexer.errors import BatchSubmitError, BatchUploadError, IndexSetupError, PublishError

logger = logging.getLogger(__name__)


class IndexTarget(Protocol):
    """ドキュメントの登録先（MeilisearchClient が実装する）"""

    index_name: str

    def ensure_index(self) -> bool:
        ...

    def submit_batch(self, documents: List[Dict[str, Any]]) -> int:
        ...


@dataclass(frozen=True)
class PublishResult:
    """
    登録結果

    Attributes:
        index_name: 登録先のインデックス名
        documents: 登録したドキュメント数
        batches: 送信したバッチ数
        retries: リトライした回数（全バッチの合計）
        index_created: インデックスを新規作成したかどうか
    """
    index_name: str
    documents: int
    batches: int
    retries: int = 0
    index_created: bool = False


def iter_batches(documents: Iterable[Dict[str, Any]], batch_size: int) -> Iterator[List[Dict[str, Any]]]:
    """ドキュメントを batch_size 件ずつのリストに分割する"""
    iterator = iter(documents)
    while True:
        batch = list(islice(iterator, batch_size))
        if not batch:
            return
        yield batch


class IndexUploader:
    """
    カタログを検索エンジンへ一括登録するクラス

    使用例:
        uploader = IndexUploader(batch_size=1000, max_attempts=3)
        result = uploader.publish(catalog, MeilisearchClient(...))

    Attributes:
        batch_size: 1回のリクエストで送信するドキュメント数
        max_attempts: バッチごとの最大試行回数
        backoff_seconds: 最初のリトライまでの待機時間（秒）
        max_backoff_seconds: 待機時間の上限（秒）
    """

    def __init__(
        self,
        batch_size: int = 1000,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 30.0,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        IndexUploader を初期化する

        Args:
            batch_size: 1回のリクエストで送信するドキュメント数
            max_attempts: バッチごとの最大試行回数（1 の場合はリトライしない）
            backoff_seconds: 最初のリトライまでの待機時間（秒）
            max_backoff_seconds: 待機時間の上限（秒）
            sleep: 待機に使う関数
        """
        if batch_size < 1:
            raise ValueError("batch_size は 1 以上を指定してください")
        if max_attempts < 1:
            raise ValueError("max_attempts は 1 以上を指定してください")

        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self._sleep = sleep

    def publish(self, catalog: Union[Catalog, CatalogSnapshot], target: IndexTarget) -> PublishResult:
        """
        カタログを登録先に一括登録する

        インデックスの準備とドキュメントの登録はどちらも必須の手順であり、
        途中のバッチが失敗した場合は成功として扱わない。

        Args:
            catalog: 登録するカタログ（Catalog の場合はスナップショットを取得する）
            target: 登録先

        Returns:
            PublishResult: 登録結果

        Raises:
            IndexSetupError: インデックスの準備に失敗した場合
            BatchUploadError: リトライを使い切ってもバッチ送信に失敗した場合
        """
        snapshot = catalog.snapshot() if isinstance(catalog, Catalog) else catalog

        try:
            created = target.ensure_index()
        except PublishError:
            raise
        except Exception as e:
            raise IndexSetupError(f"インデックスを準備できません: {target.index_name} - {e}") from e

        total = len(snapshot)
        logger.info(f"ドキュメント登録開始: {total} 件 (batch_size={self.batch_size})")

        documents = 0
        batches = 0
        retries = 0
        for batch_index, batch in enumerate(iter_batches(snapshot.documents(), self.batch_size)):
            attempts = self._submit_with_retry(target, batch_index, batch)
            retries += attempts - 1
            documents += len(batch)
            batches += 1
            logger.info(f"バッチ登録成功: {batch_index} ({documents} 件 / {total} 件)")

        logger.info(f"ドキュメント登録完了: {documents} 件, {batches} バッチ, リトライ {retries} 回")
        return PublishResult(
            index_name=target.index_name,
            documents=documents,
            batches=batches,
            retries=retries,
            index_created=bool(created)
        )

    def _submit_with_retry(self, target: IndexTarget, batch_index: int, batch: List[Dict[str, Any]]) -> int:
        """
        1バッチを送信し、失敗した場合はリトライする

        Returns:
            int: 成功までに要した試行回数

        Raises:
            BatchUploadError: 全ての試行が失敗した場合
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                target.submit_batch(batch)
                return attempt
            except (BatchSubmitError, OSError) as e:
                if attempt >= self.max_attempts:
                    logger.error(
                        f"バッチ送信失敗（リトライ上限）: batch={batch_index}, "
                        f"size={len(batch)}, attempts={attempt} - {e}"
                    )
                    raise BatchUploadError(batch_index, len(batch), attempt, e) from e

                delay = self._backoff(attempt)
                logger.warning(
                    f"バッチ送信失敗、{delay:.1f} 秒後にリトライします: batch={batch_index}, "
                    f"size={len(batch)}, attempt={attempt}/{self.max_attempts} - {e}"
                )
                self._sleep(delay)

        # max_attempts >= 1 のためここには到達しない
        raise BatchUploadError(batch_index, len(batch), self.max_attempts)

    def _backoff(self, attempt: int) -> float:
        """attempt 回目の失敗後の待機時間（秒）"""
        return min(self.backoff_seconds * (2 ** (attempt - 1)), self.max_backoff_seconds)
