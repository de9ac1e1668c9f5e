# =============================================================================
# Drive Indexer - パイプラインとスケジューラー
# =============================================================================
# 巡回（カタログ作成）と登録（Meilisearch への一括登録）を順に実行する
# パイプラインと、それを定期実行するスケジューラーです。
#
# 主な機能:
#   - 巡回フェーズと登録フェーズの失敗を区別して報告
#   - 定期実行（設定可能な間隔、毎回全件を再登録）
#   - 手動実行トリガーと重複実行の防止
#   - 実行状態の管理
# =============================================================================

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from drive_indexer.config import Settings
from drive_indexer.crawler.scanner import Crawler, CrawlStats
from drive_indexer.errors import CrawlError, PublishError
from drive_indexer.indexer.meilisearch_client import MeilisearchClient
from drive_indexer.indexer.uploader import IndexTarget, IndexUploader, PublishResult
from drive_indexer.progress import NullProgress, ProgressSink

logger = logging.getLogger(__name__)

JOB_ID = "index_job"


def create_target(settings: Settings) -> MeilisearchClient:
    """設定から Meilisearch クライアントを生成する"""
    return MeilisearchClient(
        host=settings.meilisearch.host,
        api_key=settings.meilisearch.api_key,
        index_name=settings.meilisearch.index_name,
        task_timeout_ms=settings.upload.task_timeout_ms
    )


@dataclass(frozen=True)
class PipelineResult:
    """
    パイプライン1回分の実行結果

    Attributes:
        crawl_stats: 巡回の統計情報
        publish: 登録結果
        elapsed: 所要時間
    """
    crawl_stats: CrawlStats
    publish: PublishResult
    elapsed: timedelta


class IndexingPipeline:
    """
    巡回と登録を順に実行するパイプライン

    巡回フェーズの失敗は CrawlError、登録フェーズの失敗は PublishError として
    そのまま呼び出し元に伝わるため、どちらで失敗したかを区別できる。

    使用例:
        pipeline = IndexingPipeline(settings)
        result = pipeline.run()
    """

    def __init__(
        self,
        settings: Settings,
        target_factory: Callable[[Settings], IndexTarget] = create_target,
        progress_factory: Callable[[], ProgressSink] = NullProgress
    ):
        """
        IndexingPipeline を初期化する

        Args:
            settings: 設定オブジェクト
            target_factory: 登録先を生成する関数
            progress_factory: 実行ごとに ProgressSink を生成する関数
        """
        self.settings = settings
        self._target_factory = target_factory
        self._progress_factory = progress_factory
        self._crawler: Optional[Crawler] = None
        self._lock = threading.Lock()

    def cancel(self) -> None:
        """実行中の巡回を中断する"""
        with self._lock:
            crawler = self._crawler
        if crawler is not None:
            crawler.cancel()

    def run(self) -> PipelineResult:
        """
        巡回してカタログを作成し、Meilisearch へ登録する

        Returns:
            PipelineResult: 実行結果

        Raises:
            CrawlError: 巡回フェーズで致命的なエラーが発生した場合
            PublishError: 登録フェーズで致命的なエラーが発生した場合
        """
        start_time = datetime.now()
        crawl_config = self.settings.crawl

        progress = self._progress_factory()
        crawler = Crawler(
            max_workers=crawl_config.max_workers,
            follow_symlinks=crawl_config.follow_symlinks,
            io_timeout=crawl_config.io_timeout_seconds,
            progress=progress
        )
        with self._lock:
            self._crawler = crawler

        completed = False
        try:
            catalog = crawler.crawl(self.settings.root_paths)
            completed = True
        finally:
            with self._lock:
                self._crawler = None
            progress.close("Indexing complete." if completed else "Indexing failed.")

        snapshot = catalog.snapshot()
        logger.info(f"カタログ作成完了: フォルダ {len(snapshot.folders)} 件, ファイル {len(snapshot.files)} 件")

        upload_config = self.settings.upload
        uploader = IndexUploader(
            batch_size=upload_config.batch_size,
            max_attempts=upload_config.max_attempts,
            backoff_seconds=upload_config.backoff_seconds,
            max_backoff_seconds=upload_config.max_backoff_seconds
        )
        publish_result = uploader.publish(snapshot, self._target_factory(self.settings))

        return PipelineResult(
            crawl_stats=crawler.stats,
            publish=publish_result,
            elapsed=datetime.now() - start_time
        )


class CrawlerScheduler:
    """
    パイプラインの定期実行を管理するスケジューラークラス

    毎回全件を巡回して再登録する。識別子はパスから決まるため、
    同じファイルは同じドキュメントとして上書きされる。

    使用例:
        scheduler = CrawlerScheduler(pipeline, interval_minutes=60)
        scheduler.start()  # 定期実行を開始
        scheduler.run_now()  # 手動で即座に実行
        scheduler.stop()  # 停止

    Attributes:
        pipeline: 実行するパイプライン
        interval_minutes: 定期実行の間隔（分）
    """

    def __init__(self, pipeline: IndexingPipeline, interval_minutes: int):
        """
        CrawlerScheduler を初期化する

        Args:
            pipeline: 実行するパイプライン
            interval_minutes: 定期実行の間隔（分）
        """
        if interval_minutes < 1:
            raise ValueError("interval_minutes は 1 以上を指定してください")

        self.pipeline = pipeline
        self.interval_minutes = interval_minutes

        # スケジューラーの初期化
        self._scheduler = BackgroundScheduler()

        # 状態管理
        self._is_running = False
        self._runs = 0
        self._last_run: Optional[datetime] = None
        self._last_result: Optional[PipelineResult] = None
        self._last_error: Optional[str] = None
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    def start(self, run_immediately: bool = True) -> None:
        """
        スケジューラーを開始する

        Args:
            run_immediately: True の場合は起動時に初回の実行を行う
        """
        self._scheduler.add_job(
            self._run_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=JOB_ID,
            name="Drive Indexer",
            replace_existing=True
        )
        self._scheduler.start()
        logger.info(f"スケジューラーを開始しました（間隔: {self.interval_minutes}分）")

        if run_immediately:
            threading.Thread(target=self._run_job, daemon=True).start()

    def stop(self) -> None:
        """
        スケジューラーを停止する

        実行中の巡回があれば中断を要求する。
        """
        self._stopped.set()
        self.pipeline.cancel()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("スケジューラーを停止しました")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """stop() が呼ばれるまで待機する"""
        return self._stopped.wait(timeout)

    def run_now(self) -> bool:
        """
        パイプラインを手動で即座に実行する

        Returns:
            bool: 実行を開始できた場合は True（既に実行中の場合は False）
        """
        with self._lock:
            if self._is_running:
                logger.warning("インデックス作成は既に実行中です")
                return False

        threading.Thread(target=self._run_job, daemon=True).start()
        return True

    def get_status(self) -> Dict[str, Any]:
        """
        スケジューラーの現在の状態を取得する

        Returns:
            dict: 状態情報を含む辞書
                - is_running: 実行中かどうか
                - runs: 完了した実行回数
                - last_run: 最後に実行を終えた日時
                - next_run: 次回実行予定日時
                - last_documents: 直近の実行で登録したドキュメント数
                - last_error: 直近の実行のエラー
        """
        next_run = None
        job = self._scheduler.get_job(JOB_ID)
        if job is not None and getattr(job, "next_run_time", None):
            next_run = job.next_run_time

        with self._lock:
            return {
                "is_running": self._is_running,
                "runs": self._runs,
                "last_run": self._last_run.isoformat() if self._last_run else None,
                "next_run": next_run.isoformat() if next_run else None,
                "last_documents": self._last_result.publish.documents if self._last_result else None,
                "last_error": self._last_error
            }

    def _run_job(self) -> None:
        """
        パイプラインを1回実行する（内部メソッド）

        定期実行または run_now() から呼び出される。
        失敗しても次回の定期実行は継続する。
        """
        # 重複実行の防止
        with self._lock:
            if self._is_running:
                logger.warning("インデックス作成は既に実行中のためスキップします")
                return
            self._is_running = True

        result: Optional[PipelineResult] = None
        error: Optional[str] = None
        try:
            result = self.pipeline.run()
            logger.info(
                f"インデックス作成完了: {result.publish.documents} 件登録, 所要時間: {result.elapsed}"
            )
        except CrawlError as e:
            error = f"巡回失敗: {e}"
            logger.error(error)
        except PublishError as e:
            error = f"登録失敗: {e}"
            logger.error(error)
        except Exception as e:
            error = f"予期しないエラー: {e}"
            logger.error(error, exc_info=True)
        finally:
            with self._lock:
                self._is_running = False
                self._runs += 1
                self._last_run = datetime.now()
                self._last_result = result
                self._last_error = error
