# =============================================================================
# Drive Indexer - コマンドラインエントリーポイント
# =============================================================================
# 設定の読み込み、ログ設定、パイプラインの実行を行うメインモジュールです。
#
# 起動方法:
#   drive-indexer run --config config.yaml
#   drive-indexer crawl --root /mnt/c      （巡回のみ、登録しない）
#   python -m drive_indexer run
#
# 終了コード:
#   0: 成功
#   1: 設定・接続などの起動時エラー
#   2: 巡回フェーズの失敗
#   3: 登録フェーズの失敗
# =============================================================================

import logging
from typing import List, Optional

import typer
from tqdm.contrib.logging import logging_redirect_tqdm

from drive_indexer.config import Settings, load_config
from drive_indexer.crawler.scanner import Crawler
from drive_indexer.crawler.scheduler import CrawlerScheduler, IndexingPipeline, create_target
from drive_indexer.errors import ConfigError, CrawlError, PublishError
from drive_indexer.progress import TqdmProgress

logger = logging.getLogger(__name__)

EXIT_SETUP_FAILURE = 1
EXIT_CRAWL_FAILURE = 2
EXIT_PUBLISH_FAILURE = 3

app = typer.Typer(
    help="ドライブを巡回してファイル/フォルダの目録を Meilisearch に登録します。",
    add_completion=False
)


# ---------------------------------------------------------------------------
# 起動処理
# ---------------------------------------------------------------------------
def _load_settings(config_path: Optional[str]) -> Settings:
    """設定を読み込み、ログを設定する（失敗時は終了コード 1 で終了）"""
    try:
        settings = load_config(config_path)
    except ConfigError as e:
        typer.echo(f"エラー: {e}", err=True)
        raise typer.Exit(code=EXIT_SETUP_FAILURE)

    logging.basicConfig(
        level=getattr(logging, settings.logging.level),
        format=settings.logging.format
    )
    return settings


# ---------------------------------------------------------------------------
# コマンド
# ---------------------------------------------------------------------------
@app.command()
def run(
    config: Optional[str] = typer.Option(
        None, "--config", "-c",
        help="設定ファイルのパス（省略時は DRIVE_CONFIG、config.yaml の順）"
    ),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="進捗を表示する"),
    once: bool = typer.Option(False, "--once", help="scan_interval_minutes を無視して1回だけ実行する")
):
    """巡回してカタログを作成し、Meilisearch へ登録する"""
    settings = _load_settings(config)

    target = create_target(settings)
    logger.info(f"Meilisearch に接続中: {settings.meilisearch.host}")
    if not target.health_check():
        typer.echo(f"エラー: Meilisearch に接続できません: {settings.meilisearch.host}", err=True)
        raise typer.Exit(code=EXIT_SETUP_FAILURE)

    pipeline = IndexingPipeline(
        settings,
        target_factory=lambda _settings: target,
        progress_factory=lambda: TqdmProgress("Indexing...", disable=not progress)
    )

    if settings.scan_interval_minutes and not once:
        _run_scheduled(pipeline, settings.scan_interval_minutes)
        return

    with logging_redirect_tqdm():
        try:
            result = pipeline.run()
        except CrawlError as e:
            typer.echo(f"巡回に失敗しました: {e}", err=True)
            raise typer.Exit(code=EXIT_CRAWL_FAILURE)
        except PublishError as e:
            typer.echo(f"登録に失敗しました: {e}", err=True)
            raise typer.Exit(code=EXIT_PUBLISH_FAILURE)

    typer.echo(
        f"{result.publish.documents} 件を {result.publish.index_name} に登録しました "
        f"(フォルダ {result.crawl_stats.folders}, ファイル {result.crawl_stats.files}, "
        f"スキップ {result.crawl_stats.skipped}, 所要時間 {result.elapsed})"
    )


@app.command()
def crawl(
    config: Optional[str] = typer.Option(
        None, "--config", "-c",
        help="設定ファイルのパス（省略時は DRIVE_CONFIG、config.yaml の順）"
    ),
    root: Optional[List[str]] = typer.Option(
        None, "--root", "-r",
        help="巡回するルートパス（指定時は設定ファイルより優先、複数指定可）"
    ),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="進捗を表示する")
):
    """巡回のみを行い、件数を表示する（Meilisearch には登録しない）"""
    if root:
        settings = Settings(root_paths=list(root))
        logging.basicConfig(level=getattr(logging, settings.logging.level), format=settings.logging.format)
    else:
        settings = _load_settings(config)

    sink = TqdmProgress("Crawling...", disable=not progress)
    crawler = Crawler(
        max_workers=settings.crawl.max_workers,
        follow_symlinks=settings.crawl.follow_symlinks,
        io_timeout=settings.crawl.io_timeout_seconds,
        progress=sink
    )

    with logging_redirect_tqdm():
        try:
            catalog = crawler.crawl(settings.root_paths)
        except CrawlError as e:
            sink.close("Crawling failed.")
            typer.echo(f"巡回に失敗しました: {e}", err=True)
            raise typer.Exit(code=EXIT_CRAWL_FAILURE)
        sink.close("Crawling complete.")

    typer.echo(f"フォルダ: {catalog.folder_count()}")
    typer.echo(f"ファイル: {catalog.file_count()}")
    typer.echo(f"スキップ: {crawler.stats.skipped}")


def _run_scheduled(pipeline: IndexingPipeline, interval_minutes: int) -> None:
    """Ctrl+C で停止するまで定期実行する"""
    scheduler = CrawlerScheduler(pipeline, interval_minutes)
    scheduler.start()
    typer.echo(f"{interval_minutes} 分間隔でインデックスを作成します（Ctrl+C で停止）")
    try:
        scheduler.wait()
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
