# =============================================================================
# Drive Indexer - クローラーパッケージ
# =============================================================================
# ファイルシステムを巡回し、ファイル/フォルダの目録を作成するモジュール群
#
# モジュール構成:
#   - identifier.py: パスから安定した識別子を生成
#   - catalog.py: エントリの並行集約とスナップショット
#   - scanner.py: ファイルシステムの並列巡回
#   - scheduler.py: 巡回と登録のパイプライン、定期実行スケジューラー
# =============================================================================

from drive_indexer.crawler.identifier import identify
from drive_indexer.crawler.catalog import Catalog, CatalogSnapshot, FileEntry, FolderEntry
from drive_indexer.crawler.scanner import Crawler, CrawlStats

__all__ = [
    "identify",
    "Catalog",
    "CatalogSnapshot",
    "FileEntry",
    "FolderEntry",
    "Crawler",
    "CrawlStats",
]
