# =============================================================================
# Drive Indexer - インデクサーパッケージ
# =============================================================================
# Meilisearch への一括登録を行うモジュール群
#
# モジュール構成:
#   - meilisearch_client.py: Meilisearch API クライアント
#   - uploader.py: バッチ分割とリトライを伴う一括登録
# =============================================================================

from drive_indexer.indexer.meilisearch_client import MeilisearchClient
from drive_indexer.indexer.uploader import IndexUploader, PublishResult

__all__ = ["MeilisearchClient", "IndexUploader", "PublishResult"]
