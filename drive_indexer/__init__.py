# =============================================================================
# Drive Indexer
# =============================================================================
# ドライブのルートパスを巡回してファイル/フォルダの目録を作成し、
# Meilisearch へ一括登録するオフラインのインデックス作成パイプラインです。
#
# パッケージ構成:
#   - crawler: ファイルシステムの並列巡回と目録（カタログ）の集約
#   - indexer: Meilisearch へのバッチ登録
#   - config.py: 設定ファイルの読み込み
#   - main.py: コマンドラインのエントリーポイント
# =============================================================================

__version__ = "1.0.0"
