# =============================================================================
# Drive Indexer - 例外定義
# =============================================================================
# パイプライン全体で使用する例外クラスを定義します。
#
# 例外の分類:
#   - ConfigError: 設定の読み込み失敗（プロセス起動時のエラー）
#   - CrawlError: 巡回フェーズの致命的エラー（カタログ集約の失敗、中断）
#   - PublishError: 登録フェーズの致命的エラー（インデックス作成、バッチ送信）
#
# 個々のパスの読み取り失敗（権限なし、存在しない等）は例外として
# 呼び出し元に伝播せず、クローラー内部でスキップされます。
# =============================================================================

from typing import Optional


class DriveIndexerError(Exception):
    """Drive Indexer の全例外の基底クラス"""


class ConfigError(DriveIndexerError):
    """設定ファイルが読めない、または内容が不正な場合のエラー"""


# ---------------------------------------------------------------------------
# 巡回フェーズ
# ---------------------------------------------------------------------------
class CrawlError(DriveIndexerError):
    """巡回フェーズで発生した致命的エラーの基底クラス"""


class CatalogError(CrawlError):
    """
    カタログへの登録が継続できない場合のエラー

    一時的な障害ではなくプログラムの不具合やリソース枯渇を示すため、
    データを黙って失わないよう巡回全体を中断する。
    """


class CrawlCancelledError(CrawlError):
    """巡回がオペレーターにより中断された場合のエラー"""


# ---------------------------------------------------------------------------
# 登録フェーズ
# ---------------------------------------------------------------------------
class PublishError(DriveIndexerError):
    """登録フェーズで発生した致命的エラーの基底クラス"""


class IndexSetupError(PublishError):
    """登録先インデックスの作成・取得に失敗した場合のエラー"""


class BatchUploadError(PublishError):
    """
    リトライを使い切ってもバッチの送信に成功しなかった場合のエラー

    失敗したバッチだけを再送できるよう、バッチ番号・件数・原因を保持する。

    Attributes:
        batch_index: 失敗したバッチの番号（0始まり）
        batch_size: バッチに含まれるドキュメント数
        attempts: 試行回数
        cause: 最後の試行で発生した例外
    """

    def __init__(
        self,
        batch_index: int,
        batch_size: int,
        attempts: int,
        cause: Optional[BaseException] = None
    ):
        self.batch_index = batch_index
        self.batch_size = batch_size
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"バッチ {batch_index} ({batch_size} 件) の送信に {attempts} 回失敗しました: {cause}"
        )


class BatchSubmitError(DriveIndexerError):
    """1回のバッチ送信が失敗した場合のエラー（リトライ対象）"""
