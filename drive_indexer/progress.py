# =============================================================================
# Drive Indexer - 進捗表示
# =============================================================================
# クローラーが1エントリを登録するたびに受け取る「処理済み」通知の受け口です。
#
# クローラーは ProgressSink.advance() を呼ぶだけで、表示方法は関知しません。
#   - TqdmProgress: tqdm によるカウンター表示（件数のみ、総数なし）
#   - NullProgress: 何も表示しない（--no-progress 指定時、テスト用）
# =============================================================================

import threading
from typing import Optional, Protocol

from tqdm import tqdm


class ProgressSink(Protocol):
    """進捗通知を受け取るオブジェクトのインターフェース"""

    def advance(self, n: int = 1) -> None:
        ...

    def close(self, message: Optional[str] = None) -> None:
        ...


class NullProgress:
    """進捗を表示しない ProgressSink"""

    def advance(self, n: int = 1) -> None:
        pass

    def close(self, message: Optional[str] = None) -> None:
        pass


class TqdmProgress:
    """
    tqdm で処理済み件数を表示する ProgressSink

    複数のワーカースレッドから同時に advance() が呼ばれるため、
    カウンターの更新はロックで保護する。

    使用例:
        progress = TqdmProgress("Indexing...")
        progress.advance()
        progress.close("Indexing complete.")
    """

    def __init__(self, description: str = "Indexing...", disable: bool = False):
        """
        TqdmProgress を初期化する

        Args:
            description: 表示するメッセージ
            disable: True の場合は表示しない
        """
        self._lock = threading.Lock()
        self._bar = tqdm(
            desc=description,
            unit=" items",
            total=None,
            disable=disable
        )

    @property
    def count(self) -> int:
        """処理済み件数"""
        return self._bar.n

    def advance(self, n: int = 1) -> None:
        with self._lock:
            self._bar.update(n)

    def close(self, message: Optional[str] = None) -> None:
        with self._lock:
            if message:
                self._bar.set_description(message)
            self._bar.close()
