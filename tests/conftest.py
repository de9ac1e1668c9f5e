"""
テスト共通のフィクスチャ

一時ディレクトリにサンプルのツリーを作成し、検索エンジンの代わりに
送信内容を記録する FakeTarget を提供する。
"""

import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from drive_indexer.errors import BatchSubmitError


class FakeTarget:
    """
    送信されたバッチを記録する登録先

    failures に {バッチ番号: 失敗させる回数} を指定すると、
    そのバッチの送信を指定回数だけ失敗させる。
    """

    def __init__(self, failures: Optional[Dict[int, int]] = None, healthy: bool = True):
        self.index_name = "files_index"
        self.failures = dict(failures or {})
        self.healthy = healthy
        self.ensure_calls = 0
        self.batches: List[List[Dict[str, Any]]] = []
        self.calls: List[int] = []

    def ensure_index(self) -> bool:
        self.ensure_calls += 1
        return self.ensure_calls == 1

    def submit_batch(self, documents: List[Dict[str, Any]]) -> int:
        batch_index = len(self.batches)
        self.calls.append(batch_index)
        if self.failures.get(batch_index, 0) > 0:
            self.failures[batch_index] -= 1
            raise BatchSubmitError(f"simulated failure on batch {batch_index}")
        self.batches.append(list(documents))
        return len(documents)

    def health_check(self) -> bool:
        return self.healthy

    @property
    def documents(self) -> List[Dict[str, Any]]:
        return [doc for batch in self.batches for doc in batch]


class CountingProgress:
    """advance() の呼び出し回数を数える ProgressSink"""

    def __init__(self):
        self.count = 0
        self.closed = False
        self._lock = threading.Lock()

    def advance(self, n: int = 1) -> None:
        with self._lock:
            self.count += n

    def close(self, message: Optional[str] = None) -> None:
        self.closed = True


@pytest.fixture
def sample_tree(tmp_path: Path) -> Path:
    """
    サンプルのツリーを作成する

        data/
            a/x.txt        (10 bytes)
            b/             (空)
            c/d/e.txt      (5 bytes)
            top.bin        (3 bytes)
    """
    root = tmp_path / "data"
    (root / "a").mkdir(parents=True)
    (root / "a" / "x.txt").write_bytes(b"0123456789")
    (root / "b").mkdir()
    (root / "c" / "d").mkdir(parents=True)
    (root / "c" / "d" / "e.txt").write_bytes(b"hello")
    (root / "top.bin").write_bytes(b"\x00\x01\x02")
    return root


@pytest.fixture
def fake_target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def progress() -> CountingProgress:
    return CountingProgress()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """実行環境の設定用環境変数がテストに影響しないようにする"""
    for name in ("DRIVE_CONFIG", "MEILISEARCH_HOST", "MEILI_MASTER_KEY"):
        monkeypatch.delenv(name, raising=False)
