# =============================================================================
# Drive Indexer - カタログ
# =============================================================================
# 巡回中に見つかったファイル/フォルダのエントリを集約するストアです。
#
# 主な機能:
#   - 多数のワーカースレッドからの同時登録（追記のみ）
#   - 識別子によるシャーディング（シャードごとのロックで競合を分散）
#   - 巡回完了後の読み取り専用スナップショットの生成
# =============================================================================

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar

from drive_indexer.errors import CatalogError

# シャード数のデフォルト値
DEFAULT_SHARDS = 16


# ---------------------------------------------------------------------------
# エントリのデータクラス
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FolderEntry:
    """
    巡回で見つかったフォルダの情報を保持するデータクラス

    Attributes:
        id: パスから生成した識別子
        path: フォルダの絶対パス
        parent_id: 親フォルダの識別子（ルートパスの場合は None）
    """
    id: int
    path: str
    parent_id: Optional[int] = None

    def to_document(self) -> Dict[str, Any]:
        """Meilisearch に登録するドキュメントに変換する"""
        return {
            "id": self.id,
            "path": self.path,
            "parent_id": self.parent_id
        }


@dataclass(frozen=True)
class FileEntry:
    """
    巡回で見つかったファイルの情報を保持するデータクラス

    Attributes:
        id: パスから生成した識別子
        path: ファイルの絶対パス
        size: 発見時点のファイルサイズ（バイト）
        parent_id: 親フォルダの識別子（ファイル自体がルートパスの場合は None）
    """
    id: int
    path: str
    size: int
    parent_id: Optional[int] = None

    def to_document(self) -> Dict[str, Any]:
        """Meilisearch に登録するドキュメントに変換する"""
        return {
            "id": self.id,
            "path": self.path,
            "size": self.size,
            "parent_id": self.parent_id
        }


# ---------------------------------------------------------------------------
# スナップショット
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class CatalogSnapshot:
    """
    巡回完了後のカタログの読み取り専用ビュー

    各シーケンス内の順序に意味はない。親子の順序が必要な場合は
    parent_id のリンクから導出すること。

    Attributes:
        folders: フォルダエントリのタプル
        files: ファイルエントリのタプル
    """
    folders: Tuple[FolderEntry, ...] = field(default_factory=tuple)
    files: Tuple[FileEntry, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.folders) + len(self.files)

    def documents(self) -> Iterator[Dict[str, Any]]:
        """
        全エントリをドキュメントとして順に返す（フォルダ、ファイルの順）

        Yields:
            dict: Meilisearch ドキュメント
        """
        for folder in self.folders:
            yield folder.to_document()
        for file_entry in self.files:
            yield file_entry.to_document()


# ---------------------------------------------------------------------------
# シャーディングされた追記専用コレクション
# ---------------------------------------------------------------------------
T = TypeVar("T")


class _ShardedCollection(Generic[T]):
    """識別子でシャードを選び、シャードごとのロックで保護するリスト群"""

    def __init__(self, shards: int):
        self._shards: List[List[T]] = [[] for _ in range(shards)]
        self._locks = [threading.Lock() for _ in range(shards)]

    def append(self, key: int, item: T, guard: Callable[[], None]) -> None:
        """guard() をシャードのロック内で呼んでから追加する（例外なら追加しない）"""
        index = key % len(self._shards)
        with self._locks[index]:
            guard()
            self._shards[index].append(item)

    def materialize(self) -> Tuple[T, ...]:
        items: List[T] = []
        for lock, shard in zip(self._locks, self._shards):
            with lock:
                items.extend(shard)
        return tuple(items)

    def __len__(self) -> int:
        return sum(len(shard) for shard in self._shards)


# ---------------------------------------------------------------------------
# カタログ本体
# ---------------------------------------------------------------------------
class Catalog:
    """
    並行に登録可能なファイル/フォルダの目録

    フォルダとファイルの2つの独立したコレクションを持ち、
    どちらも識別子でシャーディングされている。
    呼び出し側同士で調整することなく、任意の数のスレッドから
    add_folder / add_file を同時に呼び出せる。

    エントリは追記のみで、登録後に削除・変更されることはない。
    snapshot() を呼ぶとカタログは凍結され、以降の登録は CatalogError になる。

    使用例:
        catalog = Catalog()
        catalog.add_folder(FolderEntry(id=1, path="/data"))
        snapshot = catalog.snapshot()
    """

    def __init__(self, shards: int = DEFAULT_SHARDS):
        """
        Catalog を初期化する

        Args:
            shards: コレクションごとのシャード数
        """
        if shards < 1:
            raise ValueError("shards は 1 以上を指定してください")
        self._folders: _ShardedCollection[FolderEntry] = _ShardedCollection(shards)
        self._files: _ShardedCollection[FileEntry] = _ShardedCollection(shards)
        self._frozen = threading.Event()
        self._snapshot: Optional[CatalogSnapshot] = None
        self._snapshot_lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        """カタログが凍結済みかどうか"""
        return self._frozen.is_set()

    def add_folder(self, entry: FolderEntry) -> None:
        """
        フォルダエントリを登録する

        Raises:
            CatalogError: 凍結済みのカタログに登録しようとした場合
        """
        self._folders.append(entry.id, entry, lambda: self._check_writable(entry.path))

    def add_file(self, entry: FileEntry) -> None:
        """
        ファイルエントリを登録する

        Raises:
            CatalogError: 凍結済みのカタログに登録しようとした場合
        """
        self._files.append(entry.id, entry, lambda: self._check_writable(entry.path))

    def freeze(self) -> None:
        """カタログを凍結し、以降の登録を禁止する"""
        self._frozen.set()

    def snapshot(self) -> CatalogSnapshot:
        """
        カタログを凍結して読み取り専用のスナップショットを返す

        2回目以降の呼び出しでは同じスナップショットを返す。

        Returns:
            CatalogSnapshot: 全エントリを実体化したスナップショット
        """
        with self._snapshot_lock:
            if self._snapshot is None:
                self.freeze()
                self._snapshot = CatalogSnapshot(
                    folders=self._folders.materialize(),
                    files=self._files.materialize()
                )
            return self._snapshot

    def folder_count(self) -> int:
        return len(self._folders)

    def file_count(self) -> int:
        return len(self._files)

    def __len__(self) -> int:
        return self.folder_count() + self.file_count()

    def _check_writable(self, path: str) -> None:
        # シャードのロック内で呼ばれる。freeze() 後に materialize されない追加は起こらない
        if self._frozen.is_set():
            raise CatalogError(f"凍結済みのカタログには登録できません: {path}")
