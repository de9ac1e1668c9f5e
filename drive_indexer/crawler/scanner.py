# =============================================================================
# Drive Indexer - ファイルスキャナー
# =============================================================================
# 設定されたルートパスを並列に巡回し、見つかったファイル/フォルダを
# カタログに登録します。
#
# 主な機能:
#   - ルートパスごと、ディレクトリ内の子エントリごとの並列処理
#   - 固定サイズのワーカープールによる同時実行数の上限
#   - ディレクトリ単位の完了待ち合わせ（サブツリーの巡回完了を保証）
#   - 読み取れないパスのスキップ（巡回全体は中断しない）
#   - 中断（キャンセル）と、パスごとのI/Oタイムアウト
# =============================================================================

import logging
import os
import stat
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Set, Tuple, TypeVar

from drive_indexer.crawler.catalog import Catalog, FileEntry, FolderEntry
from drive_indexer.crawler.identifier import identify
from drive_indexer.errors import CatalogError, CrawlCancelledError
from drive_indexer.progress import NullProgress, ProgressSink

logger = logging.getLogger(__name__)

R = TypeVar("R")


def default_max_workers() -> int:
    """ワーカー数のデフォルト値（CPU数 + 4、最大32）"""
    return min(32, (os.cpu_count() or 1) + 4)


# ---------------------------------------------------------------------------
# ファイルシステムアクセス
# ---------------------------------------------------------------------------
def _read_metadata(path: str, follow_symlinks: bool) -> os.stat_result:
    """パスのメタデータを取得する（follow_symlinks=False の場合はリンク自体）"""
    if follow_symlinks:
        return os.stat(path)
    return os.lstat(path)


def _list_children(path: str) -> List[str]:
    """ディレクトリ直下のエントリのフルパスを列挙する"""
    with os.scandir(path) as entries:
        return [os.path.join(path, entry.name) for entry in entries]


def _call_with_timeout(func: Callable[..., R], args: tuple, timeout: float) -> R:
    """
    func を専用のデーモンスレッドで実行し、timeout 秒まで結果を待つ

    応答しない OS 呼び出しは中断できないため、タイムアウトしたスレッドは
    そのまま放置される。呼び出しごとに新しいスレッドを使うので、
    放置されたスレッドが後続の呼び出しの待ち時間やプロセス終了を妨げない。

    Raises:
        concurrent.futures.TimeoutError: timeout 秒以内に終了しなかった場合
    """
    future: Future = Future()

    def run() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = func(*args)
        except BaseException as e:
            future.set_exception(e)
        else:
            future.set_result(result)

    threading.Thread(target=run, name="crawler-io", daemon=True).start()
    return future.result(timeout=timeout)


# ---------------------------------------------------------------------------
# 巡回統計
# ---------------------------------------------------------------------------
@dataclass
class CrawlStats:
    """
    1回の巡回の統計情報

    Attributes:
        folders: 登録したフォルダ数
        files: 登録したファイル数
        skipped: 読み取りに失敗してスキップしたパス数
        other: ファイルでもフォルダでもないため登録しなかったパス数
               （シンボリックリンク、デバイス、ソケット、訪問済みディレクトリ等）
    """
    folders: int = 0
    files: int = 0
    skipped: int = 0
    other: int = 0


# ---------------------------------------------------------------------------
# 完了待ち合わせ
# ---------------------------------------------------------------------------
class _Latch:
    """
    ディレクトリ単位の完了カウンター

    自身の訪問1件と、ディスパッチした子ユニットの数を保持する。
    カウントが 0 になった時点でサブツリーの巡回完了とみなし、親のラッチへ
    完了を伝える。ルートのラッチは Event で待機できる。

    ワーカースレッドを子の完了待ちでブロックしないため、
    固定サイズのプールでも深いツリーでデッドロックしない。
    """

    def __init__(self, parent: Optional["_Latch"] = None):
        self._pending = 1
        self._lock = threading.Lock()
        self._parent = parent
        self._done = threading.Event()

    def add(self, n: int = 1) -> None:
        with self._lock:
            self._pending += n

    def release(self) -> None:
        # 深いツリーでも再帰しないようループで親へ伝播する
        latch: Optional[_Latch] = self
        while latch is not None:
            with latch._lock:
                latch._pending -= 1
                if latch._pending:
                    return
            latch._done.set()
            latch = latch._parent

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)


# ---------------------------------------------------------------------------
# クローラー本体
# ---------------------------------------------------------------------------
class Crawler:
    """
    ルートパス配下のツリーを並列に巡回してカタログを作成するクラス

    各ディレクトリの子エントリはそれぞれ独立した処理単位として
    ワーカープールに投入される。同時実行数はツリーの形に関係なく
    max_workers で制限され、超過分はキューで待機する。

    ディレクトリの FolderEntry は、その子の処理単位を投入する前に
    カタログへ登録される。

    使用例:
        crawler = Crawler(max_workers=8, progress=TqdmProgress())
        catalog = crawler.crawl(["/mnt/c", "/mnt/d"])
        snapshot = catalog.snapshot()

    Attributes:
        max_workers: ワーカースレッド数
        follow_symlinks: シンボリックリンクをたどるかどうか
        io_timeout: パスごとのI/Oタイムアウト（秒）、None の場合は無制限
    """

    def __init__(
        self,
        max_workers: Optional[int] = None,
        follow_symlinks: bool = False,
        io_timeout: Optional[float] = None,
        progress: Optional[ProgressSink] = None
    ):
        """
        Crawler を初期化する

        Args:
            max_workers: ワーカースレッド数（省略時は CPU数 + 4、最大32）
            follow_symlinks: True の場合はリンク先をたどる
                             （訪問済みディレクトリを記録して循環を防ぐ）
            io_timeout: メタデータ取得・ディレクトリ列挙のタイムアウト（秒）
            progress: エントリ登録ごとに通知を受け取る ProgressSink
        """
        if max_workers is not None and max_workers < 1:
            raise ValueError("max_workers は 1 以上を指定してください")
        if io_timeout is not None and io_timeout <= 0:
            raise ValueError("io_timeout は正の値を指定してください")

        self.max_workers = max_workers or default_max_workers()
        self.follow_symlinks = follow_symlinks
        self.io_timeout = io_timeout
        self.progress: ProgressSink = progress or NullProgress()

        self._cancelled = threading.Event()
        self._state_lock = threading.Lock()
        self._error: Optional[BaseException] = None
        self._skipped = 0
        self._other = 0
        self._visited: Set[Tuple[int, int]] = set()
        self._visited_lock = threading.Lock()
        self._catalog: Optional[Catalog] = None
        self._pool: Optional[ThreadPoolExecutor] = None
        self._stats = CrawlStats()

    @property
    def stats(self) -> CrawlStats:
        """直近の巡回の統計情報"""
        return self._stats

    def cancel(self) -> None:
        """
        実行中の巡回を中断する

        キュー内の処理単位と以降に投入される処理単位は何もせずに終了し、
        crawl() は CrawlCancelledError を送出する。
        中断の要求は取り消されないため、crawl() の開始前に呼ばれた場合も
        その巡回は中断される。
        """
        if not self._cancelled.is_set():
            logger.warning("巡回の中断を要求しました")
        self._cancelled.set()

    def crawl(self, root_paths: Sequence[str], catalog: Optional[Catalog] = None) -> Catalog:
        """
        ルートパスを並列に巡回し、カタログを作成する

        読み取れないパスはスキップされ、呼び出し元にエラーは返さない。
        戻った時点で、到達可能な全ての子孫は登録済みかスキップ済みである。

        Args:
            root_paths: 巡回を開始するルートパスのシーケンス
            catalog: 登録先のカタログ（省略時は新規作成）

        Returns:
            Catalog: エントリが登録されたカタログ

        Raises:
            CatalogError: カタログへの登録に失敗した場合
            CrawlCancelledError: cancel() により中断された場合
        """
        roots = self._normalize_roots(root_paths)
        self._reset(catalog if catalog is not None else Catalog())

        logger.info(f"巡回開始: {len(roots)} ルート (workers={self.max_workers})")

        try:
            with ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="crawler"
            ) as pool:
                self._pool = pool
                try:
                    latches = []
                    for root in roots:
                        latch = _Latch()
                        pool.submit(self._visit, root, None, latch)
                        latches.append((root, latch))

                    for root, latch in latches:
                        latch.wait()
                        logger.info(f"ルートの巡回完了: {root}")
                except BaseException:
                    # KeyboardInterrupt 等ではキュー内の処理を空振りさせて終了する
                    self._cancelled.set()
                    raise
        finally:
            self._pool = None

        catalog = self._catalog
        self._stats = CrawlStats(
            folders=catalog.folder_count(),
            files=catalog.file_count(),
            skipped=self._skipped,
            other=self._other
        )

        if self._error is not None:
            if isinstance(self._error, CatalogError):
                raise self._error
            raise CatalogError(f"カタログへの登録に失敗しました: {self._error}") from self._error
        if self._cancelled.is_set():
            raise CrawlCancelledError("巡回が中断されました")

        logger.info(f"巡回完了: {self._stats}")
        return catalog

    # -----------------------------------------------------------------------
    # 内部処理
    # -----------------------------------------------------------------------
    @staticmethod
    def _normalize_roots(root_paths: Sequence[str]) -> List[str]:
        """ルートパスを絶対パスにし、重複を取り除く（順序は維持）"""
        roots: List[str] = []
        seen = set()
        for root_path in root_paths:
            root = os.path.abspath(os.fspath(root_path))
            if root not in seen:
                seen.add(root)
                roots.append(root)
        return roots

    def _reset(self, catalog: Catalog) -> None:
        self._catalog = catalog
        self._error = None
        self._skipped = 0
        self._other = 0
        self._visited = set()
        self._stats = CrawlStats()

    def _visit(self, path: str, parent_id: Optional[int], owner: _Latch) -> None:
        """
        1パス分の処理単位（ワーカースレッドで実行される）

        どの経路で終了しても、自身の完了を owner へちょうど1回伝える。
        ディレクトリの場合は子の完了を待ち合わせるラッチへ引き継ぐ。
        """
        dir_latch: Optional[_Latch] = None
        try:
            if not self._cancelled.is_set():
                dir_latch = self._process(path, parent_id, owner)
        except Exception as e:
            self._fail(path, e)
        finally:
            if dir_latch is None:
                owner.release()
            else:
                dir_latch.release()

    def _process(self, path: str, parent_id: Optional[int], owner: _Latch) -> Optional[_Latch]:
        """
        パスを分類してカタログに登録する

        Returns:
            _Latch: ディレクトリの場合は子の完了を待ち合わせるラッチ、それ以外は None
        """
        try:
            metadata = self._io(_read_metadata, path, self.follow_symlinks)
        except FutureTimeoutError:
            self._skip(path, "メタデータ取得がタイムアウトしました", logging.WARNING, parent_id)
            return None
        except (OSError, ValueError) as e:
            self._skip(path, f"メタデータ取得失敗 - {e}", logging.DEBUG, parent_id)
            return None

        if stat.S_ISDIR(metadata.st_mode):
            return self._process_directory(path, parent_id, metadata, owner)

        if stat.S_ISREG(metadata.st_mode):
            entry = FileEntry(
                id=identify(path),
                path=path,
                size=metadata.st_size,
                parent_id=parent_id
            )
            self._catalog.add_file(entry)
            self.progress.advance()
            return None

        # シンボリックリンク、デバイス、ソケット、FIFO 等は登録しない
        logger.debug(f"ファイルでもフォルダでもないため対象外: {path}")
        self._count_other()
        return None

    def _process_directory(
        self,
        path: str,
        parent_id: Optional[int],
        metadata: os.stat_result,
        owner: _Latch
    ) -> Optional[_Latch]:
        """ディレクトリを登録し、子エントリを処理単位として投入する"""
        if self.follow_symlinks and not self._mark_visited(metadata):
            logger.debug(f"訪問済みのディレクトリのため対象外: {path}")
            self._count_other()
            return None

        # 列挙できないディレクトリは、読めないパスと同様にエントリを残さない
        try:
            children = self._io(_list_children, path)
        except FutureTimeoutError:
            self._skip(path, "ディレクトリ列挙がタイムアウトしました", logging.WARNING, parent_id)
            return None
        except (OSError, ValueError) as e:
            self._skip(path, f"ディレクトリ列挙失敗 - {e}", logging.DEBUG, parent_id)
            return None

        folder = FolderEntry(id=identify(path), path=path, parent_id=parent_id)
        self._catalog.add_folder(folder)
        self.progress.advance()

        latch = _Latch(parent=owner)
        for child in children:
            if self._cancelled.is_set():
                break
            latch.add()
            try:
                self._pool.submit(self._visit, child, folder.id, latch)
            except RuntimeError:
                # プールがシャットダウン済み（投入できなかった分は自分で完了させる）
                latch.release()
                raise
        return latch

    def _io(self, func: Callable[..., R], *args) -> R:
        """I/O 処理を実行する（io_timeout 指定時は別スレッドで実行して待機する）"""
        if self.io_timeout is None:
            return func(*args)
        return _call_with_timeout(func, args, self.io_timeout)

    def _mark_visited(self, metadata: os.stat_result) -> bool:
        """ディレクトリを訪問済みとして記録する（既に記録済みなら False）"""
        key = (metadata.st_dev, metadata.st_ino)
        with self._visited_lock:
            if key in self._visited:
                return False
            self._visited.add(key)
            return True

    def _skip(self, path: str, reason: str, level: int, parent_id: Optional[int]) -> None:
        with self._state_lock:
            self._skipped += 1
        if parent_id is None:
            # ルートパス自体が読めない場合は目立つように出力する
            logger.warning(f"ルートパスをスキップ: {path} - {reason}")
        else:
            logger.log(level, f"スキップ: {path} - {reason}")

    def _count_other(self) -> None:
        with self._state_lock:
            self._other += 1

    def _fail(self, path: str, error: BaseException) -> None:
        """カタログ集約の失敗を記録し、巡回全体を中断する"""
        with self._state_lock:
            if self._error is None:
                self._error = error
                logger.error(f"カタログへの登録に失敗したため巡回を中断します: {path} - {error}", exc_info=error)
        self._cancelled.set()
