"""
アップローダーのテスト

- N 件、バッチサイズ B で ceil(N/B) 回送信する
- 失敗したバッチはリトライされ、上限に達したら publish 全体が失敗する
- インデックスの準備は送信の前に必ず行う
"""

import math

import pytest

from drive_indexer.crawler.catalog import Catalog, CatalogSnapshot, FileEntry, FolderEntry
from drive_indexer.errors import BatchUploadError, IndexSetupError
from drive_indexer.indexer.uploader import IndexUploader, iter_batches

from conftest import FakeTarget


def make_snapshot(folders: int, files: int) -> CatalogSnapshot:
    catalog = Catalog()
    for i in range(folders):
        catalog.add_folder(FolderEntry(id=i, path=f"/data/f{i}", parent_id=None))
    for i in range(files):
        catalog.add_file(FileEntry(id=10_000 + i, path=f"/data/f0/{i}.txt", size=i, parent_id=0))
    return catalog.snapshot()


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class TestBatching:
    """バッチ分割のテスト"""

    @pytest.mark.parametrize("total,batch_size", [(25, 10), (20, 10), (1, 1000), (7, 1)])
    def test_number_of_batches(self, total, batch_size):
        """ceil(N/B) 回のバッチ送信が行われる"""
        target = FakeTarget()
        snapshot = make_snapshot(folders=1, files=total - 1)

        result = IndexUploader(batch_size=batch_size, sleep=RecordingSleep()).publish(snapshot, target)

        expected = math.ceil(total / batch_size)
        assert result.batches == expected
        assert len(target.calls) == expected
        assert result.documents == total
        assert all(len(batch) <= batch_size for batch in target.batches)
        assert len({doc["id"] for doc in target.documents}) == total

    def test_empty_catalog(self):
        """空のカタログでもインデックスは準備され、バッチは送信されない"""
        target = FakeTarget()
        result = IndexUploader().publish(CatalogSnapshot(), target)

        assert target.ensure_calls == 1
        assert target.calls == []
        assert result.batches == 0
        assert result.documents == 0

    def test_accepts_catalog(self):
        """Catalog を渡した場合はスナップショットを取って登録する"""
        catalog = Catalog()
        catalog.add_folder(FolderEntry(id=1, path="/data"))
        catalog.add_file(FileEntry(id=2, path="/data/x", size=4, parent_id=1))
        target = FakeTarget()

        result = IndexUploader(batch_size=10).publish(catalog, target)

        assert catalog.frozen
        assert result.documents == 2
        assert result.index_name == "files_index"
        assert result.index_created

    def test_document_fields(self):
        """フォルダは size を持たず、ファイルは size を持つ"""
        target = FakeTarget()
        IndexUploader(batch_size=10).publish(make_snapshot(folders=1, files=1), target)

        folder_doc, file_doc = target.documents
        assert set(folder_doc) == {"id", "path", "parent_id"}
        assert set(file_doc) == {"id", "path", "size", "parent_id"}
        assert file_doc["parent_id"] == folder_doc["id"]

    def test_iter_batches(self):
        """iter_batches は最後の端数も返す"""
        batches = list(iter_batches(({"id": i} for i in range(5)), 2))
        assert [len(b) for b in batches] == [2, 2, 1]


class TestRetry:
    """リトライのテスト"""

    def test_transient_failure_is_retried(self):
        """一時的に失敗したバッチはリトライされて成功する"""
        target = FakeTarget(failures={1: 1})
        sleep = RecordingSleep()

        result = IndexUploader(batch_size=10, max_attempts=3, backoff_seconds=1.0, sleep=sleep).publish(
            make_snapshot(folders=1, files=24), target
        )

        assert target.calls == [0, 1, 1, 2]
        assert result.batches == 3
        assert result.retries == 1
        assert sleep.delays == [1.0]

    def test_exhausted_retries_fail_publish(self):
        """リトライを使い切ったら BatchUploadError になり、後続のバッチは送信されない"""
        target = FakeTarget(failures={1: 10})

        with pytest.raises(BatchUploadError) as exc_info:
            IndexUploader(batch_size=10, max_attempts=3, sleep=RecordingSleep()).publish(
                make_snapshot(folders=1, files=24), target
            )

        error = exc_info.value
        assert error.batch_index == 1
        assert error.batch_size == 10
        assert error.attempts == 3
        assert error.cause is not None
        assert target.calls == [0, 1, 1, 1]

    def test_backoff_is_exponential_and_capped(self):
        """待機時間は倍々で増え、上限で頭打ちになる"""
        target = FakeTarget(failures={0: 3})
        sleep = RecordingSleep()

        IndexUploader(
            batch_size=10,
            max_attempts=4,
            backoff_seconds=1.0,
            max_backoff_seconds=3.0,
            sleep=sleep
        ).publish(make_snapshot(folders=1, files=0), target)

        assert sleep.delays == [1.0, 2.0, 3.0]

    def test_single_attempt_does_not_retry(self):
        """max_attempts=1 の場合はリトライしない"""
        target = FakeTarget(failures={0: 1})
        sleep = RecordingSleep()

        with pytest.raises(BatchUploadError):
            IndexUploader(max_attempts=1, sleep=sleep).publish(make_snapshot(folders=1, files=0), target)
        assert sleep.delays == []


class TestIndexSetup:
    """インデックス準備のテスト"""

    def test_setup_failure(self):
        """インデックスの準備に失敗した場合は IndexSetupError になり、送信は行わない"""

        class BrokenTarget(FakeTarget):
            def ensure_index(self):
                raise RuntimeError("connection refused")

        target = BrokenTarget()
        with pytest.raises(IndexSetupError):
            IndexUploader().publish(make_snapshot(folders=1, files=1), target)
        assert target.calls == []

    def test_invalid_arguments(self):
        """不正な引数はエラー"""
        with pytest.raises(ValueError):
            IndexUploader(batch_size=0)
        with pytest.raises(ValueError):
            IndexUploader(max_attempts=0)
