"""
識別子のテスト

- 同じパスからは常に同じ値
- 別プロセス（ハッシュのランダム化が異なる）でも同じ値
- 64bit の範囲に収まる
"""

import os
import subprocess
import sys
from pathlib import Path

from drive_indexer.crawler.identifier import identify


class TestIdentify:
    """identify() のテスト"""

    def test_same_path_same_id(self):
        """同じパス文字列からは同じ識別子が得られる"""
        assert identify("/data/a/x.txt") == identify("/data/a/x.txt")

    def test_different_paths_differ(self):
        """異なるパスからは異なる識別子が得られる"""
        ids = {identify(f"/data/dir{i}/file.txt") for i in range(1000)}
        assert len(ids) == 1000

    def test_unsigned_64bit_range(self):
        """識別子は符号なし 64bit の範囲に収まる"""
        for path in ("/", "/data", "C:\\Users\\taro", "/データ/資料.pdf"):
            value = identify(path)
            assert 0 <= value < 2 ** 64

    def test_undecodable_names(self):
        """デコードできないファイル名（surrogate）でも値が得られる"""
        path = os.fsdecode(b"/data/\xff\xfe.bin")
        assert identify(path) == identify(path)
        assert identify("/data/\ud800") == identify("/data/\ud800")

    def test_empty_string(self):
        """空文字列でも値が得られる"""
        assert isinstance(identify(""), int)

    def test_stable_across_processes(self):
        """別プロセスで計算しても同じ値になる"""
        path = "/data/a/x.txt"
        env = dict(os.environ, PYTHONHASHSEED="12345")
        output = subprocess.run(
            [
                sys.executable, "-c",
                "from drive_indexer.crawler.identifier import identify; "
                f"print(identify({path!r}))"
            ],
            capture_output=True,
            text=True,
            check=True,
            env=env,
            cwd=str(Path(__file__).resolve().parents[1])
        ).stdout.strip()
        assert int(output) == identify(path)
