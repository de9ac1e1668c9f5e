"""
コマンドラインのテスト

終了コードで起動時エラー・巡回失敗・登録失敗を区別できることを確認する。
"""

import pytest
from typer.testing import CliRunner

from drive_indexer import main as main_module
from drive_indexer.crawler.scanner import Crawler
from drive_indexer.errors import CatalogError
from drive_indexer.main import EXIT_CRAWL_FAILURE, EXIT_PUBLISH_FAILURE, EXIT_SETUP_FAILURE, app

from conftest import FakeTarget

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path, sample_tree):
    path = tmp_path / "config.yaml"
    path.write_text(
        f"root_paths:\n  - {sample_tree}\n"
        "upload:\n  batch_size: 3\n  max_attempts: 2\n  backoff_seconds: 0\n",
        encoding="utf-8"
    )
    return path


def use_target(monkeypatch, target: FakeTarget) -> FakeTarget:
    monkeypatch.setattr(main_module, "create_target", lambda _settings: target)
    return target


class TestRunCommand:
    """run コマンドのテスト"""

    def test_success(self, config_file, monkeypatch):
        """巡回と登録が成功すると終了コード 0"""
        target = use_target(monkeypatch, FakeTarget())

        result = runner.invoke(app, ["run", "--config", str(config_file), "--once", "--no-progress"])

        assert result.exit_code == 0, result.output
        assert len(target.documents) == 8
        assert "files_index" in result.stdout

    def test_missing_config(self, tmp_path, monkeypatch):
        """設定ファイルがない場合は終了コード 1"""
        use_target(monkeypatch, FakeTarget())
        result = runner.invoke(app, ["run", "--config", str(tmp_path / "missing.yaml"), "--no-progress"])
        assert result.exit_code == EXIT_SETUP_FAILURE

    def test_unreachable_search_engine(self, config_file, monkeypatch):
        """Meilisearch に接続できない場合は終了コード 1"""
        target = use_target(monkeypatch, FakeTarget(healthy=False))
        result = runner.invoke(app, ["run", "--config", str(config_file), "--no-progress"])

        assert result.exit_code == EXIT_SETUP_FAILURE
        assert target.calls == []

    def test_crawl_failure(self, config_file, monkeypatch):
        """巡回に失敗した場合は終了コード 2"""
        use_target(monkeypatch, FakeTarget())

        def broken_crawl(self, root_paths, catalog=None):
            raise CatalogError("shared state is unusable")

        monkeypatch.setattr(Crawler, "crawl", broken_crawl)
        result = runner.invoke(app, ["run", "--config", str(config_file), "--no-progress"])
        assert result.exit_code == EXIT_CRAWL_FAILURE

    def test_publish_failure(self, config_file, monkeypatch):
        """登録に失敗した場合は終了コード 3"""
        use_target(monkeypatch, FakeTarget(failures={1: 5}))
        result = runner.invoke(app, ["run", "--config", str(config_file), "--no-progress"])
        assert result.exit_code == EXIT_PUBLISH_FAILURE


class TestCrawlCommand:
    """crawl コマンドのテスト"""

    def test_counts(self, sample_tree):
        """巡回のみを行い件数を表示する"""
        result = runner.invoke(app, ["crawl", "--root", str(sample_tree), "--no-progress"])

        assert result.exit_code == 0, result.output
        assert "フォルダ: 5" in result.stdout
        assert "ファイル: 3" in result.stdout

    def test_multiple_roots(self, sample_tree):
        """--root は複数指定できる"""
        result = runner.invoke(app, [
            "crawl",
            "--root", str(sample_tree / "a"),
            "--root", str(sample_tree / "b"),
            "--no-progress"
        ])

        assert result.exit_code == 0, result.output
        assert "フォルダ: 2" in result.stdout
        assert "ファイル: 1" in result.stdout
