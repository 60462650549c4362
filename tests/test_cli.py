"""Smoke tests for the command-line entry point."""

from rollsync.cli import main
from tests.conftest import feed_row


class TestCli:
    def test_no_arguments_prints_help(self, capsys) -> None:
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_run_batch_and_stats(self, tmp_path, monkeypatch, write_feed, capsys) -> None:
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
        monkeypatch.delenv("LOGFIRE_TOKEN", raising=False)
        feed = write_feed([feed_row("A", "smith", "100000"), feed_row("B", "jones")])

        assert main(["--run-batch", str(feed), "--stats"]) == 0

        out = capsys.readouterr().out
        assert "Status: completed" in out
        assert "Properties: 2 (2 active, 0 inactive)" in out

    def test_failed_batch_exit_code(self, tmp_path, monkeypatch, capsys) -> None:
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
        monkeypatch.delenv("LOGFIRE_TOKEN", raising=False)

        assert main(["--run-batch", str(tmp_path / "missing.csv")]) == 1
        assert "Status: failed" in capsys.readouterr().out
