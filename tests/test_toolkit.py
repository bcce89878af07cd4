"""
toolkit のテスト。

狙い：
- 出力先の切り替え（stdout / 追記ファイル）と、バナー描画の失敗の仕方を押さえる
- 実際の figlet の有無に依存しないよう、shutil.which / subprocess.run は差し替える
"""

from __future__ import annotations

import logging
import subprocess
import sys
from pathlib import Path

import pytest

import toolkit


def test_setup_logger_level_follows_verbose() -> None:
    assert toolkit.setup_logger("t-quiet", False).level == logging.WARNING
    logger = toolkit.setup_logger("t-verbose", True)
    assert logger.level == logging.INFO
    assert logger.propagate is False
    assert len(logger.handlers) == 1

    # 2回呼んでも handler が増えない
    assert len(toolkit.setup_logger("t-verbose", True).handlers) == 1


def test_open_sink_appends_and_creates_file(tmp_path: Path) -> None:
    out = tmp_path / "report.txt"

    with toolkit.open_sink(out) as fp:
        toolkit.write_lines(fp, ["first"])
    with toolkit.open_sink(out) as fp:
        toolkit.write_lines(fp, ["second", "third"])

    assert out.read_text(encoding="utf-8") == "first\nsecond\nthird\n"


def test_open_sink_without_path_uses_stdout(capsys: pytest.CaptureFixture[str]) -> None:
    with toolkit.open_sink(None) as fp:
        assert fp is sys.stdout
        toolkit.write_lines(fp, ["hello"])

    assert capsys.readouterr().out == "hello\n"


def test_figlet_banner_missing_executable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(toolkit.shutil, "which", lambda name: None)

    with pytest.raises(toolkit.BannerUnavailableError, match="figlet"):
        toolkit.FigletBanner().render("Disk Usage")


def test_figlet_banner_returns_rendered_text(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[list[str]] = []

    def fake_run(cmd: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        calls.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout="BIG TEXT\n\n", stderr="")

    monkeypatch.setattr(toolkit.shutil, "which", lambda name: "/usr/bin/figlet")
    monkeypatch.setattr(toolkit.subprocess, "run", fake_run)

    assert toolkit.FigletBanner().render("Disk Usage") == "BIG TEXT"
    assert calls == [["/usr/bin/figlet", "Disk Usage"]]


def test_figlet_banner_failure_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_run(cmd: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise subprocess.CalledProcessError(1, cmd)

    monkeypatch.setattr(toolkit.shutil, "which", lambda name: "/usr/bin/figlet")
    monkeypatch.setattr(toolkit.subprocess, "run", failing_run)

    with pytest.raises(toolkit.BannerUnavailableError):
        toolkit.FigletBanner().render("x")
