"""
小ツール共通の「I/Oまわり」部品集（toolkit）

狙い：
- logger構成、出力先（stdout / 追記ファイル）の切り替え、バナー描画のような
  「どのツールでも同じ意味で使えるもの」をまとめる
- dusage.py 本体は「走査・分類・整形」に集中できるようにする

注意：
- ツール固有の引数名・しきい値・行フォーマットは各ツール側で持つ
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Protocol, TextIO


def setup_logger(name: str, verbose: bool) -> logging.Logger:
    """
    ログをstderrに出すためのloggerを構成する。

    設計意図：
    - stdoutは「レポート本体」で使いたい
    - なので進捗/スキップ/失敗はstderrへ寄せる
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO if verbose else logging.WARNING)
    logger.propagate = False

    logger.handlers.clear()

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(handler)
    return logger


# -------------------------
# 出力先（Sink）
# -------------------------


@contextmanager
def open_sink(path: Path | None) -> Iterator[TextIO]:
    """
    レポートの出力先を開く。

    仕様：
    - path が None なら stdout（閉じない）
    - path があればファイルに追記する（無ければ作る、既存なら末尾に足す）
    - 両方に書くことはない（起動時に1回だけ決める）
    """
    if path is None:
        yield sys.stdout
        return

    out_path = path.expanduser()
    with out_path.open("a", encoding="utf-8") as fp:
        yield fp


def write_lines(fp: TextIO, lines: list[str]) -> None:
    """1行ずつ改行付きで書く。行単位で独立しているので途中で止まっても読める。"""
    for line in lines:
        fp.write(line + "\n")
    fp.flush()


# -------------------------
# バナー描画（外部ツール）
# -------------------------


class BannerUnavailableError(RuntimeError):
    """バナー描画ツールが見つからない/実行できないときに投げる。"""


class BannerRenderer(Protocol):
    """バナー描画の差し替え口。テストでは外部ツール無しの実装を渡す。"""

    def render(self, text: str) -> str: ...


class FigletBanner:
    """
    `figlet` コマンドでバナーを描く実装。

    仕様：
    - 実行ファイルが PATH に無ければ BannerUnavailableError
    - 実行に失敗した場合も BannerUnavailableError（原因はメッセージに残す）
    """

    def __init__(self, executable: str = "figlet") -> None:
        self.executable = executable

    def render(self, text: str) -> str:
        exe = shutil.which(self.executable)
        if exe is None:
            raise BannerUnavailableError(f"'{self.executable}' が見つかりません。インストールしてください。")
        try:
            proc = subprocess.run(
                [exe, text],
                capture_output=True,
                text=True,
                check=True,
            )
        except (OSError, subprocess.CalledProcessError) as exc:
            raise BannerUnavailableError(f"'{self.executable}' の実行に失敗しました: {exc}") from exc
        return proc.stdout.rstrip("\n")
