"""
dusage: ディレクトリ直下の使用量を、しきい値で色分けして一覧表示するツール

狙い：
- 「引数 → 走査（1階層）→ 分類・整形（純粋計算）→ 出力（stdout / 追記ファイル）」の流れを作る
- 色（Palette）とバナー（BannerRenderer）は外から渡す形にして、本体は外部ツール無しでテストできるようにする
- 読めないディレクトリや変なサイズは「その行だけ」落として、レポート全体は必ず出す
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, TextIO, Tuple

# Python 3.8 互換: TypeAlias は 3.10+。3.8 では typing_extensions を使う。
try:
    from typing import TypeAlias  # Python 3.10+
except ImportError:  # pragma: no cover
    from typing_extensions import TypeAlias  # Python 3.8/3.9

from rich.cells import cell_len
from rich.color import ColorSystem
from rich.console import Console
from rich.style import Style

import toolkit

LOGGER_NAME = "dusage"

DEFAULT_WARN_MB = 100
DEFAULT_CRIT_MB = 500

PATH_WIDTH = 50
SIZE_WIDTH = 15

BANNER_TEXT = "Disk Usage"

_MB = 1024 * 1024


# -------------------------
# CLIパース（I/O境界：入力）
# -------------------------

_EPILOG = """\
examples:
  dusage                          カレントディレクトリを既定のしきい値(100/500 MB)で表示
  dusage -d /var/log -w 50 -c 200 /var/log を WARN>=50MB, CRIT>=200MB で表示
  dusage -d ~ -o report.txt       ホームの結果を report.txt に追記
"""


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    CLI引数を定義して、解析結果（args）を返す。

    仕様：
    - 未知のオプション / 値の欠けたオプションは argparse が usage を出して終了（status 2）
    - --help は usage と例を出して正常終了
    - ここではファイルシステムに触らない
    """
    parser = argparse.ArgumentParser(
        prog="dusage",
        description="Show disk usage of a directory and its immediate children, colored by size thresholds.",
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "-w",
        "--warn",
        type=int,
        default=DEFAULT_WARN_MB,
        metavar="MB",
        help=f"WARN とみなす下限（MB、デフォルト: {DEFAULT_WARN_MB}）",
    )
    parser.add_argument(
        "-c",
        "--critical",
        type=int,
        default=DEFAULT_CRIT_MB,
        metavar="MB",
        help=f"CRIT とみなす下限（MB、デフォルト: {DEFAULT_CRIT_MB}）",
    )
    parser.add_argument(
        "-d",
        "--directory",
        type=Path,
        default=None,
        help="走査対象のディレクトリ（省略時はカレントディレクトリ）",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Append the report to this file instead of printing it.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="スキップしたエントリなどの詳細ログを表示する")
    parser.add_argument("--no-color", action="store_true", help="色を付けずに出力する")

    return parser.parse_args(argv)


# -------------------------
# データモデル（DTO）
# -------------------------


@dataclass(frozen=True)
class Config:
    """
    起動時に1回だけ作る設定。以降は書き換えない。

    crit_mb >= warn_mb を前提にしているが強制はしない（逆転していたら警告だけ出す）。
    """

    warn_mb: int = DEFAULT_WARN_MB
    crit_mb: int = DEFAULT_CRIT_MB
    directory: Path = field(default_factory=Path.cwd)
    output: Path | None = None
    verbose: bool = False
    color: bool = True


@dataclass(frozen=True)
class DirectoryEntry:
    """1行分のDTO（表示用パス + MB単位のサイズ）。"""

    path: str
    size_mb: int


class Tier(Enum):
    OK = "ok"
    WARN = "warn"
    CRIT = "crit"


class InvalidSizeError(ValueError):
    """サイズが非負の整数でない行。レポート全体は止めず、その行だけ捨てる。"""


def build_config(args: argparse.Namespace) -> Config:
    """args から Config を確定する（デフォルト + CLI上書き）。"""
    directory = args.directory if args.directory is not None else Path.cwd()
    return Config(
        warn_mb=args.warn,
        crit_mb=args.critical,
        directory=directory.expanduser().resolve(),
        output=args.output.expanduser() if args.output is not None else None,
        verbose=args.verbose,
        color=not args.no_color,
    )


def validate_config(config: Config, logger: logging.Logger) -> int:
    """
    入力検証。失敗したら終了コード（2）を返す。

    走査より前に呼ぶこと（不正な起動ではファイルシステムに触らない）。
    """
    if config.warn_mb < 0:
        print(f"Error: --warn の値は0以上でなければなりません: {config.warn_mb}", file=sys.stderr)
        return 2
    if config.crit_mb < 0:
        print(f"Error: --critical の値は0以上でなければなりません: {config.crit_mb}", file=sys.stderr)
        return 2
    if not config.directory.exists():
        print(f"Error: 指定されたパスが存在しません: {config.directory}", file=sys.stderr)
        return 2
    if not config.directory.is_dir():
        print(f"Error: 指定されたパスはディレクトリではありません: {config.directory}", file=sys.stderr)
        return 2
    if config.crit_mb < config.warn_mb:
        logger.warning("critical (%d MB) is below warn (%d MB); WARN tier will never be used", config.crit_mb, config.warn_mb)
    return 0


# -------------------------
# 走査（I/O側）
# -------------------------

RawRow: TypeAlias = Tuple[int, Path]


def _allocated(st: os.stat_result) -> int:
    # du と同じく「実際に確保されたブロック」で数える（st_blocks が無いOSでは見かけのサイズ）
    blocks = getattr(st, "st_blocks", None)
    if blocks is None:
        return st.st_size
    return blocks * 512


def _file_bytes(st: os.stat_result, seen: set[tuple[int, int]]) -> int:
    # ハードリンクは1回だけ数える
    if st.st_nlink > 1:
        key = (st.st_dev, st.st_ino)
        if key in seen:
            return 0
        seen.add(key)
    return _allocated(st)


def _tree_bytes(path: str, seen: set[tuple[int, int]], logger: logging.Logger) -> int:
    """
    path 以下の使用量（バイト）を合計する。シンボリックリンクは辿らない。

    仕様：
    - 再帰ではなく未処理エントリのスタックで辿る（深い木でも RecursionError にならない）
    - path 自体が読めない場合は OSError をそのまま投げる（呼び出し側でその行を捨てる）
    - それより深いところで読めないものはログに残してスキップする
    """
    total = _allocated(os.stat(path, follow_symlinks=False))
    with os.scandir(path) as it:
        pending = list(it)

    while pending:
        entry = pending.pop()
        try:
            st = entry.stat(follow_symlinks=False)
            if entry.is_dir(follow_symlinks=False):
                total += _allocated(st)
                with os.scandir(entry.path) as it:
                    pending.extend(it)
            else:
                total += _file_bytes(st, seen)
        except OSError as exc:
            logger.info("[skip] %s: %s", entry.path, exc)
    return total


def iter_usage(root: Path, logger: logging.Logger) -> Iterator[RawRow]:
    """
    root 直下の各ディレクトリと root 自身の (バイト数, パス) を順次 yield する。

    仕様として守りたいこと：
    - 子ディレクトリは列挙順に出し、最後に root 自身の合計を出す（du と同じ並び）
    - root 直下のファイルは root の合計にだけ入る（行は作らない）
    - 読めない子ディレクトリは行を出さず、root の合計にも入れない（落とさない）
    """
    seen: set[tuple[int, int]] = set()
    total = _allocated(os.stat(root, follow_symlinks=False))

    with os.scandir(root) as it:
        entries = list(it)

    for entry in entries:
        try:
            if entry.is_dir(follow_symlinks=False):
                size = _tree_bytes(entry.path, seen, logger)
            else:
                total += _file_bytes(entry.stat(follow_symlinks=False), seen)
                continue
        except OSError as exc:
            logger.info("[skip] %s: %s", entry.path, exc)
            continue
        total += size
        yield size, Path(entry.path)

    yield total, root


def to_mb(size_bytes: int) -> int:
    """バイトをMBへ。du -m と同じく切り上げる。"""
    return (size_bytes + _MB - 1) // _MB


def display_path(path: Path | str, root: Path) -> str:
    """表示用のパス。root の接頭辞と先頭の ./ や / を落とし、root 自身は "." にする。"""
    s = str(path)
    prefix = str(root)
    if s == prefix:
        return "."
    if s.startswith(prefix):
        s = s[len(prefix) :]
    while s.startswith("./") or s.startswith("/") or s.startswith(os.sep):
        s = s[2:] if s.startswith("./") else s[1:]
    return s or "."


def build_entries(rows: Iterable[RawRow], root: Path) -> list[DirectoryEntry]:
    """生の行を DirectoryEntry にしてサイズ降順に並べる（同サイズは列挙順のまま）。"""
    entries = [DirectoryEntry(path=display_path(path, root), size_mb=to_mb(size)) for size, path in rows]
    return sorted(entries, key=lambda e: e.size_mb, reverse=True)


def collect_entries(root: Path, logger: logging.Logger) -> list[DirectoryEntry]:
    return build_entries(iter_usage(root, logger), root)


# -------------------------
# 分類・整形（純粋関数）
# -------------------------


def classify(size_mb: int, warn_mb: int, crit_mb: int) -> Tier:
    """しきい値ちょうどは上の段に入れる（>= で比較）。"""
    if size_mb >= crit_mb:
        return Tier.CRIT
    if size_mb >= warn_mb:
        return Tier.WARN
    return Tier.OK


@dataclass(frozen=True)
class Palette:
    """
    Tierごとの色。起動時に1回だけ決めて formatter に渡す。

    enabled=False のときは色を付けない（端末が色非対応 / --no-color / ファイル出力）。
    """

    enabled: bool = True
    ok: Style = field(default_factory=lambda: Style(color="green"))
    warn: Style = field(default_factory=lambda: Style(color="yellow"))
    crit: Style = field(default_factory=lambda: Style(color="red"))

    @classmethod
    def detect(cls, stream: TextIO, enabled: bool = True) -> Palette:
        """
        stream が色を扱えるかは rich の Console に判定させる。非対応なら黙って無色にする。

        NO_COLOR は color_system には反映されない（rich は print 時に落とす）ので、
        Style.render を直接使うここでは no_color も見る。
        """
        if not enabled:
            return cls.plain()
        console = Console(file=stream)
        return cls(enabled=console.color_system is not None and not console.no_color)

    @classmethod
    def plain(cls) -> Palette:
        return cls(enabled=False)

    def style_for(self, tier: Tier) -> Style:
        if tier is Tier.CRIT:
            return self.crit
        if tier is Tier.WARN:
            return self.warn
        return self.ok

    def paint(self, text: str, tier: Tier) -> str:
        if not self.enabled:
            return text
        return self.style_for(tier).render(text, color_system=ColorSystem.STANDARD)


def _pad_right(text: str, width: int) -> str:
    return text + " " * max(0, width - cell_len(text))


def _pad_left(text: str, width: int) -> str:
    return " " * max(0, width - cell_len(text)) + text


def format_line(entry: DirectoryEntry, tier: Tier, palette: Palette) -> str:
    """
    1行を組み立てる。

    仕様：
    - パス列は左寄せで最低50桁、サイズ列は右寄せで最低15桁（長い値は切らずにはみ出す）
    - 色を付けるのは "<N> MB" の部分だけ（パディングは無色）
    - サイズが非負の整数でなければ InvalidSizeError
    """
    size = entry.size_mb
    if isinstance(size, bool) or not isinstance(size, int) or size < 0:
        raise InvalidSizeError(f"invalid size {size!r} for {entry.path!r}")

    size_text = f"{size} MB"
    padding = " " * max(0, SIZE_WIDTH - len(size_text))
    return _pad_right(entry.path, PATH_WIDTH) + padding + palette.paint(size_text, tier)


def format_header() -> list[str]:
    return [
        _pad_right("Directory", PATH_WIDTH) + _pad_left("Size", SIZE_WIDTH),
        "-" * (PATH_WIDTH + SIZE_WIDTH),
    ]


def render_report(
    entries: Iterable[DirectoryEntry],
    config: Config,
    palette: Palette,
    banner: str,
    logger: logging.Logger,
) -> list[str]:
    """
    レポート全体の行を組み立てる（バナー / 対象ディレクトリ / 見出し / 各行）。

    整形できない行はログに残して捨てる（他の行はそのまま出す）。
    """
    lines = banner.splitlines()
    lines.append(f"Directory: {config.directory}")
    lines.append(f"Thresholds: warn >= {config.warn_mb} MB, critical >= {config.crit_mb} MB")
    lines.append("")
    lines.extend(format_header())

    for entry in entries:
        try:
            tier = classify(entry.size_mb, config.warn_mb, config.crit_mb)
            lines.append(format_line(entry, tier, palette))
        except (InvalidSizeError, TypeError) as exc:
            logger.info("[skip] %s", exc)
            continue
    lines.append("")
    return lines


# -------------------------
# 実行フロー組み立て（入口を薄くする）
# -------------------------


def main(argv: list[str] | None = None, banner: toolkit.BannerRenderer | None = None) -> int:
    """
    実行入口（テストからも呼べる形）。

    流れ：
    - parse_args / build_config / validate_config（走査前に起動エラーを確定）
    - バナー描画（ツールが無ければここで終了）
    - collect_entries（走査）
    - render_report + 出力（stdout か追記ファイルのどちらか一方）
    """
    args = parse_args(argv)
    logger = toolkit.setup_logger(LOGGER_NAME, args.verbose)
    config = build_config(args)

    rc = validate_config(config, logger)
    if rc != 0:
        return rc

    renderer = banner if banner is not None else toolkit.FigletBanner()
    try:
        banner_text = renderer.render(BANNER_TEXT)
    except toolkit.BannerUnavailableError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    logger.info("scan start: root=%s warn=%d crit=%d", config.directory, config.warn_mb, config.crit_mb)
    try:
        entries = collect_entries(config.directory, logger)
    except OSError as exc:
        logger.error("scan failed: %s (%s)", config.directory, exc)
        return 1
    logger.info("scan done: %d entries", len(entries))

    try:
        with toolkit.open_sink(config.output) as fp:
            palette = Palette.detect(fp, enabled=config.color)
            lines = render_report(entries, config, palette, banner_text, logger)
            toolkit.write_lines(fp, lines)
    except OSError as exc:
        logger.error("failed to write report to %s: %s", config.output, exc)
        return 1

    if config.output is not None:
        print(f"Report appended to {config.output}")
    return 0
