from __future__ import annotations

import argparse
import json
import sys
from importlib import metadata
from pathlib import Path

import tomllib
import uvicorn
from rich.console import Console
from rich.table import Table

from .config import ServerConfig, load_config, with_overrides
from .cover import parse_data_url, process_cover
from .errors import ConfigError
from .logging_utils import build_uvicorn_log_config, set_debug_logging
from .server import create_app
from .typography import BatchFix, auto_fix_chapter, auto_fix_chapters, check_typography

COMMANDS = ("serve", "fix", "check", "cover")


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("makeebook")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"makeebook {__version__}",
    )


def _add_debug_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging on stderr.",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="makeebook",
        description=(
            "Ebook editing tools. Commands: serve (book service), fix and check "
            "(typography), cover (compress a cover image)."
        ),
    )
    _add_version_flag(ap)
    ap.add_argument("command", choices=COMMANDS, help="Command to run.")
    return ap


def build_serve_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="makeebook serve",
        description="Serve a directory of books over HTTP.",
    )
    _add_version_flag(ap)
    ap.add_argument("root", help="Directory holding the book JSON files (created if missing).")
    ap.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host interface for the server (default: 127.0.0.1).",
    )
    ap.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the server (default: 8000).",
    )
    ap.add_argument(
        "--token",
        help="Require this bearer token on every API request.",
    )
    ap.add_argument(
        "--config",
        help="Optional TOML config file ([makeebook] table or top-level keys).",
    )
    _add_debug_flag(ap)
    return ap


def build_fix_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="makeebook fix",
        description="Normalize typography in an HTML fragment or a book JSON file.",
    )
    _add_version_flag(ap)
    ap.add_argument("path", help="HTML fragment (.html/.htm/.xhtml) or book .json file.")
    ap.add_argument(
        "-o",
        "--output",
        help="Write the result here instead of overwriting the input.",
    )
    ap.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report what would change.",
    )
    _add_debug_flag(ap)
    return ap


def build_check_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="makeebook check",
        description="Report typography issues without changing anything. Exits 1 when issues exist.",
    )
    _add_version_flag(ap)
    ap.add_argument("path", help="HTML fragment or book .json file.")
    _add_debug_flag(ap)
    return ap


def build_cover_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="makeebook cover",
        description="Downscale and re-encode a cover image.",
    )
    _add_version_flag(ap)
    ap.add_argument("image", help="Source image.")
    ap.add_argument(
        "-o",
        "--output",
        help="Write the processed image here. Without it the data URL is printed.",
    )
    ap.add_argument("--max-width", type=int, help="Maximum width in pixels (default: 1200).")
    ap.add_argument("--max-height", type=int, help="Maximum height in pixels (default: 1800).")
    ap.add_argument("--quality", type=int, help="JPEG quality 1-100 (default: 85).")
    ap.add_argument("--config", help="Optional TOML config file.")
    _add_debug_flag(ap)
    return ap


def _load_config_arg(value: str | None):
    try:
        return load_config(Path(value) if value else None)
    except ConfigError as exc:
        raise SystemExit(str(exc)) from exc


def _is_book_json(path: Path) -> bool:
    return path.suffix.lower() == ".json"


def _read_book_json(path: Path) -> dict[str, object]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("chapters"), list):
        raise SystemExit(f"{path} is not a book file (expected a 'chapters' list).")
    return data


def _print_summary(console: Console, batch: BatchFix, chapters: list[object]) -> None:
    if not batch.summary:
        console.print("No typography changes needed.")
        return
    table = Table(title=f"{batch.total_changes} change(s)")
    table.add_column("#", justify="right")
    table.add_column("Chapter")
    table.add_column("Changes")
    for entry in batch.summary:
        chapter = chapters[entry.chapter_index]
        title = chapter.get("title") if isinstance(chapter, dict) else None
        table.add_row(
            str(entry.chapter_index + 1),
            title if isinstance(title, str) and title else "(untitled)",
            "\n".join(entry.changes),
        )
    console.print(table)


def _run_fix(args: argparse.Namespace) -> int:
    set_debug_logging(bool(args.debug))
    path = Path(args.path).expanduser()
    if not path.is_file():
        raise SystemExit(f"File not found: {path}")
    console = Console(stderr=True)
    output = Path(args.output).expanduser() if args.output else path

    if _is_book_json(path):
        data = _read_book_json(path)
        entries = data["chapters"]
        # Entries that are not objects are left where they are.
        positions = [index for index, entry in enumerate(entries) if isinstance(entry, dict)]
        chapters = [entries[index] for index in positions]
        batch = auto_fix_chapters(chapters)
        _print_summary(console, batch, chapters)
        if args.dry_run or not batch.total_changes and output == path:
            return 0
        fixed_entries = list(entries)
        for index, chapter in zip(positions, batch.chapters):
            fixed_entries[index] = chapter
        data["chapters"] = fixed_entries
        output.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    else:
        fix = auto_fix_chapter(path.read_text(encoding="utf-8"))
        if fix.changes:
            table = Table(title=f"{len(fix.changes)} change(s)")
            table.add_column("Changes")
            for change in fix.changes:
                table.add_row(change)
            console.print(table)
        else:
            console.print("No typography changes needed.")
        if args.dry_run or not fix.changes and output == path:
            return 0
        output.write_text(fix.fixed, encoding="utf-8")
    console.print(f"Wrote {output}")
    return 0


def _run_check(args: argparse.Namespace) -> int:
    set_debug_logging(bool(args.debug))
    path = Path(args.path).expanduser()
    if not path.is_file():
        raise SystemExit(f"File not found: {path}")
    console = Console()
    found = 0
    if _is_book_json(path):
        chapters = [entry for entry in _read_book_json(path)["chapters"] if isinstance(entry, dict)]
        for index, chapter in enumerate(chapters, start=1):
            content = chapter.get("content")
            issues = check_typography(content if isinstance(content, str) else "")
            title = chapter.get("title") or "(untitled)"
            for issue in issues:
                console.print(f"{path}: chapter {index} ({title}): {issue}")
            found += len(issues)
    else:
        for issue in check_typography(path.read_text(encoding="utf-8")):
            console.print(f"{path}: {issue}")
            found += 1
    if not found:
        console.print(f"{path}: OK")
        return 0
    return 1


def _run_cover(args: argparse.Namespace) -> int:
    set_debug_logging(bool(args.debug))
    image = Path(args.image).expanduser()
    if not image.is_file():
        raise SystemExit(f"Image not found: {image}")
    config = with_overrides(
        _load_config_arg(args.config),
        cover_max_width=args.max_width,
        cover_max_height=args.max_height,
        cover_quality=args.quality,
    )
    if config.cover_max_width <= 0 or config.cover_max_height <= 0:
        raise SystemExit("Cover bounds must be positive.")
    if not 1 <= config.cover_quality <= 100:
        raise SystemExit("--quality must be between 1 and 100.")
    artifact = process_cover(
        image,
        max_width=config.cover_max_width,
        max_height=config.cover_max_height,
        quality=config.cover_quality,
    )
    console = Console(stderr=True)
    if artifact.compressed:
        console.print(
            f"{image.name}: {artifact.width}x{artifact.height} {artifact.media_type}, "
            f"{artifact.byte_length} bytes"
        )
    else:
        console.print(f"{image.name}: could not be decoded, kept original bytes")
    if not args.output:
        print(artifact.data_url)
        return 0
    info = parse_data_url(artifact.data_url)
    output = Path(args.output).expanduser()
    if info is None:
        output.write_bytes(image.read_bytes())
    else:
        output.write_bytes(info.data)
    console.print(f"Wrote {output}")
    return 0


def _run_serve(args: argparse.Namespace) -> None:
    set_debug_logging(bool(args.debug))
    root = Path(args.root).expanduser().resolve()
    config = ServerConfig(
        root=root,
        host=args.host,
        port=args.port,
        api_token=args.token,
        editor=_load_config_arg(args.config),
    )
    app = create_app(config)
    print(f"Serving makeebook books from {root}")
    print(f"API URL: http://{args.host}:{args.port}/api/books")
    print("Press Ctrl+C to stop.\n")
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_config=build_uvicorn_log_config(debug=bool(args.debug)),
        log_level="debug" if args.debug else "info",
    )


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "serve":
        serve_args = build_serve_parser().parse_args(argv[1:])
        _run_serve(serve_args)
        return 0
    if argv and argv[0] == "fix":
        return _run_fix(build_fix_parser().parse_args(argv[1:]))
    if argv and argv[0] == "check":
        return _run_check(build_check_parser().parse_args(argv[1:]))
    if argv and argv[0] == "cover":
        return _run_cover(build_cover_parser().parse_args(argv[1:]))

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    parser.parse_args(argv)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
