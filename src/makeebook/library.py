from __future__ import annotations

import copy
import json
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .gateway import BookNotFoundError, copy_title
from .logging_utils import debug_log
from .models import Book, count_words, new_id

BOOK_SUFFIX = ".book.json"

# Fields the service never takes from a client payload.
_SERVER_FIELDS = {"id", "updated_at", "created_at"}


@dataclass(slots=True)
class BookListing:
    id: str
    title: str
    author: str | None
    chapter_count: int
    word_count: int
    modified: float


def _book_path(root: Path, book_id: str) -> Path:
    if not book_id or "/" in book_id or "\\" in book_id or book_id.startswith("."):
        raise BookNotFoundError(book_id)
    return root / f"{book_id}{BOOK_SUFFIX}"


def _load_row(path: Path) -> dict[str, Any] | None:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    return raw if isinstance(raw, dict) else None


def _listing(book_id: str, row: Mapping[str, Any]) -> BookListing:
    book = Book.from_payload(row)
    updated = row.get("updated_at")
    return BookListing(
        id=book_id,
        title=book.title.strip() or "Untitled",
        author=book.author.strip() or None,
        chapter_count=len(book.chapters),
        word_count=sum(count_words(chapter.content) for chapter in book.chapters),
        modified=float(updated) if isinstance(updated, (int, float)) else 0.0,
    )


def list_books_sorted(root: Path, mode: str = "recent") -> list[BookListing]:
    normalized_mode = mode.lower().strip()
    if normalized_mode not in {"author", "recent", "title"}:
        normalized_mode = "recent"
    entries: list[tuple[tuple[object, ...], BookListing]] = []
    if not root.exists():
        return []
    for entry in root.iterdir():
        if not entry.is_file() or not entry.name.endswith(BOOK_SUFFIX):
            continue
        row = _load_row(entry)
        if row is None:
            debug_log(f"Skipping unreadable book file: {entry}")
            continue
        book_id = entry.name[: -len(BOOK_SUFFIX)]
        book = _listing(book_id, row)
        normalized_author = book.author.casefold() if book.author else ""
        normalized_title = book.title.casefold()
        if normalized_mode == "author":
            sort_key = (
                0 if book.author else 1,
                normalized_author,
                normalized_title,
                book_id,
            )
        elif normalized_mode == "title":
            sort_key = (normalized_title, normalized_author, book_id)
        else:
            sort_key = (-book.modified, normalized_title, book_id)
        entries.append((sort_key, book))
    entries.sort(key=lambda item: item[0])
    return [book for _, book in entries]


class BookRepository:
    """Book rows stored as one JSON file per book under ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._lock = threading.Lock()

    def _write(self, book_id: str, row: Mapping[str, Any]) -> None:
        path = _book_path(self.root, book_id)
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(json.dumps(row, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(path)

    def _read(self, book_id: str) -> dict[str, Any]:
        row = _load_row(_book_path(self.root, book_id))
        if row is None:
            raise BookNotFoundError(book_id)
        return row

    def list(self, mode: str = "recent") -> list[BookListing]:
        with self._lock:
            return list_books_sorted(self.root, mode)

    def get(self, book_id: str) -> dict[str, Any]:
        with self._lock:
            row = self._read(book_id)
        row["id"] = book_id
        return row

    def create(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        book = Book.from_payload(payload)
        row = {k: v for k, v in book.as_payload().items() if k not in _SERVER_FIELDS}
        book_id = new_id()
        now = time.time()
        row.update({"id": book_id, "created_at": now, "updated_at": now})
        with self._lock:
            self.root.mkdir(parents=True, exist_ok=True)
            self._write(book_id, row)
        return row

    def update(self, book_id: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Apply only the fields present in ``payload``."""
        # Round-trip through Book so client aliases and junk values are normalized.
        normalized = Book.from_payload(payload).as_payload()
        aliases = {"pubDate": "pub_date", "coverFile": "cover", "lockedSections": "locked_sections"}
        provided = {aliases.get(key, key) for key in payload}
        with self._lock:
            row = self._read(book_id)
            for key in provided:
                if key in _SERVER_FIELDS or key not in normalized:
                    continue
                row[key] = copy.deepcopy(normalized.get(key))
            row["id"] = book_id
            row["updated_at"] = time.time()
            self._write(book_id, row)
        return row

    def delete(self, book_id: str) -> None:
        with self._lock:
            path = _book_path(self.root, book_id)
            if not path.exists():
                raise BookNotFoundError(book_id)
            path.unlink()

    def duplicate(self, book_id: str) -> dict[str, Any]:
        with self._lock:
            source = self._read(book_id)
            row = copy.deepcopy(source)
            new_book_id = new_id()
            now = time.time()
            row.update(
                {
                    "id": new_book_id,
                    "title": copy_title(str(source.get("title") or "")),
                    "created_at": now,
                    "updated_at": now,
                }
            )
            self._write(new_book_id, row)
        return row


__all__ = ["BOOK_SUFFIX", "BookListing", "BookRepository", "list_books_sorted"]
