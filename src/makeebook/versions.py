from __future__ import annotations

import copy
import json
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from .logging_utils import debug_log
from .models import Book, Chapter, count_words

MAX_VERSIONS = 20
HISTORY_STATE_VERSION = 1


@dataclass
class BookVersion:
    id: str
    timestamp: float
    title: str
    author: str
    word_count: int
    chapter_count: int
    chapters: list[dict[str, str]]
    metadata: dict[str, Any] = field(default_factory=dict)

    def as_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "title": self.title,
            "author": self.author,
            "word_count": self.word_count,
            "chapter_count": self.chapter_count,
            "chapters": copy.deepcopy(self.chapters),
            "metadata": copy.deepcopy(self.metadata),
        }

    @classmethod
    def from_payload(cls, payload: object) -> "BookVersion | None":
        if not isinstance(payload, dict):
            return None
        version_id = payload.get("id")
        timestamp = payload.get("timestamp")
        chapters = payload.get("chapters")
        if not isinstance(version_id, str) or not isinstance(timestamp, (int, float)):
            return None
        if not isinstance(chapters, list):
            return None
        metadata = payload.get("metadata")
        return cls(
            id=version_id,
            timestamp=float(timestamp),
            title=str(payload.get("title") or "Untitled"),
            author=str(payload.get("author") or "Unknown"),
            word_count=int(payload.get("word_count") or 0),
            chapter_count=int(payload.get("chapter_count") or len(chapters)),
            chapters=[entry for entry in chapters if isinstance(entry, dict)],
            metadata=metadata if isinstance(metadata, dict) else {},
        )


def _book_metadata(book: Book) -> dict[str, Any]:
    return {
        "blurb": book.blurb,
        "publisher": book.publisher,
        "pub_date": book.pub_date,
        "genre": book.genre,
        "tags": list(book.tags),
    }


def _chapter_fingerprint(chapters: list[dict[str, str]]) -> list[tuple[str, str, str]]:
    return [
        (entry.get("title", ""), entry.get("content", ""), entry.get("type", ""))
        for entry in chapters
    ]


class VersionHistory:
    """Bounded, newest-first snapshots of a book, optionally mirrored to a JSON file."""

    def __init__(
        self,
        path: Path | None = None,
        *,
        max_versions: int = MAX_VERSIONS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if max_versions < 1:
            raise ValueError("max_versions must be at least 1")
        self.path = path
        self.max_versions = max_versions
        self._clock = clock or time.time
        self._versions: list[BookVersion] = self._load()

    def _load(self) -> list[BookVersion]:
        if self.path is None:
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return []
        entries = raw.get("versions") if isinstance(raw, dict) else None
        if not isinstance(entries, list):
            return []
        versions = [BookVersion.from_payload(entry) for entry in entries]
        return [version for version in versions if version is not None][: self.max_versions]

    def _persist(self) -> None:
        if self.path is None:
            return
        payload = {
            "version": HISTORY_STATE_VERSION,
            "versions": [version.as_payload() for version in self._versions],
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        except OSError as exc:
            debug_log(f"Failed to save version history to {self.path}: {exc}")

    @property
    def versions(self) -> list[BookVersion]:
        return list(self._versions)

    @property
    def has_versions(self) -> bool:
        return bool(self._versions)

    def latest(self) -> BookVersion | None:
        return self._versions[0] if self._versions else None

    def record(self, book: Book) -> BookVersion | None:
        """Snapshot ``book``; returns None when nothing changed since the latest version."""
        chapters = [chapter.as_payload() for chapter in book.chapters]
        title = book.title or "Untitled"
        author = book.author or "Unknown"
        metadata = _book_metadata(book)
        latest = self.latest()
        if (
            latest is not None
            and latest.title == title
            and latest.author == author
            and latest.metadata == metadata
            and _chapter_fingerprint(latest.chapters) == _chapter_fingerprint(chapters)
        ):
            return None
        version = BookVersion(
            id=f"v-{uuid.uuid4().hex[:12]}",
            timestamp=self._clock(),
            title=title,
            author=author,
            word_count=sum(count_words(entry["content"]) for entry in chapters),
            chapter_count=len(chapters),
            chapters=chapters,
            metadata=metadata,
        )
        self._versions = [version, *self._versions][: self.max_versions]
        self._persist()
        return version

    def get(self, version_id: str) -> BookVersion | None:
        for version in self._versions:
            if version.id == version_id:
                return version
        return None

    def restore(self, version_id: str) -> list[Chapter]:
        version = self.get(version_id)
        if version is None:
            raise KeyError(f"Unknown version: {version_id}")
        chapters = [Chapter.from_payload(entry) for entry in version.chapters]
        return [chapter for chapter in chapters if chapter is not None]

    def delete(self, version_id: str) -> bool:
        remaining = [version for version in self._versions if version.id != version_id]
        if len(remaining) == len(self._versions):
            return False
        self._versions = remaining
        self._persist()
        return True

    def clear(self) -> None:
        self._versions = []
        if self.path is None:
            return
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            debug_log(f"Failed to clear version history at {self.path}: {exc}")


def format_timestamp(timestamp: float, now: float | None = None) -> str:
    current = time.time() if now is None else now
    diff = current - timestamp
    minutes = int(diff // 60)
    hours = int(diff // 3600)
    days = int(diff // 86400)
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    moment = datetime.fromtimestamp(timestamp)
    return f"{moment:%b} {moment.day}, {moment.hour % 12 or 12}:{moment:%M} {moment:%p}"


__all__ = [
    "MAX_VERSIONS",
    "BookVersion",
    "VersionHistory",
    "format_timestamp",
]
