from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, Mapping

from bs4 import BeautifulSoup

from .locks import LockedSections

DEFAULT_LANGUAGE = "en"


def new_id() -> str:
    return uuid.uuid4().hex


def count_words(html: str) -> int:
    if not html:
        return 0
    text = BeautifulSoup(html, "html.parser").get_text(" ")
    return len(text.split())


def normalize_tags(values: Iterable[object]) -> list[str]:
    seen: set[str] = set()
    tags: list[str] = []
    for value in values:
        if not isinstance(value, str):
            continue
        cleaned = value.strip()
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        tags.append(cleaned)
    return tags


class ChapterType(str, Enum):
    FRONTMATTER = "frontmatter"
    CONTENT = "content"
    BACKMATTER = "backmatter"

    @classmethod
    def parse(cls, value: object) -> "ChapterType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.CONTENT


@dataclass
class Chapter:
    id: str = field(default_factory=new_id)
    title: str = ""
    content: str = ""
    type: ChapterType = ChapterType.CONTENT

    @property
    def word_count(self) -> int:
        return count_words(self.content)

    def as_payload(self) -> dict[str, str]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "type": self.type.value,
        }

    @classmethod
    def from_payload(cls, payload: object) -> "Chapter | None":
        if not isinstance(payload, Mapping):
            return None
        chapter_id = payload.get("id")
        title = payload.get("title")
        content = payload.get("content")
        return cls(
            id=chapter_id if isinstance(chapter_id, str) and chapter_id.strip() else new_id(),
            title=title if isinstance(title, str) else "",
            content=content if isinstance(content, str) else "",
            type=ChapterType.parse(payload.get("type", ChapterType.CONTENT)),
        )


def ensure_chapter_ids(chapters: list[Chapter]) -> list[Chapter]:
    """Give every chapter an id unique within ``chapters``."""
    seen: set[str] = set()
    for chapter in chapters:
        if not chapter.id or chapter.id in seen:
            chapter.id = new_id()
        seen.add(chapter.id)
    return chapters


def _text(payload: Mapping[str, object], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str):
            return value
    return ""


@dataclass
class Book:
    id: str | None = None
    title: str = ""
    author: str = ""
    blurb: str = ""
    publisher: str = ""
    pub_date: str = ""
    isbn: str = ""
    language: str = DEFAULT_LANGUAGE
    genre: str = ""
    cover: str | None = None
    chapters: list[Chapter] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    locked_sections: LockedSections = field(default_factory=LockedSections)
    updated_at: float | None = None

    @classmethod
    def new(cls) -> "Book":
        return cls(pub_date=date.today().isoformat(), chapters=[Chapter()])

    @property
    def word_count(self) -> int:
        return sum(chapter.word_count for chapter in self.chapters)

    def chapter(self, chapter_id: str) -> Chapter | None:
        for chapter in self.chapters:
            if chapter.id == chapter_id:
                return chapter
        return None

    def copy(self) -> "Book":
        return copy.deepcopy(self)

    def as_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "title": self.title,
            "author": self.author,
            "blurb": self.blurb,
            "publisher": self.publisher,
            "pub_date": self.pub_date,
            "isbn": self.isbn,
            "language": self.language,
            "genre": self.genre,
            "cover": self.cover,
            "chapters": [chapter.as_payload() for chapter in self.chapters],
            "tags": list(self.tags),
            "locked_sections": self.locked_sections.as_payload(),
        }
        if self.id is not None:
            payload["id"] = self.id
        if self.updated_at is not None:
            payload["updated_at"] = self.updated_at
        return payload

    @classmethod
    def from_payload(cls, payload: object) -> "Book":
        if not isinstance(payload, Mapping):
            raise ValueError("Book payload must be a JSON object.")
        book_id = payload.get("id")
        chapters_payload = payload.get("chapters")
        chapters: list[Chapter] = []
        if isinstance(chapters_payload, list):
            for entry in chapters_payload:
                chapter = Chapter.from_payload(entry)
                if chapter is not None:
                    chapters.append(chapter)
        cover = payload.get("cover", payload.get("coverFile"))
        tags = payload.get("tags")
        updated_at = payload.get("updated_at")
        locked = payload.get("locked_sections", payload.get("lockedSections"))
        return cls(
            id=book_id if isinstance(book_id, str) and book_id else None,
            title=_text(payload, "title"),
            author=_text(payload, "author"),
            blurb=_text(payload, "blurb"),
            publisher=_text(payload, "publisher"),
            pub_date=_text(payload, "pub_date", "pubDate"),
            isbn=_text(payload, "isbn"),
            language=_text(payload, "language") or DEFAULT_LANGUAGE,
            genre=_text(payload, "genre"),
            cover=cover if isinstance(cover, str) and cover else None,
            chapters=ensure_chapter_ids(chapters),
            tags=normalize_tags(tags) if isinstance(tags, list) else [],
            locked_sections=LockedSections.from_payload(locked),
            updated_at=float(updated_at) if isinstance(updated_at, (int, float)) else None,
        )


class SaveStatus(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


@dataclass
class SaveState:
    is_dirty: bool = False
    is_saving: bool = False
    last_saved: float | None = None
    status: SaveStatus = SaveStatus.IDLE
    last_error: str | None = None


__all__ = [
    "Book",
    "Chapter",
    "ChapterType",
    "SaveState",
    "SaveStatus",
    "count_words",
    "ensure_chapter_ids",
    "new_id",
    "normalize_tags",
]
