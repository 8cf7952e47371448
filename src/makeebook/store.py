from __future__ import annotations

from typing import Callable, Iterable

from .locks import BOOK_INFO, CHAPTERS, COVER, PUBLISHING, TAGS, LockedSections
from .models import Book, Chapter, ChapterType, ensure_chapter_ids, normalize_tags

ChangeListener = Callable[[str], None]

FIELD_SECTIONS = {
    "title": BOOK_INFO,
    "author": BOOK_INFO,
    "blurb": BOOK_INFO,
    "language": BOOK_INFO,
    "genre": BOOK_INFO,
    "publisher": PUBLISHING,
    "pub_date": PUBLISHING,
    "isbn": PUBLISHING,
    "tags": TAGS,
    "cover": COVER,
    "chapters": CHAPTERS,
}


class DocumentStore:
    """The editable Book aggregate.

    All edits go through the setters below. Each accepted edit notifies
    subscribers with the name of the field that changed; edits to a locked
    section raise :class:`~makeebook.locks.SectionLockedError` and leave
    the book untouched.
    """

    def __init__(self, book: Book | None = None) -> None:
        self._book = book if book is not None else Book.new()
        self._listeners: list[ChangeListener] = []

    @property
    def book(self) -> Book:
        return self._book

    @property
    def locks(self) -> LockedSections:
        return self._book.locked_sections

    def snapshot(self) -> Book:
        return self._book.copy()

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _changed(self, field_name: str) -> None:
        for listener in list(self._listeners):
            listener(field_name)

    def _require(self, field_name: str) -> None:
        self.locks.require_unlocked(FIELD_SECTIONS[field_name])

    def load(self, book: Book) -> None:
        """Replace the whole book (hydration); subscribers are not notified."""
        self._book = book

    def reset(self) -> None:
        self._book = Book.new()

    def assign_id(self, book_id: str) -> None:
        self._book.id = book_id

    def set_field(self, field_name: str, value: str) -> None:
        if field_name not in FIELD_SECTIONS or field_name in {"tags", "cover", "chapters"}:
            raise KeyError(f"Unknown text field: {field_name}")
        self._require(field_name)
        if getattr(self._book, field_name) == value:
            return
        setattr(self._book, field_name, value)
        self._changed(field_name)

    def set_title(self, value: str) -> None:
        self.set_field("title", value)

    def set_author(self, value: str) -> None:
        self.set_field("author", value)

    def set_blurb(self, value: str) -> None:
        self.set_field("blurb", value)

    def set_language(self, value: str) -> None:
        self.set_field("language", value)

    def set_genre(self, value: str) -> None:
        self.set_field("genre", value)

    def set_publisher(self, value: str) -> None:
        self.set_field("publisher", value)

    def set_pub_date(self, value: str) -> None:
        self.set_field("pub_date", value)

    def set_isbn(self, value: str) -> None:
        self.set_field("isbn", value)

    def add_tag(self, tag: str) -> bool:
        self._require("tags")
        value = tag.strip()
        if not value or value in self._book.tags:
            return False
        self._book.tags.append(value)
        self._changed("tags")
        return True

    def remove_tag(self, tag: str) -> bool:
        self._require("tags")
        if tag not in self._book.tags:
            return False
        self._book.tags.remove(tag)
        self._changed("tags")
        return True

    def set_tags(self, tags: Iterable[str]) -> None:
        self._require("tags")
        self._book.tags = normalize_tags(tags)
        self._changed("tags")

    def set_cover(self, data_url: str | None) -> None:
        self._require("cover")
        self._book.cover = data_url or None
        self._changed("cover")

    def toggle_lock(self, section: str) -> bool:
        locked = self.locks.toggle(section)
        self._changed("locked_sections")
        return locked

    def _chapter(self, chapter_id: str) -> Chapter:
        chapter = self._book.chapter(chapter_id)
        if chapter is None:
            raise KeyError(f"Unknown chapter: {chapter_id}")
        return chapter

    def add_chapter(
        self,
        title: str = "",
        content: str = "",
        chapter_type: ChapterType | str = ChapterType.CONTENT,
        *,
        index: int | None = None,
    ) -> Chapter:
        self._require("chapters")
        chapter = Chapter(title=title, content=content, type=ChapterType.parse(chapter_type))
        if index is None:
            self._book.chapters.append(chapter)
        else:
            self._book.chapters.insert(index, chapter)
        self._changed("chapters")
        return chapter

    def remove_chapter(self, chapter_id: str) -> bool:
        """Remove a chapter; the last remaining chapter is kept."""
        self._require("chapters")
        chapter = self._chapter(chapter_id)
        if len(self._book.chapters) <= 1:
            return False
        self._book.chapters.remove(chapter)
        self._changed("chapters")
        return True

    def move_chapter(self, from_index: int, to_index: int) -> None:
        self._require("chapters")
        chapters = self._book.chapters
        if not (0 <= from_index < len(chapters)) or not (0 <= to_index < len(chapters)):
            raise IndexError(f"Chapter move out of range: {from_index} -> {to_index}")
        if from_index == to_index:
            return
        chapter = chapters.pop(from_index)
        chapters.insert(to_index, chapter)
        self._changed("chapters")

    def replace_chapters(self, chapters: Iterable[Chapter]) -> None:
        self._require("chapters")
        replacement = ensure_chapter_ids(list(chapters))
        if not replacement:
            raise ValueError("A book needs at least one chapter.")
        self._book.chapters = replacement
        self._changed("chapters")

    def set_chapter_title(self, chapter_id: str, title: str) -> None:
        self._require("chapters")
        chapter = self._chapter(chapter_id)
        if chapter.title == title:
            return
        chapter.title = title
        self._changed("chapters")

    def set_chapter_content(self, chapter_id: str, content: str) -> None:
        self._require("chapters")
        chapter = self._chapter(chapter_id)
        if chapter.content == content:
            return
        chapter.content = content
        self._changed("chapters")

    def set_chapter_type(self, chapter_id: str, chapter_type: ChapterType | str) -> None:
        self._require("chapters")
        chapter = self._chapter(chapter_id)
        parsed = ChapterType.parse(chapter_type)
        if chapter.type is parsed:
            return
        chapter.type = parsed
        self._changed("chapters")


__all__ = ["DocumentStore", "FIELD_SECTIONS"]
