"""Find & replace across chapters.

Searching and replacing both walk the same text segments the typography
normalizer edits, so markup, entities and raw-text elements (``code``,
``pre``, ``script``, ``style``) are never matched or rewritten, and the
match count always equals the number of replacements made.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from .locks import CHAPTERS
from .models import Chapter
from .store import DocumentStore
from .typography import _PRIVATE_USE_RE, _iter_segments, _mask_entities, _unmask_entities


@dataclass
class ChapterMatch:
    chapter_index: int
    chapter_title: str
    count: int


def _pattern(term: str, case_sensitive: bool) -> re.Pattern[str] | None:
    if not term:
        return None
    return re.compile(re.escape(term), 0 if case_sensitive else re.IGNORECASE)


def _rewrite(html: str, pattern: re.Pattern[str], replacement: str) -> tuple[str, int]:
    # Placeholders stand in for entities, so neither side may contain one.
    mask = not (_PRIVATE_USE_RE.search(pattern.pattern) or _PRIVATE_USE_RE.search(replacement))
    parts: list[str] = []
    total = 0
    for editable, segment in _iter_segments(html):
        if not editable:
            parts.append(segment)
            continue
        masked = _mask_entities(segment) if mask else None
        if masked is None:
            text, count = pattern.subn(lambda _: replacement, segment)
        else:
            text, count = pattern.subn(lambda _: replacement, masked[0])
            text = _unmask_entities(text, masked[1])
        parts.append(text)
        total += count
    return "".join(parts), total


def count_matches(html: str, term: str, *, case_sensitive: bool = False) -> int:
    pattern = _pattern(term, case_sensitive)
    if pattern is None or not html:
        return 0
    return _rewrite(html, pattern, "")[1]


def replace_in_html(
    html: str, term: str, replacement: str, *, case_sensitive: bool = False
) -> tuple[str, int]:
    """Replace every visible occurrence of ``term``; returns ``(html, count)``."""
    pattern = _pattern(term, case_sensitive)
    if pattern is None or not html:
        return html, 0
    return _rewrite(html, pattern, replacement)


def find_matches(
    chapters: Sequence[Chapter], term: str, *, case_sensitive: bool = False
) -> list[ChapterMatch]:
    matches: list[ChapterMatch] = []
    for index, chapter in enumerate(chapters):
        count = count_matches(chapter.content, term, case_sensitive=case_sensitive)
        if count:
            title = chapter.title or f"Chapter {index + 1}"
            matches.append(ChapterMatch(chapter_index=index, chapter_title=title, count=count))
    return matches


class FindReplace:
    """Find & replace panel state bound to a :class:`DocumentStore`.

    Replacements go through :meth:`DocumentStore.set_chapter_content`, so a
    locked chapters section raises and nothing is rewritten.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self.is_open = False
        self.search_term = ""
        self.replace_term = ""
        self.case_sensitive = False

    def open(self) -> None:
        self.is_open = True

    def close(self) -> None:
        self.is_open = False

    @property
    def matches(self) -> list[ChapterMatch]:
        return find_matches(
            self._store.book.chapters, self.search_term, case_sensitive=self.case_sensitive
        )

    @property
    def total_matches(self) -> int:
        return sum(match.count for match in self.matches)

    def replace_in_chapter(self, chapter_index: int) -> int:
        chapters = self._store.book.chapters
        if not 0 <= chapter_index < len(chapters):
            return 0
        chapter = chapters[chapter_index]
        content, count = replace_in_html(
            chapter.content,
            self.search_term,
            self.replace_term,
            case_sensitive=self.case_sensitive,
        )
        if count:
            self._store.set_chapter_content(chapter.id, content)
        return count

    def replace_all(self) -> int:
        self._store.locks.require_unlocked(CHAPTERS)
        return sum(self.replace_in_chapter(match.chapter_index) for match in self.matches)


__all__ = [
    "ChapterMatch",
    "FindReplace",
    "count_matches",
    "find_matches",
    "replace_in_html",
]
