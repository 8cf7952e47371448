from __future__ import annotations

from typing import Iterator, Mapping

from .errors import MakeEbookError

BOOK_INFO = "book_info"
PUBLISHING = "publishing"
TAGS = "tags"
COVER = "cover"
CHAPTERS = "chapters"
SECTIONS = (BOOK_INFO, PUBLISHING, TAGS, COVER, CHAPTERS)

_SECTION_ALIASES = {
    "bookInfo": BOOK_INFO,
    "book-info": BOOK_INFO,
}


class SectionLockedError(MakeEbookError):
    """Raised when a field is edited while its section is locked."""

    def __init__(self, section: str) -> None:
        super().__init__(f"Section '{section}' is locked")
        self.section = section


def _section_name(name: str) -> str | None:
    name = _SECTION_ALIASES.get(name, name)
    return name if name in SECTIONS else None


class LockedSections:
    """One lock flag per editable section of a book.

    Locks gate edits only: reading and saving a locked section is always
    allowed.
    """

    def __init__(self, flags: Mapping[str, bool] | None = None) -> None:
        self._flags = {section: False for section in SECTIONS}
        if flags:
            for name, value in flags.items():
                section = _section_name(str(name))
                if section is not None:
                    self._flags[section] = bool(value)

    def __iter__(self) -> Iterator[str]:
        return iter(SECTIONS)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LockedSections):
            return NotImplemented
        return self._flags == other._flags

    def __repr__(self) -> str:
        locked = [name for name in SECTIONS if self._flags[name]]
        return f"LockedSections(locked={locked!r})"

    def is_locked(self, name: str) -> bool:
        section = _section_name(name)
        return self._flags[section] if section is not None else False

    def set(self, name: str, locked: bool) -> None:
        section = _section_name(name)
        if section is None:
            raise KeyError(f"Unknown section: {name}")
        self._flags[section] = bool(locked)

    def toggle(self, name: str) -> bool:
        section = _section_name(name)
        if section is None:
            raise KeyError(f"Unknown section: {name}")
        self._flags[section] = not self._flags[section]
        return self._flags[section]

    def require_unlocked(self, name: str) -> None:
        if self.is_locked(name):
            raise SectionLockedError(_section_name(name) or name)

    def copy(self) -> "LockedSections":
        return LockedSections(self._flags)

    def as_payload(self) -> dict[str, bool]:
        return dict(self._flags)

    @classmethod
    def from_payload(cls, payload: object) -> "LockedSections":
        if not isinstance(payload, Mapping):
            return cls()
        return cls({str(key): bool(value) for key, value in payload.items()})


__all__ = [
    "BOOK_INFO",
    "CHAPTERS",
    "COVER",
    "PUBLISHING",
    "SECTIONS",
    "TAGS",
    "LockedSections",
    "SectionLockedError",
]
