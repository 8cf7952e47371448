from .autosave import AutosaveScheduler, UnsavedChangesGuard
from .cover import CoverArtifact, process_cover
from .errors import ConfigError, MakeEbookError
from .findreplace import FindReplace
from .gateway import (
    BookNotFoundError,
    HttpGateway,
    InMemoryGateway,
    PersistenceError,
    UnauthorizedError,
)
from .locks import LockedSections, SectionLockedError
from .models import Book, Chapter, ChapterType, SaveState, SaveStatus
from .session import EditingSession
from .shortcuts import KeyEvent, KeyEventSource, Shortcut, ShortcutDispatcher
from .store import DocumentStore
from .typography import auto_fix_chapter, auto_fix_chapters, check_typography, fix_typography

__all__ = [
    "Book",
    "Chapter",
    "ChapterType",
    "SaveState",
    "SaveStatus",
    "DocumentStore",
    "EditingSession",
    "AutosaveScheduler",
    "UnsavedChangesGuard",
    "fix_typography",
    "FindReplace",
    "check_typography",
    "auto_fix_chapter",
    "auto_fix_chapters",
    "CoverArtifact",
    "process_cover",
    "LockedSections",
    "SectionLockedError",
    "KeyEvent",
    "KeyEventSource",
    "Shortcut",
    "ShortcutDispatcher",
    "InMemoryGateway",
    "HttpGateway",
    "PersistenceError",
    "UnauthorizedError",
    "BookNotFoundError",
    "MakeEbookError",
    "ConfigError",
]
