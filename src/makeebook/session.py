from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

from .autosave import AutosaveScheduler, NavigationEvent, UnsavedChangesGuard
from .config import EditorConfig
from .cover import CoverArtifact, process_cover
from .findreplace import FindReplace
from .gateway import PersistenceError, PersistenceGateway
from .logging_utils import debug_log
from .models import Book, Chapter, SaveState
from .preferences import PreferenceStore
from .scheduling import Timers
from .shortcuts import KeyEventSource, ShortcutDispatcher, editor_shortcuts
from .store import DocumentStore
from .typography import BatchFix, auto_fix_chapters, fix_typography
from .versions import VersionHistory

_SERVER_FIELDS = ("id", "updated_at")


class EditingSession:
    """One open book: store edits feed the autosave scheduler, which persists
    normalized snapshots through the gateway."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        config: EditorConfig | None = None,
        store: DocumentStore | None = None,
        timers: Timers | None = None,
        preferences: PreferenceStore | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.config = config or EditorConfig()
        self.gateway = gateway
        self.store = store or DocumentStore()
        if preferences is None and self.config.preferences_path is not None:
            preferences = PreferenceStore(self.config.preferences_path)
        self.preferences = preferences
        debounce = self.config.debounce_seconds
        if self.preferences is not None:
            debounce = self.preferences.debounce_seconds() or debounce
        self.autosave = AutosaveScheduler(
            self._persist,
            debounce=debounce,
            enabled=self.config.autosave_enabled,
            timers=timers,
            saved_display=self.config.saved_display_seconds,
            error_display=self.config.error_display_seconds,
            clock=clock,
        )
        self._clock = clock
        self.guard = UnsavedChangesGuard(lambda: self.autosave.is_dirty)
        self.find_replace = FindReplace(self.store)
        self._normalized: dict[str, tuple[str, str]] = {}
        self._dispatcher: ShortcutDispatcher | None = None
        # Bumped whenever a different book is loaded; a save only writes back
        # to the session when the book it started from is still open.
        self._generation = 0
        self.history = self._history_for(self.store.book.id)
        self._unsubscribe = self.store.subscribe(self._on_change)

    @property
    def book(self) -> Book:
        return self.store.book

    @property
    def save_state(self) -> SaveState:
        return self.autosave.state

    def _on_change(self, field_name: str) -> None:
        debug_log(f"Edited {field_name}")
        self.autosave.mark_dirty()

    def _history_for(self, book_id: str | None) -> VersionHistory:
        path: Path | None = None
        if self.config.history_dir is not None and book_id:
            path = self.config.history_dir / f"{book_id}.versions.json"
        return VersionHistory(path, max_versions=self.config.max_versions, clock=self._clock)

    def _normalize(self, chapter: Chapter) -> str:
        cached = self._normalized.get(chapter.id)
        if cached is not None and cached[0] == chapter.content:
            return cached[1]
        fixed = fix_typography(chapter.content)
        self._normalized[chapter.id] = (chapter.content, fixed)
        return fixed

    def export_book(self) -> Book:
        """Snapshot of the current book with normalized chapter content."""
        book = self.store.snapshot()
        for chapter in book.chapters:
            chapter.content = self._normalize(chapter)
        live_ids = {chapter.id for chapter in book.chapters}
        for chapter_id in list(self._normalized):
            if chapter_id not in live_ids:
                del self._normalized[chapter_id]
        return book

    @staticmethod
    def _payload(book: Book) -> dict[str, Any]:
        payload = book.as_payload()
        for key in _SERVER_FIELDS:
            payload.pop(key, None)
        return payload

    def save_payload(self) -> dict[str, Any]:
        return self._payload(self.export_book())

    async def _persist(self) -> None:
        generation = self._generation
        book = self.export_book()
        payload = self._payload(book)
        history = self.history
        if book.id is None:
            book.id = await self.gateway.create(payload)
            history = self._history_for(book.id)
            if generation == self._generation:
                self.store.assign_id(book.id)
                self.history = history
            else:
                debug_log(f"Created book {book.id} after the editor moved on")
        else:
            await self.gateway.update(book.id, payload)
        history.record(book)

    async def save(self) -> bool:
        return await self.autosave.save()

    async def open_book(self, book_id: str) -> Book:
        payload = await self.gateway.fetch(book_id)
        book = Book.from_payload(payload)
        book.id = book_id
        if not book.chapters:
            book.chapters.append(Chapter())
        self._generation += 1
        self.store.load(book)
        self.autosave.mark_clean()
        self._normalized.clear()
        self.history = self._history_for(book_id)
        return book

    def new_book(self) -> Book:
        self._generation += 1
        self.store.reset()
        self.autosave.mark_clean()
        self._normalized.clear()
        self.history = self._history_for(None)
        return self.store.book

    def _require_id(self) -> str:
        book_id = self.store.book.id
        if book_id is None:
            raise PersistenceError("The book has not been saved yet.")
        return book_id

    async def duplicate(self) -> Book:
        payload = await self.gateway.duplicate(self._require_id())
        return Book.from_payload(payload)

    async def delete(self) -> None:
        await self.gateway.delete(self._require_id())
        self.history.clear()
        self.new_book()

    def set_cover(self, source: bytes | Path, *, filename: str | None = None) -> CoverArtifact:
        artifact = process_cover(
            source,
            filename=filename,
            max_width=self.config.cover_max_width,
            max_height=self.config.cover_max_height,
            quality=self.config.cover_quality,
        )
        self.store.set_cover(artifact.data_url)
        return artifact

    def fix_all_chapters(self) -> BatchFix:
        """Apply typography fixes to every chapter in the store."""
        result = auto_fix_chapters(self.store.book.chapters)
        for entry in result.summary:
            chapter = result.chapters[entry.chapter_index]
            self.store.set_chapter_content(chapter.id, chapter.content)
        return result

    def restore_version(self, version_id: str) -> list[Chapter]:
        chapters = self.history.restore(version_id)
        self.store.replace_chapters(chapters)
        return chapters

    def set_debounce(self, seconds: float) -> None:
        self.autosave.set_debounce(seconds)
        if self.preferences is not None:
            self.preferences.remember_debounce(seconds)

    def before_unload(self, event: NavigationEvent) -> str | None:
        return self.guard.before_unload(event)

    def bind_shortcuts(
        self,
        source: KeyEventSource,
        *,
        on_export: Callable[[], object] | None = None,
        on_preview: Callable[[], object] | None = None,
        on_find_replace: Callable[[], object] | None = None,
    ) -> ShortcutDispatcher:
        def _noop() -> None:
            return None

        dispatcher = ShortcutDispatcher(
            editor_shortcuts(
                on_save=self.autosave.request_save,
                on_export=on_export or self.export_book,
                on_preview=on_preview or _noop,
                on_new_chapter=lambda: self.store.add_chapter(),
                on_find_replace=on_find_replace or self.find_replace.open,
            )
        )
        dispatcher.attach(source)
        if self._dispatcher is not None:
            self._dispatcher.detach()
        self._dispatcher = dispatcher
        return dispatcher

    def close(self) -> None:
        self.autosave.teardown()
        self._unsubscribe()
        if self._dispatcher is not None:
            self._dispatcher.detach()
            self._dispatcher = None


__all__ = ["EditingSession"]
