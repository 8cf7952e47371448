from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from makeebook.autosave import UNSAVED_CHANGES_MESSAGE, NavigationEvent
from makeebook.config import EditorConfig
from makeebook.gateway import InMemoryGateway, PersistenceError
from makeebook.locks import BOOK_INFO, SectionLockedError
from makeebook.models import SaveStatus
from makeebook.preferences import PreferenceStore
from makeebook.scheduling import ManualTimers
from makeebook.session import EditingSession
from makeebook.shortcuts import KeyEvent, KeyEventSource
from makeebook.versions import VersionHistory


def _session(gateway: InMemoryGateway, timers: ManualTimers, **config) -> EditingSession:
    config.setdefault("debounce_seconds", 5.0)
    return EditingSession(gateway, config=EditorConfig(**config), timers=timers, clock=timers.now)


def test_first_save_creates_then_updates(tmp_path: Path) -> None:
    async def scenario() -> None:
        timers = ManualTimers()
        gateway = InMemoryGateway()
        session = _session(gateway, timers, history_dir=tmp_path / "history")
        chapter = session.book.chapters[0]
        session.store.set_title("Dune")
        session.store.set_chapter_content(chapter.id, '<p>"Hi--there..."</p>')
        assert session.autosave.is_dirty
        timers.advance(5)
        await session.autosave.flush()

        book_id = session.book.id
        assert book_id is not None
        assert gateway.calls == [("create", book_id)]
        row = await gateway.fetch(book_id)
        assert row["title"] == "Dune"
        assert row["chapters"][0]["content"] == "<p>“Hi—there…”</p>"
        # The editor keeps what the user typed.
        assert session.book.chapters[0].content == '<p>"Hi--there..."</p>'
        assert session.save_state.status is SaveStatus.SAVED
        assert (tmp_path / "history" / f"{book_id}.versions.json").exists()

        session.store.set_author("Frank Herbert")
        timers.advance(5)
        await session.autosave.flush()
        assert gateway.calls[-2] == ("fetch", book_id)
        assert gateway.calls[-1] == ("update", book_id)
        assert (await gateway.fetch(book_id))["author"] == "Frank Herbert"
        assert len(session.history.versions) == 2

    asyncio.run(scenario())


def test_save_payload_leaves_out_server_fields() -> None:
    session = EditingSession(InMemoryGateway(), timers=ManualTimers())
    session.store.assign_id("abc")
    session.store.book.updated_at = 12.0
    payload = session.save_payload()
    assert "id" not in payload
    assert "updated_at" not in payload
    assert payload["chapters"]


def test_locked_sections_reject_edits_without_dirtying() -> None:
    session = EditingSession(InMemoryGateway(), timers=ManualTimers())
    session.store.toggle_lock(BOOK_INFO)
    session.autosave.mark_clean()
    with pytest.raises(SectionLockedError):
        session.store.set_title("Nope")
    assert session.book.title == ""
    assert session.autosave.is_dirty is False
    session.store.set_publisher("Ace")
    assert session.autosave.is_dirty is True


def test_open_duplicate_and_delete() -> None:
    async def scenario() -> None:
        timers = ManualTimers()
        gateway = InMemoryGateway()
        book_id = await gateway.create({"title": "Stored", "chapters": []})
        session = _session(gateway, timers)

        with pytest.raises(PersistenceError):
            await session.duplicate()

        book = await session.open_book(book_id)
        assert book.id == book_id
        assert book.title == "Stored"
        assert len(book.chapters) == 1
        assert session.autosave.is_dirty is False
        assert not session.autosave.pending

        copy = await session.duplicate()
        assert copy.title == "Stored (Copy)"
        assert copy.id != book_id

        await session.delete()
        assert session.book.id is None
        assert len(await gateway.list_books()) == 1

    asyncio.run(scenario())


def test_restore_version_replaces_chapters() -> None:
    async def scenario() -> None:
        timers = ManualTimers()
        session = _session(InMemoryGateway(), timers)
        chapter = session.book.chapters[0]
        session.store.set_chapter_content(chapter.id, "<p>first draft</p>")
        await session.save()
        first = session.history.latest()
        assert first is not None

        session.store.set_chapter_content(chapter.id, "<p>second draft</p>")
        await session.save()
        assert session.history.latest().id != first.id

        chapters = session.restore_version(first.id)
        assert [c.content for c in chapters] == ["<p>first draft</p>"]
        assert session.book.chapters[0].content == "<p>first draft</p>"
        assert session.autosave.is_dirty
        with pytest.raises(KeyError):
            session.restore_version("v-missing")

    asyncio.run(scenario())


def test_fix_all_chapters_updates_the_store() -> None:
    session = EditingSession(InMemoryGateway(), timers=ManualTimers())
    first = session.book.chapters[0]
    session.store.set_chapter_content(first.id, "<p>ok</p>")
    second = session.store.add_chapter("Two", "<p>Well...  yes</p>")
    result = session.fix_all_chapters()
    assert result.total_changes == 2
    assert [entry.chapter_index for entry in result.summary] == [1]
    assert session.book.chapter(second.id).content == "<p>Well… yes</p>"
    assert session.book.chapter(first.id).content == "<p>ok</p>"


def test_debounce_preference_is_remembered(tmp_path: Path) -> None:
    preferences = PreferenceStore(tmp_path / "prefs.json")
    session = EditingSession(InMemoryGateway(), timers=ManualTimers(), preferences=preferences)
    session.set_debounce(7)
    assert session.autosave.debounce == 7
    assert preferences.debounce_seconds() == 7.0

    again = EditingSession(InMemoryGateway(), timers=ManualTimers(), preferences=preferences)
    assert again.autosave.debounce == 7.0


def test_shortcuts_save_and_add_chapters() -> None:
    async def scenario() -> None:
        timers = ManualTimers()
        gateway = InMemoryGateway()
        session = _session(gateway, timers)
        source = KeyEventSource()
        exported: list[int] = []
        session.bind_shortcuts(source, on_export=lambda: exported.append(1))

        source.emit(KeyEvent("n", meta=True, shift=True))
        assert len(session.book.chapters) == 2
        assert session.autosave.pending

        source.emit(KeyEvent("s", ctrl=True, target="textarea"))
        await session.autosave.flush()
        assert session.book.id is not None
        assert not session.autosave.pending
        assert session.autosave.is_dirty is False

        source.emit(KeyEvent("e", meta=True, shift=True))
        assert exported == [1]

        session.close()
        assert source.listener_count == 0

    asyncio.run(scenario())


def test_before_unload_and_close() -> None:
    timers = ManualTimers()
    session = EditingSession(InMemoryGateway(), timers=timers)
    event = NavigationEvent(url="/library")
    assert session.before_unload(event) is None

    session.store.set_title("Draft")
    assert session.before_unload(event) == UNSAVED_CHANGES_MESSAGE
    assert event.cancelled

    session.close()
    assert timers.pending == 0
    session.store.set_title("After close")
    assert timers.pending == 0


def test_set_cover_stores_a_data_url() -> None:
    pytest.importorskip("PIL")
    session = EditingSession(InMemoryGateway(), timers=ManualTimers())
    artifact = session.set_cover(b"not an image", filename="cover.png")
    assert artifact.compressed is False
    assert session.book.cover == artifact.data_url
    assert session.book.cover.startswith("data:image/png;base64,")


class _GatedGateway(InMemoryGateway):
    """``create`` waits until the test opens the gate."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def create(self, payload):
        await self.gate.wait()
        return await super().create(payload)


def test_new_book_during_first_create_keeps_books_apart(tmp_path: Path) -> None:
    async def scenario() -> None:
        timers = ManualTimers()
        gateway = _GatedGateway()
        session = _session(gateway, timers, history_dir=tmp_path)
        session.store.set_title("Book A")
        first = session.autosave.request_save()
        await asyncio.sleep(0)
        assert session.autosave.state.is_saving

        session.new_book()
        session.store.set_title("Book B")
        gateway.gate.set()
        assert await first is True
        assert session.book.id is None
        assert session.autosave.is_dirty

        assert await session.save() is True
        book_a, book_b = (call[1] for call in gateway.calls if call[0] == "create")
        assert book_a != book_b
        assert session.book.id == book_b
        assert (await gateway.fetch(book_a))["title"] == "Book A"
        assert (await gateway.fetch(book_b))["title"] == "Book B"
        assert [v.title for v in session.history.versions] == ["Book B"]
        a_history = VersionHistory(tmp_path / f"{book_a}.versions.json")
        assert [v.title for v in a_history.versions] == ["Book A"]

    asyncio.run(scenario())


def test_open_book_during_first_create_keeps_the_opened_id() -> None:
    async def scenario() -> None:
        timers = ManualTimers()
        gateway = _GatedGateway()
        stored = await InMemoryGateway.create(gateway, {"title": "Stored", "chapters": []})
        session = _session(gateway, timers)
        session.store.set_title("Draft")
        first = session.autosave.request_save()
        await asyncio.sleep(0)

        await session.open_book(stored)
        gateway.gate.set()
        await first
        assert session.book.id == stored
        assert session.book.title == "Stored"
        assert session.history.versions == []

        session.store.set_author("Someone")
        await session.save()
        assert (await gateway.fetch(stored))["title"] == "Stored"
        drafts = [row for row in await gateway.list_books() if row["id"] != stored]
        assert [row["title"] for row in drafts] == ["Draft"]

    asyncio.run(scenario())


def test_find_replace_shortcut_and_replace_all() -> None:
    source = KeyEventSource()
    session = EditingSession(InMemoryGateway(), timers=ManualTimers())
    first = session.book.chapters[0]
    session.store.set_chapter_content(first.id, '<p class="cat">Cat and cat</p>')
    session.store.add_chapter("Two", "<p>No match</p>")
    session.bind_shortcuts(source)

    source.emit(KeyEvent("h", meta=True, target="textarea"))
    panel = session.find_replace
    assert panel.is_open

    panel.search_term = "cat"
    assert panel.total_matches == 2
    panel.replace_term = "dog"
    assert panel.replace_all() == 2
    assert session.book.chapters[0].content == '<p class="cat">dog and dog</p>'

    session.store.toggle_lock("chapters")
    panel.search_term = "dog"
    with pytest.raises(SectionLockedError):
        panel.replace_all()
    assert session.book.chapters[0].content == '<p class="cat">dog and dog</p>'
