from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest

from makeebook.models import Book, Chapter
from makeebook.versions import VersionHistory, format_timestamp


def _book(content: str = "<p>one two three</p>", **fields) -> Book:
    return Book(chapters=[Chapter(id="c1", title="One", content=content)], **fields)


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        self.now += 1
        return self.now


def test_record_skips_identical_snapshots() -> None:
    history = VersionHistory(clock=_Clock())
    first = history.record(_book())
    assert first is not None
    assert first.title == "Untitled"
    assert first.author == "Unknown"
    assert first.word_count == 3
    assert first.chapter_count == 1
    assert history.record(_book()) is None
    assert history.record(_book(title="Named")) is not None
    assert history.record(_book(title="Named", tags=["sf"])) is not None
    assert len(history.versions) == 3


def test_versions_are_newest_first_and_bounded() -> None:
    history = VersionHistory(max_versions=3, clock=_Clock())
    ids = [history.record(_book(f"<p>draft {n}</p>")).id for n in range(5)]
    assert [version.id for version in history.versions] == ids[::-1][:3]
    assert history.latest().id == ids[-1]
    assert history.get(ids[0]) is None


def test_restore_and_delete() -> None:
    history = VersionHistory(clock=_Clock())
    old = history.record(_book("<p>old</p>"))
    history.record(_book("<p>new</p>"))
    chapters = history.restore(old.id)
    assert [(c.id, c.content) for c in chapters] == [("c1", "<p>old</p>")]
    with pytest.raises(KeyError):
        history.restore("v-nope")
    assert history.delete(old.id) is True
    assert history.delete(old.id) is False
    assert len(history.versions) == 1


def test_history_persists_and_tolerates_corruption(tmp_path: Path) -> None:
    path = tmp_path / "b.versions.json"
    history = VersionHistory(path, clock=_Clock())
    version = history.record(_book(author="Ann"))
    stored = json.loads(path.read_text(encoding="utf-8"))
    assert stored["version"] == 1
    assert stored["versions"][0]["id"] == version.id

    reloaded = VersionHistory(path)
    assert reloaded.latest().author == "Ann"
    assert reloaded.has_versions

    reloaded.clear()
    assert not path.exists()
    assert not reloaded.has_versions

    path.write_text("{broken", encoding="utf-8")
    assert VersionHistory(path).versions == []


def test_max_versions_must_be_positive() -> None:
    with pytest.raises(ValueError):
        VersionHistory(max_versions=0)


def test_format_timestamp() -> None:
    now = 1_700_000_000.0
    assert format_timestamp(now - 30, now) == "just now"
    assert format_timestamp(now - 5 * 60, now) == "5m ago"
    assert format_timestamp(now - 3 * 3600, now) == "3h ago"
    assert format_timestamp(now - 2 * 86400, now) == "2d ago"
    old = now - 30 * 86400
    moment = datetime.fromtimestamp(old)
    label = format_timestamp(old, now)
    assert label.startswith(f"{moment:%b} {moment.day}, ")
    assert label.endswith(moment.strftime("%p"))
