from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable

_TEXT_FIELD_TAGS = {"input", "textarea"}

KeyHandler = Callable[["KeyEvent"], object]


@dataclass
class KeyEvent:
    key: str
    ctrl: bool = False
    meta: bool = False
    shift: bool = False
    alt: bool = False
    target: str = "body"
    editable: bool = False
    default_prevented: bool = field(default=False, init=False)
    propagation_stopped: bool = field(default=False, init=False)

    @property
    def in_text_field(self) -> bool:
        return self.editable or self.target.lower() in _TEXT_FIELD_TAGS

    def prevent_default(self) -> None:
        self.default_prevented = True

    def stop_propagation(self) -> None:
        self.propagation_stopped = True


@dataclass(frozen=True)
class Shortcut:
    key: str
    action: Callable[[], object]
    description: str = ""
    ctrl_or_meta: bool = False
    shift: bool = False
    alt: bool = False
    allow_in_fields: bool = False

    def matches(self, event: KeyEvent) -> bool:
        if event.key.lower() != self.key.lower():
            return False
        if self.ctrl_or_meta and not (event.ctrl or event.meta):
            return False
        return event.shift == self.shift and event.alt == self.alt


class KeyEventSource:
    """Single subscription point for key-down events."""

    def __init__(self) -> None:
        self._handlers: list[KeyHandler] = []

    def listen(self, handler: KeyHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unlisten() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unlisten

    @property
    def listener_count(self) -> int:
        return len(self._handlers)

    def emit(self, event: KeyEvent) -> KeyEvent:
        for handler in list(self._handlers):
            if event.propagation_stopped:
                break
            handler(event)
        return event


class ShortcutDispatcher:
    """Routes key events through an ordered binding table; first match wins."""

    def __init__(self, shortcuts: Iterable[Shortcut] = (), *, enabled: bool = True) -> None:
        self._shortcuts = list(shortcuts)
        self.enabled = enabled
        self._detach: Callable[[], None] | None = None

    @property
    def shortcuts(self) -> tuple[Shortcut, ...]:
        return tuple(self._shortcuts)

    def bind(self, shortcut: Shortcut) -> None:
        self._shortcuts.append(shortcut)

    def unbind(self, shortcut: Shortcut) -> None:
        self._shortcuts.remove(shortcut)

    def attach(self, source: KeyEventSource) -> None:
        self.detach()
        self._detach = source.listen(self.dispatch)

    def detach(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None

    def dispatch(self, event: KeyEvent) -> bool:
        if not self.enabled:
            return False
        in_field = event.in_text_field
        for shortcut in self._shortcuts:
            if in_field and not shortcut.allow_in_fields:
                continue
            if not shortcut.matches(event):
                continue
            event.prevent_default()
            event.stop_propagation()
            shortcut.action()
            return True
        return False


def editor_shortcuts(
    *,
    on_save: Callable[[], object],
    on_export: Callable[[], object],
    on_preview: Callable[[], object],
    on_new_chapter: Callable[[], object] | None = None,
    on_find_replace: Callable[[], object] | None = None,
) -> list[Shortcut]:
    shortcuts = [
        Shortcut("s", on_save, "Save book", ctrl_or_meta=True, allow_in_fields=True),
        Shortcut("e", on_export, "Export as EPUB", ctrl_or_meta=True, shift=True, allow_in_fields=True),
        Shortcut("p", on_preview, "Toggle preview", ctrl_or_meta=True),
    ]
    if on_new_chapter is not None:
        shortcuts.append(Shortcut("n", on_new_chapter, "New chapter", ctrl_or_meta=True, shift=True))
    if on_find_replace is not None:
        shortcuts.append(
            Shortcut("h", on_find_replace, "Find & Replace", ctrl_or_meta=True, allow_in_fields=True)
        )
    return shortcuts


__all__ = [
    "KeyEvent",
    "KeyEventSource",
    "Shortcut",
    "ShortcutDispatcher",
    "editor_shortcuts",
]
