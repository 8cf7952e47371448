from __future__ import annotations

import asyncio
import dataclasses
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from .logging_utils import debug_log
from .models import SaveState, SaveStatus
from .scheduling import DebounceTimer, LoopTimers, SingleFlight, Timers

DEFAULT_DEBOUNCE_SECONDS = 10.0
SAVED_DISPLAY_SECONDS = 2.0
ERROR_DISPLAY_SECONDS = 3.0
UNSAVED_CHANGES_MESSAGE = "You have unsaved changes. Are you sure you want to leave?"

SaveCallback = Callable[[], Awaitable[None]]
StateListener = Callable[[SaveState], None]


class AutosaveScheduler:
    """Debounced, single-flight autosave.

    Every :meth:`mark_dirty` re-arms one debounce timer, so a burst of
    edits produces a single save once the editor goes quiet. At most one
    save runs at a time; a save requested while another is in flight is
    dropped rather than queued. A failed save leaves the document dirty,
    and the next edit arms a fresh cycle.
    """

    def __init__(
        self,
        on_save: SaveCallback,
        *,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
        enabled: bool = True,
        timers: Timers | None = None,
        saved_display: float = SAVED_DISPLAY_SECONDS,
        error_display: float = ERROR_DISPLAY_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if debounce <= 0:
            raise ValueError(f"debounce must be positive, got {debounce}")
        self._on_save = on_save
        self.debounce = debounce
        self.saved_display = saved_display
        self.error_display = error_display
        self._enabled = enabled
        self._timers = timers or LoopTimers()
        self._debounce_timer = DebounceTimer(self._timers)
        self._status_timer = DebounceTimer(self._timers)
        self._guard = SingleFlight()
        self._clock = clock or time.time
        self._state = SaveState()
        self._listeners: list[StateListener] = []
        self._edits = 0
        self._closed = False
        self._tasks: set[asyncio.Task[bool]] = set()

    @property
    def state(self) -> SaveState:
        return dataclasses.replace(self._state)

    @property
    def is_dirty(self) -> bool:
        return self._state.is_dirty

    @property
    def status(self) -> SaveStatus:
        return self._state.status

    @property
    def pending(self) -> bool:
        """True while a debounce timer is armed."""
        return self._debounce_timer.armed

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        if enabled:
            self.schedule_save()
        else:
            self._debounce_timer.cancel()

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _update(self, **changes: object) -> None:
        for name, value in changes.items():
            setattr(self._state, name, value)
        snapshot = self.state
        for listener in list(self._listeners):
            listener(snapshot)

    def mark_dirty(self) -> None:
        if self._closed:
            return
        self._edits += 1
        if self._state.is_saving:
            self._update(is_dirty=True)
        else:
            self._status_timer.cancel()
            self._update(is_dirty=True, status=SaveStatus.IDLE)
        self.schedule_save()

    def mark_clean(self) -> None:
        """Forget pending edits, e.g. after loading a different book."""
        self._debounce_timer.cancel()
        self._status_timer.cancel()
        self._update(is_dirty=False, status=SaveStatus.IDLE, last_error=None)

    def set_debounce(self, seconds: float) -> None:
        if seconds <= 0:
            raise ValueError(f"debounce must be positive, got {seconds}")
        self.debounce = seconds
        if self._debounce_timer.armed:
            self.schedule_save()

    def schedule_save(self) -> None:
        if self._closed or not self._enabled or not self._state.is_dirty:
            return
        self._debounce_timer.arm(self.debounce, self.request_save)

    def request_save(self) -> asyncio.Task[bool] | None:
        """Start :meth:`save` on the running loop without waiting for it."""
        if self._closed:
            return None
        task = asyncio.get_running_loop().create_task(self.save())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def flush(self) -> None:
        """Wait until every requested save has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _revert_status_after(self, delay: float) -> None:
        if self._closed:
            return

        def _reset() -> None:
            if self._state.status in (SaveStatus.SAVED, SaveStatus.ERROR):
                self._update(status=SaveStatus.IDLE)

        self._status_timer.arm(delay, _reset)

    async def save(self) -> bool:
        if self._closed or not self._enabled or not self._state.is_dirty:
            return False
        if not self._guard.try_acquire():
            debug_log("Save skipped: another save is already in flight.")
            return False
        try:
            self._debounce_timer.cancel()
            self._status_timer.cancel()
            edits_at_start = self._edits
            self._update(is_saving=True, status=SaveStatus.SAVING)
            try:
                await self._on_save()
            except asyncio.CancelledError:
                self._update(is_saving=False, status=SaveStatus.IDLE)
                raise
            except Exception as exc:
                debug_log(f"Autosave failed: {exc!r}")
                self._update(
                    is_saving=False,
                    status=SaveStatus.ERROR,
                    last_error=str(exc) or type(exc).__name__,
                )
                self._revert_status_after(self.error_display)
                if self._edits != edits_at_start:
                    self.schedule_save()
                return False
            edited_during_save = self._edits != edits_at_start
            self._update(
                is_saving=False,
                is_dirty=edited_during_save,
                last_saved=self._clock(),
                status=SaveStatus.SAVED,
                last_error=None,
            )
            self._revert_status_after(self.saved_display)
            if edited_during_save:
                self.schedule_save()
            return True
        finally:
            self._guard.release()

    trigger_save = save

    def teardown(self) -> None:
        """Cancel pending timers; nothing fires after this."""
        self._closed = True
        self._debounce_timer.cancel()
        self._status_timer.cancel()


@dataclass
class NavigationEvent:
    url: str | None = None
    cancelled: bool = False
    message: str | None = None

    def prevent_default(self) -> None:
        self.cancelled = True


class UnsavedChangesGuard:
    """Asks for confirmation before leaving while there are unsaved changes."""

    def __init__(
        self,
        is_dirty: Callable[[], bool],
        message: str = UNSAVED_CHANGES_MESSAGE,
    ) -> None:
        self._is_dirty = is_dirty
        self.message = message

    def before_unload(self, event: NavigationEvent) -> str | None:
        if not self._is_dirty():
            return None
        event.prevent_default()
        event.message = self.message
        return self.message


__all__ = [
    "DEFAULT_DEBOUNCE_SECONDS",
    "ERROR_DISPLAY_SECONDS",
    "SAVED_DISPLAY_SECONDS",
    "UNSAVED_CHANGES_MESSAGE",
    "AutosaveScheduler",
    "NavigationEvent",
    "UnsavedChangesGuard",
]
