import logging
import threading
from typing import Callable, Dict, List, Optional

from refpanel.errors import InvalidPayload
from refpanel.models import (
    JUDGES, VOTES, VOTE_RED, MAX_CARDS, PHASE_IDLE, PHASE_REVEALED, is_card,
)
from .scheduler import Scheduler, TaskHandle


logger = logging.getLogger(__name__)

DEFAULT_TIMER_MS = 60_000
AUTO_CLEAR_MS = 10_000
TICK_INTERVAL_MS = 200

SnapshotListener = Callable[[dict], None]


def _to_ms(seconds) -> int:
    return max(0, int(round(float(seconds) * 1000)))


class RoomState:
    """Live state of one room: votes, cards, decision phase and both clocks.

    Every command runs to completion under the room lock and then pushes a
    fresh snapshot to each listener. Commands that change nothing do not
    notify. The main timer and the interval each own a periodic tick task
    only while running; a reveal owns a one-shot auto-clear until it fires
    or a manual clear cancels it.
    """

    def __init__(self, scheduler: Optional[Scheduler] = None,
                 default_timer_ms: int = DEFAULT_TIMER_MS,
                 auto_clear_ms: int = AUTO_CLEAR_MS,
                 tick_interval_ms: int = TICK_INTERVAL_MS):
        self._scheduler = scheduler or Scheduler()
        self._default_timer_ms = default_timer_ms
        self._auto_clear_ms = auto_clear_ms
        self._tick_interval_ms = tick_interval_ms
        self._lock = threading.RLock()
        self._listeners: List[SnapshotListener] = []

        self._phase = PHASE_IDLE
        self._votes: Dict[str, Optional[str]] = {judge: None for judge in JUDGES}
        self._cards: Dict[str, List[int]] = {judge: [] for judge in JUDGES}
        self._connected: Dict[str, bool] = {judge: False for judge in JUDGES}

        self._timer_ms = default_timer_ms
        self._running = False
        self._last_tick_at: Optional[float] = None
        self._tick_task: Optional[TaskHandle] = None

        self._interval_ms = 0
        self._interval_configured_ms = 0
        self._interval_running = False
        self._interval_visible = False
        self._interval_last_tick_at: Optional[float] = None
        self._interval_task: Optional[TaskHandle] = None

        self._auto_clear_task: Optional[TaskHandle] = None

    # ---- Observers ----

    def on_snapshot(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register ``listener``; it is called right away and after every change.

        Returns a function that unsubscribes the listener.
        """
        with self._lock:
            self._listeners.append(listener)
            self._call_listener(listener, self._snapshot())

        def _unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def get_snapshot(self) -> dict:
        with self._lock:
            return self._snapshot()

    @property
    def phase(self) -> str:
        return self._phase

    @property
    def has_pending_auto_clear(self) -> bool:
        return self._auto_clear_task is not None

    @property
    def has_timer_task(self) -> bool:
        return self._tick_task is not None

    @property
    def has_interval_task(self) -> bool:
        return self._interval_task is not None

    # ---- Decision ----

    def set_vote(self, judge: str, vote: Optional[str]) -> None:
        _check_judge(judge)
        if vote is not None and vote not in VOTES:
            raise InvalidPayload(f"unknown vote {vote!r}")
        with self._lock:
            if self._phase == PHASE_REVEALED:
                return
            self._votes[judge] = vote
            if vote != VOTE_RED:
                self._cards[judge] = []
            self._notify()
            if self._all_votes_cast():
                self._reveal()

    def set_card(self, judge: str, card: Optional[int]) -> None:
        _check_judge(judge)
        if card is not None and not is_card(card):
            raise InvalidPayload(f"unknown card {card!r}")
        with self._lock:
            # Once revealed a vote is frozen; only a red light may still change its cards
            if self._phase == PHASE_REVEALED and self._votes[judge] != VOTE_RED:
                return
            if card is None:
                self._cards[judge] = []
                self._notify()
                return
            cards = self._cards[judge]
            if card in cards:
                self._votes[judge] = VOTE_RED
                self._cards[judge] = [value for value in cards if value != card]
            elif len(cards) < MAX_CARDS:
                self._votes[judge] = VOTE_RED
                self._cards[judge] = cards + [card]
            else:
                return
            self._notify()

    def trigger_reveal(self, force: bool = False) -> None:
        with self._lock:
            if not force and not self._all_votes_cast():
                return
            self._reveal()

    def release_decision(self) -> None:
        self.trigger_reveal(force=True)

    def clear_decision(self) -> None:
        with self._lock:
            self._reset_for_next_attempt()

    def set_phase_ready(self) -> None:
        with self._lock:
            self._reset_for_next_attempt()

    # ---- Main timer ----

    def start_timer(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._last_tick_at = self._scheduler.now_ms()
            self._tick_task = self._scheduler.call_every(
                self._tick_interval_ms / 1000.0, self._tick, name='timer-tick'
            )
            self._notify()

    def start_timer_with_seconds(self, seconds) -> None:
        with self._lock:
            self._timer_ms = _to_ms(seconds)
            if self._running:
                self._notify()
                return
            self.start_timer()

    def stop_timer(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._stop_timer()
            self._notify()

    def reset_timer(self) -> None:
        with self._lock:
            self._stop_timer()
            self._timer_ms = self._default_timer_ms
            self._notify()

    # ---- Interval ----

    def configure_interval(self, seconds) -> None:
        with self._lock:
            ms = _to_ms(seconds)
            self._stop_interval()
            self._interval_configured_ms = ms
            self._interval_ms = ms
            self._interval_visible = ms > 0
            self._notify()

    def start_interval(self) -> None:
        with self._lock:
            if self._interval_running or self._interval_ms <= 0:
                return
            self._interval_running = True
            self._interval_visible = True
            self._interval_last_tick_at = self._scheduler.now_ms()
            self._interval_task = self._scheduler.call_every(
                self._tick_interval_ms / 1000.0, self._interval_tick, name='interval-tick'
            )
            self._notify()

    def stop_interval(self) -> None:
        with self._lock:
            if not self._interval_running:
                return
            self._stop_interval()
            self._notify()

    def reset_interval(self) -> None:
        with self._lock:
            self._stop_interval()
            self._interval_ms = self._interval_configured_ms
            self._interval_visible = self._interval_configured_ms > 0
            self._notify()

    def set_interval_visible(self, visible: bool) -> None:
        with self._lock:
            self._interval_visible = bool(visible)
            self._notify()

    # ---- Presence ----

    def set_connected(self, judge: str, value: bool) -> None:
        _check_judge(judge)
        with self._lock:
            self._connected[judge] = bool(value)
            self._notify()

    def set_all_connected(self, value: bool) -> None:
        with self._lock:
            for judge in JUDGES:
                self._connected[judge] = bool(value)
            self._notify()

    def shutdown(self) -> None:
        """Release every scheduled task and drop listeners; used when a room closes."""
        with self._lock:
            self._cancel_auto_clear()
            self._stop_timer()
            self._stop_interval()
            self._listeners.clear()

    # ---- Internals (caller holds the lock) ----

    def _snapshot(self) -> dict:
        return {
            'phase': self._phase,
            'votes': dict(self._votes),
            'cards': {judge: list(cards) for judge, cards in self._cards.items()},
            'timerMs': int(round(self._timer_ms)),
            'running': self._running,
            'connected': dict(self._connected),
            'intervalMs': int(round(self._interval_ms)),
            'intervalConfiguredMs': self._interval_configured_ms,
            'intervalRunning': self._interval_running,
            'intervalVisible': self._interval_visible,
        }

    def _notify(self) -> None:
        if not self._listeners:
            return
        for listener in list(self._listeners):
            # Each listener gets its own copy so none can alter what the next one sees
            self._call_listener(listener, self._snapshot())

    def _call_listener(self, listener: SnapshotListener, snapshot: dict) -> None:
        try:
            listener(snapshot)
        except Exception:
            logger.exception("[room-state] snapshot listener failed")

    def _all_votes_cast(self) -> bool:
        return all(self._votes[judge] is not None for judge in JUDGES)

    def _reveal(self) -> None:
        if self._phase == PHASE_REVEALED:
            return
        self._phase = PHASE_REVEALED
        self._schedule_auto_clear()
        self._notify()

    def _reset_for_next_attempt(self) -> None:
        self._cancel_auto_clear()
        self._phase = PHASE_IDLE
        for judge in JUDGES:
            self._votes[judge] = None
            self._cards[judge] = []
        self._timer_ms = self._default_timer_ms
        self._stop_timer()
        self._notify()

    def _schedule_auto_clear(self) -> None:
        self._cancel_auto_clear()
        task = None

        def _fire():
            with self._lock:
                # A manual clear or a newer reveal already replaced this task
                if self._auto_clear_task is not task:
                    return
                self._auto_clear_task = None
                logger.debug("[room-state] auto-clear after reveal")
                self._reset_for_next_attempt()

        task = self._scheduler.call_later(self._auto_clear_ms / 1000.0, _fire, name='auto-clear')
        self._auto_clear_task = task

    def _cancel_auto_clear(self) -> None:
        if self._auto_clear_task is not None:
            self._auto_clear_task.cancel()
            self._auto_clear_task = None

    def _stop_timer(self) -> None:
        self._running = False
        self._last_tick_at = None
        if self._tick_task is not None:
            self._tick_task.cancel()
            self._tick_task = None

    def _stop_interval(self) -> None:
        self._interval_running = False
        self._interval_last_tick_at = None
        if self._interval_task is not None:
            self._interval_task.cancel()
            self._interval_task = None

    def _tick(self) -> None:
        with self._lock:
            if not self._running:
                return
            now = self._scheduler.now_ms()
            last = self._last_tick_at if self._last_tick_at is not None else now
            self._last_tick_at = now
            self._timer_ms = max(0.0, self._timer_ms - (now - last))
            if self._timer_ms == 0:
                self._stop_timer()
            self._notify()

    def _interval_tick(self) -> None:
        with self._lock:
            if not self._interval_running:
                return
            now = self._scheduler.now_ms()
            last = self._interval_last_tick_at if self._interval_last_tick_at is not None else now
            self._interval_last_tick_at = now
            self._interval_ms = max(0.0, self._interval_ms - (now - last))
            if self._interval_ms == 0:
                self._stop_interval()
                self._interval_visible = False
            self._notify()


def _check_judge(judge) -> None:
    if judge not in JUDGES:
        raise InvalidPayload(f"unknown judge {judge!r}")
