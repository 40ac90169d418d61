"""Completion observer - detects badges that just became completed.

An observer diffs each badge snapshot against the one before it and emits
NewlyCompleted for every badge whose completed flag went from false to
true. The very first snapshot only seeds the observer, so badges earned in
an earlier session are not celebrated again on page load.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from allowance.services.badges import BadgeViewModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NewlyCompleted:
    badge: BadgeViewModel
    observed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[NewlyCompleted], None]


class CompletionObserver:
    """Holds the previous snapshot for one viewer and diffs new ones against it."""

    def __init__(self):
        # None means "never observed", which is different from an empty catalog
        self._previous: list[BadgeViewModel] | None = None
        self._listeners: list[Listener] = []

    @property
    def initialized(self) -> bool:
        return self._previous is not None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def observe(self, current: Iterable[BadgeViewModel]) -> list[NewlyCompleted]:
        snapshot = list(current)

        if self._previous is None:
            self._previous = snapshot
            return []

        previous_by_id = {badge.id: badge for badge in self._previous}
        events = []
        for badge in snapshot:
            before = previous_by_id.get(badge.id)
            if before is not None and not before.completed and badge.completed:
                events.append(NewlyCompleted(badge=badge))

        self._previous = snapshot

        for event in events:
            logger.info("Newly completed badge: %s (%s)", event.badge.id, event.badge.name)
            self._notify(event)
        return events

    def _notify(self, event: NewlyCompleted) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Completion listener failed for badge %s", event.badge.id)

    def reset(self) -> None:
        """Forget the previous snapshot; the next one seeds again."""
        self._previous = None


class ObserverRegistry:
    """One CompletionObserver per user, bounded to the most recently seen users.

    An evicted user's next snapshot seeds a fresh observer, which is silent.
    """

    def __init__(
        self,
        on_create: Callable[[str, CompletionObserver], None] | None = None,
        max_users: int = 10_000,
    ):
        self._observers: OrderedDict[str, CompletionObserver] = OrderedDict()
        self._on_create = on_create
        self.max_users = max_users

    def for_user(self, user_id: str) -> CompletionObserver:
        observer = self._observers.get(user_id)
        if observer is None:
            observer = CompletionObserver()
            self._observers[user_id] = observer
            if self._on_create is not None:
                self._on_create(user_id, observer)
            while len(self._observers) > self.max_users:
                evicted, _ = self._observers.popitem(last=False)
                logger.debug("Evicted completion observer for user %s", evicted)
        else:
            self._observers.move_to_end(user_id)
        return observer

    def discard(self, user_id: str) -> None:
        """Drop a user's observer; the next snapshot for them seeds again."""
        self._observers.pop(user_id, None)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._observers

    def __len__(self) -> int:
        return len(self._observers)
