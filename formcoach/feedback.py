"""
Feedback events, the rolling feedback log used as the detector's sink,
and per-category cooldowns that keep corrections from spamming the user.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)

SUCCESS = "success"
ERROR = "error"
INFO = "info"
CATEGORIES = (SUCCESS, ERROR, INFO)

# Minimum seconds between two feedback messages of the same kind.
FEEDBACK_COOLDOWNS_SEC = {
    "rep": 0.0,
    "form": 2.0,
    "encourage": 0.8,
}
# Identical consecutive messages inside this window are dropped.
DUPLICATE_WINDOW_SEC = 1.0
HISTORY_SIZE = 3
# Negative feedback counts 0.3 against positive feedback when scoring accuracy.
NEGATIVE_WEIGHT = 0.3

AddFeedback = Callable[[str, str], None]


@dataclass
class FeedbackEvent:
    message: str
    category: str
    timestamp: float

    def to_dict(self) -> dict:
        return {"message": self.message, "category": self.category, "timestamp": self.timestamp}


class FeedbackGate:
    """Per-kind cooldown: can_give(kind) is True once the kind's cooldown has elapsed."""

    def __init__(
        self,
        cooldowns: Optional[dict[str, float]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cooldowns = dict(FEEDBACK_COOLDOWNS_SEC)
        if cooldowns:
            self.cooldowns.update(cooldowns)
        self.clock = clock
        self._last: dict[str, float] = {}

    def can_give(self, kind: str) -> bool:
        last = self._last.get(kind)
        if last is None:
            return True
        return (self.clock() - last) >= self.cooldowns.get(kind, 0.0)

    def mark(self, kind: str) -> None:
        self._last[kind] = self.clock()

    def reset(self) -> None:
        self._last.clear()


@dataclass
class FeedbackLog:
    """
    Caller-side feedback sink. Keeps the latest few events, drops an exact repeat
    of the newest message within DUPLICATE_WINDOW_SEC, and tallies positive
    (success/info) against negative (error) feedback.
    """

    clock: Callable[[], float] = time.monotonic
    history_size: int = HISTORY_SIZE
    duplicate_window_sec: float = DUPLICATE_WINDOW_SEC
    events: list[FeedbackEvent] = field(default_factory=list)
    positive: int = 0
    negative: int = 0
    listeners: list[Callable[[FeedbackEvent], None]] = field(default_factory=list)

    def __call__(self, message: str, category: str = SUCCESS) -> None:
        self.add(message, category)

    def add(self, message: str, category: str = SUCCESS) -> Optional[FeedbackEvent]:
        if category not in CATEGORIES:
            logger.debug("feedback: unknown category %r, treating as info", category)
            category = INFO
        now = self.clock()
        if self.events:
            newest = self.events[0]
            if newest.message == message and (now - newest.timestamp) < self.duplicate_window_sec:
                return None
        event = FeedbackEvent(message=message, category=category, timestamp=now)
        self.events.insert(0, event)
        del self.events[self.history_size:]
        if category == ERROR:
            self.negative += 1
        else:
            self.positive += 1
        for listener in self.listeners:
            listener(event)
        return event

    @property
    def accuracy(self) -> int:
        weighted = self.positive + NEGATIVE_WEIGHT * self.negative
        if weighted <= 0:
            return 0
        return round(self.positive / weighted * 100)

    def latest(self) -> Optional[FeedbackEvent]:
        return self.events[0] if self.events else None

    def clear(self) -> None:
        self.events.clear()

    def reset(self) -> None:
        self.events.clear()
        self.positive = 0
        self.negative = 0
