from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, Tuple, Union
from zoneinfo import ZoneInfo

# Leitner configuration
BOX_MIN = 1
BOX_MAX = 5
BOXES = tuple(range(BOX_MIN, BOX_MAX + 1))

# days until next review after a correct answer in that box
BOX_INTERVALS_DAYS = {1: 1, 2: 3, 3: 7, 4: 14, 5: 30}

# box -> (next box on a correct answer, interval added to now)
TRANSITIONS: Dict[int, Tuple[int, timedelta]] = {
    box: (min(box + 1, BOX_MAX), timedelta(days=BOX_INTERVALS_DAYS[box]))
    for box in BOXES
}


class InvalidBoxError(ValueError):
    """Raised when a card's box is outside 1..5."""

    def __init__(self, box: object) -> None:
        super().__init__(f"Invalid Leitner box: {box!r}")
        self.box = box


@dataclass(frozen=True)
class ReviewOutcome:
    new_box: int
    next_due: datetime


@dataclass(frozen=True)
class BoxInfo:
    box: int
    interval: timedelta
    label: str
    color: str


BOX_INFO: Dict[int, BoxInfo] = {
    1: BoxInfo(1, TRANSITIONS[1][1], "Box 1 (New)",
               "bg-red-100 text-red-800 dark:bg-red-900 dark:text-red-200"),
    2: BoxInfo(2, TRANSITIONS[2][1], "Box 2 (Learning)",
               "bg-orange-100 text-orange-800 dark:bg-orange-900 dark:text-orange-200"),
    3: BoxInfo(3, TRANSITIONS[3][1], "Box 3 (Familiar)",
               "bg-yellow-100 text-yellow-800 dark:bg-yellow-900 dark:text-yellow-200"),
    4: BoxInfo(4, TRANSITIONS[4][1], "Box 4 (Known)",
               "bg-green-100 text-green-800 dark:bg-green-900 dark:text-green-200"),
    5: BoxInfo(5, TRANSITIONS[5][1], "Box 5 (Mastered)",
               "bg-blue-100 text-blue-800 dark:bg-blue-900 dark:text-blue-200"),
}


def check_box(box: object) -> int:
    # bool is an int subclass; True must not pass as box 1
    if isinstance(box, bool) or not isinstance(box, int) or box not in TRANSITIONS:
        raise InvalidBoxError(box)
    return box


def box_info(box: int) -> BoxInfo:
    return BOX_INFO[check_box(box)]


def initial_state(now: datetime) -> ReviewOutcome:
    """State of a freshly created card: first box, due immediately."""
    return ReviewOutcome(new_box=BOX_MIN, next_due=now)


def compute_next_review(box: int, correct: bool, now: datetime) -> ReviewOutcome:
    """Return next box and due date given the review result.

    A wrong answer sends the card back to box 1, due at ``now``. A right
    answer moves it one box up (box 5 stays put) and schedules it the
    box's interval after ``now``. ``now`` is always supplied by the caller.
    """
    check_box(box)
    if not correct:
        return ReviewOutcome(new_box=BOX_MIN, next_due=now)
    new_box, interval = TRANSITIONS[box]
    return ReviewOutcome(new_box=new_box, next_due=now + interval)


def is_due(due_at: datetime, now: datetime) -> bool:
    return due_at <= now


@dataclass(frozen=True)
class DueDescription:
    kind: str  # "due", "today", "tomorrow" or "days"
    days: int = 0

    def __str__(self) -> str:
        if self.kind == "due":
            return "Due now"
        if self.kind == "today":
            return "Later today"
        if self.kind == "tomorrow":
            return "Tomorrow"
        return f"In {self.days} days"


def _resolve_tz(tz: Union[str, tzinfo, None]) -> tzinfo:
    if tz is None:
        return timezone.utc
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


def describe_due_date(due_at: datetime, now: datetime,
                      tz: Union[str, tzinfo, None] = None) -> DueDescription:
    """Bucket a due date relative to now, by calendar days in ``tz``."""
    if is_due(due_at, now):
        return DueDescription("due")
    zone = _resolve_tz(tz)
    days = (due_at.astimezone(zone).date() - now.astimezone(zone).date()).days
    if days <= 0:
        return DueDescription("today")
    if days == 1:
        return DueDescription("tomorrow", 1)
    return DueDescription("days", days)


def queue_key(box: int, due_at: datetime) -> Tuple[int, datetime]:
    return (box, due_at)


def order_queue(cards: Iterable[dict]) -> List[dict]:
    """Least mastered first, then most overdue; cards need 'box' and 'due_at'."""
    return sorted(cards, key=lambda c: queue_key(c["box"], c["due_at"]))
