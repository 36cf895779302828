from __future__ import annotations
import logging
import math
import sqlite3
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterable
from datetime import datetime, timezone

import config
from srs import ReviewOutcome, compute_next_review, initial_state

logger = logging.getLogger(__name__)

DB_PATH = Path(config.DATABASE_PATH)

SCHEMA = r"""
PRAGMA journal_mode=WAL;
CREATE TABLE IF NOT EXISTS users (
  user_id    INTEGER PRIMARY KEY,
  username   TEXT,
  tz         TEXT DEFAULT 'UTC',
  created_at TEXT DEFAULT (datetime('now'))
);
CREATE TABLE IF NOT EXISTS flashcards (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id INTEGER NOT NULL,
  front TEXT NOT NULL,
  back TEXT NOT NULL,
  part_of_speech TEXT,
  ai_generated INTEGER DEFAULT 0,
  box INTEGER NOT NULL DEFAULT 1 CHECK (box BETWEEN 1 AND 5),
  due_at TEXT NOT NULL,
  successes INTEGER DEFAULT 0,
  failures INTEGER DEFAULT 0,
  last_reviewed TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_flashcards_due ON flashcards(user_id, due_at);
"""

SORT_COLUMNS = {"created_at": "created_at", "front": "front", "box": "box"}


class FlashcardNotFound(LookupError):
    """No flashcard with that id belongs to the user."""


class ReviewConflict(RuntimeError):
    """The card changed between reading its box and writing the review."""


def to_iso(dt: datetime) -> str:
    # fixed width UTC text so string comparison in SQL is chronological
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)


def connect() -> sqlite3.Connection:
    con = sqlite3.connect(DB_PATH)
    con.row_factory = sqlite3.Row
    return con


def init_db() -> None:
    with connect() as con:
        con.executescript(SCHEMA)


def _card(row: sqlite3.Row) -> Dict[str, Any]:
    card = dict(row)
    card["due_at"] = from_iso(card["due_at"])
    card["ai_generated"] = bool(card["ai_generated"])
    return card


def upsert_user(user_id: int, username: Optional[str], tz: Optional[str] = None) -> None:
    with connect() as con:
        con.execute("INSERT OR IGNORE INTO users(user_id, username, tz) VALUES(?,?,?)",
                    (user_id, username, tz or config.DEFAULT_TZ))
        if tz:
            con.execute("UPDATE users SET tz=? WHERE user_id=?", (tz, user_id))


def set_user_tz(user_id: int, tz: str) -> None:
    with connect() as con:
        con.execute("INSERT OR IGNORE INTO users(user_id, tz) VALUES(?,?)", (user_id, tz))
        con.execute("UPDATE users SET tz=? WHERE user_id=?", (tz, user_id))


def get_user_tz(user_id: int) -> str:
    with connect() as con:
        row = con.execute("SELECT tz FROM users WHERE user_id=?", (user_id,)).fetchone()
        return row["tz"] if row and row["tz"] else config.DEFAULT_TZ


def insert_flashcard(user_id: int, row: Dict[str, Any], now: datetime) -> int:
    with connect() as con:
        return _insert(con, user_id, row, now)


def insert_flashcards(user_id: int, rows: Iterable[Dict[str, Any]], now: datetime) -> List[int]:
    """Insert many cards in one transaction."""
    with connect() as con:
        return [_insert(con, user_id, row, now) for row in rows]


def _insert(con: sqlite3.Connection, user_id: int, row: Dict[str, Any], now: datetime) -> int:
    state = initial_state(now)
    stamp = to_iso(now)
    cur = con.execute(
        """
        INSERT INTO flashcards(user_id, front, back, part_of_speech, ai_generated,
                               box, due_at, created_at, updated_at)
        VALUES(?,?,?,?,?,?,?,?,?)
        """,
        (user_id, row["front"], row["back"], row.get("part_of_speech") or None,
         1 if row.get("ai_generated") else 0, state.new_box, to_iso(state.next_due),
         stamp, stamp)
    )
    return cur.lastrowid


def get_flashcard(user_id: int, flashcard_id: int) -> Dict[str, Any]:
    with connect() as con:
        row = con.execute(
            "SELECT * FROM flashcards WHERE id=? AND user_id=?",
            (flashcard_id, user_id)
        ).fetchone()
    if row is None:
        raise FlashcardNotFound(flashcard_id)
    return _card(row)


def list_flashcards(user_id: int, page: int = 1, page_size: int = 20,
                    sort_by: str = "created_at", order: str = "desc") -> Dict[str, Any]:
    column = SORT_COLUMNS[sort_by]
    direction = "ASC" if order == "asc" else "DESC"
    with connect() as con:
        total = con.execute(
            "SELECT COUNT(*) AS n FROM flashcards WHERE user_id=?", (user_id,)
        ).fetchone()["n"]
        rows = con.execute(
            f"SELECT * FROM flashcards WHERE user_id=? ORDER BY {column} {direction}, id {direction} "
            "LIMIT ? OFFSET ?",
            (user_id, page_size, (page - 1) * page_size)
        ).fetchall()
    return {"items": [_card(r) for r in rows], "total": total,
            "page": page, "page_size": page_size,
            "total_pages": math.ceil(total / page_size)}


def update_flashcard(user_id: int, flashcard_id: int, fields: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Edit card text. Box and due date are left to the scheduler."""
    allowed = {k: v for k, v in fields.items() if k in ("front", "back", "part_of_speech")}
    with connect() as con:
        if allowed:
            assignments = ", ".join(f"{k}=?" for k in allowed)
            cur = con.execute(
                f"UPDATE flashcards SET {assignments}, updated_at=? WHERE id=? AND user_id=?",
                (*allowed.values(), to_iso(now), flashcard_id, user_id)
            )
            if cur.rowcount == 0:
                raise FlashcardNotFound(flashcard_id)
    return get_flashcard(user_id, flashcard_id)


def delete_flashcard(user_id: int, flashcard_id: int) -> None:
    with connect() as con:
        cur = con.execute("DELETE FROM flashcards WHERE id=? AND user_id=?", (flashcard_id, user_id))
        if cur.rowcount == 0:
            raise FlashcardNotFound(flashcard_id)


def get_due_flashcards(user_id: int, now: datetime, limit: int = 50) -> List[Dict[str, Any]]:
    with connect() as con:
        cur = con.execute(
            """
            SELECT * FROM flashcards
            WHERE user_id=? AND due_at <= ?
            ORDER BY box ASC, due_at ASC
            LIMIT ?
            """,
            (user_id, to_iso(now), limit)
        )
        return [_card(r) for r in cur.fetchall()]


def count_due_flashcards(user_id: int, now: datetime) -> int:
    with connect() as con:
        row = con.execute(
            "SELECT COUNT(*) AS n FROM flashcards WHERE user_id=? AND due_at <= ?",
            (user_id, to_iso(now))
        ).fetchone()
        return int(row["n"])


def review_flashcard(user_id: int, flashcard_id: int, success: bool, now: datetime) -> ReviewOutcome:
    """Apply one review to a card owned by ``user_id`` and persist the result.

    The write only lands if the card still has the box and due date that were
    read, so a second concurrent review of the same card is rejected with
    ``ReviewConflict`` instead of overwriting the first.
    """
    with connect() as con:
        cur = con.execute(
            "SELECT box, due_at FROM flashcards WHERE id=? AND user_id=?",
            (flashcard_id, user_id)
        )
        row = cur.fetchone()
        cur.close()
        if row is None:
            raise FlashcardNotFound(flashcard_id)
        outcome = compute_next_review(row["box"], success, now)
        cur = con.execute(
            """
            UPDATE flashcards SET box=?, due_at=?, last_reviewed=?, updated_at=?,
                successes = successes + ?, failures = failures + ?
            WHERE id=? AND user_id=? AND box=? AND due_at=?
            """,
            (outcome.new_box, to_iso(outcome.next_due), to_iso(now), to_iso(now),
             1 if success else 0, 0 if success else 1,
             flashcard_id, user_id, row["box"], row["due_at"])
        )
        if cur.rowcount == 0:
            raise ReviewConflict(flashcard_id)
    logger.debug("card %s reviewed (success=%s): box %s -> %s",
                 flashcard_id, success, row["box"], outcome.new_box)
    return outcome
