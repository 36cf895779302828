from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from flask import Flask, request, jsonify, g
from marshmallow import ValidationError

import db
from schemas import (
    MAX_ID, BulkImportSchema, FlashcardListQuerySchema, FlashcardSchema, ProfileSchema,
    ReviewQuerySchema, ReviewUpdateSchema,
)
from srs import BOX_INFO, InvalidBoxError, box_info, describe_due_date, is_due

logger = logging.getLogger(__name__)

# out of range ids fall through to 404 instead of reaching SQLite
CARD_URL = f"/api/flashcards/<int(min=1, max={MAX_ID}):flashcard_id>"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def error(message: str, status: int, **extra: Any):
    return jsonify(message=message, **extra), status


def serialize_card(card: Dict[str, Any], now: datetime, tz: str) -> Dict[str, Any]:
    info = box_info(card["box"])
    due = describe_due_date(card["due_at"], now, tz)
    return {
        "id": card["id"],
        "front": card["front"],
        "back": card["back"],
        "part_of_speech": card["part_of_speech"],
        "ai_generated": card["ai_generated"],
        "box": card["box"],
        "box_label": info.label,
        "box_color": info.color,
        "due_at": db.to_iso(card["due_at"]),
        "is_due": is_due(card["due_at"], now),
        "due_label": str(due),
        "successes": card["successes"],
        "failures": card["failures"],
    }


def parse_user_id(raw: str) -> int | None:
    if not (raw.isascii() and raw.isdigit()):
        return None
    user_id = int(raw)
    return user_id if 1 <= user_id <= MAX_ID else None


def create_app(init: bool = True) -> Flask:
    app = Flask(__name__)
    if init:
        db.init_db()

    @app.errorhandler(ValidationError)
    def validation_failed(err: ValidationError):
        return error("Validation failed", 400, errors=err.messages)

    @app.before_request
    def load_user():
        if request.path.startswith("/api/") and request.path != "/api/boxes":
            user_id = parse_user_id(request.headers.get("X-User-Id", ""))
            if user_id is None:
                return error("Unauthorized", 401)
            g.user_id = user_id
            g.tz = db.get_user_tz(user_id)

    def json_body():
        data = request.get_json(force=True, silent=True)
        if data is None:
            raise ValidationError("Invalid JSON in request body")
        return data

    @app.get("/api/boxes")
    def boxes():
        return jsonify(boxes=[
            {"box": i.box, "label": i.label, "color": i.color,
             "interval_days": i.interval.days}
            for i in BOX_INFO.values()
        ])

    @app.get("/api/profile")
    def get_profile():
        return jsonify(user_id=g.user_id, timezone=g.tz)

    @app.patch("/api/profile")
    def update_profile():
        data = ProfileSchema().load(json_body())
        db.set_user_tz(g.user_id, data["timezone"])
        return jsonify(user_id=g.user_id, timezone=data["timezone"])

    @app.get("/api/flashcards")
    def list_cards():
        query = FlashcardListQuerySchema().load(request.args)
        now = utcnow()
        result = db.list_flashcards(g.user_id, **query)
        result["items"] = [serialize_card(c, now, g.tz) for c in result["items"]]
        return jsonify(result)

    @app.post("/api/flashcards")
    def create_card():
        clean = FlashcardSchema().load(json_body())
        now = utcnow()
        card_id = db.insert_flashcard(g.user_id, clean, now)
        return jsonify(serialize_card(db.get_flashcard(g.user_id, card_id), now, g.tz)), 201

    @app.post("/api/flashcards/bulk")
    def bulk_import():
        data = BulkImportSchema().load(json_body())
        ids = db.insert_flashcards(g.user_id, data["flashcards"], utcnow())
        return jsonify(ids=ids, count=len(ids)), 201

    @app.get(CARD_URL)
    def get_card(flashcard_id: int):
        try:
            card = db.get_flashcard(g.user_id, flashcard_id)
        except db.FlashcardNotFound:
            return error("Flashcard not found", 404)
        return jsonify(serialize_card(card, utcnow(), g.tz))

    @app.patch(CARD_URL)
    def edit_card(flashcard_id: int):
        clean = FlashcardSchema().load(json_body(), partial=True)
        now = utcnow()
        try:
            card = db.update_flashcard(g.user_id, flashcard_id, clean, now)
        except db.FlashcardNotFound:
            return error("Flashcard not found", 404)
        return jsonify(serialize_card(card, now, g.tz))

    @app.delete(CARD_URL)
    def delete_card(flashcard_id: int):
        try:
            db.delete_flashcard(g.user_id, flashcard_id)
        except db.FlashcardNotFound:
            return error("Flashcard not found", 404)
        return "", 204

    @app.get("/api/review")
    def review_session():
        limit = ReviewQuerySchema().load(request.args)["limit"]
        now = utcnow()
        cards = [serialize_card(c, now, g.tz) for c in db.get_due_flashcards(g.user_id, now, limit)]
        return jsonify(flashcards=cards, count=len(cards))

    @app.get("/api/review/count")
    def review_count():
        return jsonify(count=db.count_due_flashcards(g.user_id, utcnow()))

    @app.post("/api/review/update")
    def review_update():
        data = ReviewUpdateSchema().load(json_body())
        flashcard_id = data["flashcard_id"]
        now = utcnow()
        try:
            outcome = db.review_flashcard(g.user_id, flashcard_id, data["knew_it"], now)
        except db.FlashcardNotFound:
            return error("Flashcard not found", 404)
        except db.ReviewConflict:
            logger.warning("concurrent review rejected for card %s", flashcard_id)
            return error("Couldn't update your review", 409)
        except InvalidBoxError as exc:
            logger.error("card %s has corrupt box %r", flashcard_id, exc.box)
            return error("Couldn't update your review", 500)
        return jsonify(
            flashcard_id=flashcard_id,
            box=outcome.new_box,
            box_label=box_info(outcome.new_box).label,
            due_at=db.to_iso(outcome.next_due),
            due_label=str(describe_due_date(outcome.next_due, now, g.tz)),
        )

    return app
