from __future__ import annotations
import csv
import io
import logging
import os
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple

from telegram import (Update, InlineKeyboardButton, InlineKeyboardMarkup)
from telegram.ext import (Application, CommandHandler, MessageHandler, CallbackQueryHandler,
                          ContextTypes, filters)
from marshmallow import ValidationError
from rapidfuzz import fuzz

import config
import db
from schemas import FlashcardSchema, ProfileSchema
from srs import InvalidBoxError, box_info, describe_due_date

logger = logging.getLogger(__name__)

# --- UI helpers ---
HOME_KB = InlineKeyboardMarkup([[InlineKeyboardButton("🏠 Home", callback_data="home")]])

def main_menu() -> InlineKeyboardMarkup:
    rows = [
        [InlineKeyboardButton("🗓️ Review", callback_data="menu_review"),
         InlineKeyboardButton("📊 Stats", callback_data="menu_stats")],
        [InlineKeyboardButton("📚 Add words", callback_data="menu_vocab")],
    ]
    return InlineKeyboardMarkup(rows)

# --- Session state ---
@dataclass
class QuizItem:
    flashcard_id: int
    prompt: str
    expected: List[str]

user_sessions: Dict[int, QuizItem] = {}

def expected_answers(back: str) -> List[str]:
    """Accepted answers for a card back; alternatives are separated by ';'."""
    answers = [a.strip().lower() for a in back.split(";")]
    return list(dict.fromkeys(a for a in answers if a))

def grade_answer(answer: str, expected: Iterable[str],
                 threshold: int = config.ANSWER_THRESHOLD) -> Tuple[bool, int]:
    answer = (answer or "").strip().lower()
    expected = list(expected)
    score = int(max(fuzz.ratio(answer, exp) for exp in expected)) if expected else 0
    return score >= threshold, score

def parse_add_args(text: str) -> Dict[str, str] | None:
    """'/add front | back [| part of speech]' -> card fields."""
    parts = [p.strip() for p in text.split("|")]
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return None
    row = {"front": parts[0], "back": parts[1]}
    if len(parts) > 2 and parts[2]:
        row["part_of_speech"] = parts[2]
    return row

def clean_card(row: Dict[str, Any]) -> Dict[str, Any] | None:
    """Card fields validated like the API's, or None if the row is unusable."""
    try:
        return FlashcardSchema().load(row)
    except ValidationError as err:
        logger.debug("skipping card %r: %s", row.get("front"), err.messages)
        return None

def import_rows(user_id: int, reader: csv.DictReader) -> int:
    rows = [card for card in (clean_card(r) for r in reader) if card]
    if rows:
        db.insert_flashcards(user_id, rows, datetime.now(timezone.utc))
    return len(rows)

# --- Bot Handlers ---
async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user = update.effective_user
    db.upsert_user(user.id, user.username)
    await update.message.reply_text(
        f"Hi {user.first_name or ''}! Ready to practise your words?\nChoose a section:",
        reply_markup=main_menu()
    )

async def help_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(
        "Use /start for the main menu and /review to practise due cards.\n"
        "Add a card with `/add word | translation`.\n"
        "Set your timezone with `/timezone Europe/Warsaw`.\n"
        "To import your own CSV (front,back,part_of_speech), send the file and reply with `#import`.",
        parse_mode="Markdown"
    )

async def on_cb(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    q = update.callback_query
    await q.answer()
    data = q.data
    if data == "home":
        await q.edit_message_text("Home", reply_markup=main_menu())
        return
    if data == "menu_review":
        await start_review(update, context, q.message.chat_id)
        return
    if data == "menu_stats":
        await q.edit_message_text(stats_text(update.effective_user.id), reply_markup=HOME_KB)
        return
    if data == "menu_vocab":
        await q.edit_message_text(
            "Add a card with `/add word | translation`, use /import_sample, "
            "or upload a CSV then reply `#import`.",
            reply_markup=HOME_KB, parse_mode="Markdown")
        return

def stats_text(user_id: int) -> str:
    now = datetime.now(timezone.utc)
    due = db.count_due_flashcards(user_id, now)
    total = db.list_flashcards(user_id, page_size=1)["total"]
    return f"You have {total} cards, {due} due for review."

async def review_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await start_review(update, context, update.effective_chat.id)

async def stats_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(stats_text(update.effective_user.id), reply_markup=HOME_KB)

async def start_review(update: Update | None, context: ContextTypes.DEFAULT_TYPE, chat_id: int | None = None) -> None:
    user_id = update.effective_user.id if update else chat_id
    due = db.get_due_flashcards(user_id, datetime.now(timezone.utc), limit=1)
    if not due:
        target = update.callback_query.message if update and update.callback_query else None
        if target:
            await target.edit_text("Nothing due now. Add words with /add or /import_sample.", reply_markup=HOME_KB)
        else:
            await context.bot.send_message(chat_id=user_id, text="Nothing due now. Add words with /add or /import_sample.", reply_markup=HOME_KB)
        return
    card = due[0]
    prompt = f"Translate: {card['front']}"
    if card["part_of_speech"]:
        prompt += f" ({card['part_of_speech']})"
    user_sessions[user_id] = QuizItem(flashcard_id=card["id"], prompt=prompt,
                                      expected=expected_answers(card["back"]))
    await context.bot.send_message(chat_id=user_id, text=f"{box_info(card['box']).label}\n{prompt}", reply_markup=HOME_KB)

async def on_text_reply(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id = update.effective_user.id
    if update.message.text == "#import":
        await import_last_csv(update, context)
        return
    if user_id not in user_sessions:
        return
    item = user_sessions.pop(user_id)
    success, score = grade_answer(update.message.text, item.expected)
    now = datetime.now(timezone.utc)
    try:
        outcome = db.review_flashcard(user_id, item.flashcard_id, success, now)
    except (db.FlashcardNotFound, db.ReviewConflict, InvalidBoxError):
        logger.exception("review of card %s failed", item.flashcard_id)
        await update.message.reply_text("Sorry, I couldn't update your review.", reply_markup=HOME_KB)
        return

    label = box_info(outcome.new_box).label
    when = describe_due_date(outcome.next_due, now, db.get_user_tz(user_id))
    if success:
        await update.message.reply_text(f"✅ Correct ({score}%). {label}, next review: {when}")
    else:
        await update.message.reply_text(
            f"❌ Not quite ({score}%). Answer: {', '.join(item.expected)}. Back to {label}")
    await start_review(None, context, chat_id=user_id)

async def add_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    row = parse_add_args(" ".join(context.args or []))
    card = clean_card(row) if row else None
    if card is None:
        await update.message.reply_text("Usage: `/add word | translation`", parse_mode="Markdown")
        return
    db.upsert_user(update.effective_user.id, update.effective_user.username)
    db.insert_flashcard(update.effective_user.id, card, datetime.now(timezone.utc))
    await update.message.reply_text(f"Added: {card['front']} → {card['back']}", reply_markup=HOME_KB)

async def timezone_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id = update.effective_user.id
    if not context.args:
        await update.message.reply_text(f"Your timezone is {db.get_user_tz(user_id)}.\n"
                                        "Change it with `/timezone Europe/Warsaw`.", parse_mode="Markdown")
        return
    try:
        data = ProfileSchema().load({"timezone": context.args[0]})
    except ValidationError:
        await update.message.reply_text("Unknown timezone. Use a name like `America/Chicago`.",
                                        parse_mode="Markdown")
        return
    db.set_user_tz(user_id, data["timezone"])
    await update.message.reply_text(f"Timezone set to {data['timezone']}.", reply_markup=HOME_KB)

# --- Import helpers ---
async def import_last_csv(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message.reply_to_message or not update.message.reply_to_message.document:
        await update.message.reply_text("Reply to a CSV file with the text `#import`.")
        return
    doc = update.message.reply_to_message.document
    if not doc.file_name.lower().endswith('.csv'):
        await update.message.reply_text("Please attach a .csv file.")
        return
    file = await context.bot.get_file(doc.file_id)
    data = await file.download_as_bytearray()
    reader = csv.DictReader(io.StringIO(bytes(data).decode('utf-8')))
    count = import_rows(update.effective_user.id, reader)
    await update.message.reply_text(f"Imported {count} cards. Go to Review.", reply_markup=HOME_KB)

async def import_sample(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    path = os.path.join("datasets", "sample_vocab.csv")
    if not os.path.exists(path):
        await update.message.reply_text("Sample dataset missing.")
        return
    with open(path, 'r', encoding='utf-8') as f:
        count = import_rows(update.effective_user.id, csv.DictReader(f))
    await update.message.reply_text(f"Imported {count} cards. Open Review.", reply_markup=HOME_KB)

# --- App entry ---
def run() -> None:
    if not config.TELEGRAM_BOT_TOKEN:
        raise RuntimeError("TELEGRAM_BOT_TOKEN missing")
    config.setup_logging()
    db.init_db()
    app = Application.builder().token(config.TELEGRAM_BOT_TOKEN).build()

    app.add_handler(CommandHandler("start", start))
    app.add_handler(CommandHandler("help", help_cmd))
    app.add_handler(CommandHandler("review", review_cmd))
    app.add_handler(CommandHandler("stats", stats_cmd))
    app.add_handler(CommandHandler("add", add_cmd))
    app.add_handler(CommandHandler("timezone", timezone_cmd))
    app.add_handler(CommandHandler("import_sample", import_sample))
    app.add_handler(CallbackQueryHandler(on_cb))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, on_text_reply))

    logger.info("Bot is running…")
    app.run_polling()

if __name__ == "__main__":
    run()
