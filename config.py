from __future__ import annotations
import logging
import os

from dotenv import load_dotenv

load_dotenv()

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
DATABASE_PATH = os.getenv("DATABASE_PATH", "flashcards.db")
DEFAULT_TZ = os.getenv("DEFAULT_TIMEZONE", "UTC")
REVIEW_SESSION_LIMIT = int(os.getenv("REVIEW_SESSION_LIMIT", "50"))
ANSWER_THRESHOLD = int(os.getenv("ANSWER_THRESHOLD", "80"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def setup_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
