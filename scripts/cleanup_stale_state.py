"""
Retention sweep: delete old conversation contexts and expire idle hafalan sessions.

Meant to run from cron, e.g. once a day.
"""
import argparse
import asyncio
import logging

from dotenv import load_dotenv

from quran_assistant.config import load_settings
from quran_assistant.db.database import create_db_engine
from quran_assistant.db.sql_stores import SqlContextStore, SqlSessionStore, SqlVerseStore
from quran_assistant.hafalan.session_engine import MemorizationSessionEngine
from quran_assistant.logging_config import setup_logging
from quran_assistant.retrieval.context_reranker import ConversationContextTracker

load_dotenv()
logger = logging.getLogger(__name__)


async def run(args, settings):
    engine = create_db_engine(settings.database_url)

    tracker = ConversationContextTracker(SqlContextStore(engine))
    removed = await tracker.cleanup_old_contexts(args.context_days)

    hafalan = MemorizationSessionEngine(
        SqlVerseStore(engine),
        SqlSessionStore(engine),
        idle_ttl_seconds=args.session_idle_seconds,
    )
    expired = await hafalan.expire_idle_sessions()

    logger.info(f"Retention sweep done: {removed} contexts removed, {expired} sessions expired")


def main():
    settings = load_settings()

    parser = argparse.ArgumentParser(description="Delete stale conversation contexts and expire idle sessions")
    parser.add_argument("--context-days", type=int, default=settings.context_retention_days,
                        help=f"Delete contexts not updated for this many days (default: {settings.context_retention_days})")
    parser.add_argument("--session-idle-seconds", type=int, default=settings.session_idle_ttl_seconds,
                        help=f"Expire sessions idle longer than this (default: {settings.session_idle_ttl_seconds})")
    parser.add_argument("--log-level", type=str,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging level (default: LOG_LEVEL env var or INFO)")
    args = parser.parse_args()

    if args.context_days <= 0 or args.session_idle_seconds <= 0:
        parser.error("retention values must be positive")

    setup_logging(level=args.log_level or settings.log_level, log_file="logs/cleanup_stale_state.log")
    asyncio.run(run(args, settings))


if __name__ == "__main__":
    main()
