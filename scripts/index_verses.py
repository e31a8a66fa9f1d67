"""
Index the Quran corpus: fetch surahs and tafsir from equran.id, embed, upsert.

Runs as an offline batch job; do not run it while the API is serving traffic.
"""
import argparse
import asyncio
import logging
import time

from dotenv import load_dotenv

from quran_assistant.config import load_settings
from quran_assistant.db.database import create_db_engine
from quran_assistant.db.init_db import init_db
from quran_assistant.db.sql_stores import SqlVerseStore
from quran_assistant.ingestion.embeddings import EmbeddingService
from quran_assistant.ingestion.quran_loader import QuranLoader
from quran_assistant.logging_config import setup_logging

load_dotenv()
logger = logging.getLogger(__name__)


async def run(args, settings):
    engine = create_db_engine(settings.database_url)
    if args.init_db:
        init_db(engine)

    verse_store = SqlVerseStore(engine)

    if args.status_only:
        status = await verse_store.population_status()
        logger.info(f"Population status: {status}")
        return

    embedder = EmbeddingService(
        provider=settings.embedding_provider,
        model=settings.embedding_model,
        base_url=settings.ollama_base_url,
        timeout_seconds=settings.embedding_timeout_seconds,
        expected_dim=settings.embedding_dim,
    )
    loader = QuranLoader(
        verse_store,
        embedder,
        base_url=settings.quran_api_url,
        delay_between_surahs=args.delay,
    )

    start_time = time.time()
    total = await loader.populate(args.surah or None)
    total_time = time.time() - start_time

    status = await verse_store.population_status()
    logger.info(f"Wrote {total} verses in {total_time:.1f}s")
    logger.info(f"Population status: {status}")


def main():
    """Index all or selected surahs into the verse store."""
    parser = argparse.ArgumentParser(
        description="Fetch, embed and index Quran verses",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create tables, then index the whole mushaf
  python scripts/index_verses.py --init-db

  # Re-index Al-Fatihah and Al-Baqarah only
  python scripts/index_verses.py --surah 1 --surah 2

  # Show how much of the corpus is indexed
  python scripts/index_verses.py --status-only
"""
    )
    parser.add_argument("--surah", type=int, action="append",
                        help="Surah number to index (repeatable, default: all 114)")
    parser.add_argument("--delay", type=float, default=0.5,
                        help="Seconds to wait between surahs (default: 0.5)")
    parser.add_argument("--init-db", action="store_true",
                        help="Enable pgvector and create tables before indexing")
    parser.add_argument("--status-only", action="store_true",
                        help="Only print population status")
    parser.add_argument("--log-level", type=str,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging level (default: LOG_LEVEL env var or INFO)")

    args = parser.parse_args()
    settings = load_settings()

    if args.surah and any(not 1 <= s <= 114 for s in args.surah):
        parser.error("--surah must be between 1 and 114")

    setup_logging(level=args.log_level or settings.log_level, log_file="logs/index_verses.log")
    asyncio.run(run(args, settings))


if __name__ == "__main__":
    main()
