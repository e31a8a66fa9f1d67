"""
Initialize the database with pgvector extension and create tables.

Run this script to set up your database:
    python -m quran_assistant.db.init_db
"""
from sqlalchemy import text

from quran_assistant.config import load_settings
from .database import Base, create_db_engine
from . import models  # noqa: F401  (registers tables on Base.metadata)


def init_db(engine=None):
    """Create pgvector extension and all tables with indexes"""
    if engine is None:
        engine = create_db_engine(load_settings().database_url)

    print("Initializing database...")

    with engine.connect() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        conn.commit()
        print("✓ pgvector extension enabled")

    # SQLAlchemy also creates the indexes declared in __table_args__
    Base.metadata.create_all(bind=engine)
    print("✓ Database tables created")

    print("\nTables created:")
    print("  - quran_verses (verse corpus with embeddings)")
    print("  - conversation_contexts (discussed verses per conversation)")
    print("  - memorization_sessions (hafalan drills)")
    print("  - memorization_attempts (append-only attempt log)")


if __name__ == "__main__":
    init_db()
