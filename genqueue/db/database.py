"""
Database connection using SQLAlchemy.
On PostgreSQL, job row changes are published with LISTEN/NOTIFY so that
completion listeners do not need to poll.
"""
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, declarative_base

from genqueue.core.config import DATABASE_URL

JOB_CHANGES_CHANNEL = "job_changes"

engine = create_engine(DATABASE_URL, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """Dependency for FastAPI endpoints."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Create all tables, plus the timestamp and change-feed triggers on Postgres."""
    from genqueue.db import models  # noqa: F401

    bind = bind or engine
    Base.metadata.create_all(bind=bind)

    if bind.dialect.name != "postgresql":
        return

    with bind.connect() as conn:
        # Automatic updated_at (ON UPDATE behavior)
        conn.execute(text("""
            CREATE OR REPLACE FUNCTION update_modified_column()
            RETURNS TRIGGER AS $$
            BEGIN
                NEW.updated_at = NOW();
                RETURN NEW;
            END;
            $$ LANGUAGE plpgsql;
        """))

        # Publish job inserts/updates for completion listeners
        conn.execute(text(f"""
            CREATE OR REPLACE FUNCTION notify_job_change()
            RETURNS TRIGGER AS $$
            BEGIN
                PERFORM pg_notify('{JOB_CHANGES_CHANNEL}', json_build_object(
                    'event', TG_OP,
                    'id', NEW.id,
                    'user_id', NEW.user_id,
                    'job_type', NEW.job_type,
                    'status', NEW.status::text,
                    'image_id', NEW.image_id,
                    'video_id', NEW.video_id,
                    'metadata', NEW.metadata
                )::text);
                RETURN NEW;
            END;
            $$ LANGUAGE plpgsql;
        """))

        conn.execute(text("""
            DO $$
            BEGIN
                IF NOT EXISTS (
                    SELECT 1 FROM pg_trigger WHERE tgname = 'set_job_timestamp'
                ) THEN
                    CREATE TRIGGER set_job_timestamp
                    BEFORE UPDATE ON jobs
                    FOR EACH ROW
                    EXECUTE FUNCTION update_modified_column();
                END IF;
                IF NOT EXISTS (
                    SELECT 1 FROM pg_trigger WHERE tgname = 'publish_job_change'
                ) THEN
                    CREATE TRIGGER publish_job_change
                    AFTER INSERT OR UPDATE ON jobs
                    FOR EACH ROW
                    EXECUTE FUNCTION notify_job_change();
                END IF;
            END $$;
        """))
        conn.commit()
