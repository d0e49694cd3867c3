from goalcoach.db.base import engine, SessionLocal, Base
import logging

logger = logging.getLogger(__name__)


def get_db():
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """Create all engine tables on the given bind (defaults to the app engine)"""
    # Import all models to ensure they're registered
    from goalcoach.models import user, goal, habit  # noqa: F401

    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating tables: {e}")
        raise
