# db_setup.py
import logging
from dotenv import load_dotenv

load_dotenv()

from pamoja.persistence.db import build_engine
from pamoja.persistence.models import Base

logger = logging.getLogger(__name__)


def create_db_tables(bind=None):
    """Create the conversation tables if they do not exist (on DB_URL unless *bind* is given)."""
    if bind is None:
        bind = build_engine()
    logger.info("Creating database tables on %s", bind.url)
    Base.metadata.create_all(bind=bind)
    logger.info("Tables created successfully")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    create_db_tables()
