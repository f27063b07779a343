"""
Initial data

Seeds the demo catalogue (products with per-size stock) after migrations
have run. Does nothing when products already exist.

    python -m storefront.initial_data
"""
import logging

from sqlmodel import Session

from storefront.core.db import engine, init_db

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def init() -> None:
    with Session(engine) as session:
        init_db(session)


def main() -> None:
    logger.info("Creating initial data")
    init()
    logger.info("Initial data created")


if __name__ == "__main__":  # pragma: no cover
    main()
