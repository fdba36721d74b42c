import logging

from database import engine, Base
import models  # noqa: F401  registers the tables on Base.metadata

logger = logging.getLogger("erp_drive.init_db")


def init_db():
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created", extra={"tables": sorted(Base.metadata.tables)})


if __name__ == "__main__":
    import logging_config  # noqa: F401

    init_db()
