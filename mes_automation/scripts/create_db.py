"""Create database tables for the MES automation backend."""

from __future__ import annotations

import logging

from mes_automation.core.db import SessionLocal, engine
from mes_automation.core.logging_config import setup_logging
from mes_automation.models import Base
from mes_automation.services.auth_seed import seed_admin_user


logger = logging.getLogger("scripts.create_db")


def main() -> None:
    setup_logging()
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified.")
    with SessionLocal() as db:
        seed_admin_user(db)


if __name__ == "__main__":
    main()
