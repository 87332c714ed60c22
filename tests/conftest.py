import os
import tempfile

# Lightweight local DB, fast password hashing and no admin bootstrap during tests.
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+pysqlite:///" + os.path.join(tempfile.gettempdir(), "mes_automation_test.db"),
)
os.environ.setdefault("AUTO_CREATE_DB", "true")
os.environ.setdefault("AUTO_SEED_ADMIN_USER", "false")
os.environ.setdefault("MES_ENV", "dev")
os.environ.setdefault("MES_AUTH_DISABLED", "false")
os.environ.setdefault("MES_JWT_SECRET", "test-jwt-secret-strong-value-123456")
os.environ.setdefault("MES_PASSWORD_HASH_ROUNDS", "1000")

import pytest


@pytest.fixture
def app_db():
    """Reset every table on the shared app database."""
    from mes_automation.core.db import engine
    from mes_automation.models import Base

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
