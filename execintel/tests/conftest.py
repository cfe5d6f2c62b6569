from __future__ import annotations

import os
import tempfile
from pathlib import Path

# Settings are read at import time, so point the engine at sqlite before any execintel import.
_DB_PATH = Path(tempfile.gettempdir()) / f"execintel-tests-{os.getpid()}.db"
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_PATH}")
os.environ.setdefault("LLM_PROVIDER", "fake")
os.environ.setdefault("CB_REDIS_ENABLED", "false")

import pytest

from execintel.apps.api.deps import clear_auth_cache
from execintel.core.config import get_settings
from execintel.domain.models import Base
from execintel.persistence.db import engine


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Every test starts from empty tables on a fresh connection pool.
    get_settings.cache_clear()
    clear_auth_cache()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()
