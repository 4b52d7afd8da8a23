import os
from pathlib import Path

import pytest

from chatloop.config import get_settings
from chatloop.db.migrations.runner import run_migrations


@pytest.fixture(autouse=True)
def test_env(tmp_path: Path):
    db = tmp_path / "test.db"
    os.environ["APP_DB"] = str(db)
    os.environ["APP_ENV"] = "dev"
    os.environ["BLOB_BACKEND"] = "inline"
    os.environ["RATE_LIMIT_MESSAGES_PER_MINUTE"] = "1000"
    os.environ["LLM_BASE_URL"] = "http://llm.test/v1"
    os.environ["IMAGE_BASE_URL"] = "http://images.test/v1"
    get_settings.cache_clear()
    run_migrations()
    yield
    get_settings.cache_clear()
