"""
Shared fixtures: initialized temporary databases and a seeded workspace.

Every test that touches SQLite gets its own file under tmp_path.
"""

import pytest

from ai_visibility.config.schema import RuntimeConfig
from ai_visibility.storage import db

WORKSPACE_ID = "ws-1"
PROMPT_TEXT = "What are the best vacation rental sites?"
VALID_KEY = "sk-test-0123456789"


@pytest.fixture
def db_path(tmp_path) -> str:
    """Path of a freshly initialized database."""
    path = str(tmp_path / "test.db")
    db.init_db_if_needed(path)
    return path


@pytest.fixture
def seeded(db_path) -> dict:
    """
    Workspace "ws-1" (Airbnb / airbnb.com) with one prompt and an enabled
    OPENAI engine (budget 100 cents).
    """
    with db.connect(db_path) as conn:
        db.insert_workspace(conn, WORKSPACE_ID, "Airbnb", "https://www.airbnb.com")
        prompt_id = db.get_or_create_prompt(conn, WORKSPACE_ID, PROMPT_TEXT)
        engine_id = db.insert_engine(conn, WORKSPACE_ID, "OPENAI", daily_budget_cents=100)
        conn.commit()

    return {
        "db_path": db_path,
        "workspace_id": WORKSPACE_ID,
        "prompt_id": prompt_id,
        "prompt_text": PROMPT_TEXT,
        "engine_id": engine_id,
    }


@pytest.fixture
def runtime_config(db_path) -> RuntimeConfig:
    """RuntimeConfig on the temp database with OPENAI and PERPLEXITY keys set."""
    return RuntimeConfig.model_validate(
        {
            "settings": {
                "database_path": db_path,
                "worker": {"brand_lookup_delay_seconds": 0, "backoff_base_seconds": 0},
            },
            "engine_credentials": {
                "OPENAI_API_KEY": VALID_KEY,
                "PERPLEXITY_API_KEY": VALID_KEY,
            },
        }
    )
